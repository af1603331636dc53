from typing import List, NamedTuple, Optional, Tuple


class InputUnit(NamedTuple):
  """one token of the parser input."""

  word: str
  word_id: int
  pos_id: int
  cids: Tuple[int, ...]  # character ids of the word


class ParseInstance(NamedTuple):
  """
  a sentence ready for the parser.
  heads/deprels are indexed by token position (1..n); slot 0 is the root
  placeholder and holds BAD_HEAD / BAD_REL.
  """

  units: List[InputUnit]
  heads: List[int]
  deprels: List[int]
  actions: Optional[List[int]] = None  # precomputed oracle trace


class TokenizeInstance(NamedTuple):
  """a raw sentence and its gold tokens."""

  raw_sentence: str
  tokens: List[str]


class ParseResult(NamedTuple):
  """output of a decode: heads/deprels in the same layout as ParseInstance."""

  heads: List[int]
  deprels: List[int]
  actions: List[int]
  score: float = 0.0
