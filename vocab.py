from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence

UNK = "<UNK>"
ROOT = "<ROOT>"
BAD0 = "<BAD0>"

# integer sentinels used in head/relation arrays
BAD_HEAD = -1
BAD_REL = -1


class SymbolTable:
  """
  bijective string <-> id mapping.
  ids are contiguous from 0; reserved symbols come first.
  once frozen, unknown strings map to UNK (if reserved) and nothing is inserted.
  """

  def __init__(self, name: str, reserved: Sequence[str] = ()):
    self.name = name
    self.str2id: Dict[str, int] = {}
    self.id2str: List[str] = []
    self.frozen = False
    for sym in reserved:
      self.insert(sym)

  def __len__(self) -> int:
    return len(self.id2str)

  def __contains__(self, sym: str) -> bool:
    return sym in self.str2id

  def contains(self, sym: str) -> bool:
    return sym in self.str2id

  def insert(self, sym: str) -> int:
    if sym in self.str2id:
      return self.str2id[sym]
    if self.frozen:
      raise ValueError(f"cannot insert {sym!r} into frozen table {self.name}")
    idx = len(self.id2str)
    self.str2id[sym] = idx
    self.id2str.append(sym)
    return idx

  def get(self, sym: str) -> int:
    """training-time lookup inserts; frozen lookup falls back to UNK."""
    idx = self.str2id.get(sym)
    if idx is not None:
      return idx
    if not self.frozen:
      return self.insert(sym)
    if UNK in self.str2id:
      return self.str2id[UNK]
    raise KeyError(f"{sym!r} not in table {self.name}")

  def lookup(self, idx: int) -> str:
    return self.id2str[idx]

  def freeze(self) -> "SymbolTable":
    self.frozen = True
    return self

  def to_list(self) -> List[str]:
    return list(self.id2str)

  @classmethod
  def from_list(cls, name: str, symbols: Iterable[str]) -> "SymbolTable":
    table = cls(name)
    for sym in symbols:
      table.insert(sym)
    return table.freeze()


class Vocab(NamedTuple):
  """the symbol tables shared by the tokenizer and the parser."""

  chars: SymbolTable
  words: SymbolTable
  pos: SymbolTable
  rels: SymbolTable

  def freeze(self) -> "Vocab":
    for table in self:
      table.freeze()
    return self

  def root_relation(self, name: str = "root") -> int:
    return self.rels.str2id.get(name, 0)

  def to_dict(self) -> Dict[str, List[str]]:
    return {field: getattr(self, field).to_list() for field in self._fields}

  @classmethod
  def from_dict(cls, payload: Dict[str, List[str]]) -> "Vocab":
    return cls(**{k: SymbolTable.from_list(k, v) for k, v in payload.items()})


def new_vocab(relations: Optional[Iterable[str]] = None) -> Vocab:
  """empty registry with the reserved symbols in place."""
  vocab = Vocab(
    chars=SymbolTable("chars", (UNK,)),
    words=SymbolTable("words", (UNK, ROOT)),
    pos=SymbolTable("pos", (UNK, ROOT)),
    rels=SymbolTable("rels"),
  )
  for rel in relations or ():
    vocab.rels.insert(rel)
  return vocab
