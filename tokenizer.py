import logging
import re
from typing import List, Optional, Sequence

import jax.numpy as jnp

from chart import SpanScorer, log_partition, spans_from_durations, viterbi_segment
from config import MAX_SEG_LEN
from schema import TokenizeInstance
from tokenizer_model import SegmentalTokenizerModel
from vocab import SymbolTable

logger = logging.getLogger(__name__)

ONE_MORE_SPACE = re.compile(r"[ ]{2,}")
SPACE = " "


def normalize_whitespace(text: str) -> str:
  """collapse runs of two or more spaces into one."""
  return ONE_MORE_SPACE.sub(SPACE, text)


def split_units(text: str) -> List[str]:
  # one unit per code point
  return list(text)


def gold_segmentation(chars: Sequence[str], tokens: Sequence[str]) -> Optional[List[int]]:
  """
  durations of the gold segments over chars: each space is its own segment,
  each token one segment. None when the tokens do not spell out the text.
  """
  durations: List[int] = []
  j = k = 0
  for ch in chars:
    if ch == SPACE and k == 0:
      durations.append(1)
      continue
    if j >= len(tokens) or k >= len(tokens[j]) or tokens[j][k] != ch:
      return None
    k += 1
    if k == len(tokens[j]):
      durations.append(k)
      j += 1
      k = 0
  # empty tokens cannot be aligned
  if j != len(tokens) or k != 0:
    return None
  return durations


class SegmentalTokenizer:
  """
  semi-Markov tokenizer: scores every span [i, j) of at most max_seg_len
  characters and segments by dynamic programming over the span lattice.
  """

  def __init__(
    self,
    model: SegmentalTokenizerModel,
    params,
    char_table: SymbolTable,
    max_seg_len: int = MAX_SEG_LEN,
  ):
    self.model = model.bind({"params": params})
    self.char_table = char_table
    self.max_seg_len = max_seg_len

  def char_ids(self, chars: Sequence[str]) -> List[int]:
    return [self.char_table.get(ch) for ch in chars]

  def span_scorer(self, cids: Sequence[int]) -> SpanScorer:
    F, B = self.model.encode(cids)

    def span_scores(i_start: int, j: int) -> jnp.ndarray:
      return self.model.span_scores(F, B, i_start, j)

    return span_scores

  def decode(self, raw_text: str) -> List[str]:
    chars = split_units(normalize_whitespace(raw_text))
    if not chars:
      return []
    cids = self.char_ids(chars)
    spans = viterbi_segment(len(chars), self.span_scorer(cids), self.max_seg_len)

    output = []
    for i, j in spans:
      word = "".join(chars[i:j])
      if word.strip(SPACE):
        output.append(word)
    return output

  def objective(self, instance: TokenizeInstance) -> jnp.ndarray:
    """
    log-partition minus gold-path score. training faults (gold tokens that do
    not align, gold segments longer than max_seg_len) give a zero loss.
    """
    chars = split_units(normalize_whitespace(instance.raw_sentence))
    durations = gold_segmentation(chars, instance.tokens)
    if durations is None:
      logger.warning(
        "gold tokens do not align with %r; skipping", instance.raw_sentence
      )
      return jnp.zeros(())
    longest = max(durations, default=0)
    if self.max_seg_len and longest > self.max_seg_len:
      logger.warning(
        "max_seg_len=%d but reference duration is %d; skipping",
        self.max_seg_len,
        longest,
      )
      return jnp.zeros(())
    if not chars:
      return jnp.zeros(())

    cids = self.char_ids(chars)
    alpha, ref_alpha = log_partition(
      len(chars),
      self.span_scorer(cids),
      self.max_seg_len,
      spans_from_durations(durations),
    )
    return alpha - ref_alpha


def _token_spans(tokens: Sequence[str]) -> set:
  # offsets count non-space characters only
  spans = set()
  offset = 0
  for tok in tokens:
    width = len(tok.replace(SPACE, ""))
    spans.add((offset, offset + width))
    offset += width
  return spans


def token_f1(tokenizer: SegmentalTokenizer, instances: Sequence[TokenizeInstance]) -> float:
  """token-level F1 of decoded segmentations against the reference tokens."""
  n_gold = n_pred = n_match = 0
  for inst in instances:
    gold = _token_spans(inst.tokens)
    pred = _token_spans(tokenizer.decode(inst.raw_sentence))
    n_gold += len(gold)
    n_pred += len(pred)
    n_match += len(gold & pred)
  if n_match == 0:
    return 0.0
  precision = n_match / n_pred
  recall = n_match / n_gold
  return 2 * precision * recall / (precision + recall)
