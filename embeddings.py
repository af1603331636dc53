import logging
from typing import Callable, Dict, Optional, Sequence

import numpy as np

logger = logging.getLogger(__name__)


class StaticEmbedding:
  """pretrained word -> vector table; misses render as zero vectors."""

  def __init__(
    self,
    dim: int,
    table: Optional[Dict[str, np.ndarray]] = None,
    lowercase: bool = False,
  ):
    self.dim = dim
    self.lowercase = lowercase
    self.table: Dict[str, np.ndarray] = {}
    for word, vec in (table or {}).items():
      vec = np.asarray(vec, dtype=np.float32)
      if vec.shape != (dim,):
        raise ValueError(f"vector for {word!r} has shape {vec.shape}, expected ({dim},)")
      self.table[word.lower() if lowercase else word] = vec

  def __contains__(self, word: str) -> bool:
    return (word.lower() if self.lowercase else word) in self.table

  def render(self, words: Sequence[str]) -> np.ndarray:
    out = np.zeros((len(words), self.dim), dtype=np.float32)
    for i, word in enumerate(words):
      vec = self.table.get(word.lower() if self.lowercase else word)
      if vec is not None:
        out[i] = vec
    return out


class ContextualEmbedding:
  """wraps a per-sentence encoder: words -> array of shape (len(words), dim)."""

  def __init__(self, dim: int, encoder: Callable[[Sequence[str]], np.ndarray]):
    self.dim = dim
    self.encoder = encoder

  def render(self, words: Sequence[str]) -> np.ndarray:
    out = np.asarray(self.encoder(words), dtype=np.float32)
    if out.shape != (len(words), self.dim):
      raise ValueError(
        f"contextual encoder returned {out.shape}, expected ({len(words)}, {self.dim})"
      )
    return out


def empty_embedding(dim: int) -> StaticEmbedding:
  logger.info("no pretrained embedding given; using zero vectors of dim %d", dim)
  return StaticEmbedding(dim)
