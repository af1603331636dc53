from typing import Sequence, Tuple

import jax.numpy as jnp
import numpy as np
import flax.linen as nn

from config import TokenizerConfig
from parser_model import BiLSTM, Merge2, Merge3

# durations 1, 2, 3, 4, 5-8, 9-16, 17+
N_DURATION_BINS = 7


def duration_bin(durations) -> np.ndarray:
  d = np.asarray(durations, dtype=np.int64)
  log_bins = np.ceil(np.log2(np.maximum(d, 1))).astype(np.int64) + 1
  return np.where(d <= 4, d - 1, np.minimum(log_bins, N_DURATION_BINS - 1))


class SegmentalTokenizerModel(nn.Module):
  """
  character BiLSTM -> per-character merge -> segment BiLSTM.
  a span [i, j) is represented by differences of the segment BiLSTM's prefix
  and suffix states plus a binned duration embedding.
  """

  char_size: int
  char_dim: int
  hidden_dim: int
  n_layers: int
  seg_dim: int
  dur_dim: int

  def setup(self):
    self.char_embed = nn.Embed(self.char_size, self.char_dim)
    self.bi_rnn = BiLSTM(self.hidden_dim, self.n_layers)
    self.merge = Merge2(self.hidden_dim)
    self.seg_rnn = BiLSTM(self.seg_dim, self.n_layers)
    self.dur_embed = nn.Embed(N_DURATION_BINS, self.dur_dim)
    self.merge3 = Merge3(self.seg_dim)
    self.dense = nn.Dense(1)

  def encode(self, cids: Sequence[int]) -> Tuple[jnp.ndarray, jnp.ndarray]:
    """
    returns (F, B), both (n + 1, seg_dim): F[k] summarizes units [0, k) left to
    right, B[k] summarizes units [k, n) right to left.
    """
    x = self.char_embed(jnp.asarray(cids, dtype=jnp.int32))
    fwd, bwd = self.bi_rnn(list(x))
    c = [nn.relu(self.merge(f, b)) for f, b in zip(fwd, bwd)]
    seg_fwd, seg_bwd = self.seg_rnn(c)
    zeros = jnp.zeros((self.seg_dim,))
    return jnp.stack([zeros] + seg_fwd), jnp.stack(seg_bwd + [zeros])

  def span_scores(
    self, F: jnp.ndarray, B: jnp.ndarray, i_start: int, j: int
  ) -> jnp.ndarray:
    """factor scores of the spans [i, j) for i_start <= i < j."""
    seg_f = F[j] - F[i_start:j]
    seg_b = B[i_start:j] - B[j]
    bins = duration_bin(j - np.arange(i_start, j))
    dur = self.dur_embed(jnp.asarray(bins, dtype=jnp.int32))
    hidden = nn.relu(self.merge3(seg_f, seg_b, dur))
    return self.dense(hidden)[:, 0]

  def warmup(self) -> jnp.ndarray:
    F, B = self.encode([0, 0])
    return self.span_scores(F, B, 0, 2)


def create_tokenizer_model(config: TokenizerConfig) -> SegmentalTokenizerModel:
  return SegmentalTokenizerModel(
    char_size=config.char_size,
    char_dim=config.char_dim,
    hidden_dim=config.hidden_dim,
    n_layers=config.n_layers,
    seg_dim=config.seg_dim,
    dur_dim=config.dur_dim,
  )
