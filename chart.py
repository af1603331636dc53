"""
semi-Markov chart over the implicit lattice of spans [i, j).

span_scores(i_start, j) must return the factor scores of the spans [i, j) for
every i_start <= i < j, as a vector indexed by i - i_start. it is called once
per end position j, so no span is scored twice within one pass.
"""

from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import jax.numpy as jnp
import numpy as np
from jax.scipy.special import logsumexp

from errors import SegmentationError

Span = Tuple[int, int]
SpanScorer = Callable[[int, int], jnp.ndarray]


def window_start(j: int, max_seg_len: int) -> int:
  """first start position allowed for a span ending at j (0 = unbounded)."""
  if not max_seg_len:
    return 0
  return max(0, j - max_seg_len)


def spans_from_durations(durations: Sequence[int]) -> List[Span]:
  spans = []
  cur = 0
  for dur in durations:
    spans.append((cur, cur + dur))
    cur += dur
  return spans


def viterbi_segment(n: int, span_scores: SpanScorer, max_seg_len: int) -> List[Span]:
  """max-product decode: the best segmentation of n units, left to right."""
  alpha = np.zeros(n + 1, dtype=np.float64)
  backpointer = [0] * (n + 1)
  for j in range(1, n + 1):
    i_start = window_start(j, max_seg_len)
    f = np.asarray(span_scores(i_start, j), dtype=np.float64) + alpha[i_start:j]
    best = int(np.argmax(f))
    alpha[j] = f[best]
    backpointer[j] = i_start + best

  spans = []
  j = n
  while j > 0:
    i = backpointer[j]
    spans.append((i, j))
    j = i
  spans.reverse()
  return spans


def log_partition(
  n: int,
  span_scores: SpanScorer,
  max_seg_len: int,
  gold_spans: Optional[Sequence[Span]] = None,
) -> Tuple[jnp.ndarray, Optional[jnp.ndarray]]:
  """
  sum-product pass. returns (alpha[n], ref_alpha[n]): the log-sum-exp over all
  segmentations and, when gold_spans is given, the score of the gold path.
  """
  gold: Set[Span] = set(gold_spans or ())
  for i, j in gold:
    if j > n:
      raise SegmentationError(f"gold segment [{i}, {j}) ends past {n} units")

  alpha: List[jnp.ndarray] = [jnp.zeros(())]
  ref_alpha: Dict[int, jnp.ndarray] = {0: jnp.zeros(())}
  for j in range(1, n + 1):
    i_start = window_start(j, max_seg_len)
    scores = span_scores(i_start, j)
    alpha.append(logsumexp(scores + jnp.stack(alpha[i_start:j])))
    for i in range(i_start, j):
      if (i, j) in gold and i in ref_alpha:
        ref_alpha[j] = scores[i - i_start] + ref_alpha[i]

  if gold_spans is None:
    return alpha[n], None
  return alpha[n], ref_alpha.get(n)
