import itertools

import jax.numpy as jnp
import numpy as np
import pytest

from chart import log_partition, spans_from_durations, viterbi_segment, window_start
from errors import SegmentationError


def table_scorer(table, default=-5.0):
  """span scorer backed by a dict {(i, j): score}."""

  def span_scores(i_start, j):
    return jnp.array([table.get((i, j), default) for i in range(i_start, j)])

  return span_scores


def random_scorer(n, seed=0):
  rng = np.random.default_rng(seed)
  table = {(i, j): float(rng.normal()) for j in range(1, n + 1) for i in range(j)}
  return table, table_scorer(table)


def segmentations(n, max_seg_len):
  """every segmentation of n units as a list of spans."""
  for cuts in itertools.product([False, True], repeat=n - 1):
    bounds = [0] + [k + 1 for k, cut in enumerate(cuts) if cut] + [n]
    spans = list(zip(bounds[:-1], bounds[1:]))
    if all(j - i <= max_seg_len for i, j in spans):
      yield spans


def test_window_start():
  assert window_start(3, 0) == 0
  assert window_start(3, 5) == 0
  assert window_start(10, 4) == 6


def test_spans_from_durations():
  assert spans_from_durations([2, 1, 3]) == [(0, 2), (2, 3), (3, 6)]
  assert spans_from_durations([]) == []


def test_viterbi_picks_the_best_segmentation():
  scorer = table_scorer({(0, 2): 3.0, (2, 3): 1.0, (0, 1): 1.0, (1, 3): 1.0})
  assert viterbi_segment(3, scorer, max_seg_len=0) == [(0, 2), (2, 3)]


def test_viterbi_respects_max_seg_len():
  scorer = table_scorer({(0, 3): 100.0})
  spans = viterbi_segment(3, scorer, max_seg_len=2)
  assert all(j - i <= 2 for i, j in spans)
  assert spans[0][0] == 0 and spans[-1][1] == 3


def test_viterbi_matches_brute_force():
  table, scorer = random_scorer(5, seed=7)
  best = max(segmentations(5, 3), key=lambda s: sum(table[sp] for sp in s))
  assert viterbi_segment(5, scorer, max_seg_len=3) == best


def test_log_partition_matches_brute_force():
  table, scorer = random_scorer(4, seed=1)
  gold = [(0, 1), (1, 4)]
  alpha, ref_alpha = log_partition(4, scorer, 3, gold)
  totals = [sum(table[sp] for sp in s) for s in segmentations(4, 3)]
  np.testing.assert_allclose(alpha, np.log(np.sum(np.exp(totals))), rtol=1e-5)
  np.testing.assert_allclose(ref_alpha, table[(0, 1)] + table[(1, 4)], rtol=1e-5)


def test_dominant_gold_path_has_near_zero_loss():
  gold = [(0, 2), (2, 3), (3, 5)]
  scorer = table_scorer({sp: 50.0 for sp in gold}, default=-50.0)
  alpha, ref_alpha = log_partition(5, scorer, 0, gold)
  assert float(alpha - ref_alpha) == pytest.approx(0.0, abs=1e-4)


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_loss_is_non_negative(seed):
  _, scorer = random_scorer(3, seed=seed)
  alpha, ref_alpha = log_partition(3, scorer, 0, [(0, 3)])
  assert float(alpha - ref_alpha) >= -1e-5


def test_without_gold_only_the_partition_is_returned():
  _, scorer = random_scorer(2)
  alpha, ref_alpha = log_partition(2, scorer, 0)
  assert ref_alpha is None
  assert np.isfinite(float(alpha))


def test_gold_span_past_the_end_raises():
  _, scorer = random_scorer(2)
  with pytest.raises(SegmentationError):
    log_partition(2, scorer, 0, [(0, 3)])
