import random

import pytest

from engine import (
  LEFT,
  REDUCE,
  RIGHT,
  SHIFT,
  SWAP,
  ArcEager,
  ArcStandard,
  State,
  build_system,
  projective_order,
)
from vocab import BAD_HEAD

SCHEMES = ["arcstd", "swap", "archybrid", "arceager"]


def test_arc_standard_left_attaches_s1_to_s0():
  system = ArcStandard(num_relations=2)
  state = State(3)
  system.perform_action(state, system.get_action(SHIFT))
  system.perform_action(state, system.get_action(SHIFT))
  assert state.stack == [0, 1, 2]
  assert state.buffer == [3]

  system.perform_action(state, system.get_action(LEFT, 1))
  assert state.stack == [0, 2]
  assert state.buffer == [3]
  assert state.heads[1] == 2
  assert state.deprels[1] == 1


def test_action_layout():
  system = build_system("swap", num_relations=3)
  assert system.num_actions == 2 + 2 * 3
  assert system.get_action(SHIFT) == 0
  assert system.get_action(SWAP) == 1
  assert system.get_action(LEFT, 0) == 2
  assert system.get_action(RIGHT, 0) == 5
  assert system.action_kind(6) == RIGHT
  assert system.action_relation(6) == 1
  assert system.action_name(0) == "SHIFT"
  assert system.action_name(6) == "RIGHT-1"


def test_build_system_normalizes_names():
  assert build_system("arc-standard", 1).name == "arcstd"
  assert build_system("Arc_Eager", 1).name == "arceager"
  with pytest.raises(ValueError):
    build_system("arc-swift", 1)


def test_initial_state_layout():
  state = State(3)
  assert state.stack == [0]
  assert state.buffer == [3, 2, 1]  # front is the last element
  assert state.heads == [BAD_HEAD] * 4


def test_state_copy_is_independent():
  system = ArcStandard(num_relations=1)
  state = State(2)
  other = state.copy()
  system.perform_action(other, system.get_action(SHIFT))
  assert state.stack == [0]
  assert other.stack == [0, 1]


@pytest.mark.parametrize("scheme", SCHEMES)
@pytest.mark.parametrize("n_words", [1, 2, 5, 8])
def test_random_walks_terminate_with_complete_trees(scheme, n_words):
  system = build_system(scheme, num_relations=3)
  rng = random.Random(n_words)
  for _ in range(20):
    state = State(n_words)
    size = len(state.stack) + len(state.buffer)
    steps = 0
    while not system.is_terminal(state):
      legal = system.legal_actions(state)
      assert legal, f"no legal action in {state}"
      assert all(system.is_legal(state, a) for a in legal)
      system.perform_action(state, rng.choice(legal))
      new_size = len(state.stack) + len(state.buffer)
      assert new_size <= size
      size = new_size
      steps += 1
      assert steps < 10000
    assert all(0 <= h <= n_words for h in state.heads[1:])


def test_is_legal_rejects_out_of_range_ids():
  system = ArcStandard(num_relations=1)
  state = State(2)
  assert not system.is_legal(state, -1)
  assert not system.is_legal(state, system.num_actions)
  assert not system.is_legal(state, system.get_action(LEFT, 0))


def test_arc_eager_reduce_attaches_headless_token_to_root():
  system = ArcEager(num_relations=3, root_relation=2)
  state = State(1)
  system.perform_action(state, system.get_action(SHIFT))
  assert system.legal_actions(state) == [system.get_action(REDUCE)]
  system.perform_action(state, system.get_action(REDUCE))
  assert system.is_terminal(state)
  assert state.heads[1] == 0
  assert state.deprels[1] == 2


def test_swap_requires_ordered_pair():
  system = build_system("swap", num_relations=1)
  state = State(3)
  for _ in range(3):
    system.perform_action(state, system.get_action(SHIFT))
  assert system.is_legal(state, system.get_action(SWAP))
  system.perform_action(state, system.get_action(SWAP))
  assert state.stack == [0, 1, 3]
  assert state.buffer == [2]
  system.perform_action(state, system.get_action(SHIFT))
  assert state.stack == [0, 1, 3, 2]
  assert not system.is_legal(state, system.get_action(SWAP))


def test_projective_order():
  # 0 -> 3, 3 -> 1, 3 -> 4, 4 -> 2
  assert projective_order([BAD_HEAD, 3, 4, 0, 3]) == [0, 1, 3, 2, 4]
