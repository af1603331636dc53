from typing import List, Sequence

from engine import State, TransitionSystem
from errors import OracleError
from vocab import BAD_HEAD, BAD_REL


def get_oracle_actions(
  system: TransitionSystem, heads: Sequence[int], deprels: Sequence[int]
) -> List[int]:
  """
  reference action trace for a gold tree (heads/deprels indexed 0..n, slot 0
  is the root placeholder). the trace is replayed and must rebuild exactly
  the gold arc set.
  """
  n = len(heads) - 1
  if any(h == BAD_HEAD for h in heads[1:]):
    raise OracleError("gold tree has unattached tokens")
  if any(not 0 <= h <= n for h in heads[1:]):
    raise OracleError("gold head index out of range")
  if any(r == BAD_REL for r in deprels[1:]):
    raise OracleError("gold tree has unknown relations")

  state = State(n)
  actions: List[int] = []
  # swap parses are quadratic in the worst case
  max_steps = 2 * n + n * n + 1
  while not system.is_terminal(state):
    if len(actions) > max_steps:
      raise OracleError("oracle did not terminate")
    action = system.oracle_action(state, heads, deprels)
    if not system.is_legal(state, action):
      raise OracleError(
        f"{system.name} cannot derive the gold tree: "
        f"{system.action_name(action)} is illegal in {state}"
      )
    system.perform_action(state, action)
    actions.append(action)

  gold = {(heads[m], m, deprels[m]) for m in range(1, n + 1)}
  if state.arcs != gold:
    raise OracleError(f"{system.name} oracle built a different tree")
  return actions


def correct_actions(
  system: TransitionSystem,
  state: State,
  heads: Sequence[int],
  deprels: Sequence[int],
) -> List[int]:
  """dynamic oracle: the legal actions that lose the fewest gold arcs."""
  legal = system.legal_actions(state)
  costs = [system.action_cost(state, a, heads, deprels) for a in legal]
  best = min(costs)
  return [a for a, c in zip(legal, costs) if c == best]
