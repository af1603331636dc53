from typing import Dict, List, Optional, Sequence, Tuple, Type

from vocab import BAD_HEAD, BAD_REL, SymbolTable

SHIFT = "SHIFT"
REDUCE = "REDUCE"
SWAP = "SWAP"
LEFT = "LEFT"
RIGHT = "RIGHT"


class State:
  """
  symbolic parser configuration, mutated in place by the transition system.
  node 0 is the root and starts on the stack; the buffer keeps its front at
  the end of the list so consuming a token is a pop().
  """

  def __init__(self, n_words: int):
    self.n_words = n_words
    self.stack: List[int] = [0]
    self.buffer: List[int] = list(range(n_words, 0, -1))
    self.heads: List[int] = [BAD_HEAD] * (n_words + 1)
    self.deprels: List[int] = [BAD_REL] * (n_words + 1)

  def copy(self) -> "State":
    other = State.__new__(State)
    other.n_words = self.n_words
    other.stack = list(self.stack)
    other.buffer = list(self.buffer)
    other.heads = list(self.heads)
    other.deprels = list(self.deprels)
    return other

  def attach(self, head: int, mod: int, rel: int) -> None:
    self.heads[mod] = head
    self.deprels[mod] = rel

  @property
  def arcs(self) -> set:
    """(head, modifier, relation) triples built so far."""
    return {
      (h, m, r)
      for m, (h, r) in enumerate(zip(self.heads, self.deprels))
      if h != BAD_HEAD
    }

  def __repr__(self) -> str:
    return f"State(stack={self.stack}, buffer={self.buffer[::-1]})"


def has_all_children(node: int, state: State, heads: Sequence[int]) -> bool:
  """true when every gold dependent of node is already attached to it."""
  return all(
    state.heads[d] == node for d in range(1, len(heads)) if heads[d] == node
  )


def projective_order(heads: Sequence[int]) -> List[int]:
  """position of each node in the in-order traversal of the gold tree."""
  children: List[List[int]] = [[] for _ in heads]
  for d in range(1, len(heads)):
    if heads[d] != BAD_HEAD:
      children[heads[d]].append(d)

  order = [0] * len(heads)
  counter = 0

  def visit(node: int) -> None:
    nonlocal counter
    for c in children[node]:
      if c < node:
        visit(c)
    order[node] = counter
    counter += 1
    for c in children[node]:
      if c > node:
        visit(c)

  visit(0)
  return order


class TransitionSystem:
  """
  shared interface of the transition schemes.
  action ids: the scheme's unlabeled kinds first, then LEFT-<rel> for every
  relation, then RIGHT-<rel> for every relation.
  """

  name = ""
  kinds: Tuple[str, ...] = (SHIFT,)
  supports_dynamic_oracle = False

  def __init__(self, num_relations: int, root_relation: int = 0):
    self.num_relations = num_relations
    self.root_relation = root_relation
    self.actions: List[Tuple[str, int]] = [(kind, BAD_REL) for kind in self.kinds]
    self.actions += [(LEFT, r) for r in range(num_relations)]
    self.actions += [(RIGHT, r) for r in range(num_relations)]
    self.action2id: Dict[Tuple[str, int], int] = {
      a: i for i, a in enumerate(self.actions)
    }
    self._handlers = {
      kind: getattr(self, "_" + kind.lower()) for kind in self.kinds + (LEFT, RIGHT)
    }

  @property
  def num_actions(self) -> int:
    return len(self.actions)

  def action_kind(self, action: int) -> str:
    return self.actions[action][0]

  def action_relation(self, action: int) -> int:
    return self.actions[action][1]

  def get_action(self, kind: str, rel: int = BAD_REL) -> int:
    if kind not in (LEFT, RIGHT):
      rel = BAD_REL
    return self.action2id[(kind, rel)]

  def action_name(self, action: int, rels: Optional[SymbolTable] = None) -> str:
    kind, rel = self.actions[action]
    if rel == BAD_REL:
      return kind
    return f"{kind}-{rels.lookup(rel) if rels is not None else rel}"

  def is_terminal(self, state: State) -> bool:
    return not state.buffer and len(state.stack) == 1

  def legal_kinds(self, state: State) -> List[str]:
    raise NotImplementedError

  def legal_actions(self, state: State) -> List[int]:
    legal = []
    for kind in self.legal_kinds(state):
      if kind in (LEFT, RIGHT):
        legal.extend(self.action2id[(kind, r)] for r in range(self.num_relations))
      else:
        legal.append(self.action2id[(kind, BAD_REL)])
    return sorted(legal)

  def is_legal(self, state: State, action: int) -> bool:
    return 0 <= action < len(self.actions) and (
      self.actions[action][0] in self.legal_kinds(state)
    )

  def perform_action(self, state: State, action: int) -> None:
    kind, rel = self.actions[action]
    self._handlers[kind](state, rel)

  def oracle_action(
    self, state: State, heads: Sequence[int], deprels: Sequence[int]
  ) -> int:
    raise NotImplementedError

  def action_cost(
    self, state: State, action: int, heads: Sequence[int], deprels: Sequence[int]
  ) -> int:
    raise NotImplementedError(f"{self.name} has no dynamic oracle")

  def _shift(self, state: State, rel: int) -> None:
    state.stack.append(state.buffer.pop())

  def _label_cost(self, head: int, mod: int, rel: int, heads, deprels) -> int:
    return int(heads[mod] == head and deprels[mod] != rel)


class ArcStandard(TransitionSystem):
  """
  SHIFT   s] [b ...     =>  s b] [...
  LEFT    s1 s0] [...   =>  s0] [...     (s0 -> s1)
  RIGHT   s1 s0] [...   =>  s1] [...     (s1 -> s0)
  """

  name = "arcstd"

  def legal_kinds(self, state: State) -> List[str]:
    kinds = []
    if state.buffer:
      kinds.append(SHIFT)
    if len(state.stack) > 2:
      kinds += [LEFT, RIGHT]
    elif len(state.stack) == 2 and not state.buffer:
      # only the last token may attach to root
      kinds.append(RIGHT)
    return kinds

  def _left(self, state: State, rel: int) -> None:
    s0 = state.stack.pop()
    s1 = state.stack.pop()
    state.attach(s0, s1, rel)
    state.stack.append(s0)

  def _right(self, state: State, rel: int) -> None:
    s0 = state.stack.pop()
    state.attach(state.stack[-1], s0, rel)

  def _arc_oracle(self, state, heads, deprels) -> Optional[int]:
    stack = state.stack
    if len(stack) > 2:
      s0, s1 = stack[-1], stack[-2]
      if heads[s1] == s0 and has_all_children(s1, state, heads):
        return self.get_action(LEFT, deprels[s1])
      if heads[s0] == s1 and has_all_children(s0, state, heads):
        return self.get_action(RIGHT, deprels[s0])
    elif len(stack) == 2 and not state.buffer and heads[stack[-1]] == 0:
      return self.get_action(RIGHT, deprels[stack[-1]])
    return None

  def oracle_action(self, state, heads, deprels) -> int:
    action = self._arc_oracle(state, heads, deprels)
    return self.get_action(SHIFT) if action is None else action


class Swap(ArcStandard):
  """arc-standard plus SWAP: s1 s0] [b ... => s0] [s1 b ...  (requires s1 < s0)"""

  name = "swap"
  kinds = (SHIFT, SWAP)

  def legal_kinds(self, state: State) -> List[str]:
    kinds = super().legal_kinds(state)
    stack = state.stack
    if len(stack) > 2 and 0 < stack[-2] < stack[-1]:
      kinds.append(SWAP)
    return kinds

  def _swap(self, state: State, rel: int) -> None:
    s0 = state.stack.pop()
    s1 = state.stack.pop()
    state.buffer.append(s1)
    state.stack.append(s0)

  def oracle_action(self, state, heads, deprels) -> int:
    action = self._arc_oracle(state, heads, deprels)
    if action is not None:
      return action
    stack = state.stack
    if len(stack) > 2:
      order = projective_order(heads)
      if order[stack[-1]] < order[stack[-2]]:
        return self.get_action(SWAP)
    return self.get_action(SHIFT)


class ArcHybrid(TransitionSystem):
  """
  SHIFT   s] [b ...     =>  s b] [...
  LEFT    s0] [b ...    =>  ] [b ...     (b -> s0)
  RIGHT   s1 s0] [...   =>  s1] [...     (s1 -> s0)
  """

  name = "archybrid"
  supports_dynamic_oracle = True

  def legal_kinds(self, state: State) -> List[str]:
    kinds = []
    if state.buffer:
      kinds.append(SHIFT)
      if len(state.stack) > 1:
        kinds.append(LEFT)
    if len(state.stack) > 2 or (len(state.stack) == 2 and not state.buffer):
      kinds.append(RIGHT)
    return kinds

  def _left(self, state: State, rel: int) -> None:
    s0 = state.stack.pop()
    state.attach(state.buffer[-1], s0, rel)

  def _right(self, state: State, rel: int) -> None:
    s0 = state.stack.pop()
    state.attach(state.stack[-1], s0, rel)

  def oracle_action(self, state, heads, deprels) -> int:
    stack, buffer = state.stack, state.buffer
    if len(stack) > 1:
      s0 = stack[-1]
      if buffer and heads[s0] == buffer[-1] and has_all_children(s0, state, heads):
        return self.get_action(LEFT, deprels[s0])
      if RIGHT in self.legal_kinds(state) and heads[s0] == stack[-2]:
        if has_all_children(s0, state, heads):
          return self.get_action(RIGHT, deprels[s0])
    return self.get_action(SHIFT)

  def action_cost(self, state, action, heads, deprels) -> int:
    kind, rel = self.actions[action]
    stack, buffer = state.stack, state.buffer
    if kind == SHIFT:
      # b can no longer take a head from below s0, nor dependents from the stack
      b = buffer[-1]
      return int(heads[b] in stack[:-1]) + sum(1 for d in stack if heads[d] == b)
    s0 = stack[-1]
    if kind == LEFT:
      b = buffer[-1]
      cost = int(heads[s0] in stack[-2:-1] or heads[s0] in buffer[:-1])
      cost += sum(1 for d in buffer if heads[d] == s0)
      return cost + self._label_cost(b, s0, rel, heads, deprels)
    s1 = stack[-2]
    cost = int(heads[s0] in buffer) + sum(1 for d in buffer if heads[d] == s0)
    return cost + self._label_cost(s1, s0, rel, heads, deprels)


class ArcEager(TransitionSystem):
  """
  SHIFT   s] [b ...     =>  s b] [...
  LEFT    s0] [b ...    =>  ] [b ...     (b -> s0, s0 headless)
  RIGHT   s0] [b ...    =>  s0 b] [...   (s0 -> b)
  REDUCE  s0] [...      =>  ] [...       (s0 has a head, or the buffer is empty)
  """

  name = "arceager"
  kinds = (SHIFT, REDUCE)
  supports_dynamic_oracle = True

  def legal_kinds(self, state: State) -> List[str]:
    stack, buffer = state.stack, state.buffer
    kinds = []
    headless = state.heads[stack[-1]] == BAD_HEAD
    if buffer:
      kinds += [SHIFT, RIGHT]
      if len(stack) > 1 and headless:
        kinds.append(LEFT)
    if len(stack) > 1 and (not headless or not buffer):
      kinds.append(REDUCE)
    return kinds

  def _left(self, state: State, rel: int) -> None:
    s0 = state.stack.pop()
    state.attach(state.buffer[-1], s0, rel)

  def _right(self, state: State, rel: int) -> None:
    b = state.buffer.pop()
    state.attach(state.stack[-1], b, rel)
    state.stack.append(b)

  def _reduce(self, state: State, rel: int) -> None:
    s0 = state.stack.pop()
    if state.heads[s0] == BAD_HEAD:
      state.attach(0, s0, self.root_relation)

  def oracle_action(self, state, heads, deprels) -> int:
    stack, buffer = state.stack, state.buffer
    s0 = stack[-1]
    if not buffer:
      return self.get_action(REDUCE)
    b = buffer[-1]
    if len(stack) > 1 and heads[s0] == b and state.heads[s0] == BAD_HEAD:
      return self.get_action(LEFT, deprels[s0])
    if heads[b] == s0:
      return self.get_action(RIGHT, deprels[b])
    if len(stack) > 1 and state.heads[s0] != BAD_HEAD:
      if any(heads[b] == k or heads[k] == b for k in stack[:-1]):
        return self.get_action(REDUCE)
    return self.get_action(SHIFT)

  def action_cost(self, state, action, heads, deprels) -> int:
    kind, rel = self.actions[action]
    stack, buffer = state.stack, state.buffer
    s0 = stack[-1]

    def orphans_of(node):
      return sum(
        1 for d in stack if heads[d] == node and state.heads[d] == BAD_HEAD
      )

    def reduces_to_root(node):
      # a headless stack token still gets the root arc from the final REDUCEs
      return heads[node] == 0 and deprels[node] == self.root_relation

    if kind == SHIFT:
      b = buffer[-1]
      lost_head = heads[b] in stack and not reduces_to_root(b)
      return int(lost_head) + orphans_of(b)
    if kind == REDUCE:
      if state.heads[s0] == BAD_HEAD:
        return 0
      return sum(1 for d in buffer if heads[d] == s0)
    b = buffer[-1]
    if kind == LEFT:
      cost = int(heads[s0] != b and heads[s0] in buffer)
      cost += int(reduces_to_root(s0))
      cost += sum(1 for d in buffer if heads[d] == s0)
      return cost + self._label_cost(b, s0, rel, heads, deprels)
    cost = int(heads[b] != s0 and (heads[b] in stack or heads[b] in buffer))
    cost += orphans_of(b)
    return cost + self._label_cost(s0, b, rel, heads, deprels)


SYSTEMS: Dict[str, Type[TransitionSystem]] = {
  "arcstd": ArcStandard,
  "arcstandard": ArcStandard,
  "arceager": ArcEager,
  "archybrid": ArcHybrid,
  "swap": Swap,
}


def build_system(
  name: str, num_relations: int, root_relation: int = 0
) -> TransitionSystem:
  """pick the transition scheme once, by name."""
  key = name.lower().replace("-", "").replace("_", "")
  if key not in SYSTEMS:
    raise ValueError(f"unknown transition system: {name}")
  return SYSTEMS[key](num_relations, root_relation)
