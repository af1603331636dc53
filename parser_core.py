import logging
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple

import jax.numpy as jnp
import numpy as np

from engine import State, TransitionSystem
from errors import IllegalActionError, IllegalStateError, StateDesyncError
from functors import build_functor
from parser_model import Carry, StackLSTMParserModel
from schema import InputUnit

logger = logging.getLogger(__name__)


class RecurrentHistory:
  """
  append-only arena of recurrent states.
  a pointer is an index into the arena; push appends a new entry whose parent
  is the pointer it was pushed from, pop returns that parent. entries are never
  modified, so any number of checkpoints can share them.
  """

  def __init__(self, step: Callable, initial_carry: Carry):
    self._step = step
    self.carries: List[Carry] = [initial_carry]
    self.parents: List[int] = [-1]

  def __len__(self) -> int:
    return len(self.carries)

  def push(self, pointer: int, x: jnp.ndarray) -> int:
    carry, _ = self._step(self.carries[pointer], x)
    self.carries.append(carry)
    self.parents.append(pointer)
    return len(self.carries) - 1

  def pop(self, pointer: int) -> int:
    parent = self.parents[pointer]
    if parent < 0:
      raise StateDesyncError("pop past the start of a recurrent history")
    return parent

  def output(self, pointer: int) -> jnp.ndarray:
    return self.carries[pointer][-1][1]


class Checkpoint(NamedTuple):
  """
  neural half of a parser configuration: pointers into the three histories
  and the expressions mirroring the symbolic stack and buffer (guard first).
  immutable; every update returns a new checkpoint.
  """

  s_pointer: int
  q_pointer: int
  a_pointer: int
  stack: Tuple[jnp.ndarray, ...]
  buffer: Tuple[jnp.ndarray, ...]


class ParserCore:
  """
  drives one sentence at a time: the symbolic transition system and the
  stack/buffer/action LSTMs advance together.
  """

  def __init__(
    self, model: StackLSTMParserModel, params, system: TransitionSystem
  ):
    self.model = model.bind({"params": params})
    self.system = system
    self.functor = build_functor(system)
    self.s_history: Optional[RecurrentHistory] = None
    self.q_history: Optional[RecurrentHistory] = None
    self.a_history: Optional[RecurrentHistory] = None

  def initialize(
    self, units: Sequence[InputUnit], pretrained: Optional[np.ndarray] = None
  ) -> Tuple[State, Checkpoint]:
    """fresh histories for a new sentence; returns the initial configuration."""
    model = self.model
    s_carry, q_carry, a_carry = model.initial_carries()
    self.s_history = RecurrentHistory(model.stack_step, s_carry)
    self.q_history = RecurrentHistory(model.buffer_step, q_carry)
    self.a_history = RecurrentHistory(model.action_step, a_carry)

    if pretrained is None:
      pretrained = np.zeros((len(units), model.pretrained_dim), dtype=np.float32)
    words = [
      model.encode_word(u.cids, u.pos_id, jnp.asarray(vec))
      for u, vec in zip(units, pretrained)
    ]
    action_start, stack_guard, buffer_guard, root_word = model.guards()

    ckpt = Checkpoint(
      s_pointer=0,
      q_pointer=0,
      a_pointer=self.a_history.push(0, action_start),
      stack=(),
      buffer=(),
    )
    ckpt = self.push_stack(ckpt, stack_guard)
    ckpt = self.push_stack(ckpt, root_word)
    ckpt = self.push_buffer(ckpt, buffer_guard)
    # buffer is consumed front-to-back, so the last word goes in first
    for word in reversed(words):
      ckpt = self.push_buffer(ckpt, word)

    state = State(len(units))
    logger.debug("initialized %s parser over %d tokens", self.system.name, len(units))
    self.check_sync(state, ckpt)
    return state, ckpt

  def legal_actions(self, state: State, checkpoint: Checkpoint) -> List[int]:
    legal = self.system.legal_actions(state)
    if not legal and not self.system.is_terminal(state):
      raise IllegalStateError(f"no legal action in non-terminal {state}")
    return legal

  def score(self, checkpoint: Checkpoint) -> jnp.ndarray:
    """un-normalized scores over the action vocabulary."""
    return self.model.score(
      self.s_history.output(checkpoint.s_pointer),
      self.q_history.output(checkpoint.q_pointer),
      self.a_history.output(checkpoint.a_pointer),
    )

  def apply(self, action: int, state: State, checkpoint: Checkpoint) -> Checkpoint:
    """advances state in place and returns the matching checkpoint."""
    if not self.system.is_legal(state, action):
      raise IllegalActionError(
        f"{self.system.action_name(action)} is illegal in {state}"
      )
    checkpoint = self.functor(self, action, checkpoint)
    self.system.perform_action(state, action)
    self.check_sync(state, checkpoint)
    return checkpoint

  def copy(self, checkpoint: Checkpoint) -> Checkpoint:
    # history entries are shared; the expression tuples are never mutated
    return checkpoint._replace(
      stack=tuple(checkpoint.stack), buffer=tuple(checkpoint.buffer)
    )

  @staticmethod
  def check_sync(state: State, checkpoint: Checkpoint) -> None:
    if len(checkpoint.stack) != len(state.stack) + 1:
      raise StateDesyncError(
        f"stack has {len(state.stack)} nodes but {len(checkpoint.stack)} expressions"
      )
    if len(checkpoint.buffer) != len(state.buffer) + 1:
      raise StateDesyncError(
        f"buffer has {len(state.buffer)} nodes but {len(checkpoint.buffer)} expressions"
      )

  # primitive moves shared by the action functors; each keeps a pointer and
  # its expression sequence in lockstep

  def push_stack(self, ckpt: Checkpoint, x: jnp.ndarray) -> Checkpoint:
    return ckpt._replace(
      s_pointer=self.s_history.push(ckpt.s_pointer, x), stack=ckpt.stack + (x,)
    )

  def pop_stack(self, ckpt: Checkpoint) -> Tuple[jnp.ndarray, Checkpoint]:
    return ckpt.stack[-1], ckpt._replace(
      s_pointer=self.s_history.pop(ckpt.s_pointer), stack=ckpt.stack[:-1]
    )

  def push_buffer(self, ckpt: Checkpoint, x: jnp.ndarray) -> Checkpoint:
    return ckpt._replace(
      q_pointer=self.q_history.push(ckpt.q_pointer, x), buffer=ckpt.buffer + (x,)
    )

  def pop_buffer(self, ckpt: Checkpoint) -> Tuple[jnp.ndarray, Checkpoint]:
    return ckpt.buffer[-1], ckpt._replace(
      q_pointer=self.q_history.pop(ckpt.q_pointer), buffer=ckpt.buffer[:-1]
    )

  def push_action(self, ckpt: Checkpoint, action: int) -> Checkpoint:
    return ckpt._replace(
      a_pointer=self.a_history.push(ckpt.a_pointer, self.model.embed_action(action))
    )

  def compose(self, head: jnp.ndarray, mod: jnp.ndarray, action: int) -> jnp.ndarray:
    return self.model.compose(head, mod, self.system.action_relation(action))
