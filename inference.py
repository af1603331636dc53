import logging
from typing import List, Optional, Sequence, Tuple

import jax
import jax.numpy as jnp
import numpy as np

from engine import State, TransitionSystem
from parser_core import ParserCore
from schema import InputUnit, ParseInstance, ParseResult
from vocab import BAD_HEAD

logger = logging.getLogger(__name__)


def masked_log_softmax(logits: jnp.ndarray, legal: Sequence[int]) -> jnp.ndarray:
  """log-probabilities restricted to the legal actions."""
  mask = jnp.zeros(logits.shape[-1], dtype=bool).at[jnp.asarray(legal)].set(True)
  # large negative value for illegal moves
  return jax.nn.log_softmax(jnp.where(mask, logits, -1e9))


def predict_action(logits: jnp.ndarray, legal: Sequence[int]) -> int:
  """greedy selection of the best legal action."""
  logits = np.asarray(logits)
  mask = np.zeros(logits.shape[-1], dtype=np.float32)
  mask[list(legal)] = 1.0
  return int(np.argmax(logits + (1.0 - mask) * -1e9))


def _result(
  system: TransitionSystem, state: State, actions: List[int], score: float
) -> ParseResult:
  heads = list(state.heads)
  deprels = list(state.deprels)
  # anything the parse left unattached hangs off the root
  for i in range(1, len(heads)):
    if heads[i] == BAD_HEAD:
      heads[i] = 0
      deprels[i] = system.root_relation
  return ParseResult(heads=heads, deprels=deprels, actions=actions, score=score)


def greedy_parse(
  core: ParserCore,
  units: Sequence[InputUnit],
  pretrained: Optional[np.ndarray] = None,
) -> ParseResult:
  state, ckpt = core.initialize(units, pretrained)
  actions: List[int] = []
  score = 0.0
  while not core.system.is_terminal(state):
    legal = core.legal_actions(state, ckpt)
    logits = core.score(ckpt)
    action = predict_action(logits, legal)
    score += float(masked_log_softmax(logits, legal)[action])
    ckpt = core.apply(action, state, ckpt)
    actions.append(action)
  return _result(core.system, state, actions, score)


def beam_search_parse(
  core: ParserCore,
  units: Sequence[InputUnit],
  pretrained: Optional[np.ndarray] = None,
  beam_size: int = 8,
) -> ParseResult:
  """
  keeps the beam_size best partial parses by summed log-probability.
  every surviving expansion gets its own State copy and Checkpoint copy.
  """
  system = core.system
  state, ckpt = core.initialize(units, pretrained)
  beam = [(0.0, state, ckpt, [])]

  while not all(system.is_terminal(st) for _, st, _, _ in beam):
    candidates = []
    for score, st, ck, acts in beam:
      if system.is_terminal(st):
        candidates.append((score, st, ck, acts, None))
        continue
      legal = core.legal_actions(st, ck)
      logp = np.asarray(masked_log_softmax(core.score(ck), legal))
      for action in legal:
        candidates.append((score + float(logp[action]), st, ck, acts, action))

    candidates.sort(key=lambda c: -c[0])
    beam = []
    for score, st, ck, acts, action in candidates[:beam_size]:
      if action is None:
        beam.append((score, st, ck, acts))
        continue
      new_state = st.copy()
      new_ckpt = core.apply(action, new_state, core.copy(ck))
      beam.append((score, new_state, new_ckpt, acts + [action]))

  score, state, _, actions = max(beam, key=lambda h: h[0])
  return _result(system, state, actions, score)


def follow_actions(
  core: ParserCore,
  units: Sequence[InputUnit],
  actions: Sequence[int],
  pretrained: Optional[np.ndarray] = None,
) -> Tuple[ParseResult, List[np.ndarray]]:
  """replays a forced action trace, recording the model's distribution per step."""
  state, ckpt = core.initialize(units, pretrained)
  probs: List[np.ndarray] = []
  score = 0.0
  for action in actions:
    legal = core.legal_actions(state, ckpt)
    logp = np.asarray(masked_log_softmax(core.score(ckpt), legal))
    probs.append(np.exp(logp))
    score += float(logp[action])
    ckpt = core.apply(action, state, ckpt)
  if not core.system.is_terminal(state):
    logger.warning("forced trace of %d actions stops before the end", len(actions))
  return _result(core.system, state, list(actions), score), probs


def parse(
  core: ParserCore,
  units: Sequence[InputUnit],
  pretrained: Optional[np.ndarray] = None,
  beam_size: int = 1,
) -> ParseResult:
  if beam_size > 1:
    return beam_search_parse(core, units, pretrained, beam_size)
  return greedy_parse(core, units, pretrained)


def calculate_attachment_scores(
  core: ParserCore,
  instances: Sequence[ParseInstance],
  embedding=None,
  beam_size: int = 1,
) -> Tuple[float, float]:
  """
  decodes every instance and returns (UAS, LAS) over tokens with a gold head.
  """
  total = correct_heads = correct_labels = 0
  for inst in instances:
    pretrained = None
    if embedding is not None:
      pretrained = embedding.render([u.word for u in inst.units])
    result = parse(core, inst.units, pretrained, beam_size)
    for i in range(1, len(inst.heads)):
      if inst.heads[i] == BAD_HEAD:
        continue
      total += 1
      if result.heads[i] == inst.heads[i]:
        correct_heads += 1
        if result.deprels[i] == inst.deprels[i]:
          correct_labels += 1

  if total == 0:
    return 0.0, 0.0
  return correct_heads / total, correct_labels / total
