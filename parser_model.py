from typing import List, Sequence, Tuple

import jax
import jax.numpy as jnp
import flax.linen as nn

from config import ParserConfig

Carry = Tuple[Tuple[jnp.ndarray, jnp.ndarray], ...]


class StackedLSTM(nn.Module):
  """
  multi-layer LSTM advanced one input at a time.
  the carry is a tuple of per-layer (c, h) pairs; the output is the top h.
  """

  hidden_size: int
  num_layers: int = 1

  def setup(self):
    self.cells = [
      nn.LSTMCell(features=self.hidden_size) for _ in range(self.num_layers)
    ]

  def initial_carry(self) -> Carry:
    zeros = jnp.zeros((self.hidden_size,))
    return tuple((zeros, zeros) for _ in range(self.num_layers))

  def __call__(self, carry: Carry, x: jnp.ndarray) -> Tuple[Carry, jnp.ndarray]:
    new_carry = []
    h = x
    for cell, layer_carry in zip(self.cells, carry):
      layer_carry, h = cell(layer_carry, h)
      new_carry.append(layer_carry)
    return tuple(new_carry), h


class BiLSTM(nn.Module):
  """runs a forward and a backward StackedLSTM over a sequence of vectors."""

  hidden_size: int
  num_layers: int = 1

  def setup(self):
    self.fwd = StackedLSTM(self.hidden_size, self.num_layers)
    self.bwd = StackedLSTM(self.hidden_size, self.num_layers)

  def __call__(
    self, inputs: Sequence[jnp.ndarray]
  ) -> Tuple[List[jnp.ndarray], List[jnp.ndarray]]:
    fwd_out = []
    carry = self.fwd.initial_carry()
    for x in inputs:
      carry, h = self.fwd(carry, x)
      fwd_out.append(h)

    bwd_out = []
    carry = self.bwd.initial_carry()
    for x in reversed(inputs):
      carry, h = self.bwd(carry, x)
      bwd_out.append(h)
    bwd_out.reverse()
    return fwd_out, bwd_out


class Merge2(nn.Module):
  features: int

  @nn.compact
  def __call__(self, a, b):
    return nn.Dense(self.features)(a) + nn.Dense(self.features, use_bias=False)(b)


class Merge3(nn.Module):
  """W1 a + W2 b + W3 c + bias"""

  features: int

  @nn.compact
  def __call__(self, a, b, c):
    return (
      nn.Dense(self.features)(a)
      + nn.Dense(self.features, use_bias=False)(b)
      + nn.Dense(self.features, use_bias=False)(c)
    )


def _guard(dim: int):
  return nn.initializers.uniform(scale=0.1), (dim,)


class StackLSTMParserModel(nn.Module):
  """
  parameters of the stack-LSTM parser (Ballesteros et al. 2015 flavour).
  the module is bound to its parameters and driven step by step by
  ParserCore; every method below is one node type of the expression graph.
  """

  char_size: int
  char_dim: int
  word_dim: int
  pos_size: int
  pos_dim: int
  pretrained_dim: int
  action_size: int
  action_dim: int
  rel_size: int
  rel_dim: int
  n_layers: int
  lstm_input_dim: int
  hidden_dim: int

  def setup(self):
    self.char_embed = nn.Embed(self.char_size, self.char_dim)
    self.pos_embed = nn.Embed(self.pos_size, self.pos_dim)
    self.act_embed = nn.Embed(self.action_size, self.action_dim)
    self.rel_embed = nn.Embed(self.rel_size, self.rel_dim)
    self.char_rnn = BiLSTM(self.word_dim)

    self.s_lstm = StackedLSTM(self.hidden_dim, self.n_layers)
    self.q_lstm = StackedLSTM(self.hidden_dim, self.n_layers)
    self.a_lstm = StackedLSTM(self.hidden_dim, self.n_layers)

    self.merge_input = Merge3(self.lstm_input_dim)
    self.merge = Merge3(self.hidden_dim)
    self.composer = Merge3(self.lstm_input_dim)
    self.scorer = nn.Dense(
      self.action_size,
      kernel_init=nn.initializers.xavier_uniform(),
    )

    self.action_start = self.param("action_start", *_guard(self.action_dim))
    self.buffer_guard = self.param("buffer_guard", *_guard(self.lstm_input_dim))
    self.stack_guard = self.param("stack_guard", *_guard(self.lstm_input_dim))
    self.word_start_guard = self.param("word_start_guard", *_guard(self.char_dim))
    self.word_end_guard = self.param("word_end_guard", *_guard(self.char_dim))
    self.root_word = self.param("root_word", *_guard(self.lstm_input_dim))

  def guards(self) -> Tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    return self.action_start, self.stack_guard, self.buffer_guard, self.root_word

  def encode_word(
    self, cids: Sequence[int], pos_id: int, pretrained: jnp.ndarray
  ) -> jnp.ndarray:
    chars = [self.word_start_guard]
    if len(cids):
      chars.extend(self.char_embed(jnp.asarray(cids, dtype=jnp.int32)))
    chars.append(self.word_end_guard)
    fwd, bwd = self.char_rnn(chars)
    word = jnp.concatenate([fwd[-1], bwd[0]])
    pos = self.pos_embed(jnp.asarray(pos_id, dtype=jnp.int32))
    return nn.relu(self.merge_input(word, pos, pretrained))

  def initial_carries(self) -> Tuple[Carry, Carry, Carry]:
    return (
      self.s_lstm.initial_carry(),
      self.q_lstm.initial_carry(),
      self.a_lstm.initial_carry(),
    )

  def stack_step(self, carry: Carry, x: jnp.ndarray):
    return self.s_lstm(carry, x)

  def buffer_step(self, carry: Carry, x: jnp.ndarray):
    return self.q_lstm(carry, x)

  def action_step(self, carry: Carry, x: jnp.ndarray):
    return self.a_lstm(carry, x)

  def embed_action(self, action: int) -> jnp.ndarray:
    return self.act_embed(jnp.asarray(action, dtype=jnp.int32))

  def compose(self, head: jnp.ndarray, mod: jnp.ndarray, rel: int) -> jnp.ndarray:
    rel_vec = self.rel_embed(jnp.asarray(rel, dtype=jnp.int32))
    return jnp.tanh(self.composer(head, mod, rel_vec))

  def score(self, s: jnp.ndarray, q: jnp.ndarray, a: jnp.ndarray) -> jnp.ndarray:
    return self.scorer(nn.relu(self.merge(s, q, a)))

  def warmup(self) -> jnp.ndarray:
    """touches every submodule once so that init creates all parameters."""
    word = self.encode_word([0], 0, jnp.zeros((self.pretrained_dim,)))
    s_carry, q_carry, a_carry = self.initial_carries()
    _, s = self.stack_step(s_carry, self.compose(word, self.root_word, 0))
    _, q = self.buffer_step(q_carry, self.buffer_guard)
    _, a = self.action_step(a_carry, self.embed_action(0))
    return self.score(s, q, a) + jnp.sum(self.stack_guard) + jnp.sum(self.action_start)


def create_parser_model(config: ParserConfig) -> StackLSTMParserModel:
  return StackLSTMParserModel(
    char_size=config.char_size,
    char_dim=config.char_dim,
    word_dim=config.word_dim,
    pos_size=config.pos_size,
    pos_dim=config.pos_dim,
    pretrained_dim=config.pretrained_dim,
    action_size=config.action_size,
    action_dim=config.action_dim,
    rel_size=config.rel_size,
    rel_dim=config.rel_dim,
    n_layers=config.n_layers,
    lstm_input_dim=config.lstm_input_dim,
    hidden_dim=config.hidden_dim,
  )


def init_params(model: nn.Module, rng: jax.Array):
  """initializes every parameter of a model exposing warmup()."""
  variables = model.init(rng, method=type(model).warmup)
  return variables["params"]
