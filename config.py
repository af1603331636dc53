import os
from typing import NamedTuple

from vocab import ROOT, UNK, Vocab

MAX_SEG_LEN = 25


class ParserConfig(NamedTuple):
  """hyperparameters of the stack-LSTM parser."""

  scheme: str = "arcstd"
  char_size: int = 0
  char_dim: int = 32
  word_dim: int = 50  # char-lstm hidden size
  pos_size: int = 0
  pos_dim: int = 12
  pretrained_dim: int = 100
  action_size: int = 0
  action_dim: int = 20
  rel_size: int = 0
  rel_dim: int = 20
  n_layers: int = 1
  lstm_input_dim: int = 100
  hidden_dim: int = 100

  # training
  learning_rate: float = 0.001
  clip_norm: float = 5.0
  weight_decay: float = 1e-6  # L2 penalty on every parameter
  batch_size: int = 32
  n_epochs: int = 10
  early_stopping_patience: int = 3
  explore_prob: float = 0.0  # > 0 enables dynamic-oracle exploration
  beam_size: int = 1


class TokenizerConfig(NamedTuple):
  """hyperparameters of the segmental tokenizer."""

  char_size: int = 0
  char_dim: int = 32
  hidden_dim: int = 64
  n_layers: int = 1
  seg_dim: int = 64
  dur_dim: int = 8
  max_seg_len: int = MAX_SEG_LEN

  learning_rate: float = 0.001
  clip_norm: float = 5.0
  weight_decay: float = 1e-6
  batch_size: int = 32
  n_epochs: int = 10
  early_stopping_patience: int = 3


def _check_reserved(vocab: Vocab) -> None:
  if UNK not in vocab.chars:
    raise ValueError(f"missing required char token in vocabulary: {UNK}")
  for tok in (UNK, ROOT):
    if tok not in vocab.words:
      raise ValueError(f"missing required word token in vocabulary: {tok}")
    if tok not in vocab.pos:
      raise ValueError(f"missing required POS token in vocabulary: {tok}")


def create_parser_config(vocab: Vocab, action_size: int, **overrides) -> ParserConfig:
  """factory function to populate vocabulary sizes with validation."""
  _check_reserved(vocab)
  if len(vocab.rels) == 0:
    raise ValueError("relation vocabulary is empty")
  return ParserConfig(
    char_size=len(vocab.chars),
    pos_size=len(vocab.pos),
    action_size=action_size,
    rel_size=len(vocab.rels),
  )._replace(**overrides)


def create_tokenizer_config(vocab: Vocab, **overrides) -> TokenizerConfig:
  _check_reserved(vocab)
  return TokenizerConfig(char_size=len(vocab.chars))._replace(**overrides)


def env_overrides(config: NamedTuple, prefix: str, exclude=()) -> dict:
  """
  reads <PREFIX>_<FIELD> environment variables (e.g. PARSER_HIDDEN_DIM),
  cast to the type of the field's default.
  """
  overrides = {}
  for field, default in config._field_defaults.items():
    if field in exclude:
      continue
    raw = os.getenv(f"{prefix}_{field.upper()}")
    if raw is not None:
      overrides[field] = type(default)(raw)
  return overrides
