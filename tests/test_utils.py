import jax
import numpy as np
import pytest

from config import ParserConfig, TokenizerConfig
from utils import load_model, save_model


def test_model_round_trip(tmp_path, vocab, tokenizer_parts):
  _, params, config = tokenizer_parts
  path = tmp_path / "models" / "tokenizer.model"
  save_model(str(path), params, config, vocab)

  loaded_params, loaded_config, loaded_vocab = load_model(str(path), TokenizerConfig)
  assert loaded_config == config
  assert loaded_vocab.chars.to_list() == vocab.chars.to_list()
  leaves = jax.tree_util.tree_leaves(params)
  loaded_leaves = jax.tree_util.tree_leaves(loaded_params)
  assert len(leaves) == len(loaded_leaves)
  for a, b in zip(leaves, loaded_leaves):
    np.testing.assert_array_equal(a, b)


def test_loading_with_the_wrong_config_type(tmp_path, vocab, tokenizer_parts):
  _, params, config = tokenizer_parts
  path = tmp_path / "tokenizer.model"
  save_model(str(path), params, config, vocab)
  with pytest.raises(ValueError):
    load_model(str(path), ParserConfig)


def test_missing_model_file(tmp_path):
  with pytest.raises(FileNotFoundError):
    load_model(str(tmp_path / "absent.model"), ParserConfig)
