import jax
import pytest

from config import create_parser_config, create_tokenizer_config
from data_loader import build_vocab, vectorize_sentence
from engine import build_system
from parser_core import ParserCore
from parser_model import create_parser_model, init_params
from tokenizer import SegmentalTokenizer
from tokenizer_model import create_tokenizer_model

TINY_PARSER = dict(
  char_dim=4,
  word_dim=4,
  pos_dim=3,
  pretrained_dim=5,
  action_dim=3,
  rel_dim=3,
  lstm_input_dim=6,
  hidden_dim=6,
)
TINY_TOKENIZER = dict(char_dim=4, hidden_dim=5, seg_dim=5, dur_dim=3, max_seg_len=6)

SCHEMES = ["arcstd", "swap", "archybrid", "arceager"]


def sentence(words, tags, heads, labels, text=None):
  return {
    "word": list(words),
    "pos": list(tags),
    "head": list(heads),
    "label": list(labels),
    "text": text if text is not None else " ".join(words),
  }


# the cat saw a dog
CAT_SENTENCE = sentence(
  ["the", "cat", "saw", "a", "dog"],
  ["DET", "NOUN", "VERB", "DET", "NOUN"],
  [2, 3, 0, 5, 3],
  ["det", "nsubj", "root", "det", "obj"],
)

# 3 -> 1 and 4 -> 2 cross
CROSSING_SENTENCE = sentence(
  ["w1", "w2", "w3", "w4"],
  ["X", "X", "X", "X"],
  [3, 4, 0, 3],
  ["obj", "obj", "root", "obj"],
)


@pytest.fixture
def vocab():
  return build_vocab([CAT_SENTENCE, CROSSING_SENTENCE])


@pytest.fixture
def cat_instance(vocab):
  return vectorize_sentence(CAT_SENTENCE, vocab)


@pytest.fixture
def crossing_instance(vocab):
  return vectorize_sentence(CROSSING_SENTENCE, vocab)


@pytest.fixture
def make_core(vocab):
  """builds (core, model, params) for a scheme over a tiny random model."""

  def make(scheme: str, seed: int = 0):
    system = build_system(scheme, len(vocab.rels), vocab.root_relation())
    config = create_parser_config(
      vocab, system.num_actions, scheme=scheme, **TINY_PARSER
    )
    model = create_parser_model(config)
    params = init_params(model, jax.random.PRNGKey(seed))
    return ParserCore(model, params, system), model, params

  return make


@pytest.fixture
def tokenizer_parts(vocab):
  config = create_tokenizer_config(vocab, **TINY_TOKENIZER)
  model = create_tokenizer_model(config)
  params = init_params(model, jax.random.PRNGKey(0))
  return model, params, config


@pytest.fixture
def tokenizer(vocab, tokenizer_parts):
  model, params, config = tokenizer_parts
  return SegmentalTokenizer(model, params, vocab.chars, config.max_seg_len)
