import jax
import numpy as np
import pytest

from config import create_parser_config, create_tokenizer_config
from conftest import CAT_SENTENCE, TINY_PARSER, TINY_TOKENIZER, sentence
from data_loader import make_tokenize_instances, vectorize_sentences
from engine import build_system
from parser_model import create_parser_model, init_params
from run import (
  create_learning_pipeline,
  explore_trajectory,
  get_minibatches,
  oracle_trajectory,
  parser_loss_fn,
  tokenizer_loss_fn,
  train_parser,
  train_step,
)
from schema import TokenizeInstance
from tokenizer_model import create_tokenizer_model

DOGS_SENTENCE = sentence(
  ["dogs", "bark"], ["NOUN", "VERB"], [2, 0], ["nsubj", "root"]
)


def test_get_minibatches_covers_every_instance():
  batches = list(get_minibatches(list(range(7)), 3))
  assert [len(b) for b in batches] == [3, 3, 1]
  assert sorted(x for b in batches for x in b) == list(range(7))
  assert list(get_minibatches([1, 2], 5, shuffle=False)) == [[1, 2]]


def test_oracle_trajectory_uses_stored_actions(make_core, cat_instance):
  core, _, _ = make_core("arcstd")
  steps = oracle_trajectory(core.system, cat_instance._replace(actions=[4, 2]))
  assert steps == [(4, [4]), (2, [2])]
  derived = oracle_trajectory(core.system, cat_instance)
  assert len(derived) == 2 * len(cat_instance.units)


@pytest.mark.parametrize("scheme", ["arcstd", "arceager"])
def test_parser_loss_is_positive_and_differentiable(make_core, cat_instance, scheme):
  core, model, params = make_core(scheme)
  steps = oracle_trajectory(core.system, cat_instance)
  loss, grads = jax.value_and_grad(parser_loss_fn)(
    params, model, core.system, cat_instance, steps
  )
  assert np.isfinite(float(loss))
  assert float(loss) > 0.0
  assert jax.tree_util.tree_structure(grads) == jax.tree_util.tree_structure(params)
  assert any(float(np.abs(g).sum()) > 0 for g in jax.tree_util.tree_leaves(grads))


def test_explore_trajectory_keeps_correct_sets(make_core, cat_instance):
  core, _, _ = make_core("archybrid")
  steps = explore_trajectory(
    core, cat_instance, None, explore_prob=1.0, rng=np.random.default_rng(0)
  )
  assert steps
  for taken, correct in steps:
    assert correct
    assert isinstance(taken, int)


def test_exploration_without_mistakes_follows_the_oracle(make_core, cat_instance):
  core, _, _ = make_core("arceager")
  steps = explore_trajectory(
    core, cat_instance, None, explore_prob=0.0, rng=np.random.default_rng(0)
  )
  assert all(taken in correct for taken, correct in steps)


def test_train_step_updates_parameters(make_core, cat_instance):
  core, model, params = make_core("arcstd")
  state = create_learning_pipeline(model, params, learning_rate=0.01, clip_norm=5.0)
  grad_fn = jax.value_and_grad(
    lambda p, inst: parser_loss_fn(
      p, model, core.system, inst, oracle_trajectory(core.system, inst)
    )
  )
  new_state, loss = train_step(state, grad_fn, [cat_instance, cat_instance])
  assert new_state.step == 1
  assert loss > 0.0
  before = jax.tree_util.tree_leaves(state.params)
  after = jax.tree_util.tree_leaves(new_state.params)
  assert any(not np.allclose(a, b) for a, b in zip(before, after))


def test_tokenizer_loss(vocab, tokenizer_parts):
  model, params, config = tokenizer_parts
  loss, grads = jax.value_and_grad(tokenizer_loss_fn)(
    params, model, vocab.chars, TokenizeInstance("a cat", ["a", "cat"]), config.max_seg_len
  )
  assert float(loss) >= -1e-5
  assert jax.tree_util.tree_structure(grads) == jax.tree_util.tree_structure(params)


def test_train_parser_saves_the_best_model(tmp_path, vocab):
  system = build_system("arcstd", len(vocab.rels), vocab.root_relation())
  config = create_parser_config(
    vocab,
    system.num_actions,
    n_epochs=1,
    batch_size=2,
    **TINY_PARSER,
  )
  model = create_parser_model(config)
  params = init_params(model, jax.random.PRNGKey(0))
  train = vectorize_sentences([CAT_SENTENCE, DOGS_SENTENCE], vocab, system)
  dev = vectorize_sentences([DOGS_SENTENCE], vocab)
  output_path = tmp_path / "parser.model"

  state, metrics = train_parser(
    model, params, system, config, vocab, train, dev, output_path=str(output_path)
  )
  assert output_path.exists()
  assert len(metrics["train_loss"]) == 1
  assert 0.0 <= metrics["dev_las"][0] <= 1.0
  assert state.step == 1


def test_tokenizer_training_objective_on_corpus(vocab):
  config = create_tokenizer_config(vocab, **TINY_TOKENIZER)
  model = create_tokenizer_model(config)
  params = init_params(model, jax.random.PRNGKey(1))
  instances = make_tokenize_instances([CAT_SENTENCE, DOGS_SENTENCE])
  state = create_learning_pipeline(model, params, config.learning_rate, config.clip_norm)
  grad_fn = jax.value_and_grad(
    lambda p, inst: tokenizer_loss_fn(p, model, vocab.chars, inst, config.max_seg_len)
  )
  new_state, loss = train_step(state, grad_fn, instances)
  assert new_state.step == 1
  assert loss > 0.0


def test_weight_decay_changes_the_update(make_core, cat_instance):
  core, model, params = make_core("arcstd")
  grad_fn = jax.value_and_grad(
    lambda p, inst: parser_loss_fn(
      p, model, core.system, inst, oracle_trajectory(core.system, inst)
    )
  )
  plain = create_learning_pipeline(model, params, 0.01, 5.0, weight_decay=0.0)
  decayed = create_learning_pipeline(model, params, 0.01, 5.0, weight_decay=1.0)
  plain, _ = train_step(plain, grad_fn, [cat_instance])
  decayed, _ = train_step(decayed, grad_fn, [cat_instance])
  assert any(
    not np.allclose(a, b)
    for a, b in zip(
      jax.tree_util.tree_leaves(plain.params),
      jax.tree_util.tree_leaves(decayed.params),
    )
  )
