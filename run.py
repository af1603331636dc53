import os
import logging
from collections import defaultdict
from typing import Callable, List, Optional, Sequence, Tuple

import numpy as np
import jax
import jax.numpy as jnp
import optax
from dotenv import load_dotenv
from flax.training import train_state
from jax.scipy.special import logsumexp

from config import (
  ParserConfig,
  TokenizerConfig,
  create_parser_config,
  create_tokenizer_config,
  env_overrides,
)
from data_loader import (
  build_vocab,
  load_conll_data,
  make_tokenize_instances,
  vectorize_sentences,
)
from embeddings import empty_embedding
from engine import TransitionSystem, build_system
from inference import calculate_attachment_scores, masked_log_softmax, predict_action
from oracle import correct_actions, get_oracle_actions
from parser_core import ParserCore
from parser_model import create_parser_model, init_params
from schema import ParseInstance, TokenizeInstance
from tokenizer import SegmentalTokenizer, token_f1
from tokenizer_model import create_tokenizer_model
from utils import load_model, save_model
from vocab import SymbolTable, Vocab

logger = logging.getLogger(__name__)

# (taken action, actions the oracle accepts at that step)
Step = Tuple[int, List[int]]

# sizes that come from the vocabulary, never from the environment
VOCAB_FIELDS = ("char_size", "pos_size", "action_size", "rel_size")


def create_learning_pipeline(
  model, params, learning_rate: float, clip_norm: float, weight_decay: float = 0.0
):
  """initializes the Optax optimizer (with L2 weight decay) and Flax train state."""
  tx = optax.chain(
    optax.clip_by_global_norm(clip_norm),
    optax.add_decayed_weights(weight_decay),
    optax.adam(learning_rate),
  )
  return train_state.TrainState.create(apply_fn=model.apply, params=params, tx=tx)


def get_minibatches(instances: Sequence, batch_size: int, shuffle: bool = True):
  """yields slices of the instance list as minibatches."""
  indices = np.arange(len(instances))
  if shuffle:
    np.random.shuffle(indices)

  for start_idx in range(0, len(instances), batch_size):
    yield [instances[i] for i in indices[start_idx : start_idx + batch_size]]


def oracle_trajectory(system: TransitionSystem, inst: ParseInstance) -> List[Step]:
  actions = inst.actions
  if actions is None:
    actions = get_oracle_actions(system, inst.heads, inst.deprels)
  return [(a, [a]) for a in actions]


def explore_trajectory(
  core: ParserCore,
  inst: ParseInstance,
  pretrained: Optional[np.ndarray],
  explore_prob: float,
  rng: np.random.Generator,
) -> List[Step]:
  """
  dynamic-oracle trajectory: the model's choice is kept when it is correct,
  followed anyway with probability explore_prob when it is not, and replaced
  by the best-scored correct action otherwise.
  """
  system = core.system
  state, ckpt = core.initialize(inst.units, pretrained)
  steps: List[Step] = []
  while not system.is_terminal(state):
    legal = core.legal_actions(state, ckpt)
    correct = correct_actions(system, state, inst.heads, inst.deprels)
    logits = core.score(ckpt)
    predicted = predict_action(logits, legal)
    if predicted in correct or rng.random() < explore_prob:
      taken = predicted
    else:
      taken = predict_action(logits, correct)
    steps.append((taken, correct))
    ckpt = core.apply(taken, state, ckpt)
  return steps


def parser_loss_fn(
  params,
  model,
  system: TransitionSystem,
  inst: ParseInstance,
  steps: Sequence[Step],
  pretrained: Optional[np.ndarray] = None,
) -> jnp.ndarray:
  """
  replays a trajectory and returns the mean negative log-probability of the
  correct action set at each step.
  """
  if not steps:
    return jnp.zeros(())
  core = ParserCore(model, params, system)
  state, ckpt = core.initialize(inst.units, pretrained)
  losses = []
  for taken, correct in steps:
    legal = core.legal_actions(state, ckpt)
    logp = masked_log_softmax(core.score(ckpt), legal)
    losses.append(-logsumexp(logp[jnp.asarray(correct)]))
    ckpt = core.apply(taken, state, ckpt)
  return jnp.sum(jnp.stack(losses)) / len(losses)


def tokenizer_loss_fn(
  params, model, char_table: SymbolTable, inst: TokenizeInstance, max_seg_len: int
) -> jnp.ndarray:
  return SegmentalTokenizer(model, params, char_table, max_seg_len).objective(inst)


def train_step(state, grad_fn: Callable, batch: Sequence):
  """
  one update: per-instance gradients (each instance traces its own graph),
  averaged over the batch.
  """
  total_loss = 0.0
  grads_sum = None
  for example in batch:
    loss, grads = grad_fn(state.params, example)
    total_loss += float(loss)
    if grads_sum is None:
      grads_sum = grads
    else:
      grads_sum = jax.tree_util.tree_map(jnp.add, grads_sum, grads)
  grads = jax.tree_util.tree_map(lambda g: g / len(batch), grads_sum)
  state = state.apply_gradients(grads=grads)
  return state, total_loss / len(batch)


def train_parser(
  model,
  params,
  system: TransitionSystem,
  config: ParserConfig,
  vocab: Vocab,
  train_instances: List[ParseInstance],
  dev_instances: List[ParseInstance],
  embedding=None,
  output_path: str = "results/parser.model",
  seed: int = 0,
):
  state = create_learning_pipeline(
    model, params, config.learning_rate, config.clip_norm, config.weight_decay
  )
  rng = np.random.default_rng(seed)
  explore = config.explore_prob > 0 and system.supports_dynamic_oracle
  if config.explore_prob > 0 and not explore:
    logger.warning("%s has no dynamic oracle; training on static traces", system.name)

  def render(inst):
    if embedding is None:
      return None
    return embedding.render([u.word for u in inst.units])

  grad_fn = jax.value_and_grad(
    lambda p, ex: parser_loss_fn(p, model, system, ex[0], ex[1], ex[2])
  )

  metrics = defaultdict(list)
  best_las = -1.0
  patience_counter = 0

  for epoch in range(1, config.n_epochs + 1):
    epoch_losses = []

    for batch in get_minibatches(train_instances, config.batch_size):
      examples = []
      for inst in batch:
        pretrained = render(inst)
        if explore:
          core = ParserCore(model, state.params, system)
          steps = explore_trajectory(core, inst, pretrained, config.explore_prob, rng)
        else:
          steps = oracle_trajectory(system, inst)
        examples.append((inst, steps, pretrained))
      state, loss = train_step(state, grad_fn, examples)
      epoch_losses.append(loss)

    core = ParserCore(model, state.params, system)
    uas, las = calculate_attachment_scores(
      core, dev_instances, embedding, config.beam_size
    )
    avg_loss = float(np.mean(epoch_losses)) if epoch_losses else float("nan")

    # track metrics
    metrics["train_loss"].append(avg_loss)
    metrics["dev_las"].append(las)

    logger.info(
      "epoch %d | loss: %.4f | dev UAS: %.2f%% LAS: %.2f%%",
      epoch,
      avg_loss,
      uas * 100.0,
      las * 100.0,
    )

    if las > best_las:
      best_las = las
      save_model(output_path, state.params, config, vocab)
      logger.info("  -> new best LAS: %.2f%%", best_las * 100.0)
      patience_counter = 0
    else:
      patience_counter += 1
      if patience_counter >= config.early_stopping_patience:
        logger.info(
          "early stopping triggered after %d epochs without improvement",
          config.early_stopping_patience,
        )
        break

  return state, metrics


def train_tokenizer(
  model,
  params,
  config: TokenizerConfig,
  vocab: Vocab,
  train_instances: List[TokenizeInstance],
  dev_instances: List[TokenizeInstance],
  output_path: str = "results/tokenizer.model",
):
  state = create_learning_pipeline(
    model, params, config.learning_rate, config.clip_norm, config.weight_decay
  )
  grad_fn = jax.value_and_grad(
    lambda p, inst: tokenizer_loss_fn(p, model, vocab.chars, inst, config.max_seg_len)
  )

  metrics = defaultdict(list)
  best_f1 = -1.0
  patience_counter = 0

  for epoch in range(1, config.n_epochs + 1):
    epoch_losses = []
    for batch in get_minibatches(train_instances, config.batch_size):
      state, loss = train_step(state, grad_fn, batch)
      epoch_losses.append(loss)

    tokenizer = SegmentalTokenizer(model, state.params, vocab.chars, config.max_seg_len)
    f1 = token_f1(tokenizer, dev_instances)
    avg_loss = float(np.mean(epoch_losses)) if epoch_losses else float("nan")
    metrics["train_loss"].append(avg_loss)
    metrics["dev_f1"].append(f1)
    logger.info("epoch %d | loss: %.4f | dev F1: %.2f%%", epoch, avg_loss, f1 * 100.0)

    if f1 > best_f1:
      best_f1 = f1
      save_model(output_path, state.params, config, vocab)
      logger.info("  -> new best F1: %.2f%%", best_f1 * 100.0)
      patience_counter = 0
    else:
      patience_counter += 1
      if patience_counter >= config.early_stopping_patience:
        logger.info(
          "early stopping triggered after %d epochs without improvement",
          config.early_stopping_patience,
        )
        break

  return state, metrics


def run_parser(raw_train, raw_dev, raw_test, vocab: Vocab, output_path: str, seed: int):
  scheme = os.getenv("SCHEME", "arcstd")
  system = build_system(scheme, len(vocab.rels), vocab.root_relation())
  overrides = env_overrides(ParserConfig(), "PARSER", exclude=VOCAB_FIELDS)
  overrides["scheme"] = scheme
  config = create_parser_config(vocab, system.num_actions, **overrides)

  train_instances = vectorize_sentences(raw_train, vocab, system)
  dev_instances = vectorize_sentences(raw_dev, vocab)
  test_instances = vectorize_sentences(raw_test, vocab)
  logger.info(
    "train sentences: %d | dev: %d | test: %d",
    len(train_instances),
    len(dev_instances),
    len(test_instances),
  )

  model = create_parser_model(config)
  params = init_params(model, jax.random.PRNGKey(seed))
  embedding = empty_embedding(config.pretrained_dim)

  _, metrics = train_parser(
    model,
    params,
    system,
    config,
    vocab,
    train_instances,
    dev_instances,
    embedding,
    output_path,
    seed,
  )

  logger.info("restoring best model for final testing...")
  params, config, _ = load_model(output_path, ParserConfig)
  core = ParserCore(model, params, system)
  test_uas, test_las = calculate_attachment_scores(
    core, test_instances, embedding, config.beam_size
  )

  logger.info("=" * 60)
  logger.info("training summary:")
  logger.info("  best dev LAS: %.2f%%", max(metrics["dev_las"]) * 100.0)
  logger.info("  final test UAS: %.2f%% LAS: %.2f%%", test_uas * 100.0, test_las * 100.0)
  logger.info("  total epochs: %d", len(metrics["train_loss"]))
  logger.info("=" * 60)


def run_tokenizer(raw_train, raw_dev, raw_test, vocab: Vocab, output_path: str, seed: int):
  config = create_tokenizer_config(
    vocab, **env_overrides(TokenizerConfig(), "TOKENIZER", exclude=VOCAB_FIELDS)
  )
  model = create_tokenizer_model(config)
  params = init_params(model, jax.random.PRNGKey(seed))

  _, metrics = train_tokenizer(
    model,
    params,
    config,
    vocab,
    make_tokenize_instances(raw_train),
    make_tokenize_instances(raw_dev),
    output_path,
  )

  logger.info("restoring best model for final testing...")
  params, config, _ = load_model(output_path, TokenizerConfig)
  tokenizer = SegmentalTokenizer(model, params, vocab.chars, config.max_seg_len)
  test_f1 = token_f1(tokenizer, make_tokenize_instances(raw_test))

  logger.info("=" * 60)
  logger.info("training summary:")
  logger.info("  best dev F1: %.2f%%", max(metrics["dev_f1"]) * 100.0)
  logger.info("  final test F1: %.2f%%", test_f1 * 100.0)
  logger.info("  total epochs: %d", len(metrics["train_loss"]))
  logger.info("=" * 60)


def main():
  logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
  )

  load_dotenv()
  task = os.getenv("TASK", "parse")
  seed = int(os.getenv("SEED", "0"))
  np.random.seed(seed)
  logger.info("loading data from %s...", os.getenv("DATA_PATH", "./data"))

  raw_train = load_conll_data(os.getenv("TRAIN_FILE", "train.conllu"))
  raw_dev = load_conll_data(os.getenv("DEV_FILE", "dev.conllu"))
  raw_test = load_conll_data(os.getenv("TEST_FILE", "test.conllu"))
  vocab = build_vocab(raw_train)

  if task == "tokenize":
    output_path = os.getenv("OUTPUT_PATH", "results/tokenizer.model")
    run_tokenizer(raw_train, raw_dev, raw_test, vocab, output_path, seed)
  elif task == "parse":
    output_path = os.getenv("OUTPUT_PATH", "results/parser.model")
    run_parser(raw_train, raw_dev, raw_test, vocab, output_path, seed)
  else:
    raise ValueError(f"unknown task: {task}")


if __name__ == "__main__":
  main()
