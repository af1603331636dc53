import os
import logging
from typing import Dict, List, Optional

from dotenv import load_dotenv

from engine import TransitionSystem
from errors import OracleError
from oracle import get_oracle_actions
from schema import InputUnit, ParseInstance, TokenizeInstance
from vocab import BAD0, BAD_HEAD, BAD_REL, Vocab, new_vocab

load_dotenv()

logger = logging.getLogger(__name__)

TEXT_PREFIX = "# text = "
ACTION_PREFIX = "#ACTION "


def _data_file(file_name: str) -> str:
  data_path = os.getenv("DATA_PATH", "./data")
  return os.path.join(data_path, file_name)


def load_conll_data(file_name: str, lowercase: bool = False) -> List[Dict]:
  """
  robust CoNLL-U loader.
  - splits on any whitespace (tabs OR spaces)
  - flushes last sentence even if file doesn't end with a blank line
  - skips empty nodes like 3.1; multiword ranges like 1-2 are not words
  - keeps the `# text = ...` comment as the raw sentence
  - POS is the XPOS column (5th)
  - "tokens" holds the surface tokens: a multiword range contributes its
    own form in place of the words it covers
  """
  full_path = _data_file(file_name)

  examples: List[Dict] = []
  word: List[str] = []
  pos: List[str] = []
  head: List[int] = []
  label: List[str] = []
  tokens: List[str] = []
  covered = 0  # last word id inside the current multiword range
  text: Optional[str] = None

  def flush():
    nonlocal word, pos, head, label, tokens, covered, text
    if word:
      raw = text if text is not None else " ".join(tokens)
      examples.append(
        {
          "word": word,
          "pos": pos,
          "head": head,
          "label": label,
          "tokens": tokens,
          "text": raw,
        }
      )
    word, pos, head, label, tokens, covered, text = [], [], [], [], [], 0, None

  with open(full_path, "r", encoding="utf-8") as f:
    for line in f:
      line = line.rstrip("\n")
      if line.startswith(TEXT_PREFIX):
        text = line[len(TEXT_PREFIX):].strip()
        continue
      line = line.strip()
      if not line:
        flush()
        continue
      if line.startswith("#"):
        continue

      sp = line.split()  # whitespace-agnostic
      if len(sp) < 8:
        flush()
        continue

      tok_id = sp[0]
      form = sp[1].lower() if lowercase else sp[1]
      if "." in tok_id:
        continue
      if "-" in tok_id:
        tokens.append(form)
        covered = int(tok_id.split("-")[1])
        continue

      if int(tok_id) > covered:
        tokens.append(form)
      word.append(form)
      pos.append(sp[4])
      if sp[6] == "_":
        head.append(BAD_HEAD)
        label.append(BAD0)
      else:
        head.append(int(sp[6]))
        label.append(sp[7])

  flush()
  logger.info("loaded %d sentences from %s", len(examples), full_path)
  return examples


def load_test_input(path: str) -> List[Dict]:
  """
  line-oriented test input: blank line ends a sentence, `#ACTION <id>` adds to
  the forced action trace, other `#` lines are comments, token lines are
  tab/space separated with word, POS, head and relation in columns 2, 4, 7, 8.
  """
  examples: List[Dict] = []
  current: Dict = {"word": [], "pos": [], "head": [], "label": [], "actions": []}

  def flush():
    nonlocal current
    if current["word"] or current["actions"]:
      current["text"] = " ".join(current["word"])
      examples.append(current)
    current = {"word": [], "pos": [], "head": [], "label": [], "actions": []}

  with open(path, "r", encoding="utf-8") as f:
    for line in f:
      line = line.strip()
      if not line:
        flush()
      elif line.startswith(ACTION_PREFIX):
        current["actions"].append(int(line[len(ACTION_PREFIX):]))
      elif line.startswith("#"):
        continue
      else:
        data = line.replace("\t", " ").split()
        current["word"].append(data[1])
        current["pos"].append(data[3])
        if data[6] == "_":
          current["head"].append(BAD_HEAD)
          current["label"].append(BAD0)
        else:
          current["head"].append(int(data[6]))
          current["label"].append(data[7])

  flush()
  logger.info("test %d instances from %s", len(examples), path)
  return examples


def build_vocab(train_data: List[Dict]) -> Vocab:
  """
  builds the symbol tables from the training corpus and freezes them.
  ids are contiguous and stable (symbols inserted in sorted order).
  """
  rels = sorted(set(ll for ex in train_data for ll in ex["label"] if ll != BAD0))
  vocab = new_vocab(rels)

  for p in sorted(set(p for ex in train_data for p in ex["pos"])):
    vocab.pos.insert(p)
  for w in sorted(set(w for ex in train_data for w in ex["word"])):
    vocab.words.insert(w)
  chars = set(ch for ex in train_data for ch in ex.get("text", ""))
  chars.update(ch for ex in train_data for w in ex["word"] for ch in w)
  for ch in sorted(chars):
    vocab.chars.insert(ch)

  logger.info(
    "vocab: %d chars, %d words, %d pos, %d relations",
    len(vocab.chars),
    len(vocab.words),
    len(vocab.pos),
    len(vocab.rels),
  )
  return vocab.freeze()


def vectorize_sentence(ex: Dict, vocab: Vocab) -> ParseInstance:
  """
  indexing invariant:
  - position 0 of heads/deprels is the root placeholder
  - real tokens are in positions 1..n (matching CoNLL token IDs)
  """
  units = [
    InputUnit(
      word=w,
      word_id=vocab.words.get(w),
      pos_id=vocab.pos.get(p),
      cids=tuple(vocab.chars.get(ch) for ch in w),
    )
    for w, p in zip(ex["word"], ex["pos"])
  ]
  heads = [BAD_HEAD] + list(ex["head"])
  deprels = [BAD_REL] + [
    BAD_REL if ll == BAD0 or ll not in vocab.rels else vocab.rels.get(ll)
    for ll in ex["label"]
  ]
  actions = ex.get("actions") or None
  return ParseInstance(units=units, heads=heads, deprels=deprels, actions=actions)


def vectorize_sentences(
  raw_data: List[Dict], vocab: Vocab, system: Optional[TransitionSystem] = None
) -> List[ParseInstance]:
  """
  vectorizes every sentence; with a transition system, the reference action
  trace is derived too and sentences the system cannot derive are dropped.
  """
  instances: List[ParseInstance] = []
  dropped = 0
  for ex in raw_data:
    inst = vectorize_sentence(ex, vocab)
    if system is not None and inst.actions is None:
      try:
        inst = inst._replace(actions=get_oracle_actions(system, inst.heads, inst.deprels))
      except OracleError as e:
        logger.debug("dropping sentence: %s", e)
        dropped += 1
        continue
    instances.append(inst)

  if dropped:
    logger.info("dropped %d sentences the oracle cannot derive", dropped)
  return instances


def make_tokenize_instances(raw_data: List[Dict]) -> List[TokenizeInstance]:
  return [
    TokenizeInstance(raw_sentence=ex["text"], tokens=list(ex.get("tokens", ex["word"])))
    for ex in raw_data
  ]
