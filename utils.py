import os
import pickle
import logging
from typing import NamedTuple, Tuple

import jax

from vocab import Vocab

logger = logging.getLogger(__name__)


def save_model(path: str, params, config: NamedTuple, vocab: Vocab) -> None:
  """saves parameters, hyperparameters and symbol tables to one file."""
  directory = os.path.dirname(path)
  if directory:
    os.makedirs(directory, exist_ok=True)
  payload = {
    "params": jax.device_get(params),
    "config_type": type(config).__name__,
    "config": config._asdict(),
    "vocab": vocab.to_dict(),
  }
  with open(path, "wb") as f:
    pickle.dump(payload, f)
  logger.info("model saved to %s", path)


def load_model(path: str, config_cls) -> Tuple[object, NamedTuple, Vocab]:
  """loads what save_model wrote; config_cls rebuilds the config tuple."""
  with open(path, "rb") as f:
    payload = pickle.load(f)
  if payload["config_type"] != config_cls.__name__:
    raise ValueError(
      f"{path} holds a {payload['config_type']}, not a {config_cls.__name__}"
    )
  logger.info("model loaded from %s", path)
  return payload["params"], config_cls(**payload["config"]), Vocab.from_dict(payload["vocab"])
