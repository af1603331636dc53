class IllegalActionError(RuntimeError):
  """an action was applied to a configuration where it is not legal."""


class IllegalStateError(RuntimeError):
  """a non-terminal configuration has no legal action."""


class StateDesyncError(RuntimeError):
  """the checkpoint no longer mirrors the symbolic configuration."""


class SegmentationError(RuntimeError):
  """a segment index ran past the end of the sentence."""


class OracleError(ValueError):
  """the gold tree cannot be derived by the transition system."""
