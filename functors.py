"""
neural side of each transition: how an action moves expressions between the
stack and buffer LSTMs and when a head absorbs a modifier (composition).
the symbolic side lives in engine.py.
"""

from engine import LEFT, REDUCE, RIGHT, SHIFT, SWAP, TransitionSystem


class TransitionFunctor:
  """maps (core, action, checkpoint) to the next checkpoint."""

  def __init__(self, system: TransitionSystem):
    self.system = system
    self.handlers = {}

  def __call__(self, core, action: int, ckpt):
    kind = self.system.action_kind(action)
    ckpt = self.handlers[kind](core, action, ckpt)
    return core.push_action(ckpt, action)

  @staticmethod
  def shift(core, action, ckpt):
    word, ckpt = core.pop_buffer(ckpt)
    return core.push_stack(ckpt, word)


class ArcStandardFunctor(TransitionFunctor):
  """LEFT and RIGHT both collapse s1, s0 into one composed head on the stack."""

  def __init__(self, system: TransitionSystem):
    super().__init__(system)
    self.handlers = {SHIFT: self.shift, LEFT: self.left, RIGHT: self.right}

  @staticmethod
  def left(core, action, ckpt):
    s0, ckpt = core.pop_stack(ckpt)
    s1, ckpt = core.pop_stack(ckpt)
    return core.push_stack(ckpt, core.compose(s0, s1, action))

  @staticmethod
  def right(core, action, ckpt):
    s0, ckpt = core.pop_stack(ckpt)
    s1, ckpt = core.pop_stack(ckpt)
    return core.push_stack(ckpt, core.compose(s1, s0, action))


class SwapFunctor(ArcStandardFunctor):
  def __init__(self, system: TransitionSystem):
    super().__init__(system)
    self.handlers[SWAP] = self.swap

  @staticmethod
  def swap(core, action, ckpt):
    s0, ckpt = core.pop_stack(ckpt)
    s1, ckpt = core.pop_stack(ckpt)
    ckpt = core.push_buffer(ckpt, s1)
    return core.push_stack(ckpt, s0)


class ArcHybridFunctor(TransitionFunctor):
  def __init__(self, system: TransitionSystem):
    super().__init__(system)
    self.handlers = {SHIFT: self.shift, LEFT: self.left, RIGHT: self.right}

  @staticmethod
  def left(core, action, ckpt):
    # b0 takes s0 as a modifier and stays at the front of the buffer
    s0, ckpt = core.pop_stack(ckpt)
    b0, ckpt = core.pop_buffer(ckpt)
    return core.push_buffer(ckpt, core.compose(b0, s0, action))

  @staticmethod
  def right(core, action, ckpt):
    s0, ckpt = core.pop_stack(ckpt)
    s1, ckpt = core.pop_stack(ckpt)
    return core.push_stack(ckpt, core.compose(s1, s0, action))


class ArcEagerFunctor(TransitionFunctor):
  def __init__(self, system: TransitionSystem):
    super().__init__(system)
    self.handlers = {
      SHIFT: self.shift,
      REDUCE: self.reduce,
      LEFT: self.reduce,  # the buffer side is left untouched
      RIGHT: self.right,
    }

  @staticmethod
  def reduce(core, action, ckpt):
    _, ckpt = core.pop_stack(ckpt)
    return ckpt

  @staticmethod
  def right(core, action, ckpt):
    s0, ckpt = core.pop_stack(ckpt)
    b0, ckpt = core.pop_buffer(ckpt)
    ckpt = core.push_stack(ckpt, core.compose(s0, b0, action))
    return core.push_stack(ckpt, b0)


FUNCTORS = {
  "arcstd": ArcStandardFunctor,
  "swap": SwapFunctor,
  "archybrid": ArcHybridFunctor,
  "arceager": ArcEagerFunctor,
}


def build_functor(system: TransitionSystem) -> TransitionFunctor:
  return FUNCTORS[system.name](system)
