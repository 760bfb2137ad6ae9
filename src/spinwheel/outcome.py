"""Wheel roll generation.

The roll is drawn with the standard library PRNG. That is enough to keep a
viewer from predicting a spin from chat; it is not meant to withstand
someone with access to the host process, which is the trust boundary here.
"""

import random

from .events import ROLL_MAX, ROLL_MIN, Outcome

_rng = random.Random()


def roll_outcome(display_name: str, rng: random.Random | None = None) -> Outcome:
    """Draw a uniform roll in [1, 100] and classify it."""
    roll = (rng or _rng).randint(ROLL_MIN, ROLL_MAX)
    return Outcome.from_roll(display_name, roll)
