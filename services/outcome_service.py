"""
Outcome selection for a closing round.

Every draw goes through an OutcomeSource so the random step can be swapped
(verifiable randomness, fixed sequences in tests) without touching settlement.
"""
import random
from typing import Iterable, List, Optional

from models import Color
from services.payout_service import parse_color


class OutcomeSource:
    """Picks the winning color for a round."""

    def draw(self, round_number: int) -> Color:
        raise NotImplementedError


class RandomOutcomeSource(OutcomeSource):
    """Uniform draw over all colors using the OS random generator."""

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.SystemRandom()
        self._colors: List[Color] = list(Color)

    def draw(self, round_number: int) -> Color:
        return self._rng.choice(self._colors)


class SequenceOutcomeSource(OutcomeSource):
    """Replays a fixed sequence of colors, cycling when exhausted."""

    def __init__(self, colors: Iterable[Color]):
        self._colors = [parse_color(c) for c in colors]
        if not self._colors:
            raise ValueError("SequenceOutcomeSource needs at least one color")
        self._index = 0

    def draw(self, round_number: int) -> Color:
        color = self._colors[self._index % len(self._colors)]
        self._index += 1
        return color
