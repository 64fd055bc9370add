"""Backoff utilities for retry policies."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable


@dataclass
class ExponentialBackoff:
    """Exponential backoff with additive jitter.

    Each step grows the current delay by ``multiplier`` and adds a random
    jitter in ``[0, jitter * delay)``, capped at ``max_delay``.
    """

    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 10.0
    jitter: float = 0.3
    rand: Callable[[], float] = field(default=random.random, repr=False)

    def next_delay(self, delay: float) -> float:
        """Return the delay that follows ``delay``."""
        jitter_amt = self.rand() * self.jitter * delay
        return min(delay * self.multiplier + jitter_amt, self.max_delay)
