"""
Retry delay policy for the ingest queue.
"""

import math
import random
from typing import Optional


class BackoffPolicy:
    """
    Exponential backoff with bounded jitter and a floor at base.

    delay(attempt) = max(base, floor(base * 2**attempt * (1 + U[-jitter, jitter])))

    Delays are in seconds, floored to whole milliseconds.
    """

    def __init__(self, base: float = 5.0, jitter: float = 0.2, rng: Optional[random.Random] = None):
        if base <= 0:
            raise ValueError("base must be greater than zero")
        if not 0 <= jitter < 1:
            raise ValueError("jitter must be in [0, 1)")
        self.base = base
        self.jitter = jitter
        self.rng = rng or random.Random()

    def delay(self, attempt: int) -> float:
        attempt = max(0, attempt)
        factor = 1 + self.rng.uniform(-self.jitter, self.jitter)
        raw_ms = math.floor(self.base * 1000 * (2 ** attempt) * factor)
        return max(self.base, raw_ms / 1000)

    def __call__(self, attempt: int) -> float:
        return self.delay(attempt)
