"""Tick cadences for work that runs slower than the scheduler.

Memory consolidation, lexicon crystallization and snapshot persistence all
fire on an ``every N ticks`` rhythm.  The owner keeps the last tick it ran
and consults the interval before doing the work.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


DEFAULT_OFFSET = 0
"""Default tick offset so ``every=N`` fires on ticks N, 2N, 3N..."""


@dataclass(frozen=True)
class TickInterval:
    """Represents an ``every N ticks`` cadence with an optional offset."""

    every: int = 1
    offset: int = DEFAULT_OFFSET

    def is_due(self, *, tick: int, last_run_tick: Optional[int]) -> bool:
        """Return ``True`` when the cadence fires on this tick."""

        if self.every <= 0:
            return True

        if last_run_tick is not None and tick <= last_run_tick:
            return False

        return ((tick - self.offset) % self.every) == 0
