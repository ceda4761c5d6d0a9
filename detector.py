"""
Threshold crossing detection for Battery Guard
Decides which threshold (if any) fires for a battery sample
"""
import math
from dataclasses import dataclass
from typing import Iterable, Optional, Set


def level_to_percent(level: float) -> int:
    """Convert a 0..1 level to an integer percentage, rounding halves up"""
    return int(math.floor(level * 100 + 0.5))


@dataclass(frozen=True)
class Crossing:
    """A threshold selected to fire for one sample"""
    threshold: int
    percentage: int


class FiredThresholds:
    """Thresholds already alerted during the current discharge cycle"""

    def __init__(self):
        self._fired: Set[int] = set()

    def reset(self):
        self._fired.clear()

    def has_fired(self, threshold: int) -> bool:
        return threshold in self._fired

    def mark_fired(self, threshold: int):
        self._fired.add(threshold)

    def retain(self, thresholds: Iterable[int]):
        """Forget fired entries that are not in `thresholds`"""
        self._fired.intersection_update(thresholds)

    def __contains__(self, threshold: int) -> bool:
        return self.has_fired(threshold)

    def __len__(self) -> int:
        return len(self._fired)

    def __repr__(self):
        return f"<FiredThresholds({sorted(self._fired, reverse=True)})>"


class CrossingDetector:
    """Selects at most one threshold to fire per sample"""

    def __init__(self, fired: FiredThresholds = None):
        self.fired = fired if fired is not None else FiredThresholds()

    def reset(self):
        """Start a new discharge cycle"""
        self.fired.reset()

    def evaluate(self, sample, thresholds: Iterable[int], armed: bool) -> Optional[Crossing]:
        """
        Evaluate one sample against the descending thresholds.

        Charging, or any sample seen while not armed, ends the discharge
        cycle and makes every threshold eligible again. Otherwise the
        highest threshold at or above the current percentage that has not
        fired yet is selected and marked fired before it is returned, so
        a slow delivery can never cause a second fire for it.
        """
        if sample.charging or not armed:
            self.fired.reset()
            return None

        percentage = level_to_percent(sample.level)

        for threshold in thresholds:
            if percentage <= threshold and not self.fired.has_fired(threshold):
                self.fired.mark_fired(threshold)
                return Crossing(threshold=threshold, percentage=percentage)

        return None
