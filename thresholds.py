"""
Alert threshold set for Battery Guard
"""
from typing import List


def build_thresholds(start_threshold: int, step: int, floor_threshold: int) -> List[int]:
    """
    Build the descending list of alert thresholds.

    The floor is always included. From the start threshold, values are
    generated every `step` percent while they stay above the floor.
    Returns [floor] when start <= floor or step <= 0.
    """
    start_threshold = int(start_threshold)
    step = int(step)
    floor_threshold = int(floor_threshold)

    values = {floor_threshold}
    if step <= 0:
        return [floor_threshold]

    threshold = start_threshold
    while threshold > floor_threshold:
        values.add(threshold)
        threshold -= step

    return sorted(values, reverse=True)


def format_thresholds(thresholds: List[int]) -> str:
    """Human readable threshold list, e.g. '25% > 20% > 1%'"""
    return ' > '.join(f"{t}%" for t in thresholds)
