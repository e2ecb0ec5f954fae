"""
Line grouping for unordered text detections.

Regions are clustered into lines by vertical center, then each line is
ordered left to right. Lines come back top to bottom.
"""

from typing import List, Sequence, Tuple

import numpy as np

from ..config import DEFAULT_LINE_TOLERANCE
from ..frames import TextLine, TextRegion


# (detection index, region)
_Indexed = Tuple[int, TextRegion]


def _vertical_key(item: _Indexed):
    index, region = item
    return region.center_y, region.left, index


def _horizontal_key(item: _Indexed):
    index, region = item
    return region.left, region.center_y, index


def _baseline(members: List[_Indexed]) -> float:
    return float(np.mean([region.center_y for _, region in members]))


def _close_line(members: List[_Indexed]) -> Tuple[int, TextLine]:
    """Order a line's members left to right; keep its earliest detection index."""
    ordered = sorted(members, key=_horizontal_key)
    line = TextLine(
        regions=tuple(region for _, region in ordered),
        baseline_y=_baseline(members),
    )
    return min(index for index, _ in members), line


def group_lines(
    regions: Sequence[TextRegion], tolerance: float = DEFAULT_LINE_TOLERANCE
) -> List[TextLine]:
    """
    Group text regions into reading-order lines.

    A region joins the open line when its vertical center lies within
    `tolerance` times the median height of the line's regions from the
    line's running baseline. Otherwise the line is closed and a new one
    is opened.

    Args:
        regions: Detections in detector order
        tolerance: Band half-width as a fraction of the median region height

    Returns:
        Lines ordered top to bottom, ties broken by detection order
    """
    if tolerance <= 0:
        raise ValueError(f"tolerance must be positive, got {tolerance}")

    if not regions:
        return []

    ordered = sorted(enumerate(regions), key=_vertical_key)

    closed: List[Tuple[int, TextLine]] = []
    current: List[_Indexed] = []
    baseline = 0.0

    for item in ordered:
        _, region = item
        if current:
            median_height = float(np.median([r.height for _, r in current]))
            if abs(region.center_y - baseline) <= tolerance * median_height:
                current.append(item)
                baseline = _baseline(current)
                continue
            closed.append(_close_line(current))

        current = [item]
        baseline = region.center_y

    closed.append(_close_line(current))

    closed.sort(key=lambda entry: (entry[1].baseline_y, entry[0]))
    return [line for _, line in closed]
