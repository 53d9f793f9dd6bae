"""
weights.py — Percentage weight normalisation.

Evaluation weights come out of the model (or the regex pass) as a mix of
ints, floats and "30%" strings that often don't add up: 60/30, 33/33/33,
or all zeros when nothing was found. Each sibling group (financial vs
technical, the five technical subsections, the overview weighting table)
is normalised independently here.

Groups that already sum to within `tolerance` of the total keep their
values (negatives still clamp to 0), so a tender that says
33.3/33.3/33.4 keeps its own numbers.
"""

from __future__ import annotations

import logging
import math
import re
from typing import List, Optional, Sequence, Union

logger = logging.getLogger(__name__)

Number = Union[int, float]

_PERCENT_RE = re.compile(r"(-?\d+(?:\.\d+)?)")


def parse_percent(value) -> Optional[float]:
    """
    "30%", "30", 30, "weight: 30 %" -> 30.0. None when there is no number.

    Booleans are not weights, even though Python treats them as ints.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    match = _PERCENT_RE.search(str(value))
    return float(match.group(1)) if match else None


def format_percent(value: Number) -> str:
    """30.0 -> "30%", 12.5 -> "12.5%"."""
    value = float(value)
    if value.is_integer():
        return f"{int(value)}%"
    return f"{round(value, 2):g}%"


def normalize_weights(
    values: Sequence[Number],
    total: int = 100,
    default: Optional[Sequence[int]] = None,
    tolerance: float = 1.0,
) -> List[Number]:
    """
    Rescale a sibling weight group so it sums to `total`.

    - Sum within ±tolerance of total: returned as is, negatives clamped to 0.
    - Sum of zero: `default` if given, else an equal integer split.
    - Otherwise: proportional rescale to integers, rounded with the
      largest-remainder method so the result sums to exactly `total`.

    Negative values are treated as 0.

    Args:
        values:    The group's current weights.
        total:     Target sum, 100 for top-level groups, the parent weight
                   for subsections.
        default:   Fallback split for an all-zero group. Must have the same
                   length as `values`.
        tolerance: Half-width of the "already fine" band.
    """
    if not values:
        return []

    cleaned = [max(v, 0) if isinstance(v, (int, float)) else max(float(v or 0), 0.0) for v in values]
    current = sum(cleaned)

    if abs(current - total) <= tolerance and current > 0:
        return cleaned

    if current == 0:
        if default is not None:
            if len(default) != len(values):
                raise ValueError(
                    f"Default split has {len(default)} entries, group has {len(values)}"
                )
            logger.debug("All-zero weight group, applying default %s", list(default))
            return list(default)
        return _largest_remainder([1.0] * len(values), total)

    result = _largest_remainder(cleaned, total)
    logger.debug("Normalised weights %s -> %s (target %s)", list(values), result, total)
    return result


def _largest_remainder(values: Sequence[float], total: int) -> List[int]:
    """Integer apportionment of `total` proportional to `values`."""
    current = sum(values)
    exact = [v * total / current for v in values]
    floors = [math.floor(x) for x in exact]
    shortfall = int(round(total - sum(floors)))

    # Biggest fractional parts get the leftover units; ties go to the
    # earlier entry so the result is deterministic.
    order = sorted(range(len(exact)), key=lambda i: (-(exact[i] - floors[i]), i))
    for i in order[:shortfall]:
        floors[i] += 1
    return floors
