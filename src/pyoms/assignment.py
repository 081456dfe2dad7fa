"""
Greedy assignment of markers to foot points.

Each foot, in order, takes the nearest marker still unassigned. This is
not a minimum-cost matching; for the handful of markers in a cluster it
gives visually reasonable legs at a fraction of the cost.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, TypeVar
import numpy as np

from .geom import Point, pt_distance_sq

T = TypeVar("T")


class MarkerPoint:
    """A marker together with its projected point."""

    def __init__(self, marker: Any, pt: Point):
        self.marker = marker
        self.pt = pt


def min_extract(pool: list[T], key: Callable[[T], float]) -> T:
    """
    Remove and return the item of pool with the smallest key.

    Destructive. Ties go to the earliest item.

    Args:
        pool: Non-empty list to extract from
        key: Value to minimise

    Returns:
        The removed item
    """
    if not pool:
        raise ValueError("min_extract from an empty pool")
    values = np.fromiter((key(item) for item in pool), dtype=float, count=len(pool))
    return pool.pop(int(np.argmin(values)))


def assign(
    marker_points: Iterable[MarkerPoint],
    foot_pts: Iterable[Point]
) -> list[tuple[Point, Any]]:
    """
    Pair every foot with a marker, nearest remaining marker first.

    Args:
        marker_points: Markers with their current projected points
        foot_pts: Feet in assignment order; same count as markers

    Returns:
        (foot, marker) pairs in foot order
    """
    pool = list(marker_points)
    feet = list(foot_pts)
    if len(pool) != len(feet):
        raise ValueError(f"Cannot assign {len(pool)} markers to {len(feet)} feet")

    result: list[tuple[Point, Any]] = []
    for foot in feet:
        nearest = min_extract(pool, lambda mp: pt_distance_sq(mp.pt, foot))
        result.append((foot, nearest.marker))

    return result
