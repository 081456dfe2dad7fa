"""
Proximity detection among tracked markers.

Determines, for every marker, whether at least one other visible marker
lies within a pixel threshold of it. Uses a direct pairwise scan with
pruning rather than a spatial index; marker counts are expected to be
small enough for that.
"""

from __future__ import annotations

from typing import Any, Callable, Sequence
import numpy as np

from .geom import Point, points_to_array


class ProximityDatum:
    """
    Per-marker result of a proximity pass.

    Attributes:
        pt: Projected point the marker was measured at
        will_spiderfy: True if another marker is within the threshold
    """

    def __init__(self, pt: Point, will_spiderfy: bool = False):
        self.pt = pt
        self.will_spiderfy = will_spiderfy

    def __repr__(self) -> str:
        return f"ProximityDatum(pt={self.pt!r}, will_spiderfy={self.will_spiderfy})"


def is_present(marker: Any) -> bool:
    """True if the marker is on a map and visible."""
    return marker.get_map() is not None and bool(marker.get_visible())


def compute_proximity(
    markers: Sequence[Any],
    threshold: float,
    locate: Callable[[Any], Point]
) -> list[ProximityDatum]:
    """
    Flag every marker that has a neighbour closer than threshold pixels.

    Markers that are hidden or off the map are never flagged and are never
    counted as anyone's neighbour. Once marker i has been scanned without a
    hit, no later marker can be its neighbour, so earlier unflagged markers
    are skipped as candidates. The marker set must not change during a pass.

    Args:
        markers: Markers to examine
        threshold: Pixel distance below which two markers overlap
        locate: Returns the projected point of a marker

    Returns:
        One ProximityDatum per marker, in input order
    """
    data = [ProximityDatum(locate(m)) for m in markers]
    n = len(data)
    if n < 2:
        return data

    coords = points_to_array(d.pt for d in data)
    active = np.array([is_present(m) for m in markers], dtype=bool)
    will = np.zeros(n, dtype=bool)
    threshold_sq = threshold * threshold

    for i in range(n):
        if not active[i] or will[i]:
            continue

        candidates = active.copy()
        candidates[i] = False
        # i2 < i already compared against everything; only flagged ones can still match
        candidates[:i] &= will[:i]

        delta = coords - coords[i]
        dist_sq = np.einsum('ij,ij->i', delta, delta)
        hits = np.flatnonzero(candidates & (dist_sq < threshold_sq))
        if hits.size:
            will[i] = True
            will[hits[0]] = True

    for datum, flag in zip(data, will):
        datum.will_spiderfy = bool(flag)

    return data
