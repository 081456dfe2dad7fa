"""
Geometric utilities for marker spiderfying.

This module provides the pixel-space point type and the handful of
measurements the spiderfier needs: squared distances and centroids.
"""

from __future__ import annotations

from typing import Iterable
import numpy as np


class Point:
    """2D point in projected (pixel) space."""

    def __init__(self, x: float = 0.0, y: float = 0.0):
        self.x = x
        self.y = y

    def __repr__(self) -> str:
        return f"Point({self.x!r}, {self.y!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Point):
            return NotImplemented
        return self.x == other.x and self.y == other.y

    def __hash__(self) -> int:
        return hash((self.x, self.y))

    def to_array(self) -> np.ndarray:
        """Return the point as a length-2 float array."""
        return np.array([self.x, self.y], dtype=float)


def pt_distance_sq(p1: Point, p2: Point) -> float:
    """
    Squared Euclidean distance between two points.

    Proximity tests compare against a squared threshold, so the square
    root is never taken.
    """
    dx = p1.x - p2.x
    dy = p1.y - p2.y
    return dx * dx + dy * dy


def pt_average(points: Iterable[Point]) -> Point:
    """
    Centroid of a non-empty collection of points.

    Args:
        points: Points to average

    Returns:
        The arithmetic mean of the points
    """
    coords = points_to_array(points)
    if len(coords) == 0:
        raise ValueError("Cannot average an empty set of points")
    cx, cy = coords.mean(axis=0)
    return Point(float(cx), float(cy))


def points_to_array(points: Iterable[Point]) -> np.ndarray:
    """
    Pack points into an (n x 2) array.

    Args:
        points: Points to pack

    Returns:
        Array with one row per point
    """
    coords = [(p.x, p.y) for p in points]
    if not coords:
        return np.zeros((0, 2))
    return np.array(coords, dtype=float)
