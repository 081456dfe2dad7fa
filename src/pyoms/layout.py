"""
Foot-point generation for spiderfied clusters.

A cluster of n markers is fanned out around its body point either on a
circle (small clusters) or on an Archimedean-like spiral (large clusters).
All coordinates are in projected pixel space.
"""

from __future__ import annotations

from enum import IntEnum
import math
import warnings
import numpy as np

from .config import SpiderConfig
from .geom import Point

# Drift added to each spiral step so that feet do not line up at large i
SPIRAL_ANGLE_DRIFT = 0.0005

LARGE_CLUSTER_WARNING = 500


class LayoutMode(IntEnum):
    """Arrangement used for the feet of a cluster."""
    circle = 0
    spiral = 1


class LargeClusterWarning(UserWarning):
    """Warning about spiderfying more markers than the layout was tuned for."""


def choose_mode(count: int, circle_spiral_switchover: int) -> LayoutMode:
    """Circle below the switchover count, spiral from it upwards."""
    return LayoutMode.spiral if count >= circle_spiral_switchover else LayoutMode.circle


def generate_pts_circle(
    count: int,
    center: Point,
    foot_separation: float,
    start_angle: float
) -> list[Point]:
    """
    Place count feet evenly on a circle around center.

    The circumference is sized so that neighbouring feet sit roughly
    foot_separation apart, with room for two extra feet so that very
    small clusters are not cramped.

    Args:
        count: Number of feet
        center: Body point of the cluster
        foot_separation: Desired spacing along the circumference
        start_angle: Angle (radians) of the first foot

    Returns:
        count points, all at the same distance from center
    """
    if count <= 0:
        return []

    circumference = foot_separation * (2 + count)
    leg_length = circumference / (2 * math.pi)
    angle_step = 2 * math.pi / count

    angles = start_angle + np.arange(count) * angle_step
    xs = center.x + leg_length * np.cos(angles)
    ys = center.y + leg_length * np.sin(angles)

    return [Point(float(x), float(y)) for x, y in zip(xs, ys)]


def generate_pts_spiral(
    count: int,
    center: Point,
    foot_separation: float,
    length_start: float,
    length_factor: float
) -> list[Point]:
    """
    Place count feet along an outward spiral around center.

    Each step advances the angle by roughly foot_separation of arc at the
    current leg length, then grows the leg so successive turns stay apart.
    Leg length is strictly increasing with index.

    Args:
        count: Number of feet
        center: Body point of the cluster
        foot_separation: Desired spacing between consecutive feet
        length_start: Leg length of the first foot
        length_factor: Growth of the leg per turn

    Returns:
        count points, innermost first
    """
    leg_length = length_start
    angle = 0.0
    result: list[Point] = []

    for i in range(count):
        angle += foot_separation / leg_length + i * SPIRAL_ANGLE_DRIFT
        result.append(Point(
            center.x + leg_length * math.cos(angle),
            center.y + leg_length * math.sin(angle)
        ))
        leg_length += math.pi * 2 * length_factor / angle

    return result


def generate(count: int, center: Point, mode: LayoutMode, config: SpiderConfig) -> list[Point]:
    """
    Generate feet in the given mode, in generation order.

    Args:
        count: Number of feet
        center: Body point of the cluster
        mode: Circle or spiral
        config: Supplies separations, start angle and spiral growth

    Returns:
        count points
    """
    if mode == LayoutMode.spiral:
        return generate_pts_spiral(
            count,
            center,
            config.spiral_foot_separation,
            config.spiral_length_start,
            config.spiral_length_factor
        )
    return generate_pts_circle(
        count,
        center,
        config.circle_foot_separation,
        config.circle_start_angle
    )


def foot_points(count: int, center: Point, config: SpiderConfig) -> list[Point]:
    """
    Feet for a cluster of count markers, in assignment order.

    Spiral feet are returned outermost first, so that markers are matched
    from the outside in and legs cross less.

    Args:
        count: Number of markers in the cluster
        center: Body point of the cluster
        config: Spiderfier configuration

    Returns:
        count points ready for assignment
    """
    if count >= LARGE_CLUSTER_WARNING:
        warnings.warn(
            f"Spiderfying {count} markers; layouts of this size overlap heavily "
            "and are slow to assign.",
            LargeClusterWarning,
            stacklevel=2
        )

    mode = choose_mode(count, config.circle_spiral_switchover)
    pts = generate(count, center, mode, config)
    if mode == LayoutMode.spiral:
        pts.reverse()
    return pts
