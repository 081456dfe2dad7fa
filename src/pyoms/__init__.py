"""
PyOMS: Overlapping marker spiderfier

Python port of the OverlappingMarkerSpiderfier JavaScript library.
"""

import logging

__version__ = "0.1.0"

from .config import SpiderConfig, SpiderOptions, LegColors, MapTypeId, DEFAULT_LEG_COLORS
from .events import EventBus, EventType, MarkerStatus
from .geom import Point
from .layout import LayoutMode, LargeClusterWarning, foot_points
from .projection import ProjectionNotReadyError
from .proximity import ProximityDatum, compute_proximity
from .registry import MarkerRegistry, SpiderDatum
from .scheduling import AsyncioScheduler, DeferredTask, ManualScheduler, TaskState
from .spiderfier import EngineState, Outcome, OverlappingMarkerSpiderfier

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "OverlappingMarkerSpiderfier",
    "EngineState",
    "Outcome",
    "SpiderConfig",
    "SpiderOptions",
    "LegColors",
    "MapTypeId",
    "DEFAULT_LEG_COLORS",
    "EventBus",
    "EventType",
    "MarkerStatus",
    "Point",
    "LayoutMode",
    "LargeClusterWarning",
    "foot_points",
    "ProjectionNotReadyError",
    "ProximityDatum",
    "compute_proximity",
    "MarkerRegistry",
    "SpiderDatum",
    "AsyncioScheduler",
    "DeferredTask",
    "ManualScheduler",
    "TaskState",
]
