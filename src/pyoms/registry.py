"""
Registry of tracked markers.

Owns the ordered list of tracked markers, their host subscriptions and
the SpiderDatum of markers in the active cluster. Markers are foreign
objects: everything the spiderfier knows about one lives in side tables
keyed by identity, and the marker itself is never annotated.
"""

from __future__ import annotations

from typing import Any, Callable, Optional
import logging

from .config import SpiderConfig
from .geom import Point, pt_distance_sq
from .host import Leg, Subscription
from .projection import ProjectionHelper
from .proximity import ProximityDatum, compute_proximity, is_present

logger = logging.getLogger(__name__)

ClickHandler = Callable[[Any, Any], Any]
ChangeHandler = Callable[[Any, bool], Any]


class SpiderDatum:
    """
    What a spiderfied marker looked like before it was moved.

    Attributes:
        usual_position: Position to restore on unspiderfy
        usual_z_index: Z-index to restore on unspiderfy
        leg: Leg drawn from usual_position to the foot
        highlight_subscriptions: mouseover/mouseout subscriptions, if any
    """

    def __init__(
        self,
        usual_position: Any,
        usual_z_index: Optional[float],
        leg: Leg,
        highlight_subscriptions: Optional[tuple[Subscription, Subscription]] = None
    ):
        self.usual_position = usual_position
        self.usual_z_index = usual_z_index
        self.leg = leg
        self.highlight_subscriptions = highlight_subscriptions


class MarkerRegistry:
    """
    Tracked markers in tracking order.

    Tracking is idempotent; each tracked marker has exactly one bundle of
    host subscriptions.
    """

    def __init__(self, projection: ProjectionHelper, config: SpiderConfig):
        self._projection = projection
        self._config = config
        self._markers: list[Any] = []
        self._subscriptions: dict[int, list[Subscription]] = {}
        self._spiderData: dict[int, SpiderDatum] = {}

    def __len__(self) -> int:
        return len(self._markers)

    def __contains__(self, marker: Any) -> bool:
        return id(marker) in self._subscriptions

    def track(
        self,
        marker: Any,
        on_click: ClickHandler,
        on_change: ChangeHandler,
        on_spider_click: Optional[Callable[..., Any]] = None
    ) -> bool:
        """
        Start tracking a marker.

        Subscribes to the marker's clicks, and to its visibility and
        position changes unless the config says they never happen.

        Args:
            marker: Marker to track
            on_click: Called as on_click(marker, event)
            on_change: Called as on_change(marker, position_changed)
            on_spider_click: Optional handler for the marker's spider_click event

        Returns:
            True if newly tracked, False if it already was
        """
        if marker in self:
            return False

        subscriptions = [
            marker.add_listener('click', lambda event=None: on_click(marker, event))
        ]
        if not self._config.markers_wont_hide:
            subscriptions.append(
                marker.add_listener('visible_changed', lambda *args: on_change(marker, False))
            )
        if not self._config.markers_wont_move:
            subscriptions.append(
                marker.add_listener('position_changed', lambda *args: on_change(marker, True))
            )
        if on_spider_click is not None:
            subscriptions.append(marker.add_listener('spider_click', on_spider_click))

        self._subscriptions[id(marker)] = subscriptions
        self._markers.append(marker)
        logger.debug("tracking marker %r (%d tracked)", marker, len(self._markers))
        return True

    def untrack(self, marker: Any) -> bool:
        """
        Stop tracking a marker and drop its subscriptions.

        Returns:
            True if the marker was tracked
        """
        subscriptions = self._subscriptions.pop(id(marker), None)
        if subscriptions is None:
            return False

        for subscription in subscriptions:
            subscription.remove()
        self._spiderData.pop(id(marker), None)

        for i, m in enumerate(self._markers):
            if m is marker:
                del self._markers[i]
                break

        logger.debug("untracked marker %r (%d tracked)", marker, len(self._markers))
        return True

    def untrack_all(self) -> None:
        """Forget every marker and subscription."""
        for subscriptions in self._subscriptions.values():
            for subscription in subscriptions:
                subscription.remove()

        self._markers = []
        self._subscriptions = {}
        self._spiderData = {}

    def list(self) -> list[Any]:
        """Snapshot of the tracked markers; changing it does not affect the registry."""
        return list(self._markers)

    def datum(self, marker: Any) -> Optional[SpiderDatum]:
        return self._spiderData.get(id(marker))

    def is_spiderfied(self, marker: Any) -> bool:
        return id(marker) in self._spiderData

    def attach(self, marker: Any, datum: SpiderDatum) -> None:
        self._spiderData[id(marker)] = datum

    def detach(self, marker: Any) -> Optional[SpiderDatum]:
        return self._spiderData.pop(id(marker), None)

    def spiderfied_count(self) -> int:
        return len(self._spiderData)

    def usual_position(self, marker: Any) -> Any:
        """Position before spiderfying for spiderfied markers, current position otherwise."""
        datum = self.datum(marker)
        return datum.usual_position if datum is not None else marker.get_position()

    def locate(self, marker: Any, operation: str = 'locate') -> Point:
        return self._projection.ll_to_pt(self.usual_position(marker), operation)

    def neighbors_of(self, marker: Any, first_only: bool = False) -> list[Any]:
        """
        Visible markers within nearby_distance of marker.

        Spiderfied markers are measured at their usual positions.

        Args:
            marker: Marker whose neighbours are wanted; it is never included
            first_only: Stop at the first neighbour found

        Returns:
            Neighbouring markers in tracking order

        Raises:
            ProjectionNotReadyError: If the map is not ready
        """
        self._projection.require('neighbors_of')
        marker_pt = self.locate(marker, 'neighbors_of')
        threshold_sq = self._config.nearby_distance_sq

        result = []
        for current in self._markers:
            if current is marker or not is_present(current):
                continue
            if pt_distance_sq(self.locate(current, 'neighbors_of'), marker_pt) < threshold_sq:
                result.append(current)
                if first_only:
                    break

        return result

    def proximity(self) -> list[ProximityDatum]:
        """
        Run a proximity pass over all tracked markers.

        Raises:
            ProjectionNotReadyError: If the map is not ready
        """
        self._projection.require('all_with_neighbors')
        return compute_proximity(
            self._markers,
            self._config.nearby_distance,
            lambda m: self.locate(m, 'all_with_neighbors')
        )

    def all_with_neighbors(self) -> list[Any]:
        """Every tracked marker that has at least one neighbour."""
        data = self.proximity()
        return [m for m, datum in zip(self._markers, data) if datum.will_spiderfy]
