"""
The spiderfier engine.

OverlappingMarkerSpiderfier watches a set of markers on a map. Clicking a
marker that overlaps others fans the whole group out around their centroid
(spiderfy), with a leg drawn from each marker's real position to its new
one; clicking the map, changing zoom or map type, or clicking a spiderfied
marker collapses the group again (unspiderfy).

The engine is a four-state machine:

    normal -> spiderfying -> spiderfied -> unspiderfying -> normal

Spiderfying and unspiderfying are transient: they only exist while the
engine is moving markers, and marker change notifications that arrive
during them are the engine's own doing and are ignored.
"""

from __future__ import annotations

from typing import Any, Callable, Mapping, Optional
from enum import IntEnum
import logging

from .assignment import MarkerPoint, assign
from .config import SpiderConfig
from .events import Channel, EventBus, EventType, MarkerStatus
from .geom import pt_average, pt_distance_sq
from .host import MapSurface, Subscription
from .layout import foot_points
from .projection import ProjectionHelper
from .proximity import is_present
from .registry import MarkerRegistry, SpiderDatum
from .scheduling import DeferredTask, Scheduler

logger = logging.getLogger(__name__)

MAX_Z_INDEX = 1_000_000
SPIDERFIED_Z_INDEX = MAX_Z_INDEX + 20000
HIGHLIGHTED_LEG_Z_INDEX = MAX_Z_INDEX + 10000
USUAL_LEG_Z_INDEX = MAX_Z_INDEX + 1


class EngineState(IntEnum):
    """Lifecycle state of the spiderfier."""
    normal = 0
    spiderfying = 1
    spiderfied = 2
    unspiderfying = 3


_TRANSITIONS = {
    EngineState.normal: EngineState.spiderfying,
    EngineState.spiderfying: EngineState.spiderfied,
    EngineState.spiderfied: EngineState.unspiderfying,
    EngineState.unspiderfying: EngineState.normal,
}


class Outcome(IntEnum):
    """
    Result of a click or unspiderfy request.

    - noop: nothing happened
    - click: a plain click was reported on the click channel
    - spiderfied: a cluster was fanned out
    - unspiderfied: the active cluster was collapsed
    """
    noop = 0
    click = 1
    spiderfied = 2
    unspiderfied = 3


class OverlappingMarkerSpiderfier:
    """
    Spiderfies overlapping markers on a map.

    Statuses are recomputed on the format channel a short while after
    markers are added, removed, hidden or moved. That recomputation runs on
    the scheduler the host chooses: an AsyncioScheduler runs it on an event
    loop, a ManualScheduler whenever the host pumps it.

    Example:
        oms = OverlappingMarkerSpiderfier(map, {'keepSpiderfied': True}, scheduler=AsyncioScheduler())
        oms.subscribe('click', lambda marker, event: show_info(marker))
        for marker in markers:
            oms.track(marker)
    """

    def __init__(
        self,
        surface: MapSurface,
        options: Optional[Mapping[str, Any]] = None,
        *,
        scheduler: Scheduler,
        **kwargs: Any
    ):
        """
        Attach a spiderfier to a map.

        Args:
            surface: The host map
            options: SpiderOptions dict (snake_case or camelCase keys)
            scheduler: Runs the deferred status recomputation
            **kwargs: Option overrides
        """
        self.map = surface
        self.config = SpiderConfig.from_options(options, **kwargs)
        self.scheduler = scheduler

        self._state = EngineState.normal
        self._projectionHelper = ProjectionHelper(surface)
        self._registry = MarkerRegistry(self._projectionHelper, self.config)
        self._events = EventBus()
        self._formatTask = DeferredTask(self.scheduler, self.config.format_delay, self._format_due)
        self._formatIdleListener: Optional[Subscription] = None

        # Relay to per-marker events, so handlers can live on the markers
        self._events.subscribe(EventType.click, lambda marker, event: marker.trigger('spider_click', event))
        self._events.subscribe(EventType.format, lambda marker, status: marker.trigger('spider_format', status))

        if not self.config.ignore_map_click:
            surface.add_listener('click', lambda *args: self.unspiderfy())
        surface.add_listener('maptypeid_changed', lambda *args: self.unspiderfy())
        surface.add_listener('zoom_changed', lambda *args: self._on_zoom_changed())

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def registry(self) -> MarkerRegistry:
        return self._registry

    def is_spiderfied(self, marker: Any) -> bool:
        """True if marker belongs to the active spiderfied cluster."""
        return self._registry.is_spiderfied(marker)

    def _move(self, target: EngineState) -> EngineState:
        """
        Perform one state transition.

        Raises:
            RuntimeError: If target does not follow the current state
        """
        if _TRANSITIONS[self._state] != target:
            raise RuntimeError(
                f"Illegal spiderfier transition {self._state.name} -> {target.name}"
            )
        previous = self._state
        self._state = target
        logger.debug("state %s -> %s", previous.name, target.name)
        return previous

    def _transitioning(self) -> bool:
        return self._state in (EngineState.spiderfying, EngineState.unspiderfying)

    # Tracking

    def track(self, marker: Any, on_spider_click: Optional[Callable[..., Any]] = None) -> OverlappingMarkerSpiderfier:
        """
        Start watching a marker. Tracking the same marker again does nothing.

        Args:
            marker: Marker already on (or about to be put on) the map
            on_spider_click: Called with the click event when the marker is
                clicked and does not spiderfy (or is already spiderfied)

        Returns:
            self for method chaining
        """
        if not self._registry.track(marker, self.handle_marker_click, self._on_marker_change, on_spider_click):
            return self

        if self.config.basic_format_events:
            self._events.publish(EventType.format, marker, MarkerStatus.UNSPIDERFIED)
        else:
            # Provisional until the deferred recomputation knows better
            self._events.publish(EventType.format, marker, MarkerStatus.UNSPIDERFIABLE)
            self._format_markers()
        return self

    def add_marker(self, marker: Any, on_spider_click: Optional[Callable[..., Any]] = None) -> OverlappingMarkerSpiderfier:
        """Put marker on this spiderfier's map and track it."""
        marker.set_map(self.map)
        return self.track(marker, on_spider_click)

    def untrack(self, marker: Any) -> OverlappingMarkerSpiderfier:
        """
        Stop watching a marker, collapsing the cluster first if it is in it.

        Returns:
            self for method chaining
        """
        if self._registry.is_spiderfied(marker):
            self.unspiderfy()
        if self._registry.untrack(marker):
            self._format_markers()
        return self

    def remove_marker(self, marker: Any) -> OverlappingMarkerSpiderfier:
        """Untrack marker and take it off the map."""
        self.untrack(marker)
        marker.set_map(None)
        return self

    def untrack_all(self) -> OverlappingMarkerSpiderfier:
        """Collapse any cluster and stop watching every marker."""
        self.unspiderfy()
        self._registry.untrack_all()
        return self

    def remove_all_markers(self) -> OverlappingMarkerSpiderfier:
        """Untrack every marker and take them all off the map."""
        markers = self.markers()
        self.untrack_all()
        for marker in markers:
            marker.set_map(None)
        return self

    def markers(self) -> list[Any]:
        """Snapshot of the tracked markers."""
        return self._registry.list()

    def neighbors_of(self, marker: Any, first_only: bool = False) -> list[Any]:
        """
        Tracked visible markers within nearby_distance of marker.

        Raises:
            ProjectionNotReadyError: If the map is not ready
        """
        return self._registry.neighbors_of(marker, first_only)

    def all_with_neighbors(self) -> list[Any]:
        """
        Every tracked marker that would spiderfy if clicked.

        Much quicker than calling neighbors_of for each marker.

        Raises:
            ProjectionNotReadyError: If the map is not ready
        """
        return self._registry.all_with_neighbors()

    # Events

    def subscribe(self, channel: Channel, listener: Callable[..., Any]) -> OverlappingMarkerSpiderfier:
        """Add a listener to click, spiderfy, unspiderfy or format."""
        self._events.subscribe(channel, listener)
        return self

    def unsubscribe(self, channel: Channel, listener: Callable[..., Any]) -> OverlappingMarkerSpiderfier:
        self._events.unsubscribe(channel, listener)
        return self

    def clear(self, channel: Channel) -> OverlappingMarkerSpiderfier:
        self._events.clear(channel)
        return self

    # Transitions

    def handle_marker_click(self, marker: Any, event: Any = None) -> Outcome:
        """
        React to a click on a tracked marker.

        Collapses the active cluster (unless keep_spiderfied and the marker
        is in it), then either reports a plain click or spiderfies the
        clicked marker's neighbourhood.

        Raises:
            ProjectionNotReadyError: If a neighbourhood scan is needed before the map is ready
        """
        if self._transitioning() or marker not in self._registry:
            return Outcome.noop

        marker_spiderfied = self._registry.is_spiderfied(marker)
        if not marker_spiderfied or not self.config.keep_spiderfied:
            self.unspiderfy()

        if marker_spiderfied or self.map.spiderfy_blocked():
            self._events.publish(EventType.click, marker, event)
            return Outcome.click

        nearby, non_nearby = self._neighbourhood(marker)
        if len(nearby) <= 1:
            # only the clicked marker itself
            self._events.publish(EventType.click, marker, event)
            return Outcome.click

        return self._spiderfy(nearby, non_nearby)

    def _neighbourhood(self, marker: Any) -> tuple[list[MarkerPoint], list[Any]]:
        """Split visible tracked markers into those near marker (itself included) and the rest."""
        threshold_sq = self.config.nearby_distance_sq
        marker_pt = self._projectionHelper.ll_to_pt(marker.get_position(), 'handle_marker_click')

        nearby: list[MarkerPoint] = []
        non_nearby: list[Any] = []
        for m in self._registry.list():
            if not is_present(m):
                continue
            m_pt = self._projectionHelper.ll_to_pt(m.get_position(), 'handle_marker_click')
            if pt_distance_sq(m_pt, marker_pt) < threshold_sq:
                nearby.append(MarkerPoint(m, m_pt))
            else:
                non_nearby.append(m)
        return nearby, non_nearby

    def _spiderfy(self, nearby: list[MarkerPoint], non_nearby: list[Any]) -> Outcome:
        self._move(EngineState.spiderfying)

        map_type_id = self.map.get_map_type_id()
        usual_color = self.config.leg_colors.usual_for(map_type_id)
        highlighted_color = self.config.leg_colors.highlighted_for(map_type_id)

        spiderfied = []
        completed = False
        try:
            body_pt = pt_average(mp.pt for mp in nearby)
            feet = foot_points(len(nearby), body_pt, self.config)

            for foot, marker in assign(nearby, feet):
                foot_ll = self._projectionHelper.pt_to_ll(foot)
                leg = self.map.create_leg(
                    [marker.get_position(), foot_ll],
                    usual_color,
                    self.config.leg_weight,
                    USUAL_LEG_Z_INDEX
                )
                datum = SpiderDatum(marker.get_position(), marker.get_z_index(), leg)
                self._registry.attach(marker, datum)

                if highlighted_color != usual_color:
                    datum.highlight_subscriptions = self._add_highlight_listeners(
                        marker, leg, usual_color, highlighted_color
                    )

                self._events.publish(EventType.format, marker, MarkerStatus.SPIDERFIED)

                marker.set_position(foot_ll)
                # lower markers cover higher ones
                marker.set_z_index(round(SPIDERFIED_Z_INDEX + foot.y))
                spiderfied.append(marker)
            completed = True
        finally:
            self._move(EngineState.spiderfied)
            if not completed:
                logger.warning(
                    "spiderfy interrupted, collapsing %d marker(s)",
                    self._registry.spiderfied_count()
                )
                self._move(EngineState.unspiderfying)
                self._restore_all()
                self._move(EngineState.normal)
                self._format_markers()

        logger.debug("spiderfied %d marker(s)", len(spiderfied))
        self._events.publish(EventType.spiderfy, spiderfied, non_nearby)
        return Outcome.spiderfied

    @staticmethod
    def _add_highlight_listeners(
        marker: Any,
        leg: Any,
        usual_color: Optional[str],
        highlighted_color: Optional[str]
    ) -> tuple[Subscription, Subscription]:
        """Recolour leg while the pointer is over marker."""
        def highlight(*args: Any) -> None:
            leg.set_options(stroke_color=highlighted_color, z_index=HIGHLIGHTED_LEG_Z_INDEX)

        def unhighlight(*args: Any) -> None:
            leg.set_options(stroke_color=usual_color, z_index=USUAL_LEG_Z_INDEX)

        return (
            marker.add_listener('mouseover', highlight),
            marker.add_listener('mouseout', unhighlight),
        )

    def unspiderfy(self, marker_not_to_move: Any = None) -> Outcome:
        """
        Collapse the active cluster, if any.

        If a listener raises along the way, every remaining marker is still
        put back before the exception propagates.

        Args:
            marker_not_to_move: Marker left where it is (it has just been
                moved by someone else); it gets no format event either, as a
                recomputation follows anyway

        Returns:
            Outcome.unspiderfied, or Outcome.noop if nothing was spiderfied
        """
        if self._state != EngineState.spiderfied:
            return Outcome.noop

        self._move(EngineState.unspiderfying)

        restored_status = (
            MarkerStatus.UNSPIDERFIED if self.config.basic_format_events
            else MarkerStatus.SPIDERFIABLE
        )

        unspiderfied = []
        non_nearby = []
        completed = False
        try:
            for marker in self._registry.list():
                datum = self._registry.detach(marker)
                if datum is None:
                    non_nearby.append(marker)
                    continue

                self._restore(marker, datum, marker is not marker_not_to_move)
                unspiderfied.append(marker)

                if marker is not marker_not_to_move:
                    self._events.publish(EventType.format, marker, restored_status)
            completed = True
        finally:
            if not completed:
                logger.warning("unspiderfy interrupted, restoring remaining markers")
                self._restore_all(marker_not_to_move)
            self._move(EngineState.normal)
            if not completed:
                self._format_markers()

        logger.debug("unspiderfied %d marker(s)", len(unspiderfied))
        self._events.publish(EventType.unspiderfy, unspiderfied, non_nearby)
        return Outcome.unspiderfied

    @staticmethod
    def _restore(marker: Any, datum: SpiderDatum, move: bool) -> None:
        """Take down the leg and put marker back as it was."""
        datum.leg.set_map(None)
        if move:
            marker.set_position(datum.usual_position)
        marker.set_z_index(datum.usual_z_index)

        if datum.highlight_subscriptions:
            for subscription in datum.highlight_subscriptions:
                subscription.remove()

    def _restore_all(self, marker_not_to_move: Any = None) -> None:
        """Silently put back every marker that still has spider data."""
        for marker in self._registry.list():
            datum = self._registry.detach(marker)
            if datum is not None:
                self._restore(marker, datum, marker is not marker_not_to_move)

    # Host notifications

    def _on_marker_change(self, marker: Any, position_changed: bool) -> None:
        if self._transitioning():
            return

        if self._registry.is_spiderfied(marker) and (position_changed or not marker.get_visible()):
            self.unspiderfy(marker if position_changed else None)

        self._format_markers()

    def _on_zoom_changed(self) -> None:
        self.unspiderfy()
        if not self.config.basic_format_events:
            self._format_markers()

    # Status recomputation

    def _format_markers(self) -> None:
        """Request a status recomputation; requests coalesce until it runs."""
        self._formatTask.request()

    def _format_due(self) -> None:
        if self.config.basic_format_events or self._projectionHelper.ready:
            self._do_format_markers()
            return

        if self._formatIdleListener is not None:
            return
        logger.debug("map not ready, deferring format until idle")
        self._formatIdleListener = self.map.add_listener_once('idle', self._format_on_idle)

    def _format_on_idle(self, *args: Any) -> None:
        self._formatIdleListener = None
        self._do_format_markers()

    def _do_format_markers(self) -> None:
        markers = self._registry.list()

        if self.config.basic_format_events:
            for marker in markers:
                status = (
                    MarkerStatus.SPIDERFIED if self._registry.is_spiderfied(marker)
                    else MarkerStatus.UNSPIDERFIED
                )
                self._events.publish(EventType.format, marker, status)
            return

        proximities = self._registry.proximity()
        for marker, datum in zip(markers, proximities):
            if self._registry.is_spiderfied(marker):
                status = MarkerStatus.SPIDERFIED
            elif datum.will_spiderfy:
                status = MarkerStatus.SPIDERFIABLE
            else:
                status = MarkerStatus.UNSPIDERFIABLE
            self._events.publish(EventType.format, marker, status)
        logger.debug("formatted %d marker(s)", len(markers))
