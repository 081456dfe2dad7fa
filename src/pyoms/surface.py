"""
In-memory map surface, markers and legs.

A minimal host for the spiderfier: markers carry LatLng positions, the map
projects them with Web Mercator at its current zoom, and every object
dispatches named events to its listeners synchronously. Useful for
headless use, for hosts that only need the layout results, and for tests.
"""

from __future__ import annotations

from typing import Any, Callable, NamedTuple, Optional, Sequence
import math

from .config import MapTypeId
from .geom import Point

TILE_SIZE = 256

# Beyond this |sin(lat)| Mercator y diverges (about 85.05 degrees)
MAX_SIN_LAT = 0.9999


class LatLng(NamedTuple):
    """Geographic position in degrees."""
    lat: float
    lng: float


class Listener:
    """Registration handle returned by EventSource.add_listener."""

    def __init__(self, source: EventSource, event_name: str, callback: Callable[..., Any], once: bool = False):
        self.source = source
        self.event_name = event_name
        self.callback = callback
        self.once = once

    def remove(self) -> None:
        self.source._remove_listener(self)


class EventSource:
    """Mixin dispatching named events to registered callbacks."""

    def __init__(self):
        self._listeners: dict[str, list[Listener]] = {}

    def add_listener(self, event_name: str, callback: Callable[..., Any]) -> Listener:
        listener = Listener(self, event_name, callback)
        self._listeners.setdefault(event_name, []).append(listener)
        return listener

    def add_listener_once(self, event_name: str, callback: Callable[..., Any]) -> Listener:
        listener = Listener(self, event_name, callback, once=True)
        self._listeners.setdefault(event_name, []).append(listener)
        return listener

    def _remove_listener(self, listener: Listener) -> None:
        listeners = self._listeners.get(listener.event_name, [])
        for i, registered in enumerate(listeners):
            if registered is listener:
                del listeners[i]
                break

    def listener_count(self, event_name: str) -> int:
        return len(self._listeners.get(event_name, []))

    def trigger(self, event_name: str, *args: Any) -> None:
        """Call every listener of event_name with args, in registration order."""
        for listener in list(self._listeners.get(event_name, [])):
            if listener.once:
                listener.remove()
            listener.callback(*args)


class MercatorProjection:
    """
    Web Mercator projection at a fixed zoom.

    Pixel coordinates are world pixels: the whole world spans
    TILE_SIZE * 2**zoom pixels in each direction, y growing southwards.
    """

    def __init__(self, zoom: float = 0.0):
        self.zoom = zoom
        self.scale = TILE_SIZE * (2 ** zoom)

    def from_lat_lng_to_div_pixel(self, position: LatLng) -> Point:
        siny = math.sin(math.radians(position.lat))
        siny = min(max(siny, -MAX_SIN_LAT), MAX_SIN_LAT)
        x = (position.lng + 180.0) / 360.0 * self.scale
        y = (0.5 - math.log((1 + siny) / (1 - siny)) / (4 * math.pi)) * self.scale
        return Point(x, y)

    def from_div_pixel_to_lat_lng(self, pt: Point) -> LatLng:
        lng = pt.x / self.scale * 360.0 - 180.0
        n = math.pi - 2 * math.pi * pt.y / self.scale
        lat = math.degrees(math.atan(math.sinh(n)))
        return LatLng(lat, lng)


class SimpleLeg:
    """Polyline between two positions."""

    def __init__(self, surface: Optional[SimpleMap], path: Sequence[Any], **options: Any):
        self.map = surface
        self.path = list(path)
        self.options: dict[str, Any] = dict(options)

    def set_options(self, **options: Any) -> None:
        self.options.update(options)

    def set_map(self, surface: Optional[SimpleMap]) -> None:
        if self.map is not None and surface is None:
            self.map.legs.remove(self)
        elif self.map is None and surface is not None:
            surface.legs.append(self)
        self.map = surface


class SimpleMap(EventSource):
    """
    Map surface with a zoom level and map type.

    The projection stays unavailable until idle() is called, mirroring
    hosts whose projection only exists after the first render.
    """

    def __init__(self, zoom: float = 0.0, map_type_id: str = MapTypeId.ROADMAP):
        super().__init__()
        self.zoom = zoom
        self.map_type_id = map_type_id
        self.street_view_visible = False
        self.legs: list[SimpleLeg] = []
        self._projection: Optional[MercatorProjection] = None

    def get_projection(self) -> Optional[MercatorProjection]:
        return self._projection

    def get_map_type_id(self) -> str:
        return self.map_type_id

    def idle(self) -> None:
        """Make the projection available and fire 'idle'."""
        if self._projection is None or self._projection.zoom != self.zoom:
            self._projection = MercatorProjection(self.zoom)
        self.trigger('idle')

    def set_zoom(self, zoom: float) -> None:
        self.zoom = zoom
        if self._projection is not None:
            self._projection = MercatorProjection(zoom)
        self.trigger('zoom_changed')

    def set_map_type_id(self, map_type_id: str) -> None:
        self.map_type_id = map_type_id
        self.trigger('maptypeid_changed')

    def click(self, event: Any = None) -> None:
        """Simulate a click on the map background."""
        self.trigger('click', event)

    def create_leg(
        self,
        path: Sequence[Any],
        stroke_color: Optional[str],
        stroke_weight: float,
        z_index: float
    ) -> SimpleLeg:
        leg = SimpleLeg(
            self,
            path,
            stroke_color=stroke_color,
            stroke_weight=stroke_weight,
            z_index=z_index
        )
        self.legs.append(leg)
        return leg

    def spiderfy_blocked(self) -> bool:
        return self.street_view_visible


class SimpleMarker(EventSource):
    """Marker with a LatLng position."""

    def __init__(
        self,
        position: LatLng,
        surface: Optional[SimpleMap] = None,
        visible: bool = True,
        z_index: Optional[float] = None,
        title: Optional[str] = None
    ):
        super().__init__()
        self.position = position
        self.map = surface
        self.visible = visible
        self.z_index = z_index
        self.title = title

    def __repr__(self) -> str:
        return f"SimpleMarker({self.title or self.position!r})"

    def get_position(self) -> LatLng:
        return self.position

    def set_position(self, position: LatLng) -> None:
        self.position = position
        self.trigger('position_changed')

    def get_z_index(self) -> Optional[float]:
        return self.z_index

    def set_z_index(self, z_index: Optional[float]) -> None:
        self.z_index = z_index

    def get_map(self) -> Optional[SimpleMap]:
        return self.map

    def set_map(self, surface: Optional[SimpleMap]) -> None:
        self.map = surface

    def get_visible(self) -> bool:
        return self.visible

    def set_visible(self, visible: bool) -> None:
        self.visible = visible
        self.trigger('visible_changed')

    def click(self, event: Any = None) -> None:
        """Simulate a user click on the marker."""
        self.trigger('click', event)
