"""
Interfaces the spiderfier needs from the host map widget.

Positions are opaque to the spiderfier: only the host's Projection turns
them into pixel Points and back. pyoms.surface provides an in-memory
implementation of all of these.
"""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol, Sequence

from .geom import Point


class Subscription(Protocol):
    """Handle returned by add_listener; remove() detaches the listener."""

    def remove(self) -> None:
        ...


class Projection(Protocol):
    """Conversion between host positions and pixel points."""

    def from_lat_lng_to_div_pixel(self, position: Any) -> Point:
        ...

    def from_div_pixel_to_lat_lng(self, pt: Point) -> Any:
        ...


class Leg(Protocol):
    """Drawable line from a marker's original position to its foot."""

    def set_options(self, **options: Any) -> None:
        ...

    def set_map(self, surface: Optional[MapSurface]) -> None:
        ...


class Marker(Protocol):
    """
    Point marker.

    Emits 'click', 'position_changed', 'visible_changed', 'mouseover' and
    'mouseout'. The spiderfier triggers 'spider_click' and 'spider_format'.
    """

    def get_position(self) -> Any:
        ...

    def set_position(self, position: Any) -> None:
        ...

    def get_z_index(self) -> Optional[float]:
        ...

    def set_z_index(self, z_index: Optional[float]) -> None:
        ...

    def get_map(self) -> Optional[MapSurface]:
        ...

    def set_map(self, surface: Optional[MapSurface]) -> None:
        ...

    def get_visible(self) -> bool:
        ...

    def add_listener(self, event_name: str, listener: Callable[..., Any]) -> Subscription:
        ...

    def trigger(self, event_name: str, *args: Any) -> None:
        ...


class MapSurface(Protocol):
    """
    The map the markers live on.

    Emits 'click', 'zoom_changed', 'maptypeid_changed' and 'idle'. The
    projection is None until the surface is ready.
    """

    def get_projection(self) -> Optional[Projection]:
        ...

    def get_map_type_id(self) -> Optional[str]:
        ...

    def add_listener(self, event_name: str, listener: Callable[..., Any]) -> Subscription:
        ...

    def add_listener_once(self, event_name: str, listener: Callable[..., Any]) -> Subscription:
        ...

    def create_leg(
        self,
        path: Sequence[Any],
        stroke_color: Optional[str],
        stroke_weight: float,
        z_index: float
    ) -> Leg:
        ...

    def spiderfy_blocked(self) -> bool:
        ...
