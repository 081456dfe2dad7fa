"""
Readiness-gated access to the host projection.
"""

from __future__ import annotations

from typing import Any

from .geom import Point
from .host import MapSurface, Projection


class ProjectionNotReadyError(RuntimeError):
    """A pixel-space query was made before the map surface became ready."""


class ProjectionHelper:
    """Converts between host positions and pixels, failing loudly until ready."""

    def __init__(self, surface: MapSurface):
        self.surface = surface

    @property
    def ready(self) -> bool:
        return self.surface.get_projection() is not None

    def require(self, operation: str) -> Projection:
        """
        Return the projection, or raise if the surface is not ready.

        Args:
            operation: Name of the query, used in the error message

        Raises:
            ProjectionNotReadyError: If the surface has no projection yet
        """
        projection = self.surface.get_projection()
        if projection is None:
            raise ProjectionNotReadyError(
                f"Must wait for 'idle' event on map before calling {operation}"
            )
        return projection

    def ll_to_pt(self, position: Any, operation: str = 'll_to_pt') -> Point:
        return self.require(operation).from_lat_lng_to_div_pixel(position)

    def pt_to_ll(self, pt: Point, operation: str = 'pt_to_ll') -> Any:
        return self.require(operation).from_div_pixel_to_lat_lng(pt)
