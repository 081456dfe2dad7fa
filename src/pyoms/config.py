"""
Spiderfier configuration.

Options can be given as a dictionary (either the snake_case names used
throughout this package or the camelCase names of the OverlappingMarkerSpiderfier
JavaScript library) or as keyword arguments. Once built, a SpiderConfig never changes.
"""

from __future__ import annotations

from typing import Any, Mapping, NamedTuple, Optional, TypedDict
import math


class MapTypeId:
    """Map type identifiers understood by the default leg colours."""
    HYBRID = 'hybrid'
    ROADMAP = 'roadmap'
    SATELLITE = 'satellite'
    TERRAIN = 'terrain'


class LegColors(NamedTuple):
    """
    Leg stroke colours keyed by map type id.

    Attributes:
        usual: Colour of a leg at rest
        highlighted: Colour of a leg while its marker is hovered
    """
    usual: Mapping[str, str]
    highlighted: Mapping[str, str]

    def usual_for(self, map_type_id: Optional[str]) -> Optional[str]:
        return self.usual.get(map_type_id) if map_type_id is not None else None

    def highlighted_for(self, map_type_id: Optional[str]) -> Optional[str]:
        return self.highlighted.get(map_type_id) if map_type_id is not None else None


DEFAULT_LEG_COLORS = LegColors(
    usual={
        MapTypeId.HYBRID: '#fff',
        MapTypeId.ROADMAP: '#444',
        MapTypeId.SATELLITE: '#fff',
        MapTypeId.TERRAIN: '#444',
    },
    highlighted={
        MapTypeId.HYBRID: '#f00',
        MapTypeId.ROADMAP: '#f00',
        MapTypeId.SATELLITE: '#f00',
        MapTypeId.TERRAIN: '#f00',
    },
)


class SpiderOptions(TypedDict, total=False):
    """
    Option dictionary accepted by SpiderConfig.from_options.

    Distances are in pixels, angles in radians.
    """
    markers_wont_move: bool
    markers_wont_hide: bool
    basic_format_events: bool
    keep_spiderfied: bool
    ignore_map_click: bool
    nearby_distance: float
    circle_spiral_switchover: int
    circle_foot_separation: float
    circle_start_angle: float
    spiral_foot_separation: float
    spiral_length_start: float
    spiral_length_factor: float
    leg_weight: float
    leg_colors: LegColors
    format_delay: float


class SpiderConfig(NamedTuple):
    """
    Immutable spiderfier configuration.

    Attributes:
        markers_wont_move: Skip subscribing to marker position changes
        markers_wont_hide: Skip subscribing to marker visibility changes
        basic_format_events: Report only SPIDERFIED/UNSPIDERFIED, no proximity work
        keep_spiderfied: Clicking a spiderfied marker leaves the cluster open
        ignore_map_click: A background click does not unspiderfy
        nearby_distance: Pixel radius within which markers overlap
        circle_spiral_switchover: Cluster size from which a spiral is used
        circle_foot_separation: Pixel spacing between feet on a circle
        circle_start_angle: Angle of the first foot on a circle
        spiral_foot_separation: Pixel spacing between feet on a spiral
        spiral_length_start: Leg length of the innermost spiral foot
        spiral_length_factor: Spiral growth per turn
        leg_weight: Stroke weight of legs
        leg_colors: Leg colours by map type
        format_delay: Seconds to wait before a coalesced status recomputation
    """
    markers_wont_move: bool = False
    markers_wont_hide: bool = False
    basic_format_events: bool = False
    keep_spiderfied: bool = False
    ignore_map_click: bool = False
    nearby_distance: float = 20.0
    circle_spiral_switchover: int = 9
    circle_foot_separation: float = 23.0
    circle_start_angle: float = math.pi / 6
    spiral_foot_separation: float = 26.0
    spiral_length_start: float = 11.0
    spiral_length_factor: float = 4.0
    leg_weight: float = 1.5
    leg_colors: LegColors = DEFAULT_LEG_COLORS
    format_delay: float = 0.05

    @classmethod
    def from_options(cls, options: Optional[Mapping[str, Any]] = None, **kwargs: Any) -> SpiderConfig:
        """
        Build a validated config from an option mapping and keyword overrides.

        Args:
            options: Option dict; camelCase keys are translated
            **kwargs: Overrides applied after options

        Returns:
            New SpiderConfig

        Raises:
            TypeError: If an option name is unknown
            ValueError: If an option value is out of range
        """
        values: dict[str, Any] = {}
        for source in (options or {}, kwargs):
            for key, value in source.items():
                name = _CAMEL_ALIASES.get(key, key)
                if name not in cls._fields:
                    raise TypeError(f"Unknown spiderfier option: {key!r}")
                values[name] = value

        config = cls(**values)
        config.validate()
        return config

    def validate(self) -> None:
        """Raise ValueError if any value is out of range."""
        if self.nearby_distance < 0:
            raise ValueError("nearby_distance must be non-negative")
        if self.circle_spiral_switchover < 1:
            raise ValueError("circle_spiral_switchover must be at least 1")
        if self.circle_foot_separation < 0 or self.spiral_foot_separation < 0:
            raise ValueError("foot separations must be non-negative")
        if self.spiral_length_start <= 0:
            raise ValueError("spiral_length_start must be positive")
        if self.spiral_length_factor < 0:
            raise ValueError("spiral_length_factor must be non-negative")
        if self.leg_weight <= 0:
            raise ValueError("leg_weight must be positive")
        if self.format_delay < 0:
            raise ValueError("format_delay must be non-negative")

    @property
    def nearby_distance_sq(self) -> float:
        return self.nearby_distance * self.nearby_distance


_CAMEL_ALIASES = {
    'markersWontMove': 'markers_wont_move',
    'markersWontHide': 'markers_wont_hide',
    'basicFormatEvents': 'basic_format_events',
    'keepSpiderfied': 'keep_spiderfied',
    'ignoreMapClick': 'ignore_map_click',
    'nearbyDistance': 'nearby_distance',
    'circleSpiralSwitchover': 'circle_spiral_switchover',
    'circleFootSeparation': 'circle_foot_separation',
    'circleStartAngle': 'circle_start_angle',
    'spiralFootSeparation': 'spiral_foot_separation',
    'spiralLengthStart': 'spiral_length_start',
    'spiralLengthFactor': 'spiral_length_factor',
    'legWeight': 'leg_weight',
    'legColors': 'leg_colors',
    'formatDelay': 'format_delay',
}
