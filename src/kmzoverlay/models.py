"""Domain models shared across projection, styling and composition modules."""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Iterable, Sequence

if TYPE_CHECKING:
    from .assets import AssetRef


DEFAULT_CANVAS_BOUNDS = (15.0, 40.0, 195.0, 280.0)


def _require_finite(value: Any, field_name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Expected numeric value for '{field_name}'")
    out = float(value)
    if not math.isfinite(out):
        raise ValueError(f"Expected finite value for '{field_name}'")
    return out


@dataclass(frozen=True, slots=True)
class GeoBox:
    """Lat/lng box of a ground overlay, rotated counter-clockwise by `rotation` degrees.

    `west > east` marks a box crossing the antimeridian; projection code
    unwraps it eastwards.
    """

    north: float
    south: float
    east: float
    west: float
    rotation: float = 0.0

    def __post_init__(self) -> None:
        for name in ("north", "south", "east", "west", "rotation"):
            _require_finite(getattr(self, name), name)
        if self.north < self.south:
            raise ValueError(f"GeoBox north ({self.north}) must be >= south ({self.south})")

    @property
    def crosses_antimeridian(self) -> bool:
        return self.west > self.east

    @property
    def unwrapped_east(self) -> float:
        return self.east + 360.0 if self.crosses_antimeridian else self.east

    @classmethod
    def from_markers(cls, markers: Sequence[Marker]) -> GeoBox:
        """Axis-aligned box spanning every marker exactly."""
        if not markers:
            raise ValueError("Cannot derive a box from an empty marker list")
        lats = [m.lat for m in markers]
        lngs = [m.lng for m in markers]
        return cls(
            north=max(lats),
            south=min(lats),
            east=max(lngs),
            west=min(lngs),
            rotation=0.0,
        )


@dataclass(frozen=True, slots=True)
class Marker:
    """Point placemark loaded from the document."""

    lat: float
    lng: float
    style_ref: str = ""
    name: str = ""

    def __post_init__(self) -> None:
        _require_finite(self.lat, "lat")
        _require_finite(self.lng, "lng")
        if self.style_ref.startswith("#"):
            object.__setattr__(self, "style_ref", self.style_ref.lstrip("#"))


@dataclass(frozen=True, slots=True)
class KmlColor:
    """Color decoded from KML's AARRGGBB hex notation."""

    alpha: int
    red: int
    green: int
    blue: int

    @property
    def rgb(self) -> tuple[int, int, int]:
        return (self.red, self.green, self.blue)


@dataclass(frozen=True, slots=True)
class Style:
    style_id: str
    icon: AssetRef | None = None
    color: KmlColor | None = None
    scale: float = 1.0


@dataclass(frozen=True, slots=True)
class StyleMap:
    style_map_id: str
    normal_ref: str
    highlight_ref: str | None = None


@dataclass(frozen=True, slots=True)
class PixelCoord:
    """World-pixel coordinate at a given zoom."""

    x: float
    y: float


@dataclass(frozen=True, slots=True)
class CanvasBounds:
    x1: float
    y1: float
    x2: float
    y2: float

    def __post_init__(self) -> None:
        for name in ("x1", "y1", "x2", "y2"):
            _require_finite(getattr(self, name), name)
        if self.x2 <= self.x1:
            raise ValueError("Canvas bounds must have x2 > x1")

    @property
    def width(self) -> float:
        return self.x2 - self.x1

    @property
    def height(self) -> float:
        return abs(self.y2 - self.y1)

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> CanvasBounds:
        if len(values) != 4:
            raise ValueError("Canvas bounds need exactly four values: x1, y1, x2, y2")
        x1, y1, x2, y2 = (float(v) for v in values)
        return cls(x1=x1, y1=y1, x2=x2, y2=y2)

    @classmethod
    def default(cls) -> CanvasBounds:
        return cls.from_sequence(DEFAULT_CANVAS_BOUNDS)

    def as_tuple(self) -> tuple[float, float, float, float]:
        return (self.x1, self.y1, self.x2, self.y2)


@dataclass(frozen=True, slots=True)
class ProjectionState:
    """Geographic state computed once per document and reused by every render."""

    box: GeoBox
    box_source: str
    center: tuple[float, float]
    zoom: int
    map_size: tuple[int, int]

    @property
    def has_overlay(self) -> bool:
        return self.box_source == "overlay"

    def to_dict(self) -> dict[str, Any]:
        return {
            "box": {
                "north": self.box.north,
                "south": self.box.south,
                "east": self.box.east,
                "west": self.box.west,
                "rotation": self.box.rotation,
            },
            "box_source": self.box_source,
            "center": list(self.center),
            "zoom": self.zoom,
            "map_size": list(self.map_size),
        }


class Layer(str, Enum):
    BASE_MAP = "M"
    OVERLAY = "O"
    MARKERS = "P"
    LEGEND = "L"


def parse_layers(spec: str | Iterable[str | Layer]) -> frozenset[Layer]:
    """Parse layer letters such as ``"MPL"`` into a layer set."""
    items = list(spec) if not isinstance(spec, str) else list(spec.strip().upper())
    layers: set[Layer] = set()
    for item in items:
        if isinstance(item, Layer):
            layers.add(item)
            continue
        try:
            layers.add(Layer(str(item).upper()))
        except ValueError:
            allowed = ", ".join(layer.value for layer in Layer)
            raise ValueError(f"Unknown layer '{item}'; expected letters from: {allowed}") from None
    return frozenset(layers)
