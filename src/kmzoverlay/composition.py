"""Placement of base map, overlay, markers and legend on the output canvas.

Everything here is pure: a `PagePlan` describes where each element goes in
canvas units and the renderer only executes it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Sequence

from .assets import AssetRef
from .config import LegendConfig
from .models import CanvasBounds, Layer, Marker, ProjectionState
from .projection import box_pixel_extent, is_sideways, lat_lng_to_pixel, wrap_pixel_dx
from .styles import EffectiveStyle, StyleResolver


MODE_BASE_MAP = "base_map"
MODE_OVERLAY = "overlay"
MODE_MAP_SIZE = "map_size"

_MIN_EFFECTIVE_WIDTH_PX = 1.0


@dataclass(frozen=True, slots=True)
class CanvasTransform:
    """Uniform scale from world pixels to canvas units, anchored at the projection center."""

    scale: float
    anchor_x: float
    anchor_y: float
    mode: str

    @property
    def anchor(self) -> tuple[float, float]:
        return (self.anchor_x, self.anchor_y)


@dataclass(frozen=True, slots=True)
class ImagePlacement:
    x: float
    y: float
    width: float
    height: float
    rotation: float = 0.0
    rotation_center: tuple[float, float] | None = None


@dataclass(frozen=True, slots=True)
class GlyphSettings:
    marker_size: float = 5.0
    display_color: bool = False


@dataclass(frozen=True, slots=True)
class MarkerPlacement:
    """Marker glyph centered at (x, y); `circle_radius` set means a filled circle."""

    x: float
    y: float
    size: float
    icon: AssetRef
    color: tuple[int, int, int] | None
    circle_radius: float | None
    label: str = ""

    @property
    def top_left(self) -> tuple[float, float]:
        return (self.x - self.size / 2.0, self.y - self.size / 2.0)


@dataclass(frozen=True, slots=True)
class LegendRow:
    text: str
    text_x: float
    text_y: float
    text_height: float
    glyph: MarkerPlacement


@dataclass(frozen=True, slots=True)
class PagePlan:
    layers: frozenset[Layer]
    bounds: CanvasBounds
    transform: CanvasTransform
    base_map: ImagePlacement | None
    overlay: ImagePlacement | None
    markers: tuple[MarkerPlacement, ...]
    legend: tuple[LegendRow, ...]


def compute_transform(state: ProjectionState, bounds: CanvasBounds, *, base_map: bool) -> CanvasTransform:
    """Scale and anchor for one render call.

    With a base map the static map fills the canvas width. Without it the
    effective box does, using its height when the rotation turns it sideways.
    """
    if base_map:
        return _map_size_transform(state, bounds, MODE_BASE_MAP)

    ow, oh = box_pixel_extent(state.box, state.zoom)
    sideways = is_sideways(state.box.rotation)
    fill_width = oh if sideways else ow
    if fill_width < _MIN_EFFECTIVE_WIDTH_PX:
        return _map_size_transform(state, bounds, MODE_MAP_SIZE)

    scale = bounds.width / fill_width
    if sideways:
        anchor_x = bounds.x1 + oh * scale / 2.0
        anchor_y = bounds.y1 + ow * scale / 2.0
    else:
        anchor_x = bounds.x1 + ow * scale / 2.0
        anchor_y = bounds.y1 + oh * scale / 2.0
    return CanvasTransform(scale=scale, anchor_x=anchor_x, anchor_y=anchor_y, mode=MODE_OVERLAY)


def _map_size_transform(state: ProjectionState, bounds: CanvasBounds, mode: str) -> CanvasTransform:
    map_w, map_h = state.map_size
    scale = bounds.width / float(map_w)
    return CanvasTransform(
        scale=scale,
        anchor_x=bounds.x1 + map_w * scale / 2.0,
        anchor_y=bounds.y1 + map_h * scale / 2.0,
        mode=mode,
    )


def base_map_placement(state: ProjectionState, bounds: CanvasBounds) -> ImagePlacement:
    map_w, map_h = state.map_size
    return ImagePlacement(
        x=bounds.x1,
        y=bounds.y1,
        width=bounds.width,
        height=map_h * bounds.width / float(map_w),
    )


def overlay_placement(
    state: ProjectionState,
    transform: CanvasTransform,
    bounds: CanvasBounds,
) -> ImagePlacement:
    """Overlay image rectangle, centered on the anchor, before rotation."""
    ow, oh = box_pixel_extent(state.box, state.zoom)
    scale = transform.scale
    if transform.mode == MODE_BASE_MAP:
        map_w, map_h = state.map_size
        x = bounds.x1 - (ow - map_w) * scale / 2.0
        y = bounds.y1 - (oh - map_h) * scale / 2.0
    else:
        x = transform.anchor_x - ow * scale / 2.0
        y = transform.anchor_y - oh * scale / 2.0
    rotation = float(state.box.rotation)
    return ImagePlacement(
        x=x,
        y=y,
        width=ow * scale,
        height=oh * scale,
        rotation=rotation,
        rotation_center=transform.anchor if rotation != 0 else None,
    )


def place_marker(
    state: ProjectionState,
    transform: CanvasTransform,
    lat: float,
    lng: float,
) -> tuple[float, float]:
    center = lat_lng_to_pixel(state.center[0], state.center[1], state.zoom)
    coord = lat_lng_to_pixel(lat, lng, state.zoom)
    dx = wrap_pixel_dx(coord.x - center.x, state.zoom)
    dy = coord.y - center.y
    return (transform.anchor_x + dx * transform.scale, transform.anchor_y + dy * transform.scale)


def marker_glyph(
    x: float,
    y: float,
    style: EffectiveStyle,
    settings: GlyphSettings,
    *,
    size: float | None = None,
    label: str = "",
) -> MarkerPlacement:
    glyph_size = size if size is not None else style.scale * settings.marker_size
    radius: float | None = None
    if settings.display_color and style.color is not None:
        # colored styles replace the icon with a filled circle
        radius = glyph_size / 2.0 if size is not None else style.scale
    return MarkerPlacement(
        x=x,
        y=y,
        size=glyph_size,
        icon=style.icon,
        color=style.color.rgb if style.color is not None else None,
        circle_radius=radius,
        label=label,
    )


def legend_rows(
    resolver: StyleResolver,
    legend: LegendConfig,
    settings: GlyphSettings,
) -> tuple[LegendRow, ...]:
    origin_x, origin_y = legend.origin
    rows: list[LegendRow] = []
    for line, style_id in enumerate(resolver.style_ids):
        y = origin_y + line * legend.row_height
        glyph = marker_glyph(
            origin_x,
            y + legend.row_height / 2.0,
            resolver.resolve(style_id),
            settings,
            # fixed legend glyph size, unlike markers which scale with the style
            size=legend.glyph_size,
            label=style_id,
        )
        rows.append(
            LegendRow(
                text=style_id,
                text_x=origin_x + legend.text_offset,
                text_y=y,
                text_height=legend.font_height,
                glyph=glyph,
            )
        )
    return tuple(rows)


def compose_page(
    state: ProjectionState,
    bounds: CanvasBounds,
    layers: AbstractSet[Layer],
    *,
    markers: Sequence[Marker],
    resolver: StyleResolver,
    legend: LegendConfig,
    settings: GlyphSettings,
) -> PagePlan:
    """Plan one page for the requested layers."""
    wants_base_map = Layer.BASE_MAP in layers
    transform = compute_transform(state, bounds, base_map=wants_base_map)

    base = base_map_placement(state, bounds) if wants_base_map else None
    overlay = (
        overlay_placement(state, transform, bounds)
        if Layer.OVERLAY in layers and state.has_overlay
        else None
    )

    placed: list[MarkerPlacement] = []
    rows: tuple[LegendRow, ...] = ()
    if Layer.MARKERS in layers:
        for marker in markers:
            x, y = place_marker(state, transform, marker.lat, marker.lng)
            placed.append(marker_glyph(x, y, resolver.resolve(marker.style_ref), settings, label=marker.name))
        if Layer.LEGEND in layers:
            rows = legend_rows(resolver, legend, settings)

    return PagePlan(
        layers=frozenset(layers),
        bounds=bounds,
        transform=transform,
        base_map=base,
        overlay=overlay,
        markers=tuple(placed),
        legend=rows,
    )
