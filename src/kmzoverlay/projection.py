"""Web Mercator projection, zoom selection and static-map sizing."""

from __future__ import annotations

import logging
import math
from typing import Sequence

from .models import GeoBox, Marker, PixelCoord, ProjectionState


TILE_SIZE = 256
MIN_ZOOM = 0
MAX_ZOOM = 20
ZOOM_PIXEL_THRESHOLD = 600.0
MAX_MAP_SIDE_PX = 640
_SINY_LIMIT = 0.9999
_FILL_RATIO_CAP = 0.8
_HEADROOM = 1.2
_DEGENERATE_EXTENT_PX = 1e-9
_EXP_LIMIT = 700.0

_LOGGER = logging.getLogger("kmzoverlay.projection")


class NoGeometryError(ValueError):
    """Raised when a document has neither a ground overlay nor any markers."""


def world_size(zoom: int) -> float:
    return float(TILE_SIZE * (1 << int(zoom)))


def lat_lng_to_pixel(lat: float, lng: float, zoom: int) -> PixelCoord:
    """Project lat/lng to world-pixel coordinates.

    Reference: https://developers.google.com/maps/documentation/javascript/examples/map-coordinates
    """
    scale = 1 << int(zoom)
    siny = math.sin(float(lat) * math.pi / 180.0)
    siny = max(min(siny, _SINY_LIMIT), -_SINY_LIMIT)
    wx = TILE_SIZE * (0.5 + float(lng) / 360.0)
    wy = TILE_SIZE * (0.5 - math.log((1.0 + siny) / (1.0 - siny)) / (4.0 * math.pi))
    return PixelCoord(x=wx * scale, y=wy * scale)


def pixel_to_lat_lng(x: float, y: float, zoom: int) -> tuple[float, float]:
    scale = float(1 << int(zoom))
    wx = float(x) / scale
    wy = float(y) / scale
    exponent = 4.0 * math.pi * (0.5 - wy / TILE_SIZE)
    exponent = max(min(exponent, _EXP_LIMIT), -_EXP_LIMIT)
    siny = 1.0 - 2.0 / (1.0 + math.exp(exponent))
    siny = max(min(siny, 1.0), -1.0)
    lat = math.degrees(math.asin(siny))
    lng = (wx / TILE_SIZE - 0.5) * 360.0
    return (lat, lng)


def wrap_pixel_dx(dx: float, zoom: int) -> float:
    """Bring a horizontal pixel delta onto the nearest copy of the world."""
    world = world_size(zoom)
    half = world / 2.0
    if dx > half:
        dx -= world * math.ceil((dx - half) / world)
    elif dx < -half:
        dx += world * math.ceil((-half - dx) / world)
    return dx


def normalize_lng(lng: float) -> float:
    lng = float(lng)
    if -180.0 <= lng < 180.0:
        return lng
    return ((lng + 180.0) % 360.0) - 180.0


def is_sideways(rotation: float) -> bool:
    """True when the rotation turns the box's long axis across the canvas."""
    return abs(float(rotation) % 180.0 - 90.0) < 45.0


def _corner_pixels(box: GeoBox, zoom: int) -> tuple[PixelCoord, PixelCoord]:
    nw = lat_lng_to_pixel(box.north, box.west, zoom)
    se = lat_lng_to_pixel(box.south, box.unwrapped_east, zoom)
    return nw, se


def box_pixel_extent(box: GeoBox, zoom: int) -> tuple[float, float]:
    """Unrotated (width, height) of the box in world pixels."""
    nw, se = _corner_pixels(box, zoom)
    return (abs(se.x - nw.x), abs(se.y - nw.y))


def select_zoom(box: GeoBox) -> int:
    """Highest zoom at which the box stays under the pixel threshold on both axes.

    Boxes that never reach the threshold (tiny or single-point boxes) get
    MAX_ZOOM.
    """
    chosen = MAX_ZOOM
    for zoom in range(MIN_ZOOM, MAX_ZOOM + 1):
        width, height = box_pixel_extent(box, zoom)
        if width >= ZOOM_PIXEL_THRESHOLD or height >= ZOOM_PIXEL_THRESHOLD:
            chosen = max(zoom - 1, MIN_ZOOM)
            break
    _LOGGER.debug("Selected zoom %d for box %s", chosen, box)
    return chosen


def rotated_extents(box: GeoBox, zoom: int) -> tuple[float, float]:
    """Decompose the pixel diagonal into (lng, lat) extents relative to the box rotation."""
    nw, se = _corner_pixels(box, zoom)
    dx = se.x - nw.x
    dy = se.y - nw.y
    diag_len = math.hypot(dx, dy)
    diag_angle = math.atan2(dy, dx)
    relative = diag_angle - math.radians(box.rotation)
    return (abs(diag_len * math.cos(relative)), abs(diag_len * math.sin(relative)))


def compute_map_size(box: GeoBox, zoom: int) -> tuple[int, int]:
    """Static map (width, height) in pixels, capped at MAX_MAP_SIDE_PX per side."""
    lng_extent, lat_extent = rotated_extents(box, zoom)
    if lng_extent < _DEGENERATE_EXTENT_PX and lat_extent < _DEGENERATE_EXTENT_PX:
        return (MAX_MAP_SIDE_PX, MAX_MAP_SIDE_PX)
    lng_extent = max(lng_extent, 1.0)
    lat_extent = max(lat_extent, 1.0)

    fill = max(lat_extent, lng_extent) / MAX_MAP_SIDE_PX
    ratio = lng_extent / lat_extent
    if ratio < 1:
        height = MAX_MAP_SIDE_PX if fill > _FILL_RATIO_CAP else lat_extent * _HEADROOM
        width = height * ratio
    else:
        width = MAX_MAP_SIDE_PX if fill > _FILL_RATIO_CAP else lng_extent * _HEADROOM
        height = width / ratio

    # extents are already relative to the box rotation, so a sideways box comes out swapped
    return (max(int(math.floor(width)), 1), max(int(math.floor(height)), 1))


def get_map_center(box: GeoBox | None, markers: Sequence[Marker]) -> tuple[float, float]:
    effective = box if box is not None else _marker_box(markers)
    clat = (effective.north + effective.south) / 2.0
    clng = normalize_lng((effective.west + effective.unwrapped_east) / 2.0)
    return (clat, clng)


def _marker_box(markers: Sequence[Marker]) -> GeoBox:
    if not markers:
        raise NoGeometryError("No ground overlay or placemark to render")
    return GeoBox.from_markers(markers)


def static_map_bounds(center: tuple[float, float], zoom: int, size: tuple[int, int]) -> GeoBox:
    """Geographic box covered by a static map of `size` pixels centered at `center`."""
    c = lat_lng_to_pixel(center[0], center[1], zoom)
    half_w = size[0] / 2.0
    half_h = size[1] / 2.0
    north, west = pixel_to_lat_lng(c.x - half_w, c.y - half_h, zoom)
    south, east = pixel_to_lat_lng(c.x + half_w, c.y + half_h, zoom)
    return GeoBox(
        north=north,
        south=south,
        east=normalize_lng(east),
        west=normalize_lng(west),
        rotation=0.0,
    )


def build_projection_state(box: GeoBox | None, markers: Sequence[Marker]) -> ProjectionState:
    """Compute center, zoom and map size once for a document."""
    if box is not None:
        effective = box
        source = "overlay"
    else:
        effective = _marker_box(markers)
        source = "markers"
    center = get_map_center(effective, markers)
    zoom = select_zoom(effective)
    map_size = compute_map_size(effective, zoom)
    _LOGGER.info(
        "Projection state: source=%s center=(%.6f, %.6f) zoom=%d size=%dx%d",
        source,
        center[0],
        center[1],
        zoom,
        map_size[0],
        map_size[1],
    )
    return ProjectionState(
        box=effective,
        box_source=source,
        center=center,
        zoom=zoom,
        map_size=map_size,
    )
