import math

import pytest

from kmzoverlay.models import GeoBox, Marker
from kmzoverlay.projection import (
    MAX_MAP_SIDE_PX,
    MAX_ZOOM,
    ZOOM_PIXEL_THRESHOLD,
    NoGeometryError,
    box_pixel_extent,
    build_projection_state,
    compute_map_size,
    get_map_center,
    is_sideways,
    lat_lng_to_pixel,
    normalize_lng,
    pixel_to_lat_lng,
    select_zoom,
    static_map_bounds,
    wrap_pixel_dx,
)


SITE_BOX = GeoBox(north=25.05, south=25.00, east=121.55, west=121.50)


def test_origin_projects_to_world_center():
    coord = lat_lng_to_pixel(0.0, 0.0, 0)
    assert coord.x == pytest.approx(128.0)
    assert coord.y == pytest.approx(128.0)


@pytest.mark.parametrize("lat,lng", [(25.03, 121.52), (-33.87, 151.21), (64.1, -21.9), (0.0, -179.5)])
@pytest.mark.parametrize("zoom", [0, 7, 15, 20])
def test_pixel_round_trip(lat, lng, zoom):
    coord = lat_lng_to_pixel(lat, lng, zoom)
    back_lat, back_lng = pixel_to_lat_lng(coord.x, coord.y, zoom)
    assert back_lat == pytest.approx(lat, abs=1e-6)
    assert back_lng == pytest.approx(lng, abs=1e-6)


def test_poles_are_clamped():
    north = lat_lng_to_pixel(90.0, 0.0, 3)
    south = lat_lng_to_pixel(-90.0, 0.0, 3)
    assert math.isfinite(north.y) and math.isfinite(south.y)
    assert north.y < south.y


def test_pixel_to_lat_lng_far_outside_world_stays_finite():
    lat, _ = pixel_to_lat_lng(0.0, -1e9, 0)
    assert lat == pytest.approx(90.0, abs=1e-6)


def test_select_zoom_is_highest_zoom_under_threshold():
    zoom = select_zoom(SITE_BOX)
    width, height = box_pixel_extent(SITE_BOX, zoom)
    assert width < ZOOM_PIXEL_THRESHOLD and height < ZOOM_PIXEL_THRESHOLD
    next_w, next_h = box_pixel_extent(SITE_BOX, zoom + 1)
    assert next_w >= ZOOM_PIXEL_THRESHOLD or next_h >= ZOOM_PIXEL_THRESHOLD


def test_select_zoom_is_monotonic_in_box_size():
    boxes = [
        GeoBox(north=25.0 + span, south=25.0, east=121.5 + span, west=121.5)
        for span in (0.001, 0.01, 0.1, 1.0, 10.0)
    ]
    zooms = [select_zoom(box) for box in boxes]
    assert zooms == sorted(zooms, reverse=True)


def test_select_zoom_for_single_point_is_max_zoom():
    assert select_zoom(GeoBox(north=10.0, south=10.0, east=20.0, west=20.0)) == MAX_ZOOM


def test_map_size_within_limits():
    for rotation in (0.0, 15.0, 45.0, 90.0, 200.0):
        box = GeoBox(north=25.05, south=25.00, east=121.55, west=121.50, rotation=rotation)
        width, height = compute_map_size(box, select_zoom(box))
        assert 1 <= width <= MAX_MAP_SIDE_PX
        assert 1 <= height <= MAX_MAP_SIDE_PX


def test_degenerate_box_gets_full_map():
    box = GeoBox(north=10.0, south=10.0, east=20.0, west=20.0)
    assert compute_map_size(box, select_zoom(box)) == (MAX_MAP_SIDE_PX, MAX_MAP_SIDE_PX)


def test_thin_box_never_collapses_to_zero():
    box = GeoBox(north=10.0, south=10.0, east=20.5, west=20.0)
    width, height = compute_map_size(box, select_zoom(box))
    assert width >= 1 and height >= 1


def test_quarter_turn_swaps_non_square_size():
    straight = GeoBox(north=25.05, south=25.00, east=121.58, west=121.50)
    turned = GeoBox(north=25.05, south=25.00, east=121.58, west=121.50, rotation=90.0)
    zoom = select_zoom(straight)
    width, height = compute_map_size(straight, zoom)
    assert width != height
    assert compute_map_size(turned, zoom) == (height, width)


def test_map_size_is_idempotent():
    assert compute_map_size(SITE_BOX, 13) == compute_map_size(SITE_BOX, 13)


@pytest.mark.parametrize(
    "rotation,expected",
    [(0.0, False), (45.0, False), (60.0, True), (90.0, True), (135.0, False), (270.0, True), (-90.0, True)],
)
def test_is_sideways(rotation, expected):
    assert is_sideways(rotation) is expected


def test_center_of_overlay_box():
    lat, lng = get_map_center(SITE_BOX, [])
    assert lat == pytest.approx(25.025)
    assert lng == pytest.approx(121.525)


def test_center_falls_back_to_markers():
    markers = [Marker(lat=50.0, lng=10.0), Marker(lat=50.1, lng=10.2)]
    lat, lng = get_map_center(None, markers)
    assert lat == pytest.approx(50.05)
    assert lng == pytest.approx(10.1)


def test_center_without_geometry_raises():
    with pytest.raises(NoGeometryError):
        get_map_center(None, [])


def test_antimeridian_center_wraps():
    box = GeoBox(north=-16.0, south=-17.0, east=-179.0, west=179.5)
    assert box.crosses_antimeridian
    _, lng = get_map_center(box, [])
    assert -180.0 <= lng < 180.0
    assert lng == pytest.approx(-179.75)


def test_antimeridian_box_has_positive_extent():
    box = GeoBox(north=-16.0, south=-17.0, east=-179.0, west=179.0)
    width, height = box_pixel_extent(box, 8)
    assert width == pytest.approx(2.0 / 360.0 * 256 * 2**8)
    assert height > 0


def test_wrap_pixel_dx():
    assert wrap_pixel_dx(100.0, 0) == pytest.approx(100.0)
    assert wrap_pixel_dx(200.0, 0) == pytest.approx(-56.0)
    assert wrap_pixel_dx(-200.0, 0) == pytest.approx(56.0)


def test_normalize_lng():
    assert normalize_lng(180.0) == pytest.approx(-180.0)
    assert normalize_lng(190.0) == pytest.approx(-170.0)
    assert normalize_lng(-45.0) == pytest.approx(-45.0)


def test_static_map_bounds_contain_center():
    state = build_projection_state(SITE_BOX, [])
    bounds = static_map_bounds(state.center, state.zoom, state.map_size)
    assert bounds.north > bounds.south
    assert bounds.south < state.center[0] < bounds.north
    assert bounds.west < state.center[1] < bounds.east


def test_projection_state_from_markers():
    markers = [Marker(lat=50.0, lng=10.0), Marker(lat=50.1, lng=10.2)]
    state = build_projection_state(None, markers)
    assert state.box_source == "markers"
    assert not state.has_overlay
    assert state.box.north == pytest.approx(50.1)
    assert state.box.west == pytest.approx(10.0)


def test_projection_state_without_geometry_raises():
    with pytest.raises(NoGeometryError):
        build_projection_state(None, [])


def test_square_box_gives_square_map():
    box = GeoBox(north=10.0, south=0.0, east=10.0, west=0.0)
    zoom = select_zoom(box)
    assert max(box_pixel_extent(box, zoom)) < ZOOM_PIXEL_THRESHOLD
    assert max(box_pixel_extent(box, zoom + 1)) >= ZOOM_PIXEL_THRESHOLD
    width, height = compute_map_size(box, zoom)
    assert width / height == pytest.approx(1.0, rel=0.01)


def test_square_box_quarter_turn_swaps_size():
    straight = GeoBox(north=10.0, south=0.0, east=10.0, west=0.0)
    turned = GeoBox(north=10.0, south=0.0, east=10.0, west=0.0, rotation=90.0)
    zoom = select_zoom(straight)
    w0, h0 = compute_map_size(straight, zoom)
    w90, h90 = compute_map_size(turned, zoom)
    assert w90 == pytest.approx(h0, rel=0.01)
    assert h90 == pytest.approx(w0, rel=0.01)


def test_quarter_turn_equals_swapped_extent_box():
    wide = GeoBox(north=1.0, south=0.0, east=3.0, west=0.0, rotation=90.0)
    tall = GeoBox(north=3.0, south=0.0, east=1.0, west=0.0)
    zoom = select_zoom(tall)
    w90, h90 = compute_map_size(wide, zoom)
    w_tall, h_tall = compute_map_size(tall, zoom)
    assert w90 == pytest.approx(w_tall, rel=0.01)
    assert h90 == pytest.approx(h_tall, rel=0.01)


def test_marker_triangle_box_is_exact():
    markers = [
        Marker(lat=10.0, lng=20.0),
        Marker(lat=10.0, lng=23.5),
        Marker(lat=12.25, lng=20.0),
    ]
    box = GeoBox.from_markers(markers)
    assert (box.north, box.south, box.east, box.west, box.rotation) == (12.25, 10.0, 23.5, 20.0, 0.0)
