import pytest

from conftest import FakeResponse, FakeSession, png_bytes
from kmzoverlay import fetch as fetch_module
from kmzoverlay.config import AppConfig, HttpConfig
from kmzoverlay.fetch import AssetFetchError, HttpFetcher, _parse_retry_after_seconds
from kmzoverlay.models import GeoBox
from kmzoverlay.projection import build_projection_state
from kmzoverlay.staticmap import build_static_map_request, fetch_static_map, request_for_state


HTTP = HttpConfig(request_timeout_s=5.0, user_agent="tests", max_retries=2, retry_backoff_s=0.5)


def test_request_parameters():
    request = build_static_map_request(
        (25.025, 121.525),
        (640, 480),
        13,
        map_type="roadmap",
        language="fr",
        api_key="SECRET",
        scale=1,
        base_url="https://maps.example.test/staticmap",
    )
    assert request.base_url == "https://maps.example.test/staticmap"
    assert request.provider_params == {
        "maptype": "roadmap",
        "scale": 1,
        "zoom": 13,
        "center": "25.025000,121.525000",
        "size": "640x480",
        "language": "fr",
        "key": "SECRET",
    }


def test_url_and_redacted_url():
    request = build_static_map_request((1.5, -2.25), (100, 200), 5, api_key="SECRET")
    assert request.url.startswith("https://maps.googleapis.com/maps/api/staticmap?")
    assert "key=SECRET" in request.url
    assert "size=100x200" in request.url
    assert "SECRET" not in request.redacted_url
    assert "maptype=satellite" in request.redacted_url


def test_request_for_state_uses_config():
    cfg = AppConfig.from_mapping({"static_map": {"api_key": "abc", "map_type": "hybrid", "scale": 1}}, None)
    state = build_projection_state(GeoBox(north=25.05, south=25.0, east=121.55, west=121.5), [])
    request = request_for_state(state, cfg.static_map)
    assert request.provider_params["maptype"] == "hybrid"
    assert request.provider_params["zoom"] == state.zoom
    assert request.provider_params["size"] == f"{state.map_size[0]}x{state.map_size[1]}"
    assert request.provider_params["key"] == "abc"


def test_fetch_without_key_fails_before_network():
    session = FakeSession()
    request = build_static_map_request((0.0, 0.0), (10, 10), 1, api_key="")
    with pytest.raises(AssetFetchError):
        fetch_static_map(request, HttpFetcher(HTTP, session=session))
    assert session.calls == []


def test_fetch_returns_image_bytes():
    payload = png_bytes()
    session = FakeSession([FakeResponse(200, payload)])
    request = build_static_map_request((0.0, 0.0), (10, 10), 1, api_key="k")
    assert fetch_static_map(request, HttpFetcher(HTTP, session=session)) == payload
    assert session.calls[0]["params"]["key"] == "k"
    assert session.calls[0]["timeout"] == 5.0
    assert session.headers["User-Agent"] == "tests"


def test_fetcher_retries_retryable_status(monkeypatch):
    sleeps = []
    monkeypatch.setattr(fetch_module.time, "sleep", sleeps.append)
    session = FakeSession([FakeResponse(503, b"", headers={"Retry-After": "2"}), FakeResponse(200, b"ok")])
    assert HttpFetcher(HTTP, session=session).get_bytes("https://example.test/a.png") == b"ok"
    assert len(session.calls) == 2
    assert sleeps == [2.0]


def test_fetcher_gives_up_after_max_retries(monkeypatch):
    monkeypatch.setattr(fetch_module.time, "sleep", lambda _s: None)
    session = FakeSession(default=FakeResponse(500, b""))
    with pytest.raises(AssetFetchError):
        HttpFetcher(HTTP, session=session).get_bytes("https://example.test/a.png")
    assert len(session.calls) == HTTP.max_retries + 1


def test_fetcher_does_not_retry_client_errors():
    session = FakeSession([FakeResponse(403, b"denied")])
    with pytest.raises(AssetFetchError):
        HttpFetcher(HTTP, session=session).get_bytes("https://example.test/a.png?key=SECRET")
    assert len(session.calls) == 1


def test_fetcher_rejects_empty_body():
    session = FakeSession([FakeResponse(200, b"")])
    with pytest.raises(AssetFetchError):
        HttpFetcher(HTTP, session=session).get_bytes("https://example.test/a.png")


def test_download_writes_file(tmp_path):
    session = FakeSession([FakeResponse(200, b"abc")])
    out = HttpFetcher(HTTP, session=session).download("https://example.test/doc.kmz", tmp_path / "sub" / "doc.kmz")
    assert out.read_bytes() == b"abc"


@pytest.mark.parametrize("raw,expected", [(None, 0.0), ("", 0.0), ("3", 3.0), ("-1", 0.0), ("soon", 0.0)])
def test_parse_retry_after(raw, expected):
    assert _parse_retry_after_seconds(raw) == expected
