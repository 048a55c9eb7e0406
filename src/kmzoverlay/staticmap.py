"""Static background map request building and retrieval."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

import requests

from .config import StaticMapConfig
from .fetch import AssetFetchError, HttpFetcher
from .models import ProjectionState


DEFAULT_STATIC_MAP_URL = "https://maps.googleapis.com/maps/api/staticmap"

_LOGGER = logging.getLogger("kmzoverlay.staticmap")


@dataclass(frozen=True, slots=True)
class StaticMapRequest:
    base_url: str
    provider_params: Mapping[str, Any] = field(default_factory=dict)

    @property
    def url(self) -> str:
        prepared = requests.Request("GET", self.base_url, params=dict(self.provider_params)).prepare()
        return str(prepared.url)

    @property
    def redacted_url(self) -> str:
        params = dict(self.provider_params)
        if params.get("key"):
            params["key"] = "***"
        prepared = requests.Request("GET", self.base_url, params=params).prepare()
        return str(prepared.url)

    @property
    def has_key(self) -> bool:
        return bool(self.provider_params.get("key"))


def format_center(center: tuple[float, float]) -> str:
    return f"{center[0]:.6f},{center[1]:.6f}"


def build_static_map_request(
    center: tuple[float, float],
    size: tuple[int, int],
    zoom: int,
    *,
    map_type: str = "satellite",
    language: str = "en",
    api_key: str = "",
    scale: int = 2,
    base_url: str = DEFAULT_STATIC_MAP_URL,
) -> StaticMapRequest:
    """Describe the background map covering `size` pixels around `center` at `zoom`."""
    params: dict[str, Any] = {
        "maptype": map_type,
        "scale": int(scale),
        "zoom": int(zoom),
        "center": format_center(center),
        "size": f"{int(size[0])}x{int(size[1])}",
        "language": language,
        "key": api_key,
    }
    return StaticMapRequest(base_url=base_url, provider_params=params)


def request_for_state(state: ProjectionState, cfg: StaticMapConfig) -> StaticMapRequest:
    return build_static_map_request(
        state.center,
        state.map_size,
        state.zoom,
        map_type=cfg.map_type,
        language=cfg.language,
        api_key=cfg.resolved_api_key,
        scale=cfg.scale,
        base_url=cfg.base_url,
    )


def fetch_static_map(request: StaticMapRequest, fetcher: HttpFetcher) -> bytes:
    """Download the background map image bytes."""
    if not request.has_key:
        raise AssetFetchError(
            "No static map API key configured (set static_map.api_key or the api_key_env variable)"
        )
    _LOGGER.info("Fetching static map %s", request.redacted_url)
    return fetcher.get_bytes(request.base_url, params=request.provider_params)
