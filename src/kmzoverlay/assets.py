"""Asset references from KML documents and their loading."""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union
from urllib.parse import urlparse

from PIL import Image, UnidentifiedImageError

from .fetch import AssetFetchError, HttpFetcher


_REMOTE_SCHEMES = {"http", "https"}
_DEFAULT_ICON_PATH = Path(__file__).resolve().parent / "icons" / "default_marker.png"

_LOGGER = logging.getLogger("kmzoverlay.assets")


@dataclass(frozen=True, slots=True)
class LocalAsset:
    path: Path

    def describe(self) -> str:
        return str(self.path)


@dataclass(frozen=True, slots=True)
class RemoteAsset:
    url: str

    def describe(self) -> str:
        return self.url


AssetRef = Union[LocalAsset, RemoteAsset]


def is_remote_href(href: str) -> bool:
    return urlparse(href.strip()).scheme.casefold() in _REMOTE_SCHEMES


def classify_asset(href: str, asset_root: Path) -> AssetRef:
    """Decide once whether an href is remote or relative to the extracted document."""
    cleaned = href.strip()
    if not cleaned:
        raise ValueError("Asset href is empty")
    if is_remote_href(cleaned):
        return RemoteAsset(url=cleaned)
    if cleaned.casefold().startswith("file://"):
        cleaned = urlparse(cleaned).path
    path = Path(cleaned)
    return LocalAsset(path=path if path.is_absolute() else asset_root / path)


def default_icon() -> LocalAsset:
    """Bundled marker icon used when a style cannot be resolved."""
    return LocalAsset(path=_DEFAULT_ICON_PATH)


class AssetLoader:
    """Load asset bytes once per reference and verify they decode as images."""

    def __init__(self, fetcher: HttpFetcher | None) -> None:
        self._fetcher = fetcher
        self._cache: dict[AssetRef, bytes] = {}

    def load(self, ref: AssetRef) -> bytes:
        cached = self._cache.get(ref)
        if cached is not None:
            return cached
        payload = self._read(ref)
        verify_image(payload, ref)
        self._cache[ref] = payload
        return payload

    def _read(self, ref: AssetRef) -> bytes:
        if isinstance(ref, LocalAsset):
            try:
                return ref.path.read_bytes()
            except OSError as exc:
                raise AssetFetchError(f"Cannot read asset {ref.path}: {exc}") from exc
        if self._fetcher is None:
            raise AssetFetchError(f"No HTTP fetcher configured for remote asset {ref.url}")
        _LOGGER.debug("Fetching remote asset %s", ref.url)
        return self._fetcher.get_bytes(ref.url)


def verify_image(payload: bytes, ref: AssetRef) -> None:
    try:
        with Image.open(io.BytesIO(payload)) as image:
            image.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise AssetFetchError(f"Asset {ref.describe()} is not a readable image: {exc}") from exc
