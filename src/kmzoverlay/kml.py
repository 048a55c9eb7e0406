"""KML/KMZ document loading.

The element tree is namespace-stripped on load so lookups use bare tag names
(``GroundOverlay``, ``Placemark``...) regardless of the KML version declared
by the producing application.
"""

from __future__ import annotations

import contextlib
import logging
import tempfile
import xml.etree.ElementTree as ET
import zipfile
from pathlib import Path
from typing import Iterator
from urllib.parse import urlparse

from .assets import AssetRef, classify_asset, is_remote_href
from .fetch import HttpFetcher
from .models import GeoBox, KmlColor, Marker, Style, StyleMap
from .styles import InvalidColorFormat, parse_kml_color


_LOGGER = logging.getLogger("kmzoverlay.kml")


class KmzError(RuntimeError):
    """Archive cannot be read or holds no KML document."""


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _strip_namespaces(root: ET.Element) -> ET.Element:
    for element in root.iter():
        if isinstance(element.tag, str):
            element.tag = _local_name(element.tag)
    return root


def iter_depth_first(root: ET.Element, tag: str) -> Iterator[ET.Element]:
    """Yield every descendant named `tag`, pre-order, document order."""
    stack = list(reversed(list(root)))
    while stack:
        element = stack.pop()
        if element.tag == tag:
            yield element
        stack.extend(reversed(list(element)))


def find_first(root: ET.Element, tag: str) -> ET.Element | None:
    return next(iter_depth_first(root, tag), None)


def _child_text(element: ET.Element, tag: str) -> str:
    child = element.find(tag)
    if child is None or child.text is None:
        return ""
    return child.text.strip()


def _child_float(element: ET.Element, tag: str, default: float | None = None) -> float:
    raw = _child_text(element, tag)
    if not raw:
        if default is None:
            raise KmzError(f"<{element.tag}> is missing <{tag}>")
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise KmzError(f"<{element.tag}>/<{tag}> is not a number: {raw!r}") from exc


class KmlDocument:
    """Read-only view of one parsed KML file."""

    def __init__(self, root: ET.Element, asset_root: Path, *, source: str = "") -> None:
        self._root = _strip_namespaces(root)
        self.asset_root = asset_root
        self.source = source
        self.load_warnings: list[str] = []
        self._markers: tuple[Marker, ...] | None = None
        self._styles: dict[str, Style] | None = None
        self._style_maps: dict[str, StyleMap] | None = None

    @classmethod
    def from_path(cls, kml_path: Path, asset_root: Path | None = None) -> KmlDocument:
        try:
            tree = ET.parse(kml_path)
        except (ET.ParseError, OSError) as exc:
            raise KmzError(f"Cannot parse KML {kml_path}: {exc}") from exc
        root_dir = asset_root if asset_root is not None else kml_path.parent
        return cls(tree.getroot(), root_dir, source=str(kml_path))

    @classmethod
    def from_string(cls, text: str, asset_root: Path) -> KmlDocument:
        try:
            root = ET.fromstring(text)
        except ET.ParseError as exc:
            raise KmzError(f"Cannot parse KML text: {exc}") from exc
        return cls(root, asset_root)

    def _warn(self, message: str) -> None:
        _LOGGER.warning(message)
        self.load_warnings.append(message)

    def _ground_overlay(self) -> ET.Element | None:
        return find_first(self._root, "GroundOverlay")

    def ground_overlay_box(self) -> GeoBox | None:
        overlay = self._ground_overlay()
        if overlay is None:
            return None
        box = find_first(overlay, "LatLonBox")
        if box is None:
            self._warn("GroundOverlay has no LatLonBox; ignoring it")
            return None
        try:
            return GeoBox(
                north=_child_float(box, "north"),
                south=_child_float(box, "south"),
                east=_child_float(box, "east"),
                west=_child_float(box, "west"),
                rotation=_child_float(box, "rotation", 0.0),
            )
        except ValueError as exc:
            raise KmzError(f"Invalid GroundOverlay LatLonBox: {exc}") from exc

    def overlay_asset(self) -> AssetRef | None:
        overlay = self._ground_overlay()
        if overlay is None:
            return None
        icon = find_first(overlay, "Icon")
        href = _child_text(icon, "href") if icon is not None else ""
        if not href:
            self._warn("GroundOverlay has no Icon href")
            return None
        return classify_asset(href, self.asset_root)

    def markers(self) -> tuple[Marker, ...]:
        if self._markers is None:
            self._markers = tuple(self._load_markers())
        return self._markers

    def _load_markers(self) -> Iterator[Marker]:
        for index, placemark in enumerate(iter_depth_first(self._root, "Placemark")):
            name = _child_text(placemark, "name") or f"placemark-{index + 1}"
            point = find_first(placemark, "Point")
            raw = _child_text(point, "coordinates") if point is not None else ""
            if not raw:
                self._warn(f"Placemark '{name}' has no point coordinates; skipped")
                continue
            parts = raw.split()[0].split(",")
            try:
                lng, lat = float(parts[0]), float(parts[1])
                marker = Marker(lat=lat, lng=lng, style_ref=_child_text(placemark, "styleUrl"), name=name)
            except (IndexError, ValueError):
                self._warn(f"Placemark '{name}' has unreadable coordinates {raw!r}; skipped")
                continue
            yield marker

    def styles(self) -> dict[str, Style]:
        if self._styles is None:
            self._styles = self._load_styles()
        return dict(self._styles)

    def _load_styles(self) -> dict[str, Style]:
        out: dict[str, Style] = {}
        for element in iter_depth_first(self._root, "Style"):
            style_id = (element.get("id") or "").strip()
            if not style_id:
                continue
            icon_style = find_first(element, "IconStyle")
            if icon_style is None:
                out[style_id] = Style(style_id=style_id)
                continue
            color: KmlColor | None = None
            raw_color = _child_text(icon_style, "color")
            if raw_color:
                try:
                    color = parse_kml_color(raw_color)
                except InvalidColorFormat as exc:
                    self._warn(f"Style '{style_id}': {exc}; color ignored")
            icon: AssetRef | None = None
            icon_el = icon_style.find("Icon")
            href = _child_text(icon_el, "href") if icon_el is not None else ""
            if href:
                icon = classify_asset(href, self.asset_root)
            try:
                scale = _child_float(icon_style, "scale", 1.0)
            except KmzError as exc:
                self._warn(f"Style '{style_id}': {exc}; using scale 1")
                scale = 1.0
            out[style_id] = Style(style_id=style_id, icon=icon, color=color, scale=scale)
        return out

    def style_maps(self) -> dict[str, StyleMap]:
        if self._style_maps is None:
            self._style_maps = self._load_style_maps()
        return dict(self._style_maps)

    def _load_style_maps(self) -> dict[str, StyleMap]:
        out: dict[str, StyleMap] = {}
        for element in iter_depth_first(self._root, "StyleMap"):
            map_id = (element.get("id") or "").strip()
            if not map_id:
                continue
            pairs = {
                _child_text(pair, "key"): _child_text(pair, "styleUrl")
                for pair in element.findall("Pair")
            }
            normal = pairs.get("normal", "")
            if not normal:
                self._warn(f"StyleMap '{map_id}' has no normal pair; skipped")
                continue
            out[map_id] = StyleMap(
                style_map_id=map_id,
                normal_ref=normal.lstrip("#"),
                highlight_ref=pairs.get("highlight", "").lstrip("#") or None,
            )
        return out


def _pick_kml(root: Path) -> Path:
    top_level = sorted(p for p in root.glob("*.kml") if p.is_file())
    if top_level:
        return top_level[0]
    nested = sorted(p for p in root.rglob("*.kml") if p.is_file())
    if nested:
        return nested[0]
    raise KmzError(f"No .kml document found in {root}")


def _extract_kmz(archive: Path, target: Path) -> Path:
    try:
        with zipfile.ZipFile(archive) as zf:
            zf.extractall(target)
    except (zipfile.BadZipFile, OSError) as exc:
        raise KmzError(f"Cannot read KMZ archive {archive}: {exc}") from exc
    return _pick_kml(target)


@contextlib.contextmanager
def open_kmz(
    source: str | Path,
    fetcher: HttpFetcher | None = None,
    workdir: Path | None = None,
) -> Iterator[KmlDocument]:
    """Open a local .kmz/.kml or a remote .kmz URL.

    Extracted files live in a temporary directory removed on exit.
    """
    text = str(source)
    with tempfile.TemporaryDirectory(prefix="kmzoverlay_", dir=workdir) as tmp:
        tmp_dir = Path(tmp)
        if is_remote_href(text):
            if fetcher is None:
                raise KmzError(f"Remote source {text} needs an HTTP fetcher")
            name = Path(urlparse(text).path).name or "document.kmz"
            local = fetcher.download(text, tmp_dir / "download" / name)
        else:
            local = Path(text)
            if not local.is_file():
                raise KmzError(f"Source not found: {local}")

        if local.suffix.casefold() == ".kml":
            document = KmlDocument.from_path(local)
        else:
            extract_dir = tmp_dir / "extracted"
            kml_path = _extract_kmz(local, extract_dir)
            _LOGGER.info("Extracted %s, using %s", local.name, kml_path.relative_to(extract_dir))
            document = KmlDocument.from_path(kml_path, kml_path.parent)
        yield document
