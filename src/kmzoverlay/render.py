"""Overlay rendering pipeline: projection, page planning and drawing."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import AbstractSet, Any, Iterable, Sequence

from .assets import AssetLoader, AssetRef, RemoteAsset, verify_image
from .composition import GlyphSettings, MarkerPlacement, PagePlan, compose_page
from .config import AppConfig
from .fetch import AssetFetchError, HttpFetcher
from .kml import KmlDocument, KmzError, open_kmz
from .models import CanvasBounds, Layer, parse_layers
from .projection import NoGeometryError, build_projection_state, static_map_bounds
from .renderers import Renderer, renderer_for_output
from .staticmap import StaticMapRequest, fetch_static_map, request_for_state
from .styles import StyleResolver


ALL_LAYERS = frozenset(Layer)

_LOGGER = logging.getLogger("kmzoverlay.render")


@dataclass(slots=True)
class RenderReport:
    output_paths: list[Path] = field(default_factory=list)
    pages: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    infos: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def add_error(self, msg: str) -> None:
        self.errors.append(msg)

    def add_warning(self, msg: str) -> None:
        self.warnings.append(msg)

    def add_info(self, msg: str) -> None:
        self.infos.append(msg)

    def merge(self, other: RenderReport, *, prefix: str = "") -> None:
        head = f"{prefix} " if prefix else ""
        self.errors.extend(f"{head}{msg}" for msg in other.errors)
        self.warnings.extend(f"{head}{msg}" for msg in other.warnings)
        self.infos.extend(f"{head}{msg}" for msg in other.infos)
        self.pages += other.pages


class OverlayMap:
    """One loaded document, projected once and rendered any number of times."""

    def __init__(
        self,
        document: KmlDocument,
        cfg: AppConfig,
        *,
        fetcher: HttpFetcher | None = None,
    ) -> None:
        self.document = document
        self.cfg = cfg
        self._owns_fetcher = fetcher is None
        self._fetcher = fetcher if fetcher is not None else HttpFetcher(cfg.http)
        self._assets = AssetLoader(self._fetcher)

        box = document.ground_overlay_box()
        self._markers = document.markers()
        self._overlay_asset: AssetRef | None = document.overlay_asset() if box is not None else None
        self.state = build_projection_state(box, self._markers)
        self.resolver = StyleResolver(document.styles(), document.style_maps())
        self.static_map_request: StaticMapRequest = request_for_state(self.state, cfg.static_map)

        self._bounds = cfg.canvas.bounds
        self._settings = GlyphSettings(
            marker_size=cfg.canvas.marker_size,
            display_color=cfg.canvas.display_color,
        )
        self._base_map: bytes | None = None
        self._base_map_failure: str | None = None
        self._failed_icons: set[AssetRef] = set()

    @property
    def bounds(self) -> CanvasBounds:
        return self._bounds

    @property
    def base_map_failure(self) -> str | None:
        return self._base_map_failure

    def set_bounds(self, x1: float, y1: float, x2: float, y2: float) -> None:
        self._bounds = CanvasBounds(x1=x1, y1=y1, x2=x2, y2=y2)

    def close(self) -> None:
        if self._owns_fetcher:
            self._fetcher.close()

    def __enter__(self) -> OverlayMap:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def plan(self, layers: str | AbstractSet[Layer]) -> PagePlan:
        return compose_page(
            self.state,
            self._bounds,
            parse_layers(layers),
            markers=self._markers,
            resolver=self.resolver,
            legend=self.cfg.legend,
            settings=self._settings,
        )

    def render(self, layers: str | AbstractSet[Layer], renderer: Renderer) -> RenderReport:
        """Draw the requested layers for the current bounds onto `renderer`."""
        layer_set = parse_layers(layers)
        plan = self.plan(layer_set)
        report = RenderReport(pages=1)

        if plan.base_map is not None:
            payload = self._base_map_bytes(report)
            if payload is not None:
                placement = plan.base_map
                renderer.draw_image(payload, placement.x, placement.y, placement.width, placement.height)

        if Layer.OVERLAY in layer_set:
            self._draw_overlay(plan, renderer, report)

        for marker in plan.markers:
            self._draw_glyph(marker, renderer, report)

        for row in plan.legend:
            self._draw_glyph(row.glyph, renderer, report)
            renderer.draw_text(row.text_x, row.text_y, row.text, row.text_height)

        report.add_info(
            f"Rendered layers {''.join(sorted(layer.value for layer in layer_set))} "
            f"({len(plan.markers)} markers, {len(plan.legend)} legend rows)"
        )
        return report

    def summary(self) -> dict[str, Any]:
        map_box = static_map_bounds(self.state.center, self.state.zoom, self.state.map_size)
        styles: dict[str, Any] = {}
        for style_id in self.resolver.style_ids:
            effective = self.resolver.resolve(style_id)
            styles[style_id] = {
                "icon": effective.icon.describe(),
                "color": list(effective.color.rgb) if effective.color is not None else None,
                "scale": effective.scale,
            }
        return {
            "source": self.document.source,
            "projection": self.state.to_dict(),
            "static_map_url": self.static_map_request.redacted_url,
            "static_map_bounds": {
                "north": map_box.north,
                "south": map_box.south,
                "east": map_box.east,
                "west": map_box.west,
            },
            "overlay_asset": self._overlay_asset.describe() if self._overlay_asset is not None else None,
            "markers": len(self._markers),
            "styles": styles,
            "style_maps": sorted(self.document.style_maps()),
            "load_warnings": list(self.document.load_warnings),
        }

    def _base_map_bytes(self, report: RenderReport) -> bytes | None:
        if self._base_map is not None:
            return self._base_map
        if self._base_map_failure is not None:
            report.add_warning("Base map unavailable after an earlier failure; layer M skipped")
            return None
        try:
            payload = fetch_static_map(self.static_map_request, self._fetcher)
            verify_image(payload, RemoteAsset(url=self.static_map_request.redacted_url))
        except AssetFetchError as exc:
            if self.cfg.canvas.strict_assets:
                raise
            self._base_map_failure = (
                "Base map loading failed once and was disabled for remaining renders: "
                f"{exc}"
            )
            _LOGGER.warning(self._base_map_failure)
            report.add_error(self._base_map_failure)
            return None
        self._base_map = payload
        return payload

    def _draw_overlay(self, plan: PagePlan, renderer: Renderer, report: RenderReport) -> None:
        placement = plan.overlay
        if placement is None or self._overlay_asset is None:
            report.add_warning("Document has no ground overlay image; layer O skipped")
            return
        try:
            payload = self._assets.load(self._overlay_asset)
        except AssetFetchError as exc:
            if self.cfg.canvas.strict_assets:
                raise
            _LOGGER.warning("Overlay image unavailable: %s", exc)
            report.add_error(f"Overlay image unavailable; layer O skipped: {exc}")
            return
        if placement.rotation_center is None:
            renderer.draw_image(payload, placement.x, placement.y, placement.width, placement.height)
            return
        cx, cy = placement.rotation_center
        with renderer.rotation(placement.rotation, cx, cy):
            renderer.draw_image(payload, placement.x, placement.y, placement.width, placement.height)

    def _draw_glyph(self, glyph: MarkerPlacement, renderer: Renderer, report: RenderReport) -> None:
        if glyph.circle_radius is not None and glyph.color is not None:
            renderer.draw_filled_circle(glyph.x, glyph.y, glyph.circle_radius, glyph.color)
            return
        x, y = glyph.top_left
        renderer.draw_image(self._icon_bytes(glyph.icon, report), x, y, glyph.size, glyph.size)

    def _icon_bytes(self, ref: AssetRef, report: RenderReport) -> bytes:
        fallback = self.resolver.default.icon
        if ref in self._failed_icons:
            return self._assets.load(fallback)
        try:
            return self._assets.load(ref)
        except AssetFetchError as exc:
            if self.cfg.canvas.strict_assets or ref == fallback:
                raise
            self._failed_icons.add(ref)
            _LOGGER.warning("Marker icon %s unavailable, using default icon: %s", ref.describe(), exc)
            report.add_warning(f"Marker icon {ref.describe()} unavailable; default icon used")
            return self._assets.load(fallback)


@dataclass(frozen=True, slots=True)
class PageSpec:
    layers: frozenset[Layer] = ALL_LAYERS
    bounds: CanvasBounds | None = None

    @classmethod
    def parse(cls, text: str) -> PageSpec:
        """Parse ``LAYERS`` or ``LAYERS@x1,y1,x2,y2`` (e.g. ``OPL@15,40,195,280``)."""
        layers_part, sep, bounds_part = text.strip().partition("@")
        layers = parse_layers(layers_part)
        if not layers:
            raise ValueError(f"Page '{text}' names no layers")
        if not sep:
            return cls(layers=layers)
        try:
            values = [float(item) for item in bounds_part.split(",")]
        except ValueError:
            raise ValueError(f"Page '{text}' has non-numeric bounds") from None
        return cls(layers=layers, bounds=CanvasBounds.from_sequence(values))


def run_render(
    cfg: AppConfig,
    source: str | Path,
    output_path: Path,
    pages: Sequence[PageSpec] | None = None,
) -> RenderReport:
    """Render every page spec of one document into `output_path` (PDF or PNG)."""
    report = RenderReport()
    page_specs = list(pages) if pages else [PageSpec()]
    with HttpFetcher(cfg.http) as fetcher:
        try:
            with open_kmz(source, fetcher) as document:
                overlay_map = OverlayMap(document, cfg, fetcher=fetcher)
                report.warnings.extend(document.load_warnings)
                report.add_info(f"Loaded {len(overlay_map.document.markers())} markers from {source}")
                renderer = renderer_for_output(output_path, cfg.output.page_size, cfg.output.pixels_per_unit)
                for index, page in enumerate(page_specs, start=1):
                    if index > 1:
                        renderer.new_page()
                    bounds = page.bounds if page.bounds is not None else cfg.canvas.bounds
                    overlay_map.set_bounds(*bounds.as_tuple())
                    report.merge(overlay_map.render(page.layers, renderer), prefix=f"[page {index}]")
                unresolved = sorted(overlay_map.resolver.unresolved_refs)
                if unresolved:
                    report.add_warning("Unresolved style references: " + ", ".join(unresolved))
                report.output_paths.extend(renderer.save(output_path))
        except (KmzError, NoGeometryError) as exc:
            report.add_error(str(exc))
            return report
        except AssetFetchError as exc:
            report.add_error(f"Asset loading failed: {exc}")
            return report
    report.add_info(f"Output written to {output_path}")
    return report


def format_render_lines(report: RenderReport) -> Sequence[str]:
    lines: list[str] = []
    lines.extend(f"[INFO] {msg}" for msg in report.infos)
    lines.extend(f"[WARN] {msg}" for msg in report.warnings)
    lines.extend(f"[ERROR] {msg}" for msg in report.errors)
    if report.ok:
        lines.append(f"[OK] Rendered {report.pages} page(s) with no errors.")
    return lines


def format_summary_lines(summary: dict[str, Any]) -> Iterable[str]:
    projection = summary["projection"]
    center = projection["center"]
    size = projection["map_size"]
    yield f"[INFO] Geometry source: {projection['box_source']}"
    yield f"[INFO] Center: {center[0]:.6f}, {center[1]:.6f}; zoom {projection['zoom']}; map {size[0]}x{size[1]}"
    yield f"[INFO] Static map: {summary['static_map_url']}"
    bounds = summary["static_map_bounds"]
    yield (
        f"[INFO] Static map bounds: N {bounds['north']:.6f} S {bounds['south']:.6f} "
        f"E {bounds['east']:.6f} W {bounds['west']:.6f}"
    )
    yield f"[INFO] Markers: {summary['markers']}; styles: {len(summary['styles'])}"
    for style_id, style in sorted(summary["styles"].items()):
        yield f"[INFO]   {style_id}: icon={style['icon']} color={style['color']} scale={style['scale']}"
    for warning in summary["load_warnings"]:
        yield f"[WARN] {warning}"
