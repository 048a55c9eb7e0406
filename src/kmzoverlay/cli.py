"""CLI entrypoint for the KMZ overlay renderer."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Sequence

from .config import AppConfig, load_config
from .fetch import AssetFetchError, HttpFetcher
from .kml import KmzError, open_kmz
from .projection import NoGeometryError
from .render import OverlayMap, PageSpec, format_render_lines, format_summary_lines, run_render
from .util import setup_logging, write_json

LOGGER = logging.getLogger("kmzoverlay.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kmzoverlay",
        description="Project KMZ ground overlays and placemarks onto printable pages.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", default=None, help="Path to YAML config (defaults when omitted).")
        p.add_argument("--verbose", action="store_true", help="Enable debug logs.")

    render_p = subparsers.add_parser("render", help="Render a KMZ/KML document to PDF or PNG.")
    add_common(render_p)
    render_p.add_argument("source", help="Local .kmz/.kml path or http(s) URL of a .kmz.")
    render_p.add_argument(
        "-o",
        "--output",
        required=True,
        help="Output file; .pdf writes a PDF, anything else PNG pages.",
    )
    render_p.add_argument(
        "--page",
        action="append",
        default=[],
        metavar="LAYERS[@x1,y1,x2,y2]",
        help=(
            "Page to render, repeatable. Layers: M=base map, O=overlay, P=markers, "
            "L=legend. Defaults to one MOPL page."
        ),
    )

    inspect_p = subparsers.add_parser(
        "inspect",
        help="Show projection, static map request and styles of a document.",
    )
    add_common(inspect_p)
    inspect_p.add_argument("source", help="Local .kmz/.kml path or http(s) URL of a .kmz.")
    inspect_p.add_argument("--json", dest="json_path", default=None, help="Also write the summary as JSON.")
    return parser


def _load_and_setup(args: argparse.Namespace) -> AppConfig:
    cfg = load_config(args.config)
    setup_logging(cfg.logging.log_file, verbose=args.verbose)
    return cfg


def _run_render(cfg: AppConfig, *, source: str, output: Path, pages: Sequence[str]) -> int:
    try:
        page_specs = [PageSpec.parse(item) for item in pages]
    except ValueError as exc:
        LOGGER.error("Invalid --page value: %s", exc)
        return 2
    report = run_render(cfg, source, output, page_specs)
    for line in format_render_lines(report):
        LOGGER.info(line)
    return 0 if report.ok else 1


def _run_inspect(cfg: AppConfig, *, source: str, json_path: Path | None) -> int:
    with HttpFetcher(cfg.http) as fetcher:
        try:
            with open_kmz(source, fetcher) as document:
                summary = OverlayMap(document, cfg, fetcher=fetcher).summary()
        except (KmzError, NoGeometryError, AssetFetchError) as exc:
            LOGGER.error("[ERROR] %s", exc)
            return 1
    for line in format_summary_lines(summary):
        LOGGER.info(line)
    if json_path is not None:
        write_json(json_path, summary)
        LOGGER.info("[INFO] Summary written to %s", json_path)
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    cfg = _load_and_setup(args)
    command = str(args.command)
    if command == "render":
        return _run_render(
            cfg,
            source=str(args.source),
            output=Path(args.output),
            pages=[str(item) for item in args.page],
        )
    if command == "inspect":
        json_path = Path(args.json_path) if args.json_path else None
        return _run_inspect(cfg, source=str(args.source), json_path=json_path)
    raise ValueError(f"Unknown command: {command}")


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    return _dispatch(args)


if __name__ == "__main__":
    raise SystemExit(main())
