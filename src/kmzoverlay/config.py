"""Typed configuration loader for `config.yaml`."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, cast

import yaml

from .models import DEFAULT_CANVAS_BOUNDS, CanvasBounds


def _mapping(value: Any, field_name: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"Expected mapping for '{field_name}'")
    return cast(Mapping[str, Any], value)


def _str(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Expected non-empty string for '{field_name}'")
    return value.strip()


def _opt_str(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"Expected string for '{field_name}'")
    return value.strip() or None


def _int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Expected integer for '{field_name}'")
    return value


def _float(value: Any, field_name: str) -> float:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    raise ValueError(f"Expected float for '{field_name}'")


def _bool(value: Any, field_name: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"Expected bool for '{field_name}'")
    return value


def _float_pair(value: Any, field_name: str) -> tuple[float, float]:
    if not isinstance(value, list) or len(value) != 2:
        raise ValueError(f"Expected two-item list for '{field_name}'")
    return (_float(value[0], f"{field_name}[0]"), _float(value[1], f"{field_name}[1]"))


def _path_from_cfg(value: Any, field_name: str, root_dir: Path) -> Path:
    raw = _str(value, field_name)
    p = Path(raw)
    return p if p.is_absolute() else root_dir / p


@dataclass(frozen=True, slots=True)
class StaticMapConfig:
    base_url: str
    map_type: str
    language: str
    scale: int
    api_key: str | None
    api_key_env: str

    @property
    def resolved_api_key(self) -> str:
        if self.api_key:
            return self.api_key
        return os.environ.get(self.api_key_env, "").strip()

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> StaticMapConfig:
        map_type = _str(raw.get("map_type", "satellite"), "static_map.map_type").casefold()
        allowed = {"roadmap", "satellite", "terrain", "hybrid"}
        if map_type not in allowed:
            raise ValueError("static_map.map_type must be one of: " + ", ".join(sorted(allowed)))
        scale = _int(raw.get("scale", 2), "static_map.scale")
        if scale not in (1, 2):
            raise ValueError("static_map.scale must be 1 or 2")
        return cls(
            base_url=_str(
                raw.get("base_url", "https://maps.googleapis.com/maps/api/staticmap"),
                "static_map.base_url",
            ),
            map_type=map_type,
            language=_str(raw.get("language", "en"), "static_map.language"),
            scale=scale,
            api_key=_opt_str(raw.get("api_key"), "static_map.api_key"),
            api_key_env=_str(raw.get("api_key_env", "GOOGLE_MAPS_API_KEY"), "static_map.api_key_env"),
        )


@dataclass(frozen=True, slots=True)
class HttpConfig:
    request_timeout_s: float
    user_agent: str
    max_retries: int
    retry_backoff_s: float

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> HttpConfig:
        request_timeout_s = _float(raw.get("request_timeout_s", 30), "http.request_timeout_s")
        max_retries = _int(raw.get("max_retries", 3), "http.max_retries")
        retry_backoff_s = _float(raw.get("retry_backoff_s", 1.0), "http.retry_backoff_s")
        if request_timeout_s <= 0:
            raise ValueError("http.request_timeout_s must be > 0")
        if max_retries < 0:
            raise ValueError("http.max_retries must be >= 0")
        if retry_backoff_s <= 0:
            raise ValueError("http.retry_backoff_s must be > 0")
        return cls(
            request_timeout_s=request_timeout_s,
            user_agent=_str(raw.get("user_agent", "kmzoverlay/0.1"), "http.user_agent"),
            max_retries=max_retries,
            retry_backoff_s=retry_backoff_s,
        )


@dataclass(frozen=True, slots=True)
class CanvasConfig:
    bounds: CanvasBounds
    display_color: bool
    marker_size: float
    strict_assets: bool

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> CanvasConfig:
        bounds_raw = raw.get("bounds", list(DEFAULT_CANVAS_BOUNDS))
        if not isinstance(bounds_raw, list) or len(bounds_raw) != 4:
            raise ValueError("Expected four-item list for 'canvas.bounds'")
        bounds = CanvasBounds.from_sequence(
            [_float(item, f"canvas.bounds[{idx}]") for idx, item in enumerate(bounds_raw)]
        )
        marker_size = _float(raw.get("marker_size", 5.0), "canvas.marker_size")
        if marker_size <= 0:
            raise ValueError("canvas.marker_size must be > 0")
        return cls(
            bounds=bounds,
            display_color=_bool(raw.get("display_color", False), "canvas.display_color"),
            marker_size=marker_size,
            strict_assets=_bool(raw.get("strict_assets", False), "canvas.strict_assets"),
        )


@dataclass(frozen=True, slots=True)
class LegendConfig:
    origin: tuple[float, float]
    row_height: float
    text_offset: float
    glyph_size: float
    font_height: float

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> LegendConfig:
        row_height = _float(raw.get("row_height", 5.0), "legend.row_height")
        if row_height <= 0:
            raise ValueError("legend.row_height must be > 0")
        return cls(
            origin=_float_pair(raw.get("origin", [15.0, 30.0]), "legend.origin"),
            row_height=row_height,
            text_offset=_float(raw.get("text_offset", 5.0), "legend.text_offset"),
            glyph_size=_float(raw.get("glyph_size", 2.0), "legend.glyph_size"),
            font_height=_float(raw.get("font_height", 3.5), "legend.font_height"),
        )


@dataclass(frozen=True, slots=True)
class OutputConfig:
    page_size: tuple[float, float]
    pixels_per_unit: float

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> OutputConfig:
        page_size = _float_pair(raw.get("page_size", [210.0, 297.0]), "output.page_size")
        if page_size[0] <= 0 or page_size[1] <= 0:
            raise ValueError("output.page_size values must be > 0")
        pixels_per_unit = _float(raw.get("pixels_per_unit", 4.0), "output.pixels_per_unit")
        if pixels_per_unit <= 0:
            raise ValueError("output.pixels_per_unit must be > 0")
        return cls(page_size=page_size, pixels_per_unit=pixels_per_unit)


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    log_file: Path | None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], root_dir: Path) -> LoggingConfig:
        log_file_raw = raw.get("log_file")
        log_file = (
            None if log_file_raw is None else _path_from_cfg(log_file_raw, "logging.log_file", root_dir)
        )
        return cls(log_file=log_file)


@dataclass(frozen=True, slots=True)
class AppConfig:
    source_path: Path | None
    static_map: StaticMapConfig
    http: HttpConfig
    canvas: CanvasConfig
    legend: LegendConfig
    output: OutputConfig
    logging: LoggingConfig

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], source_path: Path | None) -> AppConfig:
        root_dir = source_path.parent.resolve() if source_path is not None else Path.cwd()
        return cls(
            source_path=source_path.resolve() if source_path is not None else None,
            static_map=StaticMapConfig.from_mapping(_mapping(raw.get("static_map"), "static_map")),
            http=HttpConfig.from_mapping(_mapping(raw.get("http"), "http")),
            canvas=CanvasConfig.from_mapping(_mapping(raw.get("canvas"), "canvas")),
            legend=LegendConfig.from_mapping(_mapping(raw.get("legend"), "legend")),
            output=OutputConfig.from_mapping(_mapping(raw.get("output"), "output")),
            logging=LoggingConfig.from_mapping(_mapping(raw.get("logging"), "logging"), root_dir),
        )

    @classmethod
    def default(cls) -> AppConfig:
        return cls.from_mapping({}, None)


def load_config(path: str | Path | None) -> AppConfig:
    """Load and validate the YAML config file into typed settings.

    `None` yields the built-in defaults.
    """
    if path is None:
        return AppConfig.default()
    cfg_path = Path(path).resolve()
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")
    with cfg_path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh)
    if raw is None:
        raw = {}
    if not isinstance(raw, Mapping):
        raise ValueError("Top-level config must be a YAML mapping")
    return AppConfig.from_mapping(cast(Mapping[str, Any], raw), cfg_path)
