"""Marker style resolution and KML color parsing."""

from __future__ import annotations

import logging
import string
from dataclasses import dataclass
from typing import Mapping

from .assets import AssetRef, default_icon
from .models import KmlColor, Style, StyleMap


STYLE_SOURCE_STYLE_MAP = "style_map"
STYLE_SOURCE_STYLE = "style"
STYLE_SOURCE_DEFAULT = "default"

_HEX_DIGITS = set(string.hexdigits)

_LOGGER = logging.getLogger("kmzoverlay.styles")


class InvalidColorFormat(ValueError):
    """Color string is neither RRGGBB nor AARRGGBB hex."""


class UnresolvedStyleError(LookupError):
    """Style reference matches neither a style nor a style map."""


def parse_kml_color(text: str) -> KmlColor:
    """Parse a KML color.

    Eight digits are read as AARRGGBB (alpha first, e.g. ``ffb0279c``); six
    digits as RRGGBB with full opacity.
    """
    cleaned = text.strip().replace("#", "")
    if not cleaned or any(ch not in _HEX_DIGITS for ch in cleaned):
        raise InvalidColorFormat(f"Color '{text}' is not hexadecimal")
    if len(cleaned) == 6:
        return KmlColor(
            alpha=255,
            red=int(cleaned[0:2], 16),
            green=int(cleaned[2:4], 16),
            blue=int(cleaned[4:6], 16),
        )
    if len(cleaned) == 8:
        return KmlColor(
            alpha=int(cleaned[0:2], 16),
            red=int(cleaned[2:4], 16),
            green=int(cleaned[4:6], 16),
            blue=int(cleaned[6:8], 16),
        )
    raise InvalidColorFormat(f"Color '{text}' must have 6 or 8 hex digits, got {len(cleaned)}")


@dataclass(frozen=True, slots=True)
class EffectiveStyle:
    icon: AssetRef
    color: KmlColor | None
    scale: float
    source: str

    @property
    def is_default(self) -> bool:
        return self.source == STYLE_SOURCE_DEFAULT


class StyleResolver:
    """Resolve style references through the optional style-map layer."""

    def __init__(
        self,
        styles: Mapping[str, Style],
        style_maps: Mapping[str, StyleMap],
        *,
        default_icon_ref: AssetRef | None = None,
    ) -> None:
        self._styles = dict(styles)
        self._style_maps = dict(style_maps)
        self._default = EffectiveStyle(
            icon=default_icon_ref if default_icon_ref is not None else default_icon(),
            color=None,
            scale=1.0,
            source=STYLE_SOURCE_DEFAULT,
        )
        self._unresolved: set[str] = set()

    @property
    def default(self) -> EffectiveStyle:
        return self._default

    @property
    def unresolved_refs(self) -> frozenset[str]:
        return frozenset(self._unresolved)

    @property
    def style_ids(self) -> tuple[str, ...]:
        return tuple(self._styles)

    def resolve(self, style_ref: str) -> EffectiveStyle:
        ref = style_ref.strip().lstrip("#")
        try:
            return self._resolve_strict(ref)
        except UnresolvedStyleError as exc:
            if ref not in self._unresolved:
                self._unresolved.add(ref)
                _LOGGER.warning("%s; using default marker style", exc)
            return self._default

    def _resolve_strict(self, ref: str) -> EffectiveStyle:
        style_map = self._style_maps.get(ref)
        if style_map is not None:
            target = style_map.normal_ref.strip().lstrip("#")
            style = self._styles.get(target)
            if style is None:
                raise UnresolvedStyleError(
                    f"Style map '{ref}' points to unknown style '{target}'"
                )
            return self._effective(style, STYLE_SOURCE_STYLE_MAP)

        style = self._styles.get(ref)
        if style is not None:
            return self._effective(style, STYLE_SOURCE_STYLE)
        raise UnresolvedStyleError(f"Style reference '{ref}' matches no style or style map")

    def _effective(self, style: Style, source: str) -> EffectiveStyle:
        return EffectiveStyle(
            icon=style.icon if style.icon is not None else self._default.icon,
            color=style.color,
            scale=style.scale,
            source=source,
        )
