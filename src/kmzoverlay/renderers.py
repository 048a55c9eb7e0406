"""Page renderers executing a `PagePlan` in canvas units (millimetres)."""

from __future__ import annotations

import contextlib
import io
import logging
from pathlib import Path
from typing import Iterator, Protocol, Union

from PIL import Image, ImageDraw, ImageFont
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas as pdf_canvas


ImageSource = Union[bytes, Path]

_TEXT_RGB = (0, 0, 0)
_PAGE_BACKGROUND = (255, 255, 255, 255)

_LOGGER = logging.getLogger("kmzoverlay.renderers")


class Renderer(Protocol):
    def draw_image(self, source: ImageSource, x: float, y: float, w: float, h: float) -> None: ...

    def draw_filled_circle(self, x: float, y: float, radius: float, rgb: tuple[int, int, int]) -> None: ...

    def draw_text(self, x: float, y: float, text: str, height: float) -> None: ...

    def rotation(self, angle_deg: float, cx: float, cy: float) -> contextlib.AbstractContextManager[None]: ...

    def new_page(self) -> None: ...

    def save(self, path: Path) -> list[Path]: ...


def _open_rgba(source: ImageSource) -> Image.Image:
    handle = io.BytesIO(source) if isinstance(source, bytes) else source
    with Image.open(handle) as image:
        return image.convert("RGBA")


class PillowPageRenderer:
    """Raster pages; rotation scopes draw onto a transparent layer that is rotated on exit."""

    def __init__(self, page_size: tuple[float, float], pixels_per_unit: float) -> None:
        if pixels_per_unit <= 0:
            raise ValueError("pixels_per_unit must be > 0")
        self.page_size = page_size
        self.pixels_per_unit = float(pixels_per_unit)
        self._pixel_size = (
            max(int(round(page_size[0] * self.pixels_per_unit)), 1),
            max(int(round(page_size[1] * self.pixels_per_unit)), 1),
        )
        self._pages: list[Image.Image] = [self._blank_page()]
        self._layers: list[Image.Image] = []

    @property
    def pages(self) -> tuple[Image.Image, ...]:
        return tuple(self._pages)

    def _blank_page(self) -> Image.Image:
        return Image.new("RGBA", self._pixel_size, _PAGE_BACKGROUND)

    def _target(self) -> Image.Image:
        return self._layers[-1] if self._layers else self._pages[-1]

    def _px(self, value: float) -> float:
        return value * self.pixels_per_unit

    def draw_image(self, source: ImageSource, x: float, y: float, w: float, h: float) -> None:
        size = (max(int(round(self._px(w))), 1), max(int(round(self._px(h))), 1))
        resampling = getattr(getattr(Image, "Resampling", Image), "LANCZOS")
        resized = _open_rgba(source).resize(size, resample=resampling)
        target = self._target()
        layer = Image.new("RGBA", target.size, (0, 0, 0, 0))
        layer.paste(resized, (int(round(self._px(x))), int(round(self._px(y)))))
        target.alpha_composite(layer)

    def draw_filled_circle(self, x: float, y: float, radius: float, rgb: tuple[int, int, int]) -> None:
        cx, cy, r = self._px(x), self._px(y), self._px(radius)
        ImageDraw.Draw(self._target()).ellipse([cx - r, cy - r, cx + r, cy + r], fill=(*rgb, 255))

    def draw_text(self, x: float, y: float, text: str, height: float) -> None:
        font = ImageFont.load_default(size=max(int(round(self._px(height))), 1))
        ImageDraw.Draw(self._target()).text((self._px(x), self._px(y)), text, fill=(*_TEXT_RGB, 255), font=font)

    @contextlib.contextmanager
    def rotation(self, angle_deg: float, cx: float, cy: float) -> Iterator[None]:
        layer = Image.new("RGBA", self._pixel_size, (0, 0, 0, 0))
        self._layers.append(layer)
        try:
            yield
        except BaseException:
            self._layers.pop()
            raise
        self._layers.pop()
        rotated = layer.rotate(
            angle_deg,
            resample=getattr(getattr(Image, "Resampling", Image), "BICUBIC"),
            center=(self._px(cx), self._px(cy)),
        )
        self._target().alpha_composite(rotated)

    def new_page(self) -> None:
        if self._layers:
            raise RuntimeError("Cannot start a new page inside a rotation scope")
        self._pages.append(self._blank_page())

    def save(self, path: Path) -> list[Path]:
        """Write one PNG per page; pages after the first get a ``-N`` suffix."""
        path.parent.mkdir(parents=True, exist_ok=True)
        written: list[Path] = []
        for index, page in enumerate(self._pages, start=1):
            out = path if index == 1 else path.with_name(f"{path.stem}-{index}{path.suffix}")
            page.convert("RGB").save(out, format="PNG")
            written.append(out)
        _LOGGER.info("Wrote %d page image(s) starting at %s", len(written), path)
        return written


class PdfPageRenderer:
    """Vector pages through reportlab; canvas y grows downwards like the raster renderer."""

    def __init__(self, page_size: tuple[float, float], *, font_name: str = "Helvetica") -> None:
        self.page_size = page_size
        self.font_name = font_name
        self._buffer = io.BytesIO()
        self._page_h = page_size[1] * mm
        self._canvas = pdf_canvas.Canvas(self._buffer, pagesize=(page_size[0] * mm, self._page_h))
        self._depth = 0
        self._pages = 1

    def _y(self, y: float) -> float:
        return self._page_h - y * mm

    def draw_image(self, source: ImageSource, x: float, y: float, w: float, h: float) -> None:
        reader = ImageReader(io.BytesIO(source) if isinstance(source, bytes) else str(source))
        self._canvas.drawImage(reader, x * mm, self._y(y + h), width=w * mm, height=h * mm, mask="auto")

    def draw_filled_circle(self, x: float, y: float, radius: float, rgb: tuple[int, int, int]) -> None:
        c = self._canvas
        c.saveState()
        c.setFillColorRGB(rgb[0] / 255.0, rgb[1] / 255.0, rgb[2] / 255.0)
        c.circle(x * mm, self._y(y), radius * mm, stroke=0, fill=1)
        c.restoreState()

    def draw_text(self, x: float, y: float, text: str, height: float) -> None:
        c = self._canvas
        c.saveState()
        c.setFillColorRGB(*(v / 255.0 for v in _TEXT_RGB))
        c.setFont(self.font_name, height * mm)
        c.drawString(x * mm, self._y(y + height), text)
        c.restoreState()

    @contextlib.contextmanager
    def rotation(self, angle_deg: float, cx: float, cy: float) -> Iterator[None]:
        c = self._canvas
        px, py = cx * mm, self._y(cy)
        c.saveState()
        self._depth += 1
        c.translate(px, py)
        c.rotate(angle_deg)
        c.translate(-px, -py)
        try:
            yield
        finally:
            self._depth -= 1
            c.restoreState()

    def new_page(self) -> None:
        if self._depth:
            raise RuntimeError("Cannot start a new page inside a rotation scope")
        self._canvas.showPage()
        self._pages += 1

    def save(self, path: Path) -> list[Path]:
        self._canvas.save()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self._buffer.getvalue())
        _LOGGER.info("Wrote %d PDF page(s) to %s", self._pages, path)
        return [path]


def renderer_for_output(output_path: Path, page_size: tuple[float, float], pixels_per_unit: float) -> Renderer:
    if output_path.suffix.casefold() == ".pdf":
        return PdfPageRenderer(page_size)
    return PillowPageRenderer(page_size, pixels_per_unit)
