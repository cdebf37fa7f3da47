"""Rendering surfaces used by the raster exporter.

A surface holds exactly one mounted HTML page at a time. The exporter mounts a
unit, lets it settle, measures anchor rectangles and only then rasterizes it,
so measurements always describe the same layout that ends up in the image.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Protocol

import pymupdf as fitz
from PIL import Image

from .preview import PREVIEW_CSS


logger = logging.getLogger(__name__)


class SurfaceError(RuntimeError):
    pass


@dataclass(frozen=True)
class MeasuredRect:
    """An element rectangle in unscaled layout pixels, relative to the unit's top-left."""

    element_id: str
    x: float
    y: float
    width: float
    height: float


class RenderSurface(Protocol):
    def mount(self, html: str) -> None: ...

    async def settle(self) -> None: ...

    def measure(self, prefix: str) -> list[MeasuredRect]: ...

    async def rasterize(self, width: int, scale: float) -> Image.Image: ...

    def close(self) -> None: ...


class StorySurface:
    """Lays HTML out with PyMuPDF's ``Story`` engine and rasterizes the result."""

    def __init__(
        self,
        *,
        width_px: int = 794,
        initial_height_px: int = 4000,
        max_height_px: int = 64000,
        settle_seconds: float = 0.0,
        user_css: str = PREVIEW_CSS,
    ):
        self.width_px = int(width_px)
        self.initial_height_px = max(1, int(initial_height_px))
        self.max_height_px = max(self.initial_height_px, int(max_height_px))
        self.settle_seconds = max(0.0, float(settle_seconds))
        self.user_css = user_css
        self._html: str | None = None
        self._pdf_bytes: bytes | None = None
        self._content_height: float = 0.0
        self._positions: dict[str, tuple[float, float, float, float]] = {}
        self._closed = False

    def mount(self, html: str) -> None:
        if self._closed:
            raise SurfaceError('surface is closed')
        self._html = html
        self._pdf_bytes = None
        self._positions = {}
        self._content_height = 0.0

    def _record_position(self, elpos) -> None:
        element_id = getattr(elpos, 'id', '') or ''
        if not element_id:
            return
        x0, y0, x1, y1 = (float(v) for v in elpos.rect)
        known = self._positions.get(element_id)
        if known is not None:
            x0, y0 = min(x0, known[0]), min(y0, known[1])
            x1, y1 = max(x1, known[2]), max(y1, known[3])
        self._positions[element_id] = (x0, y0, x1, y1)

    def _layout(self) -> None:
        if self._html is None:
            raise SurfaceError('nothing is mounted')

        height = self.initial_height_px
        while True:
            story = fitz.Story(html=self._html, user_css=self.user_css)
            mediabox = fitz.Rect(0, 0, self.width_px, height)
            more, filled = story.place(mediabox)
            if not more:
                break
            if height >= self.max_height_px:
                raise SurfaceError(f'unit does not fit within {self.max_height_px}px')
            height = min(height * 2, self.max_height_px)

        self._positions = {}
        # element_positions only accepts a plain one-argument callable
        story.element_positions(lambda elpos: self._record_position(elpos))

        buffer = BytesIO()
        writer = fitz.DocumentWriter(buffer)
        device = writer.begin_page(mediabox)
        story.draw(device)
        writer.end_page()
        writer.close()

        self._pdf_bytes = buffer.getvalue()
        self._content_height = max(1.0, float(fitz.Rect(filled).y1))
        logger.debug('Laid out unit at %sx%.0f', self.width_px, self._content_height)

    async def settle(self) -> None:
        self._layout()
        if self.settle_seconds:
            await asyncio.sleep(self.settle_seconds)

    def measure(self, prefix: str) -> list[MeasuredRect]:
        if self._pdf_bytes is None:
            self._layout()
        return [
            MeasuredRect(element_id=key, x=x0, y=y0, width=x1 - x0, height=y1 - y0)
            for key, (x0, y0, x1, y1) in self._positions.items()
            if key.startswith(prefix)
        ]

    async def rasterize(self, width: int, scale: float) -> Image.Image:
        if self._pdf_bytes is None:
            self._layout()
        with fitz.open(stream=self._pdf_bytes, filetype='pdf') as doc:
            page = doc[0]
            clip = fitz.Rect(0, 0, width, self._content_height)
            pix = page.get_pixmap(matrix=fitz.Matrix(scale, scale), clip=clip, alpha=False)
            return Image.frombytes('RGB', (pix.width, pix.height), pix.samples)

    def close(self) -> None:
        self._closed = True
        self._html = None
        self._pdf_bytes = None
        self._positions = {}
