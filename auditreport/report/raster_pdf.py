"""Raster pagination of the preview into an A4 PDF.

Each preview unit (contents first, then one per issue in canonical order) is
rendered on its own, cut into page-height strips and placed on consecutive
pages. Afterwards the contents page(s) get GoTo links to the first page of
each issue.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from io import BytesIO
from typing import Callable, Mapping

import pymupdf as fitz
from PIL import Image
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas as pdf_canvas

from ..config import Settings, get_settings
from ..types import IssueContent, IssueRecord
from .export_view import prepare_export_fragment
from .preview import TOC_ENTRY_ID_PREFIX, PreviewUnit, build_preview_units, wrap_fragment
from .surface import MeasuredRect, RenderSurface, StorySurface


logger = logging.getLogger(__name__)

A4_WIDTH_MM = 210.0
A4_HEIGHT_MM = 297.0


@dataclass(frozen=True)
class PageGeometry:
    page_width_mm: float = A4_WIDTH_MM
    page_height_mm: float = A4_HEIGHT_MM
    margin_top_mm: float = 12.0
    margin_bottom_mm: float = 14.0
    margin_left_mm: float = 12.0
    margin_right_mm: float = 12.0
    render_width_px: int = 794
    scale: float = 2.0

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> PageGeometry:
        settings = settings or get_settings()
        return cls(
            margin_top_mm=settings.page_margin_top_mm,
            margin_bottom_mm=settings.page_margin_bottom_mm,
            margin_left_mm=settings.page_margin_left_mm,
            margin_right_mm=settings.page_margin_right_mm,
            render_width_px=settings.render_width_px,
            scale=settings.render_scale,
        )

    @property
    def usable_width_mm(self) -> float:
        return self.page_width_mm - self.margin_left_mm - self.margin_right_mm

    @property
    def usable_height_mm(self) -> float:
        return self.page_height_mm - self.margin_top_mm - self.margin_bottom_mm

    @property
    def px_to_mm(self) -> float:
        """Layout pixels (before scaling) to millimetres on the page."""
        return self.usable_width_mm / self.render_width_px


@dataclass(frozen=True)
class Strip:
    top_px: int
    height_px: int
    height_mm: float


def plan_strips(image_height: int, image_width: int, geometry: PageGeometry) -> list[Strip]:
    """Cut a rendered image into page-height strips.

    The image is drawn at the full usable width, so its physical height
    follows from its aspect ratio. Strip heights are whole pixel rows and
    always add up to ``image_height``.
    """
    if image_height <= 0 or image_width <= 0:
        raise ValueError(f'cannot paginate an empty image ({image_width}x{image_height})')

    px_per_mm = image_width / geometry.usable_width_mm
    total_mm = image_height / px_per_mm
    if total_mm <= geometry.usable_height_mm:
        return [Strip(top_px=0, height_px=image_height, height_mm=total_mm)]

    strip_px = max(1, math.floor(geometry.usable_height_mm * px_per_mm))
    strips: list[Strip] = []
    top = 0
    while top < image_height:
        height = min(strip_px, image_height - top)
        strips.append(Strip(top_px=top, height_px=height, height_mm=height / px_per_mm))
        top += height
    return strips


@dataclass(frozen=True)
class TocLink:
    issue_id: int
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class PlacedLink:
    """A clickable rectangle in millimetres from the page's top-left corner."""

    issue_id: int
    page_number: int
    target_page: int
    x_mm: float
    y_mm: float
    width_mm: float
    height_mm: float


def toc_links_from_measurements(rects: list[MeasuredRect]) -> list[TocLink]:
    links: list[TocLink] = []
    for rect in rects:
        token = rect.element_id[len(TOC_ENTRY_ID_PREFIX):]
        try:
            issue_id = int(token)
        except ValueError:
            logger.debug('Ignoring contents entry with non-numeric id: %s', rect.element_id)
            continue
        links.append(TocLink(issue_id=issue_id, x=rect.x, y=rect.y, width=rect.width, height=rect.height))
    return links


def resolve_toc_links(
    links: list[TocLink],
    *,
    toc_start_page: int,
    toc_pages_used: int,
    issue_start_pages: Mapping[int, int],
    geometry: PageGeometry,
) -> list[PlacedLink]:
    ratio = geometry.px_to_mm
    placed: list[PlacedLink] = []
    for link in links:
        target = issue_start_pages.get(link.issue_id)
        if not target:
            logger.debug('Skipping contents link to unknown issue %s', link.issue_id)
            continue

        y_mm = link.y * ratio
        offset = math.floor(y_mm / geometry.usable_height_mm)
        if offset >= toc_pages_used:
            logger.debug('Skipping contents link for issue %s beyond page %s', link.issue_id, toc_pages_used)
            continue

        placed.append(
            PlacedLink(
                issue_id=link.issue_id,
                page_number=toc_start_page + offset,
                target_page=target,
                x_mm=geometry.margin_left_mm + link.x * ratio,
                y_mm=geometry.margin_top_mm + (y_mm - offset * geometry.usable_height_mm),
                width_mm=link.width * ratio,
                height_mm=link.height * ratio,
            )
        )
    return placed


@dataclass
class RasterDocument:
    pdf_bytes: bytes
    page_count: int
    unit_start_pages: dict[str, int] = field(default_factory=dict)
    issue_start_pages: dict[int, int] = field(default_factory=dict)
    links: list[PlacedLink] = field(default_factory=list)


def _encode_strip(image: Image.Image, strip: Strip, quality: int) -> BytesIO:
    piece = image.crop((0, strip.top_px, image.width, strip.top_px + strip.height_px))
    if piece.mode != 'RGB':
        piece = piece.convert('RGB')
    buffer = BytesIO()
    piece.save(buffer, format='JPEG', quality=quality)
    buffer.seek(0)
    return buffer


def _draw_strips(
    canvas,
    image: Image.Image,
    strips: list[Strip],
    geometry: PageGeometry,
    quality: int,
) -> None:
    page_height_pt = geometry.page_height_mm * mm
    for strip in strips:
        canvas.drawImage(
            ImageReader(_encode_strip(image, strip, quality)),
            geometry.margin_left_mm * mm,
            page_height_pt - (geometry.margin_top_mm + strip.height_mm) * mm,
            width=geometry.usable_width_mm * mm,
            height=strip.height_mm * mm,
        )
        canvas.showPage()


def _attach_links(pdf_bytes: bytes, links: list[PlacedLink]) -> bytes:
    if not links:
        return pdf_bytes
    with fitz.open(stream=pdf_bytes, filetype='pdf') as doc:
        for link in links:
            page = doc.load_page(link.page_number - 1)
            from_rect = fitz.Rect(
                link.x_mm * mm,
                link.y_mm * mm,
                (link.x_mm + link.width_mm) * mm,
                (link.y_mm + link.height_mm) * mm,
            )
            page.insert_link(
                {
                    'kind': fitz.LINK_GOTO,
                    'from': from_rect,
                    'page': link.target_page - 1,
                    'to': fitz.Point(0, 0),
                    'zoom': 0.0,
                }
            )
        return doc.tobytes(garbage=1, deflate=True)


def default_surface_factory(settings: Settings | None = None) -> Callable[[], RenderSurface]:
    settings = settings or get_settings()

    def factory() -> RenderSurface:
        return StorySurface(
            width_px=settings.render_width_px,
            initial_height_px=settings.render_initial_height_px,
            max_height_px=settings.render_max_height_px,
        )

    return factory


async def render_units(
    units: list[PreviewUnit],
    *,
    surface_factory: Callable[[], RenderSurface],
    geometry: PageGeometry,
    settle_delay: float = 0.0,
    jpeg_quality: int = 95,
) -> RasterDocument:
    """Rasterize preview units strictly one after another into a PDF."""
    buffer = BytesIO()
    canvas = pdf_canvas.Canvas(
        buffer,
        pagesize=(geometry.page_width_mm * mm, geometry.page_height_mm * mm),
        pageCompression=1,
    )

    current_page = 1
    unit_start_pages: dict[str, int] = {}
    issue_start_pages: dict[int, int] = {}
    toc_start_page = 1
    toc_pages_used = 0
    toc_links: list[TocLink] = []

    surface = surface_factory()
    try:
        for unit in units:
            unit_start_pages[unit.key] = current_page
            if unit.issue_id is not None:
                issue_start_pages[unit.issue_id] = current_page

            surface.mount(wrap_fragment(prepare_export_fragment(unit.html)))
            await surface.settle()
            if settle_delay > 0:
                await asyncio.sleep(settle_delay)

            if unit.is_toc:
                toc_start_page = current_page
                toc_links = toc_links_from_measurements(surface.measure(TOC_ENTRY_ID_PREFIX))

            image = await surface.rasterize(geometry.render_width_px, geometry.scale)
            strips = plan_strips(image.height, image.width, geometry)
            _draw_strips(canvas, image, strips, geometry, jpeg_quality)

            if unit.is_toc:
                toc_pages_used = len(strips)
            current_page += len(strips)
            logger.info('Rendered unit %s onto %d page(s)', unit.key, len(strips))
    finally:
        surface.close()

    canvas.save()

    placed: list[PlacedLink] = []
    if toc_links and toc_pages_used > 0:
        placed = resolve_toc_links(
            toc_links,
            toc_start_page=toc_start_page,
            toc_pages_used=toc_pages_used,
            issue_start_pages=issue_start_pages,
            geometry=geometry,
        )
    pdf_bytes = _attach_links(buffer.getvalue(), placed)
    logger.info('Raster PDF has %d page(s) and %d contents link(s)', current_page - 1, len(placed))

    return RasterDocument(
        pdf_bytes=pdf_bytes,
        page_count=current_page - 1,
        unit_start_pages=unit_start_pages,
        issue_start_pages=issue_start_pages,
        links=placed,
    )


async def render_raster_pdf(
    issues: list[IssueRecord],
    *,
    surface_factory: Callable[[], RenderSurface] | None = None,
    originals: Mapping[int, IssueContent] | None = None,
    geometry: PageGeometry | None = None,
    settle_delay: float | None = None,
    jpeg_quality: int | None = None,
) -> RasterDocument:
    settings = get_settings()
    units = build_preview_units(issues, originals=originals)
    return await render_units(
        units,
        surface_factory=surface_factory or default_surface_factory(settings),
        geometry=geometry or PageGeometry.from_settings(settings),
        settle_delay=settings.render_settle_seconds if settle_delay is None else settle_delay,
        jpeg_quality=settings.jpeg_quality if jpeg_quality is None else jpeg_quality,
    )
