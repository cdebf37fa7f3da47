from __future__ import annotations

import asyncio
import logging
import zipfile
from contextlib import contextmanager
from io import BytesIO
from pathlib import Path
from typing import Callable, Iterator, Mapping

from ..config import Settings, get_settings
from ..parser import issue_filename, issue_to_markdown
from ..storage import write_bytes_atomic
from ..types import IssueContent, IssueRecord
from .docx_report import render_docx
from .raster_pdf import PageGeometry, RasterDocument, default_surface_factory, render_raster_pdf
from .surface import RenderSurface


logger = logging.getLogger(__name__)


class ExportInProgressError(RuntimeError):
    pass


class ReportExporter:
    """Runs one export at a time and writes the results to ``output_dir``."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        output_dir: Path | None = None,
        surface_factory: Callable[[], RenderSurface] | None = None,
    ):
        self.settings = settings or get_settings()
        self.output_dir = Path(output_dir or self.settings.output_dir)
        self.surface_factory = surface_factory or default_surface_factory(self.settings)
        self.geometry = PageGeometry.from_settings(self.settings)
        self._generating = False

    @property
    def generating(self) -> bool:
        return self._generating

    @contextmanager
    def _exclusive(self, kind: str, issues: list[IssueRecord]) -> Iterator[None]:
        if self._generating:
            raise ExportInProgressError('another export is already running')
        if not issues:
            raise ValueError('there are no issues to export')
        self._generating = True
        try:
            yield
        except Exception:
            logger.exception('%s export failed', kind)
            raise
        finally:
            self._generating = False

    async def export_pdf(
        self,
        issues: list[IssueRecord],
        *,
        originals: Mapping[int, IssueContent] | None = None,
    ) -> tuple[Path, RasterDocument]:
        with self._exclusive('PDF', issues):
            document = await render_raster_pdf(
                issues,
                surface_factory=self.surface_factory,
                originals=originals,
                geometry=self.geometry,
                settle_delay=self.settings.render_settle_seconds,
                jpeg_quality=self.settings.jpeg_quality,
            )
            path = self.output_dir / self.settings.pdf_filename
            write_bytes_atomic(path, document.pdf_bytes)
            logger.info('Wrote %s (%d pages)', path, document.page_count)
            return path, document

    async def export_docx(self, issues: list[IssueRecord]) -> Path:
        with self._exclusive('DOCX', issues):
            content = await asyncio.to_thread(render_docx, issues, self.geometry)
            path = self.output_dir / self.settings.docx_filename
            write_bytes_atomic(path, content)
            logger.info('Wrote %s', path)
            return path

    def export_markdown_bundle(self, issues: list[IssueRecord]) -> Path:
        with self._exclusive('Markdown', issues):
            buffer = BytesIO()
            used: set[str] = set()
            with zipfile.ZipFile(buffer, 'w', compression=zipfile.ZIP_DEFLATED) as bundle:
                for issue in issues:
                    name = issue_filename(issue)
                    if name in used:
                        name = f'{Path(name).stem}-{issue.id}.md'
                    used.add(name)
                    bundle.writestr(name, issue_to_markdown(issue))
            path = self.output_dir / self.settings.markdown_bundle_filename
            write_bytes_atomic(path, buffer.getvalue())
            logger.info('Wrote %s (%d files)', path, len(used))
            return path
