from __future__ import annotations

import re

import pytest
from PIL import Image

from auditreport.config import get_settings
from auditreport.report.surface import MeasuredRect
from auditreport.types import ExtraRow, IssueRecord


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    monkeypatch.setenv('DATA_DIR', str(tmp_path / 'data'))
    monkeypatch.setenv('OUTPUT_DIR', str(tmp_path / 'out'))
    monkeypatch.setenv('RENDER_SETTLE_SECONDS', '0')
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def make_issue(issue_id: int, **fields) -> IssueRecord:
    fields.setdefault('title', f'Issue {issue_id}')
    fields.setdefault('overall_risk', 'Medium')
    fields.setdefault('finding_id', f'ABC-{issue_id:04d}')
    return IssueRecord(id=issue_id, **fields)


@pytest.fixture
def issue_factory():
    return make_issue


@pytest.fixture
def sample_issues() -> list[IssueRecord]:
    return [
        make_issue(
            1,
            title='Weak session tokens',
            component='Auth service',
            overall_risk='High',
            category='Auth',
            description='Tokens use **predictable** seeds.',
            code_example='token = random.random()',
            code_language='python',
            recommendation='- Use `secrets.token_urlsafe`.',
            extra_rows=[ExtraRow(title='Token reuse', severity='Low')],
        ),
        make_issue(2, title='Missing lockout', overall_risk='Low', category='Auth', description='No lockout.'),
        make_issue(3, title='Legacy cipher', overall_risk='Medium', category='Crypto', impact_details='Data exposure.'),
    ]


class FakeSurface:
    """Records calls and returns blank images whose heights are configured per unit."""

    def __init__(
        self,
        *,
        toc_height: int = 500,
        issue_heights: dict[int, int] | None = None,
        toc_rects: list[MeasuredRect] | None = None,
        fail_on_issue: int | None = None,
    ):
        self.toc_height = toc_height
        self.issue_heights = issue_heights or {}
        self.toc_rects = toc_rects or []
        self.fail_on_issue = fail_on_issue
        self.events: list[tuple[str, str]] = []
        self.mounted: list[str] = []
        self.closed = False
        self._html = ''

    def _unit(self) -> str:
        match = re.search(r'data-issue-id="(\d+)"', self._html)
        return match.group(1) if match else 'toc'

    def mount(self, html: str) -> None:
        self._html = html
        self.mounted.append(html)
        self.events.append(('mount', self._unit()))

    async def settle(self) -> None:
        self.events.append(('settle', self._unit()))

    def measure(self, prefix: str) -> list[MeasuredRect]:
        self.events.append(('measure', self._unit()))
        return [rect for rect in self.toc_rects if rect.element_id.startswith(prefix)]

    async def rasterize(self, width: int, scale: float) -> Image.Image:
        unit = self._unit()
        self.events.append(('rasterize', unit))
        if unit != 'toc' and self.fail_on_issue == int(unit):
            raise RuntimeError(f'render failed for issue {unit}')
        height = self.toc_height if unit == 'toc' else self.issue_heights.get(int(unit), 600)
        return Image.new('RGB', (int(width * scale), int(height * scale)), 'white')

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_surface_cls():
    return FakeSurface
