from __future__ import annotations

import asyncio
import math

import pymupdf as fitz
import pytest

from auditreport.report.raster_pdf import (
    PageGeometry,
    TocLink,
    plan_strips,
    render_raster_pdf,
    resolve_toc_links,
)
from auditreport.report.preview import TOC_ENTRY_ID_PREFIX, wrap_fragment
from auditreport.report.surface import MeasuredRect, StorySurface


GEOMETRY = PageGeometry()


def _toc_rect(issue_id: int, y: float) -> MeasuredRect:
    return MeasuredRect(element_id=f'toc-entry-{issue_id}', x=40.0, y=y, width=700.0, height=20.0)


def test_geometry_defaults():
    assert GEOMETRY.usable_width_mm == 186
    assert GEOMETRY.usable_height_mm == 271
    assert GEOMETRY.px_to_mm == pytest.approx(186 / 794)


def test_short_image_is_one_strip():
    strips = plan_strips(1000, 1588, GEOMETRY)

    assert len(strips) == 1
    assert strips[0].top_px == 0
    assert strips[0].height_px == 1000
    assert strips[0].height_mm == pytest.approx(1000 * 186 / 1588)


@pytest.mark.parametrize('height', [2314, 5000, 6941, 12345])
def test_strips_cover_every_row(height):
    strips = plan_strips(height, 1588, GEOMETRY)
    limit = math.floor(GEOMETRY.usable_height_mm * 1588 / GEOMETRY.usable_width_mm)

    assert sum(strip.height_px for strip in strips) == height
    assert all(strip.height_px <= limit for strip in strips)
    assert [strip.top_px for strip in strips] == [sum(s.height_px for s in strips[:i]) for i in range(len(strips))]
    assert len(strips) == math.ceil(height / limit)


def test_empty_image_is_rejected():
    with pytest.raises(ValueError):
        plan_strips(0, 1588, GEOMETRY)


def test_links_beyond_toc_pages_or_to_unknown_issues_are_skipped():
    links = [
        TocLink(issue_id=1, x=40, y=100, width=700, height=20),
        TocLink(issue_id=99, x=40, y=130, width=700, height=20),
        TocLink(issue_id=2, x=40, y=5000, width=700, height=20),
    ]
    placed = resolve_toc_links(
        links,
        toc_start_page=1,
        toc_pages_used=1,
        issue_start_pages={1: 2, 2: 3},
        geometry=GEOMETRY,
    )

    assert [(link.issue_id, link.page_number, link.target_page) for link in placed] == [(1, 1, 2)]
    assert placed[0].x_mm == pytest.approx(12 + 40 * 186 / 794)
    assert placed[0].y_mm == pytest.approx(12 + 100 * 186 / 794)
    assert placed[0].width_mm == pytest.approx(700 * 186 / 794)


def test_links_on_second_toc_page():
    y = 1300.0
    placed = resolve_toc_links(
        [TocLink(issue_id=4, x=0, y=y, width=10, height=10)],
        toc_start_page=1,
        toc_pages_used=2,
        issue_start_pages={4: 9},
        geometry=GEOMETRY,
    )
    y_mm = y * GEOMETRY.px_to_mm

    assert placed[0].page_number == 2
    assert placed[0].y_mm == pytest.approx(12 + y_mm - 271)


def test_three_issues_two_categories(sample_issues, fake_surface_cls):
    surface = fake_surface_cls(
        toc_height=500,
        issue_heights={1: 800, 2: 1500, 3: 700},
        toc_rects=[_toc_rect(1, 100), _toc_rect(2, 130), _toc_rect(3, 200)],
    )
    document = asyncio.run(
        render_raster_pdf(sample_issues, surface_factory=lambda: surface, geometry=GEOMETRY, settle_delay=0)
    )

    assert document.page_count == 5
    assert document.unit_start_pages['toc'] == 1
    assert document.issue_start_pages == {1: 2, 2: 3, 3: 5}
    assert [(link.issue_id, link.page_number, link.target_page) for link in document.links] == [
        (1, 1, 2),
        (2, 1, 3),
        (3, 1, 5),
    ]

    with fitz.open(stream=document.pdf_bytes, filetype='pdf') as doc:
        assert doc.page_count == 5
        targets = sorted(link['page'] for link in doc[0].get_links() if link['kind'] == fitz.LINK_GOTO)
        assert targets == [1, 2, 4]
        assert doc[1].get_links() == []


def test_measure_happens_before_rasterize_and_only_for_toc(sample_issues, fake_surface_cls):
    surface = fake_surface_cls(toc_rects=[_toc_rect(1, 100)])
    asyncio.run(render_raster_pdf(sample_issues, surface_factory=lambda: surface, geometry=GEOMETRY, settle_delay=0))

    assert surface.events[:4] == [('mount', 'toc'), ('settle', 'toc'), ('measure', 'toc'), ('rasterize', 'toc')]
    assert [event for event in surface.events if event[0] == 'measure'] == [('measure', 'toc')]
    assert [event[1] for event in surface.events if event[0] == 'mount'] == ['toc', '1', '2', '3']
    assert surface.closed


def test_mounted_units_are_export_clones(sample_issues, fake_surface_cls):
    surface = fake_surface_cls()
    asyncio.run(render_raster_pdf(sample_issues, surface_factory=lambda: surface, geometry=GEOMETRY, settle_delay=0))

    for html in surface.mounted:
        assert 'editable-pencil' not in html
        assert '<select' not in html


def test_surface_closed_when_rendering_fails(sample_issues, fake_surface_cls):
    surface = fake_surface_cls(fail_on_issue=2)

    with pytest.raises(RuntimeError, match='issue 2'):
        asyncio.run(
            render_raster_pdf(sample_issues, surface_factory=lambda: surface, geometry=GEOMETRY, settle_delay=0)
        )
    assert surface.closed


def test_story_surface_measures_ids_in_layout_pixels():
    surface = StorySurface(width_px=400, initial_height_px=200)
    surface.mount(wrap_fragment('<p>intro</p><ul><li id="toc-entry-7">entry</li></ul><p>tail</p>'))
    asyncio.run(surface.settle())

    rects = surface.measure(TOC_ENTRY_ID_PREFIX)
    image = asyncio.run(surface.rasterize(400, 2.0))
    surface.close()

    assert [rect.element_id for rect in rects] == ['toc-entry-7']
    assert rects[0].y > 0 and rects[0].height > 0
    assert image.width == 800
    assert 0 < image.height < 400


def test_default_surface_splits_long_issue_and_links_first_pages(sample_issues, issue_factory):
    long_description = '\n\n'.join(f'Paragraph {index} of the lockout analysis.' for index in range(150))
    issues = [
        sample_issues[0],
        issue_factory(2, title='Missing lockout', overall_risk='Low', category='Auth', description=long_description),
        sample_issues[2],
    ]

    document = asyncio.run(render_raster_pdf(issues, geometry=GEOMETRY, settle_delay=0))
    starts = document.issue_start_pages

    assert starts[1] == 2
    assert starts[3] - starts[2] >= 2
    assert document.page_count == starts[3]
    assert len(document.links) == 3
    assert {link.page_number for link in document.links} == {1}
    assert {link.issue_id: link.target_page for link in document.links} == starts

    with fitz.open(stream=document.pdf_bytes, filetype='pdf') as doc:
        assert doc.page_count == document.page_count
        targets = sorted(link['page'] for link in doc[0].get_links() if link['kind'] == fitz.LINK_GOTO)
        assert targets == [starts[1] - 1, starts[2] - 1, starts[3] - 1]
