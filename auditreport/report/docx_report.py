"""Structured (editable) report as a Word document.

Same canonical order and content as the raster PDF, but built from native
document objects: headings with bookmarks, tables with shaded cells, internal
hyperlinks in the contents and PAGE / NUMPAGES fields in the footer.
"""

from __future__ import annotations

from io import BytesIO

from docx import Document
from docx.enum.table import WD_TABLE_ALIGNMENT
from docx.enum.text import WD_ALIGN_PARAGRAPH, WD_BREAK
from docx.oxml import OxmlElement, parse_xml
from docx.oxml.ns import nsdecls, qn
from docx.shared import Mm, Pt, RGBColor

from ..grouping import canonical_order, get_severity_color, group_by_category
from ..types import IssueRecord
from .markup import InlineRun, parse_block, parse_inline
from .raster_pdf import PageGeometry


BODY_FONT = 'Calibri'
MONO_FONT = 'Courier New'
BODY_SIZE = Pt(11)

HEADER_FILL = 'F5A623'
TABLE_BORDER = 'CCCCCC'
CODE_FILL = 'F5F5F5'
CODE_BORDER = 'E0E0E0'
INLINE_CODE_FILL = 'F0F0F0'
LINK_COLOR = '2980B9'
TITLE_COLOR = '1A1A2E'
MUTED_COLOR = '888888'
FOOTER_COLOR = '999999'

ISSUE_COLUMN_SHARE = 0.75

_PPR_AFTER_BORDER = (
    'w:shd', 'w:tabs', 'w:suppressAutoHyphens', 'w:kinsoku', 'w:wordWrap',
    'w:overflowPunct', 'w:topLinePunct', 'w:autoSpaceDE', 'w:autoSpaceDN',
    'w:bidi', 'w:adjustRightInd', 'w:snapToGrid', 'w:spacing', 'w:ind',
    'w:contextualSpacing', 'w:mirrorIndents', 'w:suppressOverlap', 'w:jc',
    'w:textDirection', 'w:textAlignment', 'w:textboxTightWrap',
    'w:outlineLvl', 'w:divId', 'w:cnfStyle', 'w:rPr', 'w:sectPr', 'w:pPrChange',
)


def bookmark_name(issue_id: int) -> str:
    return f'issue_{issue_id}'


def _hex(color: str) -> str:
    return color.lstrip('#').upper()


def _rgb(color: str) -> RGBColor:
    return RGBColor.from_string(_hex(color))


def _style_run(run, *, size=BODY_SIZE, bold=False, italic=False, color: str | None = None, font=BODY_FONT):
    run.font.name = font
    run.font.size = size
    if bold:
        run.font.bold = True
    if italic:
        run.font.italic = True
    if color:
        run.font.color.rgb = _rgb(color)
    return run


def _shade_run(run, fill: str) -> None:
    run._r.get_or_add_rPr().append(
        parse_xml(f'<w:shd {nsdecls("w")} w:val="clear" w:color="auto" w:fill="{_hex(fill)}"/>')
    )


def _set_cell_bg(cell, fill: str) -> None:
    shading = parse_xml(f'<w:shd {nsdecls("w")} w:fill="{_hex(fill)}" w:val="clear"/>')
    cell._tc.get_or_add_tcPr().append(shading)


def _set_cell_borders(cell, color: str) -> None:
    borders = OxmlElement('w:tcBorders')
    for name in ('top', 'left', 'bottom', 'right'):
        border = OxmlElement(f'w:{name}')
        border.set(qn('w:val'), 'single')
        border.set(qn('w:sz'), '4')
        border.set(qn('w:space'), '0')
        border.set(qn('w:color'), _hex(color))
        borders.append(border)
    cell._tc.get_or_add_tcPr().append(borders)


def _set_cell_margins(cell, *, top: int, bottom: int, left: int, right: int) -> None:
    margins = OxmlElement('w:tcMar')
    for name, value in (('top', top), ('left', left), ('bottom', bottom), ('right', right)):
        margin = OxmlElement(f'w:{name}')
        margin.set(qn('w:w'), str(value))
        margin.set(qn('w:type'), 'dxa')
        margins.append(margin)
    cell._tc.get_or_add_tcPr().append(margins)


def _add_paragraph_bottom_border(paragraph, color: str) -> None:
    pPr = paragraph._p.get_or_add_pPr()
    pBdr = OxmlElement('w:pBdr')
    bottom = OxmlElement('w:bottom')
    bottom.set(qn('w:val'), 'single')
    bottom.set(qn('w:sz'), '6')
    bottom.set(qn('w:space'), '8')
    bottom.set(qn('w:color'), _hex(color))
    pBdr.append(bottom)
    pPr.insert_element_before(pBdr, *_PPR_AFTER_BORDER)


def _add_field(paragraph, instruction: str, *, color: str, size) -> None:
    run = paragraph.add_run()
    begin = OxmlElement('w:fldChar')
    begin.set(qn('w:fldCharType'), 'begin')
    instr = OxmlElement('w:instrText')
    instr.set(qn('xml:space'), 'preserve')
    instr.text = instruction
    end = OxmlElement('w:fldChar')
    end.set(qn('w:fldCharType'), 'end')
    run._r.append(begin)
    run._r.append(instr)
    run._r.append(end)
    _style_run(run, size=size, color=color)


def _add_bookmark(paragraph, name: str, bookmark_id: int) -> None:
    start = OxmlElement('w:bookmarkStart')
    start.set(qn('w:id'), str(bookmark_id))
    start.set(qn('w:name'), name)
    end = OxmlElement('w:bookmarkEnd')
    end.set(qn('w:id'), str(bookmark_id))
    pPr = paragraph._p.pPr
    if pPr is None:
        paragraph._p.insert(0, start)
    else:
        pPr.addnext(start)
    paragraph._p.append(end)


def _add_internal_hyperlink(paragraph, anchor: str, runs: list) -> None:
    hyperlink = OxmlElement('w:hyperlink')
    hyperlink.set(qn('w:anchor'), anchor)
    hyperlink.set(qn('w:history'), '1')
    for run in runs:
        hyperlink.append(run._r)
    paragraph._p.append(hyperlink)


def _add_inline_runs(paragraph, runs: tuple[InlineRun, ...] | list[InlineRun]) -> None:
    for item in runs:
        if item.code:
            run = _style_run(paragraph.add_run(item.text), size=Pt(10), font=MONO_FONT)
            _shade_run(run, INLINE_CODE_FILL)
        else:
            _style_run(paragraph.add_run(item.text), bold=item.bold, italic=item.italic)


def _add_block(doc, text: str) -> None:
    for item in parse_block(text):
        if item.kind == 'bullet':
            paragraph = doc.add_paragraph(style='List Bullet')
            paragraph.paragraph_format.space_after = Pt(3)
        else:
            paragraph = doc.add_paragraph()
            paragraph.paragraph_format.space_after = Pt(5)
        _add_inline_runs(paragraph, item.runs)


def _add_section_label(doc, text: str) -> None:
    paragraph = doc.add_paragraph()
    paragraph.paragraph_format.space_before = Pt(12)
    paragraph.paragraph_format.space_after = Pt(5)
    _style_run(paragraph.add_run(text), bold=True)


def _add_evidence(doc, evidence: str) -> None:
    paragraph = doc.add_paragraph()
    paragraph.paragraph_format.space_before = Pt(4)
    paragraph.paragraph_format.space_after = Pt(5)
    _style_run(paragraph.add_run('Evidence: '), bold=True)
    _add_inline_runs(paragraph, parse_inline(evidence))


def _fill_cell(cell, text: str, *, width, bold=False, color: str | None = None, center=False) -> None:
    cell.width = width
    paragraph = cell.paragraphs[0]
    if center:
        paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
    _style_run(paragraph.add_run(text), bold=bold, color=color)
    _set_cell_borders(cell, TABLE_BORDER)


def _add_issue_table(doc, issue: IssueRecord, geometry: PageGeometry) -> None:
    content_width = geometry.usable_width_mm
    issue_width = Mm(content_width * ISSUE_COLUMN_SHARE)
    severity_width = Mm(content_width - content_width * ISSUE_COLUMN_SHARE)

    rows = [(issue.title, issue.overall_risk)] + [(row.title, row.severity) for row in issue.extra_rows]
    table = doc.add_table(rows=1 + len(rows), cols=2)
    table.autofit = False
    table.alignment = WD_TABLE_ALIGNMENT.CENTER

    header = table.rows[0].cells
    _fill_cell(header[0], 'Issue', width=issue_width, bold=True, color='FFFFFF')
    _fill_cell(header[1], 'Severity', width=severity_width, bold=True, color='FFFFFF', center=True)
    _set_cell_bg(header[0], HEADER_FILL)
    _set_cell_bg(header[1], HEADER_FILL)

    for index, (title, severity) in enumerate(rows, start=1):
        colors = get_severity_color(severity)
        cells = table.rows[index].cells
        _fill_cell(cells[0], title or '', width=issue_width)
        _fill_cell(cells[1], severity or 'N/A', width=severity_width, color=colors.text, center=True)
        _set_cell_bg(cells[1], colors.bg)


def _add_code_block(doc, code: str, language: str, geometry: PageGeometry) -> None:
    table = doc.add_table(rows=1, cols=1)
    table.autofit = False
    cell = table.rows[0].cells[0]
    cell.width = Mm(geometry.usable_width_mm)
    _set_cell_borders(cell, CODE_BORDER)
    _set_cell_bg(cell, CODE_FILL)
    _set_cell_margins(cell, top=144, bottom=144, left=216, right=216)

    paragraph = cell.paragraphs[0]
    lines = code.split('\n')
    if language:
        _style_run(paragraph.add_run(language[:1].upper() + language[1:]), size=Pt(9), italic=True, color='666666')
        paragraph.paragraph_format.space_after = Pt(3)
        paragraph = cell.add_paragraph()
    for index, line in enumerate(lines):
        if index:
            paragraph = cell.add_paragraph()
        paragraph.paragraph_format.space_after = Pt(0)
        _style_run(paragraph.add_run(line or ' '), size=Pt(9), font=MONO_FONT, color='333333')


def _add_contents(doc, issues: list[IssueRecord]) -> None:
    heading = doc.add_paragraph()
    heading.paragraph_format.space_after = Pt(15)
    _style_run(heading.add_run('Table of Contents'), size=Pt(20), bold=True, color=TITLE_COLOR)
    _add_paragraph_bottom_border(heading, HEADER_FILL)

    for group in group_by_category(issues):
        category = doc.add_paragraph()
        category.paragraph_format.space_before = Pt(12)
        category.paragraph_format.space_after = Pt(5)
        _style_run(category.add_run(group.category), size=Pt(13), bold=True, color=TITLE_COLOR)
        _style_run(category.add_run(f' ({len(group.issues)})'), color=MUTED_COLOR)

        for issue in group.issues:
            entry = doc.add_paragraph()
            entry.paragraph_format.left_indent = Mm(6.35)
            entry.paragraph_format.space_after = Pt(3)

            finding = _style_run(entry.add_run(issue.finding_id or '-'), size=Pt(10.5), bold=True, color=LINK_COLOR)
            finding.font.underline = True
            gap = _style_run(entry.add_run('  '), size=Pt(10.5))
            title = _style_run(
                entry.add_run(issue.title or issue.component or 'Untitled'),
                size=Pt(10.5),
                color=LINK_COLOR,
            )
            title.font.underline = True
            _add_internal_hyperlink(entry, bookmark_name(issue.id), [finding, gap, title])

            _style_run(entry.add_run('   '), size=Pt(10.5))
            colors = get_severity_color(issue.overall_risk)
            tag = _style_run(entry.add_run(f' {issue.overall_risk or "N/A"} '), size=Pt(10), color=colors.text)
            _shade_run(tag, colors.bg)


def _add_issue(doc, issue: IssueRecord, geometry: PageGeometry, bookmark_id: int) -> None:
    doc.add_paragraph().add_run().add_break(WD_BREAK.PAGE)

    heading = doc.add_paragraph(style='Heading 1')
    heading.paragraph_format.space_after = Pt(6)
    _style_run(heading.add_run(issue.component or issue.title), size=Pt(16), bold=True)
    _add_bookmark(heading, bookmark_name(issue.id), bookmark_id)

    id_line = doc.add_paragraph()
    id_line.paragraph_format.space_after = Pt(10)
    _style_run(id_line.add_run(f'ID: {issue.finding_id}'), size=Pt(12), bold=True)

    _add_issue_table(doc, issue, geometry)
    doc.add_paragraph().paragraph_format.space_after = Pt(5)

    if issue.impact_details:
        _add_section_label(doc, 'Impact details:')
        _add_block(doc, issue.impact_details)
    if issue.description:
        _add_section_label(doc, 'Description:')
        _add_block(doc, issue.description)
    if issue.evidence:
        _add_evidence(doc, issue.evidence)
    if issue.code_example:
        _add_section_label(doc, 'Code example:')
        _add_code_block(doc, issue.code_example, issue.code_language, geometry)
        doc.add_paragraph().paragraph_format.space_after = Pt(5)
    if issue.example_scenario:
        _add_section_label(doc, 'Example issue scenario:')
        _add_block(doc, issue.example_scenario)
    if issue.recommendation:
        _add_section_label(doc, 'Recommendation:')
        _add_block(doc, issue.recommendation)


def _setup_page(doc, geometry: PageGeometry) -> None:
    section = doc.sections[0]
    section.page_width = Mm(geometry.page_width_mm)
    section.page_height = Mm(geometry.page_height_mm)
    section.top_margin = Mm(geometry.margin_top_mm)
    section.bottom_margin = Mm(geometry.margin_bottom_mm)
    section.left_margin = Mm(geometry.margin_left_mm)
    section.right_margin = Mm(geometry.margin_right_mm)

    normal = doc.styles['Normal']
    normal.font.name = BODY_FONT
    normal.font.size = BODY_SIZE

    footer = section.footer
    paragraph = footer.paragraphs[0] if footer.paragraphs else footer.add_paragraph()
    paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
    _add_field(paragraph, 'PAGE', color=FOOTER_COLOR, size=Pt(10))
    _style_run(paragraph.add_run(' / '), size=Pt(10), color=FOOTER_COLOR)
    _add_field(paragraph, 'NUMPAGES', color=FOOTER_COLOR, size=Pt(10))


def build_docx_document(issues: list[IssueRecord], geometry: PageGeometry | None = None):
    geometry = geometry or PageGeometry.from_settings()
    doc = Document()
    _setup_page(doc, geometry)
    _add_contents(doc, issues)
    for bookmark_id, issue in enumerate(canonical_order(issues), start=1):
        _add_issue(doc, issue, geometry, bookmark_id)
    return doc


def render_docx(issues: list[IssueRecord], geometry: PageGeometry | None = None) -> bytes:
    buffer = BytesIO()
    build_docx_document(issues, geometry).save(buffer)
    return buffer.getvalue()
