"""HTML rendering of the live, editable preview.

The preview is one contents unit followed by one unit per issue in canonical
order. Units carry the interactive affordances of the editor (pencils, action
bars, restore buttons, severity selects); ``export_view`` removes them from a
copy before anything is rasterized.
"""

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Mapping

from ..grouping import SEVERITY_LEVELS, get_severity_color, paginate_groups
from ..session import field_differs, issue_differs
from ..types import IssueContent, IssueRecord
from .markup import block_to_html, inline_to_html


TOC_UNIT_KEY = 'toc'
TOC_ENTRY_ID_PREFIX = 'toc-entry-'
ISSUE_ANCHOR_PREFIX = 'issue-'

PREVIEW_CSS = """
body { margin: 0; background: #ffffff; font-family: sans-serif; color: #1a1a2e; }
.issue-page { padding: 30px 40px; background: #ffffff; font-size: 13px; line-height: 1.45; }
.toc-title { font-size: 26px; margin: 0 0 16px 0; padding-bottom: 8px; border-bottom: 3px solid #f5a623; }
.toc-category-title { font-size: 16px; margin: 18px 0 6px 0; }
.toc-category-count { color: #888888; font-weight: normal; }
.toc-items { list-style-type: none; margin: 0; padding: 0 0 0 18px; }
.toc-item { margin: 0 0 6px 0; }
.toc-link { color: #2980b9; text-decoration: none; }
.toc-finding-id { font-weight: bold; }
.toc-severity-badge, .severity-badge { padding: 2px 10px; font-weight: bold; font-size: 11px; }
.issue-component { font-size: 22px; margin: 0 0 6px 0; }
.issue-id { margin: 0 0 14px 0; }
.issue-table { width: 100%; border-collapse: collapse; margin-bottom: 12px; }
.issue-table th { background-color: #f5a623; color: #ffffff; text-align: left; padding: 6px 8px; border: 1px solid #cccccc; }
.issue-table td { padding: 6px 8px; border: 1px solid #cccccc; }
.severity-col, .severity-cell { text-align: center; width: 25%; }
.section-label { font-size: 14px; margin: 16px 0 6px 0; }
.evidence-line { margin: 6px 0 0 0; word-wrap: break-word; }
.code-block { background-color: #f5f5f5; border: 1px solid #e0e0e0; padding: 8px 12px; margin: 0; font-family: monospace; font-size: 11px; white-space: pre-wrap; }
.code-lang-label { color: #666666; font-style: italic; font-size: 10px; font-family: sans-serif; }
code { font-family: monospace; background-color: #f0f0f0; }
.page-number { text-align: center; color: #999999; font-size: 11px; margin-top: 20px; }
.editable-display--modified, .editable-block-display--modified { border-left: 3px solid #f5a623; padding-left: 6px; }
.issue-page--modified { border-left: 4px solid #f5a623; }
"""


@dataclass(frozen=True)
class PreviewUnit:
    key: str
    html: str
    issue_id: int | None = None

    @property
    def is_toc(self) -> bool:
        return self.key == TOC_UNIT_KEY


def issue_anchor(issue_id: int) -> str:
    return f'{ISSUE_ANCHOR_PREFIX}{issue_id}'


def _esc(value: object) -> str:
    return html.escape(str(value or ''), quote=True)


def _style_for(severity: str) -> str:
    color = get_severity_color(severity)
    return f'background-color: {color.bg}; color: {color.text}'


def _pencil() -> str:
    return '<span class="editable-pencil"> &#9998;</span>'


def _restore_button(field: str) -> str:
    return f'<button class="restore-field-btn" data-field="{_esc(field)}">&#8617;</button>'


def _severity_select(value: str) -> str:
    options = list(SEVERITY_LEVELS)
    if value and value not in options:
        options.append(value)
    rendered = []
    for option in options:
        selected = ' selected' if option == value else ''
        rendered.append(f'<option value="{_esc(option)}"{selected}>{_esc(option)}</option>')
    return f'<select class="severity-select" style="{_style_for(value)}">{"".join(rendered)}</select>'


def _editable_text(
    value: str,
    *,
    tag: str,
    field: str,
    modified: bool,
    placeholder: str,
    extra_class: str = '',
) -> str:
    classes = 'editable-display editable-display--modified' if modified else 'editable-display'
    if extra_class:
        classes = f'{extra_class} {classes}'
    shown = _esc(value) if value else f'<span class="editable-placeholder">{_esc(placeholder)}</span>'
    restore = _restore_button(field) if modified else ''
    return f'<{tag} class="{classes}" data-field="{_esc(field)}">{shown}{_pencil()}</{tag}>{restore}'


def build_toc_unit(issues: list[IssueRecord]) -> PreviewUnit:
    parts = [
        f'<div class="issue-page toc-page" data-unit="{TOC_UNIT_KEY}">',
        '<h1 class="toc-title">Table of Contents</h1>',
        '<div class="no-export"><button class="btn btn-reindex" title="Reindex all Finding IDs sequentially">'
        'Reindex IDs</button></div>',
        '<div class="toc-list">',
    ]
    for group in paginate_groups(issues):
        parts.append('<div class="toc-category">')
        parts.append(
            f'<h3 class="toc-category-title">{_esc(group.category)}'
            f'<span class="toc-category-count"> ({len(group.issues)})</span></h3>'
        )
        parts.append('<ul class="toc-items">')
        for paged in group.issues:
            issue = paged.issue
            parts.append(
                f'<li class="toc-item" id="{TOC_ENTRY_ID_PREFIX}{issue.id}">'
                f'<a href="#{issue_anchor(issue.id)}" class="toc-link">'
                f'<span class="toc-finding-id">{_esc(issue.finding_id or "-")}</span> '
                f'<span class="toc-issue-title">{_esc(issue.title or issue.component or "Untitled")}</span> '
                f'<span class="toc-severity-badge" style="{_style_for(issue.overall_risk)}">'
                f'{_esc(issue.overall_risk or "N/A")}</span>'
                '</a></li>'
            )
        parts.append('</ul></div>')
    parts.append('</div></div>')
    return PreviewUnit(key=TOC_UNIT_KEY, html=''.join(parts))


def _section(label: str, body: str, *, field: str, present: bool, modified: bool) -> str:
    wrapper = 'issue-section' if present else 'no-export'
    classes = 'editable-block-display editable-block-display--modified' if modified else 'editable-block-display'
    restore = _restore_button(field) if modified else ''
    return (
        f'<div class="{wrapper}">'
        f'<h4 class="section-label">{_esc(label)}</h4>'
        f'<div class="{classes}" data-field="{_esc(field)}">{body}{_pencil()}</div>'
        f'{restore}<div class="editable-hint">Click to edit</div>'
        '</div>'
    )


def _block_body(text: str, placeholder: str) -> str:
    if text:
        return block_to_html(text)
    return f'<p class="editable-placeholder">{_esc(placeholder)}</p>'


def _evidence_line(evidence: str) -> str:
    if not evidence:
        return ''
    return f'<p class="evidence-line"><strong>Evidence:</strong> {inline_to_html(evidence)}</p>'


def _code_body(code: str, language: str) -> str:
    label = _esc((language or 'Code').capitalize())
    return f'<div class="code-lang-label">{label}</div><pre class="code-block">{_esc(code)}</pre>'


def build_issue_unit(
    issue: IssueRecord,
    *,
    page_number: int,
    original: IssueContent | None = None,
    translation_enabled: bool = False,
) -> PreviewUnit:
    def modified(field: str) -> bool:
        return field_differs(issue, original, field)

    page_modified = issue_differs(issue, original)
    page_classes = 'issue-page issue-page--modified' if page_modified else 'issue-page'
    anchor = issue_anchor(issue.id)

    actions = ['<div class="page-action-bar">']
    if page_modified:
        actions.append('<button class="btn btn-restore-page">Restore original</button>')
    if translation_enabled:
        actions.append('<button class="btn translate-btn btn-translate-page">Translate</button>')
    actions.append('<button class="btn btn-download-md">.md</button>')
    actions.append('</div>')

    rows = [
        '<tr>'
        f'<td>{_editable_text(issue.title, tag="span", field="title", modified=modified("title"), placeholder="Issue title")}</td>'
        f'<td class="severity-cell">{_severity_select(issue.overall_risk)}'
        f'{_restore_button("overall_risk") if modified("overall_risk") else ""}</td>'
        '</tr>'
    ]
    for index, row in enumerate(issue.extra_rows):
        rows.append(
            f'<tr class="extra-row" data-row="{index}">'
            f'<td><span class="editable-display">{_esc(row.title)}{_pencil()}</span></td>'
            f'<td class="severity-cell"><div class="extra-row-severity">{_severity_select(row.severity)}'
            '<button class="btn-remove-row" title="Remove this row">&#10005;</button></div></td>'
            '</tr>'
        )

    parts = [
        f'<div class="{page_classes}" id="{anchor}" data-issue-id="{issue.id}" data-unit="{anchor}">',
        ''.join(actions),
        _editable_text(
            issue.component or issue.title,
            tag='h2',
            field='component',
            extra_class='issue-component',
            modified=modified('component'),
            placeholder='Component name',
        ),
        '<p class="issue-id"><strong>ID: '
        + _editable_text(
            issue.finding_id,
            tag='span',
            field='finding_id',
            modified=modified('finding_id'),
            placeholder='ABC-XXXXXX',
        )
        + '</strong></p>',
        '<table class="issue-table"><thead><tr>'
        '<th class="issue-col">Issue</th><th class="severity-col">Severity</th>'
        f'</tr></thead><tbody>{"".join(rows)}</tbody></table>',
        '<button class="btn btn-add-row">+ Add Issue Row</button>',
        _section(
            'Impact details:',
            _block_body(issue.impact_details, 'Click to add impact details...'),
            field='impact_details',
            present=bool(issue.impact_details),
            modified=modified('impact_details'),
        ),
        _section(
            'Description:',
            _block_body(issue.description, 'Click to add description...'),
            field='description',
            present=bool(issue.description),
            modified=modified('description'),
        ),
        _evidence_line(issue.evidence),
        _section(
            'Code example:',
            _code_body(issue.code_example, issue.code_language),
            field='code_example',
            present=bool(issue.code_example),
            modified=modified('code_example') or modified('code_language'),
        ),
        _section(
            'Example issue scenario:',
            _block_body(issue.example_scenario, 'Click to add an example scenario...'),
            field='example_scenario',
            present=bool(issue.example_scenario),
            modified=modified('example_scenario'),
        ),
        _section(
            'Recommendation:',
            _block_body(issue.recommendation, 'Click to add a recommendation...'),
            field='recommendation',
            present=bool(issue.recommendation),
            modified=modified('recommendation'),
        ),
        f'<div class="page-number">{page_number}</div>',
        '</div>',
    ]
    return PreviewUnit(key=anchor, html=''.join(parts), issue_id=issue.id)


def build_preview_units(
    issues: list[IssueRecord],
    *,
    originals: Mapping[int, IssueContent] | None = None,
    translation_enabled: bool = False,
) -> list[PreviewUnit]:
    originals = originals or {}
    units = [build_toc_unit(issues)]
    for group in paginate_groups(issues):
        for paged in group.issues:
            units.append(
                build_issue_unit(
                    paged.issue,
                    page_number=paged.page_number,
                    original=originals.get(paged.issue.id),
                    translation_enabled=translation_enabled,
                )
            )
    return units


def wrap_fragment(fragment: str, *, title: str = 'Audit Report') -> str:
    return (
        '<!DOCTYPE html><html><head><meta charset="utf-8">'
        f'<title>{_esc(title)}</title><style>{PREVIEW_CSS}</style></head>'
        f'<body>{fragment}</body></html>'
    )


def build_preview_document(units: list[PreviewUnit], *, title: str = 'Audit Report') -> str:
    return wrap_fragment(
        f'<div class="preview-container">{"".join(unit.html for unit in units)}</div>',
        title=title,
    )
