"""Parse and serialize the audit issue template.

The template looks like::

    # Issue title: <title>

    Overall Risk: <risk>
    Additional Issue: <title> | <severity>
    Impact: <impact>
    Exploitability: <exploitability>
    Finding ID: <id>
    Component: <component>
    Category: <category>
    Status: <status>

    ## Impact details
    ## Description
    Evidence: <link>
    ### Code example
    ### Example issue scenario
    ## Recommendation

Parsing is a line-oriented state machine. Metadata lines are only read in the
preamble (before the first section heading); section headings are only
recognized outside fenced code. When a field or section appears more than
once, the first occurrence wins.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Iterable

from markdown_it import MarkdownIt

from .types import ExtraRow, IssueContent, IssueRecord


DEFAULT_EXTRA_ROW_SEVERITY = 'Medium'
DEFAULT_CODE_LANGUAGE = 'text'

_TITLE_PATTERN = re.compile(r'^#\s+Issue title:\s*(.*)$', re.IGNORECASE)
_HEADING_PATTERN = re.compile(r'^#{2,3}\s+(.+)$')
_META_PATTERN = re.compile(
    r'^(Overall Risk|Impact|Exploitability|Finding ID|Component|Category|Status)\s*:\s*(.*)$',
    re.IGNORECASE,
)
_EXTRA_ROW_PATTERN = re.compile(r'^Additional Issue\s*:\s*(.*)$', re.IGNORECASE)
_EVIDENCE_PATTERN = re.compile(r'^Evidence\s*:\s*(.*)$', re.IGNORECASE)
_FENCE_PATTERN = re.compile(r'^\s{0,3}(`{3,}|~{3,})(.*)$')
_BACKTICK_RUN_PATTERN = re.compile(r'`+')

_METADATA_FIELDS: dict[str, str] = {
    'overall risk': 'overall_risk',
    'impact': 'impact',
    'exploitability': 'exploitability',
    'finding id': 'finding_id',
    'component': 'component',
    'category': 'category',
    'status': 'status',
}

SECTION_KEYS: dict[str, str] = {
    'impact details': 'impact_details',
    'description': 'description',
    'code example': 'code_example',
    'example issue scenario': 'example_scenario',
    'recommendation': 'recommendation',
}

_MARKDOWN_PARSER: MarkdownIt | None = None


class _State(Enum):
    PREAMBLE = 'preamble'
    SCANNING = 'scanning'
    SECTION = 'section'


def _markdown_parser() -> MarkdownIt:
    global _MARKDOWN_PARSER
    if _MARKDOWN_PARSER is None:
        _MARKDOWN_PARSER = MarkdownIt('commonmark')
    return _MARKDOWN_PARSER


def _normalize_newlines(value: str) -> str:
    return value.replace('\r\n', '\n').replace('\r', '\n')


class _FenceTracker:
    """Tracks whether the current line sits inside a fenced code block."""

    def __init__(self) -> None:
        self.marker: str | None = None

    @property
    def open(self) -> bool:
        return self.marker is not None

    def feed(self, line: str) -> None:
        match = _FENCE_PATTERN.match(line)
        if match is None:
            return
        run = match.group(1)
        if self.marker is None:
            self.marker = run
            return
        closes = (
            run[0] == self.marker[0]
            and len(run) >= len(self.marker)
            and not match.group(2).strip()
        )
        if closes:
            self.marker = None


def _parse_extra_row(value: str) -> ExtraRow:
    parts = value.split('|')
    title = parts[0].strip()
    severity = parts[1].strip() if len(parts) > 1 else ''
    return ExtraRow(title=title, severity=severity or DEFAULT_EXTRA_ROW_SEVERITY)


def _split_description(lines: list[str]) -> tuple[str, str]:
    evidence: str | None = None
    kept: list[str] = []
    fence = _FenceTracker()
    for line in lines:
        fence.feed(line)
        if evidence is None and not fence.open:
            match = _EVIDENCE_PATTERN.match(line.strip())
            if match and match.group(1).strip():
                evidence = match.group(1).strip()
                continue
        kept.append(line)
    return '\n'.join(kept).strip(), evidence or ''


def _extract_code(section_text: str) -> tuple[str, str]:
    for token in _markdown_parser().parse(section_text):
        if token.type != 'fence':
            continue
        info = (token.info or '').strip()
        language = info.split()[0] if info else ''
        code = token.content.rstrip().lstrip('\n')
        return code, language or DEFAULT_CODE_LANGUAGE
    return section_text.strip(), ''


def parse_issue(markdown_content: str) -> IssueContent:
    """Parse one issue document. Missing pieces default to empty strings."""
    fields: dict[str, object] = {}
    extra_rows: list[ExtraRow] = []
    sections: dict[str, list[str]] = {}

    state = _State.PREAMBLE
    current_key: str | None = None
    fence = _FenceTracker()

    for line in _normalize_newlines(str(markdown_content or '')).split('\n'):
        if not fence.open:
            heading = _HEADING_PATTERN.match(line)
            if heading is not None:
                key = heading.group(1).strip().lower()
                if key in SECTION_KEYS and key not in sections:
                    sections[key] = []
                    current_key = key
                    state = _State.SECTION
                else:
                    current_key = None
                    state = _State.SCANNING
                continue

        if state is _State.PREAMBLE:
            stripped = line.strip()
            title = _TITLE_PATTERN.match(stripped)
            if title is not None:
                if title.group(1).strip() and 'title' not in fields:
                    fields['title'] = title.group(1).strip()
                continue
            extra = _EXTRA_ROW_PATTERN.match(stripped)
            if extra is not None:
                extra_rows.append(_parse_extra_row(extra.group(1)))
                continue
            meta = _META_PATTERN.match(stripped)
            if meta is not None:
                name = _METADATA_FIELDS[meta.group(1).lower()]
                value = meta.group(2).strip()
                if value and name not in fields:
                    fields[name] = value
            continue

        fence.feed(line)
        if state is _State.SECTION and current_key is not None:
            sections[current_key].append(line)

    if 'impact details' in sections:
        fields['impact_details'] = '\n'.join(sections['impact details']).strip()

    if 'description' in sections:
        description, evidence = _split_description(sections['description'])
        fields['description'] = description
        fields['evidence'] = evidence

    if 'code example' in sections:
        code, language = _extract_code('\n'.join(sections['code example']))
        fields['code_example'] = code
        fields['code_language'] = language

    if 'example issue scenario' in sections:
        fields['example_scenario'] = '\n'.join(sections['example issue scenario']).strip()

    if 'recommendation' in sections:
        fields['recommendation'] = '\n'.join(sections['recommendation']).strip()

    return IssueContent(extra_rows=extra_rows, **fields)


def parse_multiple_issues(contents: Iterable[str]) -> list[IssueContent]:
    return [parse_issue(content) for content in contents]


def _fence_for(code: str) -> str:
    longest = max((len(run) for run in _BACKTICK_RUN_PATTERN.findall(code)), default=0)
    return '`' * max(3, longest + 1)


def _reads_back_unfenced(code: str) -> bool:
    """Raw code without a language is written bare unless a line would end the section."""
    return not any(
        _HEADING_PATTERN.match(line) or _FENCE_PATTERN.match(line) for line in code.split('\n')
    )


def issue_to_markdown(issue: IssueContent) -> str:
    """Serialize an issue back into the template grammar."""
    lines: list[str] = []

    lines.append(f'# Issue title: {issue.title or "Untitled"}')
    lines.append('')
    lines.append(f'Overall Risk: {issue.overall_risk or "Medium"}')
    for row in issue.extra_rows:
        lines.append(f'Additional Issue: {row.title} | {row.severity or DEFAULT_EXTRA_ROW_SEVERITY}')
    lines.append(f'Impact: {issue.impact or "Medium"}')
    lines.append(f'Exploitability: {issue.exploitability or "Medium"}')
    lines.append(f'Finding ID: {issue.finding_id or "ABC-XXXXXX"}')
    lines.append(f'Component: {issue.component}')
    lines.append(f'Category: {issue.category or "Uncategorized"}')
    lines.append(f'Status: {issue.status or "New"}')
    lines.append('')

    lines.append('## Impact details')
    lines.append('')
    lines.append(issue.impact_details)
    lines.append('')

    lines.append('## Description')
    lines.append('')
    lines.append(issue.description)
    lines.append('')
    if issue.evidence:
        lines.append(f'Evidence: {issue.evidence}')
        lines.append('')

    if issue.code_example.strip():
        lines.append('### Code example')
        lines.append('')
        if issue.code_language or not _reads_back_unfenced(issue.code_example):
            fence = _fence_for(issue.code_example)
            lines.append(f'{fence}{issue.code_language}')
            lines.append(issue.code_example)
            lines.append(fence)
        else:
            lines.append(issue.code_example)
        lines.append('')

    lines.append('### Example issue scenario')
    lines.append('')
    lines.append(issue.example_scenario)
    lines.append('')

    lines.append('## Recommendation')
    lines.append('')
    lines.append(issue.recommendation)
    lines.append('')

    return '\n'.join(lines)


def issue_filename(issue: IssueRecord) -> str:
    stem = (issue.finding_id or f'issue-{issue.id}').replace('/', '-').replace('\\', '-')
    title = re.sub(r'\s+', '-', (issue.title or 'untitled').replace('/', '-').replace('\\', '-'))
    return f'{stem}-{title[:40]}.md'


TEMPLATE_MARKDOWN = """# Issue title: Missing rate limiting on login endpoint

Overall Risk: High
Additional Issue: Verbose authentication errors | Low
Impact: High
Exploitability: Medium
Finding ID: ABC-100000
Component: Authentication API
Category: Access Control
Status: New

## Impact details

- Attackers can brute-force credentials without being throttled.
- Account lockout policies can be bypassed.

## Description

The `/api/login` endpoint accepts an unlimited number of attempts from a single
client. **No throttling** is applied at the gateway or in the service.

Evidence: https://example.com/evidence/ABC-100000

### Code example

```python
@app.post("/api/login")
def login(payload: LoginRequest):
    return auth.check(payload.username, payload.password)
```

### Example issue scenario

An attacker scripts 10,000 password guesses per minute against a known
username until one succeeds.

## Recommendation

- Apply per-account and per-IP rate limits.
- Return a generic error message for all failed logins.
"""
