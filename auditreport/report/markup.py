from __future__ import annotations

import html
import re
from dataclasses import dataclass


_CODE_SPAN_PATTERN = re.compile(r'`([^`]+)`')
_EMPHASIS_PATTERN = re.compile(r'\*\*([^*]+)\*\*|(?<!\*)\*([^*]+)\*(?!\*)')
_LINK_PATTERN = re.compile(r'\[([^\]]+)\]\([^)]+\)')

BULLET_PREFIXES = ('- ', '* ')


@dataclass(frozen=True)
class InlineRun:
    text: str
    bold: bool = False
    italic: bool = False
    code: bool = False


@dataclass(frozen=True)
class BlockItem:
    kind: str  # 'bullet' or 'paragraph'
    runs: tuple[InlineRun, ...]


def _append_run(runs: list[InlineRun], run: InlineRun) -> None:
    if not run.text:
        return
    if runs:
        previous = runs[-1]
        if (previous.bold, previous.italic, previous.code) == (run.bold, run.italic, run.code):
            runs[-1] = InlineRun(
                text=previous.text + run.text,
                bold=run.bold,
                italic=run.italic,
                code=run.code,
            )
            return
    runs.append(run)


def _emphasis_runs(runs: list[InlineRun], text: str) -> None:
    text = _LINK_PATTERN.sub(r'\1', text)
    cursor = 0
    for match in _EMPHASIS_PATTERN.finditer(text):
        _append_run(runs, InlineRun(text=text[cursor:match.start()]))
        if match.group(1) is not None:
            _append_run(runs, InlineRun(text=match.group(1), bold=True))
        else:
            _append_run(runs, InlineRun(text=match.group(2), italic=True))
        cursor = match.end()
    _append_run(runs, InlineRun(text=text[cursor:]))


def parse_inline(text: str | None) -> list[InlineRun]:
    """Split a line into styled runs.

    Code spans bind first, then ``**bold**``, then ``*italic*``. Delimiters
    without a partner stay as literal text. Links keep only their label.
    """
    source = str(text or '')
    runs: list[InlineRun] = []
    cursor = 0
    for match in _CODE_SPAN_PATTERN.finditer(source):
        _emphasis_runs(runs, source[cursor:match.start()])
        _append_run(runs, InlineRun(text=match.group(1), code=True))
        cursor = match.end()
    _emphasis_runs(runs, source[cursor:])
    return runs


def runs_to_html(runs: list[InlineRun] | tuple[InlineRun, ...]) -> str:
    parts: list[str] = []
    for run in runs:
        escaped = html.escape(run.text, quote=False)
        if run.code:
            parts.append(f'<code>{escaped}</code>')
        elif run.bold:
            parts.append(f'<strong>{escaped}</strong>')
        elif run.italic:
            parts.append(f'<em>{escaped}</em>')
        else:
            parts.append(escaped)
    return ''.join(parts)


def inline_to_html(text: str | None) -> str:
    return runs_to_html(parse_inline(text))


def parse_block(text: str | None) -> list[BlockItem]:
    items: list[BlockItem] = []
    for line in str(text or '').splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith(BULLET_PREFIXES):
            items.append(BlockItem(kind='bullet', runs=tuple(parse_inline(stripped[2:]))))
        else:
            items.append(BlockItem(kind='paragraph', runs=tuple(parse_inline(stripped))))
    return items


def block_to_html(text: str | None) -> str:
    parts: list[str] = []
    in_list = False
    for item in parse_block(text):
        if item.kind == 'bullet':
            if not in_list:
                parts.append('<ul>')
                in_list = True
            parts.append(f'<li>{runs_to_html(item.runs)}</li>')
            continue
        if in_list:
            parts.append('</ul>')
            in_list = False
        parts.append(f'<p>{runs_to_html(item.runs)}</p>')
    if in_list:
        parts.append('</ul>')
    return ''.join(parts)
