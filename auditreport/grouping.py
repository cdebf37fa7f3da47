from __future__ import annotations

import re
import unicodedata
from typing import Iterable

from .types import GroupedCategory, IssueRecord, PagedCategory, PagedIssue, SeverityColor


UNCATEGORIZED = 'Uncategorized'
DEFAULT_FINDING_PREFIX = 'ABC'

SEVERITY_ORDER: dict[str, int] = {
    'critical': 0,
    'high': 1,
    'medium': 2,
    'low': 3,
    'info': 4,
    'informational': 4,
}
UNKNOWN_SEVERITY_RANK = 5

SEVERITY_LEVELS: tuple[str, ...] = ('Critical', 'High', 'Medium', 'Low', 'Info')

_SEVERITY_COLORS: dict[str, SeverityColor] = {
    'critical': SeverityColor(bg='#8b0000', text='#ffffff'),
    'high': SeverityColor(bg='#e74c3c', text='#ffffff'),
    'medium': SeverityColor(bg='#fd7e14', text='#ffffff'),
    'low': SeverityColor(bg='#a8d08d', text='#333333'),
    'info': SeverityColor(bg='#17a2b8', text='#ffffff'),
    'informational': SeverityColor(bg='#17a2b8', text='#ffffff'),
}
DEFAULT_SEVERITY_COLOR = SeverityColor(bg='#d6d8db', text='#333333')

_FINDING_PREFIX_PATTERN = re.compile(r'^([A-Za-z]+)-')


def severity_rank(severity: str | None) -> int:
    return SEVERITY_ORDER.get(str(severity or '').strip().lower(), UNKNOWN_SEVERITY_RANK)


def get_severity_color(severity: str | None) -> SeverityColor:
    return _SEVERITY_COLORS.get(str(severity or '').strip().lower(), DEFAULT_SEVERITY_COLOR)


def category_of(issue: IssueRecord) -> str:
    return issue.category or UNCATEGORIZED


def _collation_key(name: str) -> tuple[str, str, str]:
    # Accent- and case-insensitive first, then accents, then lowercase before uppercase.
    folded = name.casefold()
    decomposed = unicodedata.normalize('NFKD', folded)
    base = ''.join(ch for ch in decomposed if not unicodedata.combining(ch))
    return base, folded, name.swapcase()


def group_by_category(issues: Iterable[IssueRecord]) -> list[GroupedCategory]:
    """Group issues into the canonical presentation order.

    Categories are sorted by name; issues inside a category by severity rank.
    Both sorts are stable, so ties keep their input order. Every renderer and
    every page-numbering feature must go through this function.
    """
    buckets: dict[str, list[IssueRecord]] = {}
    for issue in issues:
        buckets.setdefault(category_of(issue), []).append(issue)

    return [
        GroupedCategory(
            category=name,
            issues=sorted(buckets[name], key=lambda item: severity_rank(item.overall_risk)),
        )
        for name in sorted(buckets, key=_collation_key)
    ]


def canonical_order(issues: Iterable[IssueRecord]) -> list[IssueRecord]:
    return [issue for group in group_by_category(issues) for issue in group.issues]


def paginate_groups(issues: Iterable[IssueRecord]) -> list[PagedCategory]:
    """Attach the 1-based preview page number that follows the contents page."""
    page = 0
    paged: list[PagedCategory] = []
    for group in group_by_category(issues):
        items: list[PagedIssue] = []
        for issue in group.issues:
            page += 1
            items.append(PagedIssue(issue=issue, page_number=page))
        paged.append(PagedCategory(category=group.category, issues=items))
    return paged


def detect_default_prefix(issues: Iterable[IssueRecord]) -> str:
    for issue in issues:
        if not issue.finding_id:
            continue
        match = _FINDING_PREFIX_PATTERN.match(issue.finding_id)
        if match:
            return match.group(1)
    return DEFAULT_FINDING_PREFIX


def plan_finding_ids(issues: Iterable[IssueRecord], prefix: str) -> dict[int, str]:
    """Number findings per category: PREFIX-0001.. for the first, PREFIX-1001.. for the second."""
    mapping: dict[int, str] = {}
    for category_index, group in enumerate(group_by_category(issues)):
        for position, issue in enumerate(group.issues, start=1):
            number = category_index * 1000 + position
            mapping[issue.id] = f'{prefix}-{number:04d}'
    return mapping
