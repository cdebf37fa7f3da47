from __future__ import annotations

import logging
import re
import threading
from typing import Any

from .grouping import (
    UNCATEGORIZED,
    detect_default_prefix,
    group_by_category,
    paginate_groups,
    plan_finding_ids,
)
from .parser import parse_issue
from .types import (
    EDITABLE_FIELDS,
    ExtraRow,
    FileEntry,
    GroupedCategory,
    IssueContent,
    IssueRecord,
    PagedCategory,
    SavedState,
    utcnow,
)


logger = logging.getLogger(__name__)


def field_differs(issue: IssueRecord, original: IssueContent | None, field: str) -> bool:
    if original is None:
        return False
    if field == 'extra_rows':
        return [row.model_dump() for row in issue.extra_rows] != [row.model_dump() for row in original.extra_rows]
    return getattr(issue, field) != getattr(original, field)


def issue_differs(issue: IssueRecord, original: IssueContent | None) -> bool:
    return any(field_differs(issue, original, field) for field in EDITABLE_FIELDS)


class IdAllocator:
    """Hands out process-local issue identifiers; never reuses one."""

    def __init__(self, next_id: int = 1):
        self._next_id = max(1, int(next_id))
        self._lock = threading.Lock()

    @property
    def next_id(self) -> int:
        return self._next_id

    def allocate(self) -> int:
        with self._lock:
            issue_id = self._next_id
            self._next_id += 1
        return issue_id

    def reserve_above(self, issue_id: int) -> None:
        with self._lock:
            self._next_id = max(self._next_id, int(issue_id) + 1)


class ReportSession:
    """The single source of truth for the issues being edited.

    Every mutation replaces the affected record; groupings and rendered
    artifacts are always derived from ``issues`` and never hold references
    back into it.
    """

    def __init__(self, allocator: IdAllocator | None = None, *, target_language: str = ''):
        self.allocator = allocator or IdAllocator()
        self.target_language = target_language
        self.files: list[FileEntry] = []
        self.issues: list[IssueRecord] = []
        self.originals: dict[int, IssueContent] = {}

    # -- lookup -----------------------------------------------------------

    def get(self, issue_id: int) -> IssueRecord:
        for issue in self.issues:
            if issue.id == issue_id:
                return issue
        raise KeyError(f'issue not found: {issue_id}')

    def _replace(self, issue_id: int, **changes: Any) -> IssueRecord:
        for index, issue in enumerate(self.issues):
            if issue.id == issue_id:
                updated = IssueRecord.model_validate({**issue.model_dump(), **changes})
                self.issues[index] = updated
                return updated
        raise KeyError(f'issue not found: {issue_id}')

    # -- creation / removal ----------------------------------------------

    def add_from_text(self, name: str, text: str) -> IssueRecord:
        content = parse_issue(text)
        issue = IssueRecord.from_content(self.allocator.allocate(), content)
        self.files.append(FileEntry(name=name, content=text))
        self.issues.append(issue)
        self.originals[issue.id] = content
        logger.info('Loaded issue %s from %s', issue.id, name)
        return issue

    def add_blank(self, category: str = '') -> IssueRecord:
        category = category.strip() or UNCATEGORIZED
        content = IssueContent(
            overall_risk='Medium',
            impact='Medium',
            exploitability='Medium',
            category=category,
            status='New',
        )
        issue = IssueRecord.from_content(self.allocator.allocate(), content)
        slug = re.sub(r'\s+', '-', category)
        self.files.append(FileEntry(name=f'New-{slug}-{issue.id}.md', is_manual=True))
        self.issues.append(issue)
        self.originals[issue.id] = content
        return issue

    def remove(self, issue_id: int) -> None:
        for index, issue in enumerate(self.issues):
            if issue.id == issue_id:
                del self.issues[index]
                if index < len(self.files):
                    del self.files[index]
                self.originals.pop(issue_id, None)
                return
        raise KeyError(f'issue not found: {issue_id}')

    def clear(self) -> None:
        self.files = []
        self.issues = []
        self.originals = {}

    # -- editing ----------------------------------------------------------

    def update_field(self, issue_id: int, field: str, value: str) -> IssueRecord:
        if field not in IssueContent.model_fields or field == 'extra_rows':
            raise ValueError(f'not an editable text field: {field}')
        return self._replace(issue_id, **{field: value})

    def add_extra_row(self, issue_id: int, title: str = '', severity: str = 'Medium') -> IssueRecord:
        issue = self.get(issue_id)
        rows = [*issue.extra_rows, ExtraRow(title=title, severity=severity)]
        return self._replace(issue_id, extra_rows=rows)

    def update_extra_row(self, issue_id: int, row_index: int, **changes: str) -> IssueRecord:
        issue = self.get(issue_id)
        rows = list(issue.extra_rows)
        rows[row_index] = rows[row_index].model_copy(update=changes)
        return self._replace(issue_id, extra_rows=rows)

    def remove_extra_row(self, issue_id: int, row_index: int) -> IssueRecord:
        issue = self.get(issue_id)
        rows = list(issue.extra_rows)
        del rows[row_index]
        return self._replace(issue_id, extra_rows=rows)

    def replace_issue(self, updated: IssueRecord) -> IssueRecord:
        return self._replace(updated.id, **updated.model_dump(exclude={'id'}))

    # -- snapshots --------------------------------------------------------

    def is_field_modified(self, issue_id: int, field: str) -> bool:
        return field_differs(self.get(issue_id), self.originals.get(issue_id), field)

    def is_issue_modified(self, issue_id: int) -> bool:
        return issue_differs(self.get(issue_id), self.originals.get(issue_id))

    def restore_field(self, issue_id: int, field: str) -> IssueRecord:
        original = self.originals.get(issue_id)
        if original is None:
            return self.get(issue_id)
        return self._replace(issue_id, **{field: getattr(original, field)})

    def restore_issue(self, issue_id: int) -> IssueRecord:
        original = self.originals.get(issue_id)
        if original is None:
            return self.get(issue_id)
        return self._replace(issue_id, **original.model_dump())

    # -- derived views ----------------------------------------------------

    def grouped(self) -> list[GroupedCategory]:
        return group_by_category(self.issues)

    def paged(self) -> list[PagedCategory]:
        return paginate_groups(self.issues)

    def reindex_finding_ids(self, prefix: str | None = None) -> dict[int, str]:
        chosen = (prefix or '').strip() or detect_default_prefix(self.issues)
        mapping = plan_finding_ids(self.issues, chosen)
        self.issues = [
            issue.model_copy(update={'finding_id': mapping[issue.id]}) if issue.id in mapping else issue
            for issue in self.issues
        ]
        logger.info('Reindexed %d finding ids with prefix %s', len(mapping), chosen)
        return mapping

    # -- persistence boundary ---------------------------------------------

    def to_saved_state(self) -> SavedState:
        return SavedState(
            files=list(self.files),
            issues=list(self.issues),
            originals=dict(self.originals),
            next_issue_id=self.allocator.next_id,
            target_language=self.target_language,
            last_saved=utcnow(),
        )

    @classmethod
    def from_saved_state(cls, state: SavedState) -> ReportSession:
        allocator = IdAllocator(state.next_issue_id)
        for issue in state.issues:
            allocator.reserve_above(issue.id)
        session = cls(allocator, target_language=state.target_language)
        session.files = list(state.files)
        session.issues = list(state.issues)
        session.originals = {
            issue_id: snapshot
            for issue_id, snapshot in state.originals.items()
            if any(issue.id == issue_id for issue in state.issues)
        }
        return session
