from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_RECORD_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    frozen=True,
)


class ExtraRow(BaseModel):
    """One additional row in an issue's severity table."""

    model_config = _RECORD_CONFIG

    title: str = ''
    severity: str = 'Medium'


class IssueContent(BaseModel):
    """The semantic content of a finding.

    This is what the parser produces and what an original snapshot holds; it
    never carries the runtime identifier.
    """

    model_config = _RECORD_CONFIG

    title: str = ''
    overall_risk: str = ''
    impact: str = ''
    exploitability: str = ''
    finding_id: str = ''
    component: str = ''
    category: str = ''
    status: str = ''

    impact_details: str = ''
    description: str = ''
    evidence: str = ''
    code_example: str = ''
    code_language: str = ''
    example_scenario: str = ''
    recommendation: str = ''

    extra_rows: list[ExtraRow] = Field(default_factory=list)


class IssueRecord(IssueContent):
    id: int

    @classmethod
    def from_content(cls, issue_id: int, content: IssueContent) -> IssueRecord:
        return cls(id=issue_id, **content.model_dump())

    def content(self) -> IssueContent:
        return IssueContent(**self.model_dump(exclude={'id'}))


# Fields a user can edit in the preview; used for dirty detection and restore.
EDITABLE_FIELDS: tuple[str, ...] = (
    'title',
    'component',
    'overall_risk',
    'finding_id',
    'impact_details',
    'description',
    'code_example',
    'code_language',
    'example_scenario',
    'recommendation',
    'extra_rows',
)


class GroupedCategory(BaseModel):
    category: str
    issues: list[IssueRecord] = Field(default_factory=list)


class PagedIssue(BaseModel):
    issue: IssueRecord
    page_number: int


class PagedCategory(BaseModel):
    category: str
    issues: list[PagedIssue] = Field(default_factory=list)


class SeverityColor(BaseModel):
    model_config = ConfigDict(frozen=True)

    bg: str
    text: str


class FileEntry(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    name: str
    content: str = ''
    is_manual: bool = False


class SavedState(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    files: list[FileEntry] = Field(default_factory=list)
    issues: list[IssueRecord] = Field(default_factory=list)
    originals: dict[int, IssueContent] = Field(default_factory=dict)
    next_issue_id: int = 1
    target_language: str = ''
    last_saved: datetime | None = None
