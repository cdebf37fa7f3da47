from __future__ import annotations

import pytest

from auditreport.parser import TEMPLATE_MARKDOWN
from auditreport.session import IdAllocator, ReportSession
from auditreport.storage import load_session_state, save_session_state, session_state_path
from auditreport.types import IssueContent


def test_allocator_never_reuses_ids():
    allocator = IdAllocator()
    session = ReportSession(allocator)
    first = session.add_from_text('a.md', TEMPLATE_MARKDOWN)
    session.remove(first.id)
    second = session.add_blank('Web')

    assert first.id == 1
    assert second.id == 2
    assert allocator.next_id == 3


def test_loaded_issue_has_unmodified_snapshot():
    session = ReportSession()
    issue = session.add_from_text('a.md', TEMPLATE_MARKDOWN)

    assert session.originals[issue.id] == issue.content()
    assert not session.is_issue_modified(issue.id)
    assert session.files[0].name == 'a.md'
    assert not session.files[0].is_manual


def test_field_edit_and_restore():
    session = ReportSession()
    issue = session.add_from_text('a.md', TEMPLATE_MARKDOWN)

    session.update_field(issue.id, 'title', 'Changed')
    assert session.get(issue.id).title == 'Changed'
    assert session.is_field_modified(issue.id, 'title')
    assert not session.is_field_modified(issue.id, 'description')
    assert session.is_issue_modified(issue.id)

    session.restore_field(issue.id, 'title')
    assert session.get(issue.id).title == 'Missing rate limiting on login endpoint'
    assert not session.is_issue_modified(issue.id)


def test_extra_rows_edit_and_restore_issue():
    session = ReportSession()
    issue = session.add_from_text('a.md', TEMPLATE_MARKDOWN)

    session.add_extra_row(issue.id, 'Second row', 'High')
    session.update_extra_row(issue.id, 0, severity='Critical')
    session.remove_extra_row(issue.id, 1)
    assert [(row.title, row.severity) for row in session.get(issue.id).extra_rows] == [
        ('Verbose authentication errors', 'Critical')
    ]
    assert session.is_field_modified(issue.id, 'extra_rows')

    session.update_field(issue.id, 'description', 'Rewritten')
    session.restore_issue(issue.id)
    assert session.get(issue.id).content() == session.originals[issue.id]


def test_edits_replace_records():
    session = ReportSession()
    issue = session.add_from_text('a.md', TEMPLATE_MARKDOWN)
    updated = session.update_field(issue.id, 'component', 'Gateway')

    assert issue.component == 'Authentication API'
    assert updated.component == 'Gateway'
    assert updated is not issue


def test_unknown_field_is_rejected():
    session = ReportSession()
    issue = session.add_blank()

    with pytest.raises(ValueError):
        session.update_field(issue.id, 'id', '7')
    with pytest.raises(KeyError):
        session.get(999)


def test_blank_issue_defaults():
    session = ReportSession()
    issue = session.add_blank('Web App')

    assert (issue.overall_risk, issue.impact, issue.exploitability, issue.status) == ('Medium', 'Medium', 'Medium', 'New')
    assert issue.category == 'Web App'
    assert session.files[-1].name == f'New-Web-App-{issue.id}.md'
    assert session.files[-1].is_manual
    assert session.originals[issue.id].title == ''
    assert session.add_blank().category == 'Uncategorized'


def test_remove_discards_snapshot():
    session = ReportSession()
    issue = session.add_blank()
    session.remove(issue.id)

    assert issue.id not in session.originals
    assert session.issues == []
    assert session.files == []


def test_reindex_uses_detected_prefix():
    session = ReportSession()
    a = session.add_from_text('a.md', TEMPLATE_MARKDOWN)
    b = session.add_blank('Zeta')
    session.update_field(b.id, 'overall_risk', 'Low')

    mapping = session.reindex_finding_ids()

    assert mapping == {a.id: 'ABC-0001', b.id: 'ABC-1001'}
    assert session.get(a.id).finding_id == 'ABC-0001'
    assert session.reindex_finding_ids('SEC')[b.id] == 'SEC-1001'


def test_grouped_and_paged_views():
    session = ReportSession()
    session.add_blank('B')
    session.add_blank('A')

    assert [group.category for group in session.grouped()] == ['A', 'B']
    assert [group.issues[0].page_number for group in session.paged()] == [1, 2]


def test_saved_state_round_trip(tmp_path):
    session = ReportSession(target_language='German')
    issue = session.add_from_text('a.md', TEMPLATE_MARKDOWN)
    session.update_field(issue.id, 'title', 'Edited')
    session.add_blank('Web')

    path = save_session_state(session.to_saved_state(), tmp_path / 'state.json')
    restored = ReportSession.from_saved_state(load_session_state(path))

    assert restored.issues == session.issues
    assert restored.originals == session.originals
    assert restored.files == session.files
    assert restored.target_language == 'German'
    assert restored.is_field_modified(issue.id, 'title')
    assert restored.add_blank().id == 3


def test_saved_state_default_location():
    session = ReportSession()
    session.add_blank()
    save_session_state(session.to_saved_state())

    assert session_state_path().exists()
    assert load_session_state().issues == session.issues


def test_missing_state_loads_as_none(tmp_path):
    assert load_session_state(tmp_path / 'missing.json') is None


def test_invalid_session_names_are_rejected():
    with pytest.raises(ValueError):
        session_state_path('../escape')
    with pytest.raises(ValueError):
        session_state_path('')


def test_snapshot_is_independent_content():
    session = ReportSession()
    issue = session.add_from_text('a.md', TEMPLATE_MARKDOWN)

    assert isinstance(session.originals[issue.id], IssueContent)
    assert not hasattr(session.originals[issue.id], 'id')
