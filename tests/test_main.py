from __future__ import annotations

import json

import main
from auditreport.adapters.translate import Translator
from auditreport.parser import TEMPLATE_MARKDOWN
from auditreport.session import ReportSession
from auditreport.storage import load_session_state, save_session_state, session_state_path


class EchoClient:
    def __init__(self, configured: bool = True):
        self.configured = configured

    async def complete(self, *, system, user, temperature=0.0, max_completion_tokens=None):
        return f'[de] {user}'


def _saved_session() -> ReportSession:
    session = ReportSession()
    session.add_from_text('first.md', TEMPLATE_MARKDOWN)
    session.add_from_text('second.md', TEMPLATE_MARKDOWN)
    save_session_state(session.to_saved_state(), session_state_path())
    return session


def test_translate_command_updates_saved_session(monkeypatch, capsys):
    _saved_session()
    monkeypatch.setattr(main, 'Translator', lambda: Translator(EchoClient()))

    assert main.main(['translate', '--language', 'German', '--issue', '2']) == 0
    output = json.loads(capsys.readouterr().out)

    restored = ReportSession.from_saved_state(load_session_state(session_state_path()))
    first, second = restored.issues
    assert output == {'status': 'ok', 'language': 'German', 'translated': [2]}
    assert restored.target_language == 'German'
    assert not first.title.startswith('[de] ')
    assert second.title.startswith('[de] ')
    assert second.recommendation.startswith('[de] ')
    assert restored.is_field_modified(2, 'title')


def test_translate_command_needs_a_configured_service(monkeypatch, capsys):
    _saved_session()
    monkeypatch.setattr(main, 'Translator', lambda: Translator(EchoClient(configured=False)))

    assert main.main(['translate', '--language', 'German']) == 2
    assert 'not configured' in json.loads(capsys.readouterr().out)['message']


def test_translate_command_reports_unknown_issue(monkeypatch, capsys):
    _saved_session()
    monkeypatch.setattr(main, 'Translator', lambda: Translator(EchoClient()))

    assert main.main(['translate', '--language', 'German', '--issue', '9']) == 2
    assert json.loads(capsys.readouterr().out)['message'] == 'issue not found: 9'
