from __future__ import annotations

import argparse
import asyncio
import json
import logging
from pathlib import Path

from auditreport.adapters.translate import Translator, translate_issue
from auditreport.config import get_settings
from auditreport.parser import TEMPLATE_MARKDOWN
from auditreport.report.exporter import ReportExporter
from auditreport.report.preview import build_preview_document, build_preview_units
from auditreport.session import ReportSession
from auditreport.storage import load_session_state, save_session_state, session_state_path, write_text_atomic


def _print_json(payload: dict) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _collect_markdown(paths: list[str]) -> list[Path]:
    files: list[Path] = []
    for raw in paths:
        path = Path(raw).expanduser().resolve()
        if path.is_dir():
            files.extend(sorted(p for p in path.glob('*.md') if p.is_file()))
        elif path.is_file():
            files.append(path)
    return files


def _load_session(args: argparse.Namespace) -> ReportSession | None:
    if args.inputs:
        files = _collect_markdown(args.inputs)
        if not files:
            return None
        session = ReportSession(target_language=get_settings().target_language)
        for path in files:
            session.add_from_text(path.name, path.read_text(encoding='utf-8'))
        return session

    state = load_session_state(session_state_path(args.session))
    if state is None:
        return None
    return ReportSession.from_saved_state(state)


def cmd_export(args: argparse.Namespace) -> int:
    session = _load_session(args)
    if session is None or not session.issues:
        _print_json({'status': 'error', 'message': 'No issue files found'})
        return 2

    if args.reindex:
        session.reindex_finding_ids(args.prefix)

    output_dir = Path(args.output_dir).expanduser().resolve() if args.output_dir else None
    exporter = ReportExporter(output_dir=output_dir)
    result: dict = {'status': 'ok', 'issue_count': len(session.issues)}

    if args.format in {'pdf', 'all'}:
        path, document = asyncio.run(exporter.export_pdf(session.issues, originals=session.originals))
        result['pdf_path'] = str(path)
        result['pdf_pages'] = document.page_count
        result['toc_links'] = len(document.links)
    if args.format in {'docx', 'all'}:
        result['docx_path'] = str(asyncio.run(exporter.export_docx(session.issues)))
    if args.format in {'md', 'all'}:
        result['markdown_bundle_path'] = str(exporter.export_markdown_bundle(session.issues))

    save_session_state(session.to_saved_state(), session_state_path(args.session))
    _print_json(result)
    return 0


def cmd_reindex(args: argparse.Namespace) -> int:
    state_path = session_state_path(args.session)
    state = load_session_state(state_path)
    if state is None:
        _print_json({'status': 'error', 'message': f'Session not found: {state_path}'})
        return 2

    session = ReportSession.from_saved_state(state)
    mapping = session.reindex_finding_ids(args.prefix)
    save_session_state(session.to_saved_state(), state_path)
    _print_json({'status': 'ok', 'finding_ids': {str(k): v for k, v in mapping.items()}})
    return 0


async def _translate_session(
    session: ReportSession,
    language: str,
    issue_ids: list[int],
    translator: Translator,
) -> list[int]:
    targets = [session.get(issue_id) for issue_id in issue_ids] if issue_ids else list(session.issues)
    for issue in targets:
        session.replace_issue(await translate_issue(issue, language, translator))
    return [issue.id for issue in targets]


def cmd_translate(args: argparse.Namespace) -> int:
    state_path = session_state_path(args.session)
    state = load_session_state(state_path)
    if state is None:
        _print_json({'status': 'error', 'message': f'Session not found: {state_path}'})
        return 2

    session = ReportSession.from_saved_state(state)
    language = (args.language or session.target_language or get_settings().target_language).strip()
    if not language:
        _print_json({'status': 'error', 'message': 'Target language is required'})
        return 2

    translator = Translator()
    if not translator.available:
        _print_json({'status': 'error', 'message': 'Translation service is not configured'})
        return 2

    try:
        translated = asyncio.run(_translate_session(session, language, args.issue or [], translator))
    except KeyError as exc:
        _print_json({'status': 'error', 'message': exc.args[0]})
        return 2

    session.target_language = language
    save_session_state(session.to_saved_state(), state_path)
    _print_json({'status': 'ok', 'language': language, 'translated': translated})
    return 0


def cmd_template(args: argparse.Namespace) -> int:
    print(TEMPLATE_MARKDOWN)
    return 0


def cmd_preview(args: argparse.Namespace) -> int:
    session = _load_session(args)
    if session is None:
        _print_json({'status': 'error', 'message': 'No issue files found'})
        return 2

    settings = get_settings()
    units = build_preview_units(
        session.issues,
        originals=session.originals,
        translation_enabled=bool(settings.openai_api_key and session.target_language),
    )
    output = Path(args.output).expanduser().resolve()
    write_text_atomic(output, build_preview_document(units))
    _print_json({'status': 'ok', 'preview_path': str(output), 'units': len(units)})
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Audit report generator CLI')
    sub = parser.add_subparsers(dest='command', required=True)

    export = sub.add_parser('export', help='Render issue files to PDF / DOCX / markdown bundle')
    export.add_argument('inputs', nargs='*', help='Issue markdown files or directories')
    export.add_argument('--session', default='default', help='Saved session to use when no inputs are given')
    export.add_argument('--format', choices=['pdf', 'docx', 'md', 'all'], default='all')
    export.add_argument('--output-dir', required=False, help='Output directory override')
    export.add_argument('--reindex', action='store_true', help='Renumber finding ids before exporting')
    export.add_argument('--prefix', required=False, help='Finding id prefix for --reindex')
    export.set_defaults(func=cmd_export)

    reindex = sub.add_parser('reindex', help='Renumber finding ids in a saved session')
    reindex.add_argument('--session', default='default')
    reindex.add_argument('--prefix', required=False)
    reindex.set_defaults(func=cmd_reindex)

    translate = sub.add_parser('translate', help='Translate the issues of a saved session')
    translate.add_argument('--session', default='default')
    translate.add_argument('--language', required=False, help='Target language (defaults to the session or TARGET_LANGUAGE)')
    translate.add_argument('--issue', type=int, action='append', help='Issue id to translate; repeat for several')
    translate.set_defaults(func=cmd_translate)

    template = sub.add_parser('template', help='Print the issue template')
    template.set_defaults(func=cmd_template)

    preview = sub.add_parser('preview', help='Write the live preview as HTML')
    preview.add_argument('inputs', nargs='*', help='Issue markdown files or directories')
    preview.add_argument('--session', default='default')
    preview.add_argument('--output', default='preview.html')
    preview.set_defaults(func=cmd_preview)

    return parser


def main(argv: list[str] | None = None) -> int:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == '__main__':
    raise SystemExit(main())
