from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .config import get_settings
from .types import SavedState


def sessions_root() -> Path:
    root = get_settings().data_dir / 'sessions'
    root.mkdir(parents=True, exist_ok=True)
    return root


def _safe_session_name(name: str) -> str:
    token = str(name or '').strip()
    if not token:
        raise ValueError('session name is required')
    if any(ch in token for ch in '/\\') or token in {'.', '..'}:
        raise ValueError(f'invalid session name: {name}')
    return token


def session_state_path(name: str = 'default') -> Path:
    return sessions_root() / f'{_safe_session_name(name)}.json'


def write_json_atomic(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + '.tmp')
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding='utf-8')
    tmp.replace(path)


def write_bytes_atomic(path: Path, content: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + '.tmp')
    tmp.write_bytes(content)
    tmp.replace(path)


def write_text_atomic(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + '.tmp')
    tmp.write_text(content, encoding='utf-8')
    tmp.replace(path)


def read_json(path: Path) -> dict[str, Any]:
    return json.loads(path.read_text(encoding='utf-8'))


def save_session_state(state: SavedState, path: Path | None = None) -> Path:
    target = path or session_state_path()
    write_json_atomic(target, state.model_dump(mode='json', by_alias=True))
    return target


def load_session_state(path: Path | None = None) -> SavedState | None:
    target = path or session_state_path()
    if not target.exists():
        return None
    return SavedState.model_validate(read_json(target))
