from __future__ import annotations
import json
import datetime as dt
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from codr.core.models import Message, Role

logger = structlog.get_logger(__name__)


def _now() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


def message_record(msg: Message) -> Dict[str, Any]:
    return {
        'type': 'message',
        'ts': _now(),
        'id': msg.id,
        'role': msg.role.value,
        'content': msg.content,
        'image': msg.attached_image,
    }


class Transcript:
    """
    Append-only conversation log.
    - If root_dir is provided: file-backed JSONL at <root_dir>/<session_id>.jsonl
    - If root_dir is None: in-memory only
    - 'message' records are finished messages; 'truncate' records cut the
      history back to `keep` messages (undo, regenerate, reset)
    - If a file already exists for session_id, replaying it resumes the conversation
    """

    def __init__(
        self,
        session_id: Optional[str] = None,
        root_dir: Optional[Path] = None,
        header_meta: Optional[Dict] = None,
    ):
        self._root_dir = Path(root_dir) if root_dir else None
        self._session_id = session_id or dt.datetime.now(dt.timezone.utc).strftime('%Y%m%d-%H%M%S-%f')
        self._header_meta = header_meta or {}
        self._messages: List[Message] = []
        self._records: List[Dict] = []
        self._path: Optional[Path] = None

        if self._root_dir:
            self._root_dir.mkdir(parents=True, exist_ok=True)
            self._path = self._root_dir / f'{self._session_id}.jsonl'
            if self._path.exists() and self._path.stat().st_size > 0:
                self._load_from_file()
                return
        self._write({'type': 'header', 'ts': _now(), 'meta': self._header_meta})

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def path(self) -> Optional[Path]:
        return self._path

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    def append_message(self, msg: Message) -> None:
        self._write(message_record(msg))
        self._messages.append(msg)

    def truncate(self, keep: int) -> None:
        keep = max(0, int(keep))
        if keep >= len(self._messages):
            return
        self._write({'type': 'truncate', 'ts': _now(), 'keep': keep})
        del self._messages[keep:]

    # Internal helpers

    def _write(self, rec: Dict) -> None:
        if self._path is not None:
            with self._path.open('a', encoding='utf-8') as f:
                f.write(json.dumps(rec, ensure_ascii=False) + '\n')
        else:
            self._records.append(rec)

    def _load_from_file(self) -> None:
        self._messages = []
        with self._path.open('r', encoding='utf-8') as f:
            for lineno, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                try:
                    obj = json.loads(line)
                except json.JSONDecodeError:
                    logger.warning("transcript.bad_line", path=str(self._path), line=lineno)
                    continue
                kind = obj.get('type')
                if kind == 'message' and obj.get('role') in (Role.USER.value, Role.MODEL.value):
                    self._messages.append(Message(
                        role=Role(obj['role']),
                        content=obj.get('content', ''),
                        attached_image=obj.get('image'),
                        id=obj.get('id') or '',
                    ))
                elif kind == 'truncate':
                    del self._messages[int(obj.get('keep', 0)):]


def list_sessions(root_dir: Path) -> List[str]:
    """Session ids stored under root_dir, newest first."""
    root = Path(root_dir)
    if not root.exists():
        return []
    files = sorted(root.glob('*.jsonl'), key=lambda p: p.stat().st_mtime, reverse=True)
    return [p.stem for p in files]
