# tests/unit/test_transcript.py

from __future__ import annotations
import sys, json
from pathlib import Path

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from codr.core.models import Message, Role
from codr.storage.transcript import Transcript, list_sessions


def test_in_memory_transcript_messages_order():
    t = Transcript(root_dir=None)
    t.append_message(Message(Role.USER, "hi"))
    t.append_message(Message(Role.MODEL, "ok"))
    assert [(m.role, m.content) for m in t.messages] == [(Role.USER, "hi"), (Role.MODEL, "ok")]
    assert t.path is None


def test_file_backed_writes_and_resume(tmp_path: Path):
    t = Transcript(root_dir=tmp_path, header_meta={"provider": "google"})
    sid = t.session_id
    user = Message(Role.USER, "hello", attached_image="data:image/png;base64,AAAA")
    t.append_message(user)
    t.append_message(Message(Role.MODEL, "world"))

    # File exists with header + two messages
    path = tmp_path / f"{sid}.jsonl"
    assert path.exists() and t.path == path
    lines = [json.loads(x) for x in path.read_text(encoding="utf-8").splitlines()]
    assert lines[0]["type"] == "header" and lines[0]["meta"] == {"provider": "google"}
    assert lines[1]["type"] == "message" and lines[1]["role"] == "user"

    # Resume from same file id
    t2 = Transcript(root_dir=tmp_path, session_id=sid)
    msgs = t2.messages
    assert msgs[0] == user
    assert (msgs[1].role, msgs[1].content) == (Role.MODEL, "world")


def test_truncate_is_replayed(tmp_path: Path):
    t = Transcript(root_dir=tmp_path)
    for text in ("a", "b", "c", "d"):
        t.append_message(Message(Role.USER if text in "ac" else Role.MODEL, text))
    t.truncate(2)
    t.truncate(5)  # no-op
    t.append_message(Message(Role.USER, "e"))
    assert [m.content for m in t.messages] == ["a", "b", "e"]

    lines = [json.loads(x) for x in t.path.read_text(encoding="utf-8").splitlines()]
    assert [x["type"] for x in lines].count("truncate") == 1

    resumed = Transcript(root_dir=tmp_path, session_id=t.session_id)
    assert [m.content for m in resumed.messages] == ["a", "b", "e"]


def test_bad_lines_are_skipped(tmp_path: Path):
    path = tmp_path / "broken.jsonl"
    path.write_text(
        '{"type": "header", "meta": {}}\nnot json\n'
        '{"type": "message", "role": "user", "content": "x", "id": "user-1"}\n',
        encoding="utf-8",
    )
    t = Transcript(root_dir=tmp_path, session_id="broken")
    assert [m.id for m in t.messages] == ["user-1"]


def test_list_sessions(tmp_path: Path):
    assert list_sessions(tmp_path / "missing") == []
    a = Transcript(root_dir=tmp_path, session_id="a")
    Transcript(root_dir=tmp_path, session_id="b")
    assert set(list_sessions(tmp_path)) == {a.session_id, "b"}
