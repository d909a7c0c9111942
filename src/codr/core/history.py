# src/codr/core/history.py
from __future__ import annotations
from dataclasses import replace
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import structlog

from .errors import ConversationStateError
from .models import FocusMode, Message, Role
from .parser import Segment, code_segments, has_focusable, parse, suggestions_of

logger = structlog.get_logger(__name__)

ERROR_PREFIX = "Error: "


def _focus_mode_for(segments: Sequence[Segment]) -> FocusMode:
    return FocusMode.PREVIEW if code_segments(segments) else FocusMode.THOUGHTS


class ConversationHistoryManager:
    """
    Linear history with undo/redo and derived focus.

    States: idle, or streaming with exactly one placeholder MODEL message at
    the tail. Undo moves the last USER+MODEL pair to the front of the redo
    buffer; redo moves it back. Any new submit clears the redo buffer.
    """

    def __init__(self, history: Iterable[Message] = (), parser: Callable[[str], List[Segment]] = parse):
        self._history: List[Message] = list(history)
        self._redo: List[Message] = []
        self._parse = parser
        self._streaming = False
        self.focused_message_id: Optional[str] = None
        self.focus_mode: FocusMode = FocusMode.PREVIEW
        self.suggested_replies: List[str] = []
        if self._history:
            self._rederive_from_tail()

    # ----- read-only views -----

    @property
    def history(self) -> List[Message]:
        return list(self._history)

    @property
    def redo_buffer(self) -> List[Message]:
        return list(self._redo)

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    @property
    def placeholder(self) -> Optional[Message]:
        return self._history[-1] if self._streaming else None

    @property
    def can_undo(self) -> bool:
        h = self._history
        return (not self._streaming and len(h) >= 2
                and h[-2].role == Role.USER and h[-1].role == Role.MODEL)

    @property
    def can_redo(self) -> bool:
        return not self._streaming and len(self._redo) >= 2

    def find(self, message_id: str) -> Optional[Message]:
        return next((m for m in self._history if m.id == message_id), None)

    def segments(self, message_id: str) -> List[Segment]:
        msg = self.find(message_id)
        return self._parse(msg.content) if msg else []

    @property
    def focused_message(self) -> Optional[Message]:
        return self.find(self.focused_message_id) if self.focused_message_id else None

    def pending_request(self) -> Tuple[List[Message], Message]:
        """(prior history, user message) for the in-flight turn."""
        if not self._streaming:
            raise ConversationStateError("No request in flight")
        return self._history[:-2], self._history[-2]

    # ----- transitions -----

    def submit(self, content: str, image: Optional[str] = None) -> Tuple[Message, Message]:
        if self._streaming:
            raise ConversationStateError("A reply is still streaming")
        if not (content or "").strip() and not image:
            raise ValueError("Nothing to send: empty message and no image")
        user = Message(role=Role.USER, content=content, attached_image=image or None)
        placeholder = Message(role=Role.MODEL, content="")
        self._history.extend([user, placeholder])
        self._redo.clear()
        self.suggested_replies = []
        self._streaming = True
        return user, placeholder

    def increment(self, piece: str) -> Message:
        """Grow the placeholder by one increment (display only, not parsed)."""
        if not self._streaming:
            raise ConversationStateError("No reply is streaming")
        ph = self._history[-1]
        self._history[-1] = replace(ph, content=ph.content + piece)
        return self._history[-1]

    def complete(self, final_text: str) -> Message:
        if not self._streaming:
            raise ConversationStateError("No reply is streaming")
        final = replace(self._history[-1], content=final_text.strip())
        self._history[-1] = final
        self._streaming = False

        segments = self._parse(final.content)
        self.suggested_replies = suggestions_of(segments)
        if has_focusable(segments):
            self.focus(final.id, _focus_mode_for(segments))
        return final

    def fail(self, error: object) -> Message:
        if not self._streaming:
            raise ConversationStateError("No reply is streaming")
        text = str(error) or "An unknown error occurred."
        failed = replace(self._history[-1], content=f"{ERROR_PREFIX}{text}")
        self._history[-1] = failed
        self._streaming = False
        self.suggested_replies = []
        return failed

    def undo(self) -> bool:
        if not self.can_undo:
            return False
        pair = self._history[-2:]
        del self._history[-2:]
        self._redo[:0] = pair
        self._rederive_from_tail()
        logger.debug("conversation.undo", remaining=len(self._history), redo=len(self._redo))
        return True

    def redo(self) -> bool:
        if not self.can_redo:
            return False
        pair = self._redo[:2]
        del self._redo[:2]
        self._history.extend(pair)

        restored = pair[1]
        segments = self._parse(restored.content)
        if has_focusable(segments):
            self.focus(restored.id, _focus_mode_for(segments))
        self.suggested_replies = suggestions_of(segments)
        logger.debug("conversation.redo", restored=restored.id, redo=len(self._redo))
        return True

    def reset(self) -> None:
        self._history.clear()
        self._redo.clear()
        self._streaming = False
        self.focused_message_id = None
        self.focus_mode = FocusMode.PREVIEW
        self.suggested_replies = []

    def truncate_for_regenerate(self, message_id: str) -> Message:
        """
        Drop the MODEL message `message_id`, the USER message right before it and
        everything after. Returns that USER message so it can be submitted again.
        """
        if self._streaming:
            raise ConversationStateError("A reply is still streaming")
        idx = next((i for i, m in enumerate(self._history) if m.id == message_id), -1)
        if idx < 1 or self._history[idx].role != Role.MODEL or self._history[idx - 1].role != Role.USER:
            raise ValueError(f"Message '{message_id}' is not a reply to a user message")
        user = self._history[idx - 1]
        del self._history[idx - 1:]
        self._rederive_from_tail()
        return user

    def focus(self, message_id: str, mode: FocusMode) -> None:
        self.focused_message_id = message_id
        self.focus_mode = FocusMode(mode)

    # ----- internals -----

    def _rederive_from_tail(self) -> None:
        focus_id: Optional[str] = None
        focus_mode = self.focus_mode
        replies: List[str] = []
        for msg in reversed(self._history):
            if msg.role != Role.MODEL:
                continue
            segments = self._parse(msg.content)
            if focus_id is None and has_focusable(segments):
                focus_id = msg.id
                focus_mode = _focus_mode_for(segments)
            if not replies:
                replies = suggestions_of(segments)
            if focus_id is not None and replies:
                break
        self.focused_message_id = focus_id
        self.focus_mode = focus_mode
        self.suggested_replies = replies
