from __future__ import annotations
from typing import Iterator, List, Optional

import structlog

from .cancellation import CancelToken
from .chat_session import ChatSessionController, StreamedReply
from .history import ConversationHistoryManager
from .models import ChatOptions, FocusMode, Message, Role
from .parser import Segment, code_segments, thinking_of

logger = structlog.get_logger(__name__)


class TurnStream:
    """
    Iterator over the increments of one turn.

    close() finalises the turn whether or not iteration ever started, and
    dropping the object closes it. Finalising is tied to this turn's
    placeholder, so a stale stream never touches a later turn.
    """

    def __init__(self, conversation: "Conversation", reply: StreamedReply, placeholder_id: str):
        self._conversation = conversation
        self._reply = reply
        self._placeholder_id = placeholder_id
        self._pieces = conversation._drive(reply, placeholder_id)
        self._closed = False

    @property
    def reply(self) -> StreamedReply:
        return self._reply

    def __iter__(self) -> "TurnStream":
        return self

    def __next__(self) -> str:
        return next(self._pieces)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._pieces.close()
        self._conversation._finish(self._reply, self._placeholder_id)

    def __del__(self):
        self.close()


class Conversation:
    """
    One conversation: history state machine + controller + optional transcript.

    stream_turn()/regenerate() return a TurnStream of increments. The history
    is finalised when that stream ends: completed on end of stream,
    cancellation or close (even before the first increment), failed with an
    "Error: ..." reply when the provider raises (the error is re-raised to
    the caller).
    """

    def __init__(
        self,
        controller: ChatSessionController,
        options: ChatOptions,
        *,
        history: Optional[List[Message]] = None,
        transcript=None,
        custom_instructions: Optional[str] = None,
    ):
        self.controller = controller
        self.options = options
        self.custom_instructions = custom_instructions
        self.transcript = transcript
        if history is None and transcript is not None:
            history = transcript.messages
        self.manager = ConversationHistoryManager(history or [])

    @property
    def session_id(self) -> Optional[str]:
        return getattr(self.transcript, "session_id", None)

    @property
    def history(self) -> List[Message]:
        return self.manager.history

    def stream_turn(self, content: str, image: Optional[str] = None,
                    cancel: Optional[CancelToken] = None) -> TurnStream:
        user, placeholder = self.manager.submit(content, image)
        prior, _ = self.manager.pending_request()
        try:
            reply = self.controller.send(prior, user, self.options, self.custom_instructions, cancel=cancel)
        except Exception as e:
            self._fail(e)
            raise
        return TurnStream(self, reply, placeholder.id)

    def send(self, content: str, image: Optional[str] = None) -> Message:
        """Blocking variant: drain the stream, return the finished reply."""
        for _ in self.stream_turn(content, image):
            pass
        return self.manager.history[-1]

    def regenerate(self, message_id: str, cancel: Optional[CancelToken] = None) -> TurnStream:
        user = self.manager.truncate_for_regenerate(message_id)
        self._truncate_transcript()
        logger.info("conversation.regenerate", message_id=message_id)
        return self.stream_turn(user.content, user.attached_image, cancel=cancel)

    def undo(self) -> bool:
        if not self.manager.undo():
            return False
        self._truncate_transcript()
        return True

    def redo(self) -> bool:
        if not self.manager.redo():
            return False
        if self.transcript is not None:
            for msg in self.manager.history[-2:]:
                self.transcript.append_message(msg)
        return True

    def reset(self) -> None:
        self.manager.reset()
        self._truncate_transcript()

    def focus(self, message_id: str, mode: FocusMode) -> None:
        """Focus a reply; it must hold code for PREVIEW or thinking for THOUGHTS."""
        msg = self.manager.find(message_id)
        if msg is None:
            raise KeyError(f"Unknown message '{message_id}'")
        mode = FocusMode(mode)
        if msg.role != Role.MODEL:
            raise ValueError(f"Message '{message_id}' is not a reply")
        segments = self.manager.segments(message_id)
        has_kind = code_segments(segments) if mode is FocusMode.PREVIEW else thinking_of(segments)
        if not has_kind:
            raise ValueError(f"Message '{message_id}' has nothing to show in {mode.value} mode")
        self.manager.focus(message_id, mode)

    def segments(self, message_id: str) -> List[Segment]:
        return self.manager.segments(message_id)

    # ----- internals -----

    def _drive(self, reply: StreamedReply, placeholder_id: str) -> Iterator[str]:
        try:
            for piece in reply:
                self.manager.increment(piece)
                yield piece
        except Exception as e:
            if self._owns_placeholder(placeholder_id):
                self._fail(e)
            raise
        finally:
            self._finish(reply, placeholder_id)

    def _finish(self, reply: StreamedReply, placeholder_id: str) -> None:
        # normal end, cancellation, or the caller stopped listening
        if not self._owns_placeholder(placeholder_id):
            return
        if not reply.done:
            reply.close()
        final = self.manager.complete(reply.text)
        self._persist_turn()
        logger.info("chat.complete", message_id=final.id, chars=len(final.content),
                    cancelled=reply.cancelled or not reply.done)

    def _owns_placeholder(self, placeholder_id: str) -> bool:
        placeholder = self.manager.placeholder
        return placeholder is not None and placeholder.id == placeholder_id

    def _fail(self, error: Exception) -> None:
        failed = self.manager.fail(error)
        self._persist_turn()
        logger.warning("chat.stream_error", message_id=failed.id, error=str(error),
                       error_type=type(error).__name__)

    def _persist_turn(self) -> None:
        if self.transcript is None:
            return
        for msg in self.manager.history[-2:]:
            self.transcript.append_message(msg)

    def _truncate_transcript(self) -> None:
        if self.transcript is not None:
            self.transcript.truncate(len(self.manager.history))
