from __future__ import annotations
from typing import Protocol, Iterator, Sequence, Optional

from .cancellation import CancelToken
from .models import ChatOptions, Message


class ChatStreamSession(Protocol):
    """
    One provider conversation primed with prior history and a system instruction.
    """

    def send_stream(
        self,
        content: str,
        image: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> Iterator[str]:
        """
        Lazy sequence of text increments in arrival order.
        Ends when the provider signals end of stream (or `cancel` is set);
        raises TransportError once on failure. Malformed frames are skipped.
        """
        ...


class ProviderAdapter(Protocol):
    """
    Interface the core uses to talk to any LLM backend.
    Instances are built per session with an already-resolved credential.
    """

    # Surface the provider key for logging
    provider: str

    def create_session(
        self,
        options: ChatOptions,
        history: Sequence[Message],
        system_instruction: str,
    ) -> ChatStreamSession:
        ...
