from __future__ import annotations
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import structlog

from .cancellation import CancelToken
from .models import ChatOptions, Message
from .ports import ProviderAdapter
from .prompts import BEHAVIOR_PROMPT, build_system_instruction

logger = structlog.get_logger(__name__)


class StreamedReply:
    """
    Live increments of one reply. Iterate to receive each piece in arrival
    order; `text` is the concatenation received so far and is final once
    `done` is True. Errors from the provider propagate out of iteration.
    """

    def __init__(self, increments: Iterator[str], cancel: Optional[CancelToken] = None):
        self._increments = increments
        self._parts: List[str] = []
        self.cancel = cancel
        self.done = False

    def __iter__(self) -> Iterator[str]:
        for piece in self._increments:
            self._parts.append(piece)
            yield piece
        self.done = True

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def cancelled(self) -> bool:
        return self.cancel is not None and self.cancel.cancelled

    def close(self) -> None:
        close = getattr(self._increments, "close", None)
        if close is not None:
            close()

    def collect(self) -> str:
        for _ in self:
            pass
        return self.text


AdapterFactory = Callable[..., ProviderAdapter]


class ChatSessionController:
    """
    Picks the adapter for the configured provider, primes a session with the
    prior history and system instruction, and streams the new user turn.

    One send per conversation at a time; this is the caller's job, nothing queues here.
    """

    def __init__(
        self,
        *,
        secrets=None,
        providers_cfg: Optional[Dict[str, Dict[str, Any]]] = None,
        policies: Optional[Dict[str, Any]] = None,
        adapter_factory: Optional[AdapterFactory] = None,
        behavior_prompt: str = BEHAVIOR_PROMPT,
    ):
        if adapter_factory is None:
            from codr.providers.registry import build_adapter
            adapter_factory = build_adapter
        self.secrets = secrets
        self.providers_cfg = providers_cfg or {}
        self.policies = policies or {}
        self.adapter_factory = adapter_factory
        self.behavior_prompt = behavior_prompt

    def system_instruction(self, options: ChatOptions, custom: Optional[str] = None) -> str:
        return build_system_instruction(options.language, custom, base=self.behavior_prompt)

    def send(
        self,
        history: Sequence[Message],
        user_message: Message,
        options: ChatOptions,
        custom_instructions: Optional[str] = None,
        cancel: Optional[CancelToken] = None,
    ) -> StreamedReply:
        """
        Adapter selection and session creation happen eagerly, so configuration
        problems raise here before any increment or network traffic.
        """
        settings = options.provider_settings
        provider = settings.provider.lower()
        adapter = self.adapter_factory(
            settings,
            secrets=self.secrets,
            provider_cfg=self.providers_cfg.get(provider),
            policy=self.policies.get(provider),
        )
        session = adapter.create_session(options, list(history), self.system_instruction(options, custom_instructions))
        logger.info("chat.send", provider=provider, model=settings.model, history=len(history),
                    image=user_message.attached_image is not None)
        return StreamedReply(
            session.send_stream(user_message.content, user_message.attached_image, cancel=cancel),
            cancel=cancel,
        )
