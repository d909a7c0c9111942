# src/codr/providers/openai_adapter.py
from __future__ import annotations
from typing import Any, Dict, Iterator, List, Optional, Sequence

import structlog
from openai import OpenAI

from codr.core.cancellation import CancelToken
from codr.core.errors import classify_transport_exception
from codr.core.models import ChatOptions, Message
from codr.providers.formatting import openai_content, openai_messages
from codr.providers.param_policy import ParamPolicy, effective_request_params

logger = structlog.get_logger(__name__)


class OpenAIChatSession:
    def __init__(self, client, model: str, messages: List[Dict[str, Any]], params: Dict[str, Any],
                 timeout: Optional[float] = None):
        self.client = client
        self.model = model
        self.messages = messages
        self.params = params
        self.timeout = timeout

    def _build_args(self, content: str, image: Optional[str]) -> Dict[str, Any]:
        args: Dict[str, Any] = {
            "model": self.model,
            "messages": [*self.messages, {"role": "user", "content": openai_content(content, image)}],
            "stream": True,
            **self.params,  # already effective (post-policy) params
        }
        if self.timeout is not None:
            args["timeout"] = self.timeout
        return args

    def send_stream(self, content: str, image: Optional[str] = None,
                    cancel: Optional[CancelToken] = None) -> Iterator[str]:
        if cancel is not None and cancel.cancelled:
            return
        try:
            stream = self.client.chat.completions.create(**self._build_args(content, image))
        except Exception as e:
            raise classify_transport_exception(e) from e

        try:
            for chunk in stream:
                if cancel is not None and cancel.cancelled:
                    logger.info("stream.cancelled", provider=OpenAIAdapter.provider)
                    break
                try:
                    choices = chunk.choices
                except AttributeError:
                    logger.warning("stream.frame_skipped", provider=OpenAIAdapter.provider, error="chunk without choices")
                    continue
                if not choices:
                    continue
                piece = getattr(getattr(choices[0], "delta", None), "content", None)
                if piece:
                    yield piece
        except Exception as e:
            raise classify_transport_exception(e) from e
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()


class OpenAIAdapter:
    """
    Thin adapter over the official SDK:
    - system instruction travels as the first message
    - SDK errors become TransportError
    """
    provider = "openai"

    def __init__(
        self,
        api_key: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        policy: Optional[ParamPolicy] = None,
        timeout: Optional[float] = None,
        base_url: Optional[str] = None,
        organization: Optional[str] = None,
    ):
        client_kwargs: Dict[str, Any] = {"api_key": api_key}
        if base_url:
            client_kwargs["base_url"] = base_url
        if organization:
            client_kwargs["organization"] = organization
        self.client = OpenAI(**client_kwargs)

        self.params = params or {}
        self.policy = policy
        self.timeout = timeout

    @classmethod
    def create(cls, *, api_key: str, provider_cfg: Dict[str, Any], policy: Optional[ParamPolicy] = None) -> "OpenAIAdapter":
        cfg = provider_cfg or {}
        return cls(
            api_key,
            params=cfg.get("params") or {},
            policy=policy,
            timeout=cfg.get("timeout"),
            base_url=cfg.get("base_url"),
            organization=cfg.get("organization"),
        )

    def create_session(self, options: ChatOptions, history: Sequence[Message],
                       system_instruction: str) -> OpenAIChatSession:
        model = options.provider_settings.model
        params = effective_request_params(
            self.policy, provider=self.provider, model=model,
            temperature=options.temperature, params=self.params,
        )
        return OpenAIChatSession(
            self.client, model, openai_messages(history, system_instruction), params, timeout=self.timeout,
        )
