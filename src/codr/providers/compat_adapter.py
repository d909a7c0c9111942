# src/codr/providers/compat_adapter.py
"""Providers that speak the OpenAI chat-completions wire format over raw SSE."""
from __future__ import annotations
from typing import Any, Dict, Iterator, List, Optional, Sequence

import httpx

from codr.core.cancellation import CancelToken
from codr.core.errors import FrameDecodeError
from codr.core.models import ChatOptions, Message
from codr.providers.formatting import openai_content, openai_messages
from codr.providers.param_policy import ParamPolicy, effective_request_params
from codr.providers.sse import iter_text, stream_sse


def extract_delta(frame: Dict[str, Any]) -> Optional[str]:
    choices = frame.get("choices")
    if choices is None:
        raise FrameDecodeError("frame without choices")
    if not choices:
        return None
    try:
        delta = choices[0].get("delta") or {}
        return delta.get("content")
    except AttributeError as e:
        raise FrameDecodeError(f"unexpected choice shape: {e}") from e


class CompatChatSession:
    def __init__(self, adapter: "CompatAdapter", model: str, messages: List[Dict[str, Any]], params: Dict[str, Any]):
        self.adapter = adapter
        self.model = model
        self.messages = messages
        self.params = params

    def send_stream(self, content: str, image: Optional[str] = None,
                    cancel: Optional[CancelToken] = None) -> Iterator[str]:
        if cancel is not None and cancel.cancelled:
            return
        payload = {
            "model": self.model,
            "messages": [*self.messages, {"role": "user", "content": openai_content(content, image)}],
            "stream": True,
            **self.params,
        }
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.adapter.api_key}",
        }
        frames = stream_sse(self.adapter.client, self.adapter.url, headers=headers, payload=payload,
                            provider=self.adapter.provider, cancel=cancel)
        try:
            yield from iter_text(frames, extract_delta, provider=self.adapter.provider)
        finally:
            frames.close()


class CompatAdapter:
    provider = "compat"
    api_url = ""
    drop_empty_system = False

    def __init__(self, api_key: str, *, params: Optional[Dict[str, Any]] = None,
                 policy: Optional[ParamPolicy] = None, timeout: Optional[float] = None,
                 base_url: Optional[str] = None, client: Optional[httpx.Client] = None):
        self.api_key = api_key
        self.params = params or {}
        self.policy = policy
        self.url = base_url or self.api_url
        self.client = client or httpx.Client(timeout=timeout if timeout is not None else 60.0)

    @classmethod
    def create(cls, *, api_key: str, provider_cfg: Dict[str, Any], policy: Optional[ParamPolicy] = None,
               client: Optional[httpx.Client] = None) -> "CompatAdapter":
        cfg = provider_cfg or {}
        return cls(
            api_key,
            params=cfg.get("params") or {},
            policy=policy,
            timeout=cfg.get("timeout"),
            base_url=cfg.get("base_url"),
            client=client,
        )

    def create_session(self, options: ChatOptions, history: Sequence[Message],
                       system_instruction: str) -> CompatChatSession:
        model = options.provider_settings.model
        params = effective_request_params(
            self.policy, provider=self.provider, model=model,
            temperature=options.temperature, params=self.params,
        )
        messages = openai_messages(history, system_instruction, drop_empty_system=self.drop_empty_system)
        return CompatChatSession(self, model, messages, params)


class MistralAdapter(CompatAdapter):
    provider = "mistral"
    api_url = "https://api.mistral.ai/v1/chat/completions"
    drop_empty_system = True


class DeepSeekAdapter(CompatAdapter):
    provider = "deepseek"
    api_url = "https://api.deepseek.com/chat/completions"
