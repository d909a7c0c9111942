# src/codr/providers/anthropic_adapter.py
from __future__ import annotations
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

import httpx

from codr.core.cancellation import CancelToken
from codr.core.errors import FrameDecodeError, TransportError
from codr.core.images import decode_data_url
from codr.core.models import ChatOptions, Message
from codr.providers.formatting import openai_role
from codr.providers.param_policy import ParamPolicy, effective_request_params
from codr.providers.sse import iter_text, stream_sse


ANTHROPIC_API_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096


def anthropic_content(text: str, image_ref: Optional[str] = None) -> Union[str, List[Dict[str, Any]]]:
    image = decode_data_url(image_ref)
    if image is None:
        return text or ""
    blocks: List[Dict[str, Any]] = [
        {"type": "image", "source": {"type": "base64", "media_type": image.mime_type, "data": image.data}},
    ]
    if text:
        blocks.append({"type": "text", "text": text})
    return blocks


def extract_text(frame: Dict[str, Any]) -> Optional[str]:
    kind = frame.get("type")
    if kind == "error":
        err = frame.get("error") or {}
        raise TransportError(f"anthropic stream error: {err.get('message') or err}")
    if kind != "content_block_delta":
        return None
    delta = frame.get("delta")
    if not isinstance(delta, dict):
        raise FrameDecodeError("content_block_delta without delta")
    if delta.get("type") != "text_delta":
        return None
    return delta.get("text")


class AnthropicChatSession:
    def __init__(self, adapter: "AnthropicAdapter", model: str, system: str,
                 messages: List[Dict[str, Any]], params: Dict[str, Any]):
        self.adapter = adapter
        self.model = model
        self.system = system
        self.messages = messages
        self.params = params

    def send_stream(self, content: str, image: Optional[str] = None,
                    cancel: Optional[CancelToken] = None) -> Iterator[str]:
        if cancel is not None and cancel.cancelled:
            return
        payload = {
            "model": self.model,
            "system": self.system,
            "messages": [*self.messages, {"role": "user", "content": anthropic_content(content, image)}],
            "max_tokens": self.adapter.max_tokens,
            "stream": True,
            **self.params,
        }
        headers = {
            "x-api-key": self.adapter.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        frames = stream_sse(self.adapter.client, self.adapter.url, headers=headers, payload=payload,
                            provider=AnthropicAdapter.provider, cancel=cancel)
        try:
            yield from iter_text(frames, extract_text, provider=AnthropicAdapter.provider)
        finally:
            frames.close()


class AnthropicAdapter:
    """Messages API over plain HTTP; the system prompt is a top-level field."""
    provider = "anthropic"

    def __init__(self, api_key: str, *, params: Optional[Dict[str, Any]] = None,
                 policy: Optional[ParamPolicy] = None, timeout: Optional[float] = None,
                 base_url: Optional[str] = None, max_tokens: int = DEFAULT_MAX_TOKENS,
                 client: Optional[httpx.Client] = None):
        self.api_key = api_key
        self.params = params or {}
        self.policy = policy
        self.url = base_url or ANTHROPIC_API_URL
        self.max_tokens = int(max_tokens)
        self.client = client or httpx.Client(timeout=timeout if timeout is not None else 60.0)

    @classmethod
    def create(cls, *, api_key: str, provider_cfg: Dict[str, Any], policy: Optional[ParamPolicy] = None,
               client: Optional[httpx.Client] = None) -> "AnthropicAdapter":
        cfg = provider_cfg or {}
        return cls(
            api_key,
            params=cfg.get("params") or {},
            policy=policy,
            timeout=cfg.get("timeout"),
            base_url=cfg.get("base_url"),
            max_tokens=cfg.get("max_tokens", DEFAULT_MAX_TOKENS),
            client=client,
        )

    def create_session(self, options: ChatOptions, history: Sequence[Message],
                       system_instruction: str) -> AnthropicChatSession:
        model = options.provider_settings.model
        params = effective_request_params(
            self.policy, provider=self.provider, model=model,
            temperature=options.temperature, params=self.params,
        )
        messages = [
            {"role": openai_role(m.role), "content": anthropic_content(m.content, m.attached_image)}
            for m in history
        ]
        return AnthropicChatSession(self, model, system_instruction, messages, params)
