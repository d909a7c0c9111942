# src/codr/providers/gemini_adapter.py
from __future__ import annotations
from typing import Any, Dict, Iterator, List, Optional, Sequence

import structlog
from google import genai
from google.genai import types

from codr.core.cancellation import CancelToken
from codr.core.errors import ProviderError, classify_transport_exception
from codr.core.images import decode_data_url
from codr.core.models import ChatOptions, Message, Role
from codr.providers.param_policy import ParamPolicy, effective_request_params

logger = structlog.get_logger(__name__)


def gemini_role(role: Role) -> str:
    if role == Role.USER:
        return "user"
    if role == Role.MODEL:
        return "model"
    raise ValueError(f"Unknown role: {role}")


def gemini_content(role: Role, text: str, image_ref: Optional[str] = None) -> Dict[str, Any]:
    parts: List[Dict[str, Any]] = []
    if text:
        parts.append({"text": text})
    image = decode_data_url(image_ref)
    if image is not None:
        parts.append({"inline_data": {"mime_type": image.mime_type, "data": image.raw}})
    if not parts:
        parts.append({"text": ""})
    return {"role": gemini_role(role), "parts": parts}


class GeminiChatSession:
    def __init__(self, client, model: str, contents: List[Dict[str, Any]], config):
        self.client = client
        self.model = model
        self.contents = contents
        self.config = config

    def send_stream(self, content: str, image: Optional[str] = None,
                    cancel: Optional[CancelToken] = None) -> Iterator[str]:
        if cancel is not None and cancel.cancelled:
            return
        contents = [*self.contents, gemini_content(Role.USER, content, image)]
        stream = None
        try:
            stream = self.client.models.generate_content_stream(
                model=self.model, contents=contents, config=self.config,
            )
            for chunk in stream:
                if cancel is not None and cancel.cancelled:
                    logger.info("stream.cancelled", provider=GeminiAdapter.provider)
                    break
                try:
                    piece = chunk.text
                except (AttributeError, ValueError) as e:
                    logger.warning("stream.frame_skipped", provider=GeminiAdapter.provider, error=str(e))
                    continue
                if piece:
                    yield piece
        except ProviderError:
            raise
        except Exception as e:
            raise classify_transport_exception(e) from e
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()


class GeminiAdapter:
    """
    Default provider. System instruction rides in the request config,
    not in the message list.
    """
    provider = "google"

    def __init__(self, api_key: str, *, params: Optional[Dict[str, Any]] = None,
                 policy: Optional[ParamPolicy] = None, timeout: Optional[float] = None):
        client_kwargs: Dict[str, Any] = {"api_key": api_key}
        if timeout is not None:
            # google-genai takes milliseconds
            client_kwargs["http_options"] = types.HttpOptions(timeout=int(float(timeout) * 1000))
        self.client = genai.Client(**client_kwargs)
        self.params = params or {}
        self.policy = policy

    @classmethod
    def create(cls, *, api_key: str, provider_cfg: Dict[str, Any], policy: Optional[ParamPolicy] = None) -> "GeminiAdapter":
        cfg = provider_cfg or {}
        return cls(api_key, params=cfg.get("params") or {}, policy=policy, timeout=cfg.get("timeout"))

    def create_session(self, options: ChatOptions, history: Sequence[Message],
                       system_instruction: str) -> GeminiChatSession:
        model = options.provider_settings.model
        params = effective_request_params(
            self.policy, provider=self.provider, model=model,
            temperature=options.temperature, params=self.params,
        )
        config = types.GenerateContentConfig(system_instruction=system_instruction, **params)
        contents = [gemini_content(m.role, m.content, m.attached_image) for m in history]
        return GeminiChatSession(self.client, model, contents, config)
