# src/codr/providers/sse.py
"""
Server-sent-event plumbing shared by the HTTP adapters.

A reply is a sequence of lines; payload lines start with `data:`; other
fields (`event:`, `id:`, comments) carry nothing we need. `data: [DONE]`
ends OpenAI-compatible streams, transport close ends the rest.
"""
from __future__ import annotations
import json
from typing import Any, Callable, Dict, Iterable, Iterator, Optional

import httpx
import structlog

from codr.core.cancellation import CancelToken
from codr.core.errors import FrameDecodeError, TransportError, classify_transport_exception

logger = structlog.get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


def decode_frame(data: str) -> Dict[str, Any]:
    try:
        obj = json.loads(data)
    except json.JSONDecodeError as e:
        raise FrameDecodeError(f"invalid JSON frame: {e}") from e
    if not isinstance(obj, dict):
        raise FrameDecodeError(f"expected JSON object, got {type(obj).__name__}")
    return obj


def iter_sse_payloads(
    lines: Iterable[str],
    *,
    provider: str,
    cancel: Optional[CancelToken] = None,
) -> Iterator[Dict[str, Any]]:
    for line in lines:
        if cancel is not None and cancel.cancelled:
            logger.info("stream.cancelled", provider=provider)
            return
        line = line.strip()
        if not line.startswith(DATA_PREFIX):
            continue
        data = line[len(DATA_PREFIX):].strip()
        if data == DONE_SENTINEL:
            return
        try:
            yield decode_frame(data)
        except FrameDecodeError as e:
            logger.warning("stream.frame_skipped", provider=provider, error=str(e))


def iter_text(
    payloads: Iterable[Dict[str, Any]],
    extract: Callable[[Dict[str, Any]], Optional[str]],
    *,
    provider: str,
) -> Iterator[str]:
    """Map frames to text increments; frames `extract` rejects are skipped."""
    for payload in payloads:
        try:
            piece = extract(payload)
        except FrameDecodeError as e:
            logger.warning("stream.frame_skipped", provider=provider, error=str(e))
            continue
        if piece:
            yield piece


def stream_sse(
    client: httpx.Client,
    url: str,
    *,
    headers: Dict[str, str],
    payload: Dict[str, Any],
    provider: str,
    cancel: Optional[CancelToken] = None,
) -> Iterator[Dict[str, Any]]:
    """POST `payload` and yield decoded frames. Closing the generator closes the response."""
    try:
        with client.stream("POST", url, headers=headers, json=payload) as response:
            if response.status_code >= 400:
                body = response.read().decode("utf-8", errors="replace")[:500]
                raise TransportError(
                    f"{provider} request failed ({response.status_code}): {body}",
                    status_code=response.status_code,
                    retryable=response.status_code == 429 or response.status_code >= 500,
                )
            yield from iter_sse_payloads(response.iter_lines(), provider=provider, cancel=cancel)
    except httpx.HTTPError as e:
        raise classify_transport_exception(e) from e
