from __future__ import annotations
from typing import Any, Dict, List, Optional, Sequence, Union

from codr.core.images import decode_data_url
from codr.core.models import Message, Role

Content = Union[str, List[Dict[str, Any]]]


def openai_role(role: Role) -> str:
    if role == Role.USER:
        return "user"
    if role == Role.MODEL:
        return "assistant"
    raise ValueError(f"Unsupported role for chat history: {role}")


def openai_content(text: str, image_ref: Optional[str] = None) -> Content:
    """Plain string unless an image is attached, then text + image_url parts."""
    image = decode_data_url(image_ref)
    if image is None:
        return text or ""
    parts: List[Dict[str, Any]] = []
    if text:
        parts.append({"type": "text", "text": text})
    parts.append({"type": "image_url", "image_url": {"url": image.data_url}})
    return parts


def openai_messages(
    history: Sequence[Message],
    system_instruction: str,
    *,
    drop_empty_system: bool = False,
) -> List[Dict[str, Any]]:
    """OpenAI-style list: [system, *history]. System channel lives inside the list."""
    messages: List[Dict[str, Any]] = []
    if system_instruction or not drop_empty_system:
        messages.append({"role": "system", "content": system_instruction})
    for msg in history:
        messages.append({"role": openai_role(msg.role), "content": openai_content(msg.content, msg.attached_image)})
    return messages
