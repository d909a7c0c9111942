from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
import uuid

DEFAULT_LANGUAGE = "Auto-Detect"
DEFAULT_TEMPERATURE = 0.5


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


class FocusMode(str, Enum):
    PREVIEW = "preview"
    THOUGHTS = "thoughts"


def new_message_id(role: Role) -> str:
    return f"{role.value}-{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Message:
    """
    One conversation entry. `attached_image` is a data URL
    (data:<mime>;base64,<data>) or None.
    """
    role: Role
    content: str
    attached_image: Optional[str] = None
    id: str = ""

    def __post_init__(self):
        if not self.id:
            object.__setattr__(self, "id", new_message_id(self.role))


@dataclass(frozen=True)
class ProviderSettings:
    provider: str
    model: str
    api_key: Optional[str] = field(default=None, repr=False)
    use_builtin_key: bool = True


@dataclass(frozen=True)
class ChatOptions:
    provider_settings: ProviderSettings
    language: str = DEFAULT_LANGUAGE
    temperature: float = DEFAULT_TEMPERATURE

    def __post_init__(self):
        if not 0.0 <= float(self.temperature) <= 1.0:
            raise ValueError(f"temperature must be within [0, 1], got {self.temperature}")
