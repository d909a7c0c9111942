from __future__ import annotations
import base64
import re
from dataclasses import dataclass
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)

_DATA_URL_RE = re.compile(r"^data:(.+?);base64,(.+)$", re.DOTALL)


@dataclass(frozen=True)
class InlineImage:
    mime_type: str
    data: str  # base64 payload, as carried in the data URL

    @property
    def raw(self) -> bytes:
        return base64.b64decode(self.data)

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.data}"


def decode_data_url(ref: Optional[str]) -> Optional[InlineImage]:
    """Split data:<mime>;base64,<data>. Anything else is dropped with a warning."""
    if not ref:
        return None
    m = _DATA_URL_RE.match(ref.strip())
    if not m:
        logger.warning("image.unrecognised_reference", prefix=ref[:32])
        return None
    return InlineImage(mime_type=m.group(1), data=m.group(2))


def encode_data_url(mime_type: str, raw: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(raw).decode('ascii')}"
