from __future__ import annotations
from enum import Enum
from typing import Any, Dict, List, Optional, Type

import structlog

from codr.core.errors import UnsupportedProviderError
from codr.core.models import ProviderSettings
from codr.providers.param_policy import ParamPolicy
from codr.secrets.sources import SecretsResolver, resolve_credential

logger = structlog.get_logger(__name__)


class ProviderKey(str, Enum):
    GOOGLE = "google"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    MISTRAL = "mistral"
    DEEPSEEK = "deepseek"

    @classmethod
    def parse(cls, name: str) -> "ProviderKey":
        try:
            return cls(str(name).strip().lower())
        except ValueError:
            raise UnsupportedProviderError(name) from None


DEFAULT_PROVIDER = ProviderKey.GOOGLE

PROVIDER_MODELS: Dict[ProviderKey, Dict[str, Any]] = {
    ProviderKey.GOOGLE: {
        "name": "Google Gemini",
        "models": ["gemini-2.5-pro", "gemini-2.5-flash", "gemini-2.5-flash-lite", "gemini-2.0-flash", "gemini-2.0-flash-lite"],
    },
    ProviderKey.OPENAI: {
        "name": "OpenAI",
        "models": ["gpt-5", "gpt-5-mini", "gpt-5-nano", "gpt-4.1", "gpt-4o", "gpt-4o-mini", "gpt-4-turbo", "gpt-3.5-turbo"],
    },
    ProviderKey.ANTHROPIC: {
        "name": "Anthropic",
        "models": ["claude-opus-4-1", "claude-sonnet-4-5", "claude-sonnet-4-0", "claude-3-7-sonnet-latest", "claude-3-5-haiku-latest"],
    },
    ProviderKey.MISTRAL: {
        "name": "Mistral AI",
        "models": ["mistral-medium-latest", "magistral-medium-latest", "codestral-latest", "mistral-small-latest"],
    },
    ProviderKey.DEEPSEEK: {
        "name": "DeepSeek",
        "models": ["deepseek-chat", "deepseek-reasoner"],
    },
}


def adapter_class(name: str) -> Type:
    """Closed set of adapters; unknown keys fail before anything is imported or sent."""
    key = ProviderKey.parse(name)
    if key is ProviderKey.GOOGLE:
        from codr.providers.gemini_adapter import GeminiAdapter
        return GeminiAdapter
    if key is ProviderKey.OPENAI:
        from codr.providers.openai_adapter import OpenAIAdapter
        return OpenAIAdapter
    if key is ProviderKey.ANTHROPIC:
        from codr.providers.anthropic_adapter import AnthropicAdapter
        return AnthropicAdapter
    if key is ProviderKey.MISTRAL:
        from codr.providers.compat_adapter import MistralAdapter
        return MistralAdapter
    if key is ProviderKey.DEEPSEEK:
        from codr.providers.compat_adapter import DeepSeekAdapter
        return DeepSeekAdapter
    raise UnsupportedProviderError(name)


def known_models(name: str) -> List[str]:
    return list(PROVIDER_MODELS[ProviderKey.parse(name)]["models"])


def build_adapter(
    settings: ProviderSettings,
    *,
    secrets: Optional[SecretsResolver],
    provider_cfg: Optional[Dict[str, Any]] = None,
    policy: Optional[ParamPolicy] = None,
):
    """
    Fresh adapter per session, parameterised by the resolved credential.
    Raises ConfigurationError (unknown provider, no key) without touching the network.
    """
    Adapter = adapter_class(settings.provider)
    api_key = resolve_credential(settings, secrets)
    logger.debug("adapter.build", provider=Adapter.provider, model=settings.model,
                 builtin_key=settings.use_builtin_key or not settings.api_key)
    return Adapter.create(api_key=api_key, provider_cfg=provider_cfg or {}, policy=policy)
