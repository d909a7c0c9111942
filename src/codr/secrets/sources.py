# src/codr/secrets/sources.py

from __future__ import annotations
from typing import Protocol, Optional, Dict, Iterable, List, Union
import os, sys, getpass, subprocess

import keyring as _keyring
import structlog

from codr.core.errors import ConfigurationError
from codr.core.models import ProviderSettings

logger = structlog.get_logger(__name__)


class SecretSource(Protocol):
    def get(self, service: str) -> Optional[str]: ...


class EnvSource:
    def get(self, service: str) -> Optional[str]:
        # 1) exact env var name, 2) <SERVICE>_API_KEY, 3) <SERVICE>
        for key in (service, f"{service.upper()}_API_KEY", service.upper()):
            val = os.getenv(key)
            if val and val.strip():
                return val.strip()
        return None


KEYRING_SERVICE = "codr"


class SystemKeyringSource:
    """
    OS keychain lookup. Keys saved with `keyring set codr <service>` are found
    first; entries stored under the service's own name come next.
    """
    def __init__(self, app_service: str = KEYRING_SERVICE):
        self.app_service = app_service

    def _password(self, service: str, account: str) -> Optional[str]:
        try:
            val = _keyring.get_password(service, account)
        except Exception as e:
            logger.debug("secrets.keyring_miss", service=service, account=account, error=str(e))
            return None
        return val.strip() if val and val.strip() else None

    def get(self, service: str) -> Optional[str]:
        val = self._password(self.app_service, service)
        if val:
            return val
        try:
            cred = _keyring.get_credential(service, None)
        except Exception as e:
            logger.debug("secrets.keyring_miss", service=service, error=str(e))
            cred = None
        if cred is not None and getattr(cred, "password", None):
            return cred.password.strip()
        for account in ("api_key", f"{service.upper()}_API_KEY", getpass.getuser()):
            val = self._password(service, account)
            if val:
                return val
        if sys.platform == "darwin":
            # keychain items created outside python-keyring
            p = subprocess.run(
                ["security", "find-generic-password", "-s", service, "-w"],
                capture_output=True, text=True, check=False
            )
            if p.returncode == 0 and p.stdout.strip():
                return p.stdout.strip()
        return None


_ALLOWED_METHODS = {"env", "keyring"}


def _normalise_methods(method: Union[str, Iterable[str]]) -> List[str]:
    methods = [method] if isinstance(method, str) else list(method)
    norm = []
    for m in methods:
        key = str(m).strip().lower()
        if key not in _ALLOWED_METHODS:
            raise ValueError(f"Unknown secrets method '{m}'. Allowed: {sorted(_ALLOWED_METHODS)}")
        if key not in norm:
            norm.append(key)
    return norm


def build_secret_sources(method: Union[str, Iterable[str]]) -> List[SecretSource]:
    sources: List[SecretSource] = []
    for name in _normalise_methods(method):
        if name == "env":
            sources.append(EnvSource())
        elif name == "keyring":
            sources.append(SystemKeyringSource())
    return sources


class SecretsResolver:
    """
    Looks up the built-in (process-provided) credential for a provider.
    mapping: per-provider map of names -> service/env-key
      e.g. { "google": { "api_key": "GEMINI_API_KEY" } }
    Unmapped providers use their key as the service name ("openai" -> OPENAI_API_KEY).
    """
    def __init__(self, method: Union[str, Iterable[str]] = "env", mapping: Dict[str, Dict[str, str]] | None = None):
        self._sources = build_secret_sources(method)
        self._map = mapping or {}

    def secret(self, provider: str, name: str = "api_key") -> Optional[str]:
        provider = provider.strip().lower()
        service = (self._map.get(provider) or {}).get(name, provider)
        for src in self._sources:
            val = src.get(service)
            if val:
                return val
        return None


def resolve_credential(settings: ProviderSettings, secrets: Optional[SecretsResolver]) -> str:
    """
    Caller-supplied key wins unless the built-in key is requested;
    otherwise fall back to the built-in one. Neither -> ConfigurationError.
    """
    if not settings.use_builtin_key and settings.api_key and settings.api_key.strip():
        return settings.api_key.strip()
    provider = settings.provider.strip().lower()
    builtin = secrets.secret(provider) if secrets is not None else None
    if builtin:
        return builtin
    raise ConfigurationError(
        f"API key for '{provider}' is not configured. Please set it in the settings."
    )
