# tests/unit/test_secrets_sources.py

from __future__ import annotations
import sys
from pathlib import Path
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from codr.core.errors import ConfigurationError
from codr.core.models import ProviderSettings
from codr.secrets.sources import (
    SecretsResolver,
    build_secret_sources,
    resolve_credential,
)


def test_method_string_and_list(monkeypatch):
    # exact env var name via mapping
    monkeypatch.setenv("GEMINI_API_KEY", "g-env")
    r1 = SecretsResolver(method="env", mapping={"google": {"api_key": "GEMINI_API_KEY"}})
    assert r1.secret("google") == "g-env"

    # unmapped provider -> <PROVIDER>_API_KEY
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
    r2 = SecretsResolver(method=["env"])
    assert r2.secret("openai") == "sk-env"


def test_unknown_method_raises():
    with pytest.raises(ValueError):
        build_secret_sources("nope")


def test_keyring_then_env(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-from-env")

    # Fake keyring that returns a value first
    class FakeKeyring:
        def get_credential(self, service, _):
            class Cred:
                password = "sk-from-keyring"
            return Cred()
        def get_password(self, *args, **kwargs):
            return None

    import codr.secrets.sources as src
    monkeypatch.setattr(src, "_keyring", FakeKeyring(), raising=True)

    r = SecretsResolver(method=["keyring", "env"], mapping={"openai": {"api_key": "openai"}})
    assert r.secret("openai") == "sk-from-keyring"

    # Now make keyring miss -> env wins
    class KR2:
        def get_credential(self, *_): return None
        def get_password(self, *_): return None
    monkeypatch.setattr(src, "_keyring", KR2(), raising=True)
    monkeypatch.setattr(src.sys, "platform", "linux")

    r2 = SecretsResolver(method=["keyring", "env"], mapping={"openai": {"api_key": "openai"}})
    assert r2.secret("openai") == "sk-from-env"


def test_resolve_credential_precedence(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "builtin")
    secrets = SecretsResolver(method="env")

    # built-in requested: user key ignored
    s = ProviderSettings("anthropic", "m", api_key="mine", use_builtin_key=True)
    assert resolve_credential(s, secrets) == "builtin"

    # user key wins when built-in is not requested
    s = ProviderSettings("anthropic", "m", api_key="  mine  ", use_builtin_key=False)
    assert resolve_credential(s, secrets) == "mine"

    # blank user key falls back to built-in
    s = ProviderSettings("anthropic", "m", api_key="   ", use_builtin_key=False)
    assert resolve_credential(s, secrets) == "builtin"


def test_resolve_credential_missing(monkeypatch):
    for name in ("MISTRAL_API_KEY", "MISTRAL", "mistral"):
        monkeypatch.delenv(name, raising=False)
    with pytest.raises(ConfigurationError) as ei:
        resolve_credential(ProviderSettings("mistral", "m"), SecretsResolver(method="env"))
    assert str(ei.value) == "API key for 'mistral' is not configured. Please set it in the settings."


def test_keyring_app_service_entry(monkeypatch):
    import codr.secrets.sources as src

    class FakeKeyring:
        def get_password(self, service, account):
            return {("codr", "google"): " g-kr "}.get((service, account))
        def get_credential(self, *_):
            raise AssertionError("app service entry should win")

    monkeypatch.setattr(src, "_keyring", FakeKeyring(), raising=True)
    assert SecretsResolver(method="keyring").secret("google") == "g-kr"


def test_resolve_credential_normalises_provider_name(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "g-env")
    secrets = SecretsResolver(method="env", mapping={"google": {"api_key": "GEMINI_API_KEY"}})
    assert resolve_credential(ProviderSettings(" Google ", "m"), secrets) == "g-env"
