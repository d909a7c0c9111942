from __future__ import annotations
import sys
from pathlib import Path
import types as pytypes
import pytest

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

import codr.providers.gemini_adapter as gm  # type: ignore
from codr.core.cancellation import CancelToken
from codr.core.errors import TransportError
from codr.core.models import ChatOptions, Message, ProviderSettings, Role


class _Chunk:
    def __init__(self, text):
        self._text = text

    @property
    def text(self):
        if isinstance(self._text, Exception):
            raise self._text
        return self._text


class _FakeModels:
    def __init__(self, client):
        self.client = client
        self.calls = []

    def generate_content_stream(self, *, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        for c in self.client.chunks:
            yield c
        if self.client.error is not None:
            raise self.client.error


class _FakeClient:
    chunks = [_Chunk("Hel"), _Chunk(None), _Chunk(ValueError("blocked part")), _Chunk("lo")]
    error = None

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.models = _FakeModels(self)


class _ServerError(Exception):
    def __init__(self, msg, code):
        super().__init__(msg)
        self.code = code


@pytest.fixture
def fake_genai(monkeypatch):
    monkeypatch.setattr(gm, "genai", pytypes.SimpleNamespace(Client=_FakeClient))
    monkeypatch.setattr(_FakeClient, "error", None)
    return _FakeClient


def _options():
    return ChatOptions(ProviderSettings(provider="google", model="gemini-2.5-flash"), temperature=0.2)


def test_roles_and_parts():
    assert gm.gemini_role(Role.USER) == "user"
    assert gm.gemini_role(Role.MODEL) == "model"
    content = gm.gemini_content(Role.USER, "look", "data:image/png;base64,aGk=")
    assert content["parts"][0] == {"text": "look"}
    assert content["parts"][1] == {"inline_data": {"mime_type": "image/png", "data": b"hi"}}


def test_stream_with_system_instruction_in_config(fake_genai):
    adapter = gm.GeminiAdapter.create(api_key="g-key", provider_cfg={"timeout": 30})
    assert adapter.client.kwargs["api_key"] == "g-key"
    assert adapter.client.kwargs["http_options"].timeout == 30000

    history = [Message(Role.USER, "a"), Message(Role.MODEL, "b")]
    session = adapter.create_session(_options(), history, "SYS")
    assert list(session.send_stream("c")) == ["Hel", "lo"]

    call = adapter.client.models.calls[0]
    assert call["model"] == "gemini-2.5-flash"
    assert [c["role"] for c in call["contents"]] == ["user", "model", "user"]
    assert call["contents"][-1]["parts"] == [{"text": "c"}]
    assert call["config"].system_instruction == "SYS"
    assert call["config"].temperature == 0.2


def test_errors_are_classified(fake_genai, monkeypatch):
    monkeypatch.setattr(_FakeClient, "error", _ServerError("overloaded", 503))
    adapter = gm.GeminiAdapter("g-key")
    got = []
    with pytest.raises(TransportError) as ei:
        for p in adapter.create_session(_options(), [], "SYS").send_stream("x"):
            got.append(p)
    assert got == ["Hel", "lo"]
    assert ei.value.status_code == 503 and ei.value.retryable


def test_cancel(fake_genai):
    adapter = gm.GeminiAdapter("g-key")
    cancel = CancelToken()
    gen = adapter.create_session(_options(), [], "SYS").send_stream("x", cancel=cancel)
    assert next(gen) == "Hel"
    cancel.cancel()
    assert list(gen) == []
