# tests/unit/test_chat_session.py

from __future__ import annotations
import sys
from pathlib import Path
import pytest

# Ensure "src" is importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from codr.core.cancellation import CancelToken
from codr.core.chat_session import ChatSessionController, StreamedReply
from codr.core.errors import ConfigurationError, TransportError
from codr.core.models import ChatOptions, Message, ProviderSettings, Role
from codr.secrets.sources import SecretsResolver


class FakeSession:
    def __init__(self, pieces, fail_after=None):
        self.pieces = pieces
        self.fail_after = fail_after
        self.sent = None

    def send_stream(self, content, image=None, cancel=None):
        self.sent = (content, image)
        for i, p in enumerate(self.pieces):
            if self.fail_after is not None and i == self.fail_after:
                raise TransportError("connection reset", retryable=True)
            if cancel is not None and cancel.cancelled:
                return
            yield p


class FakeAdapter:
    provider = "google"

    def __init__(self, session):
        self.session = session
        self.calls = []

    def create_session(self, options, history, system_instruction):
        self.calls.append((options, history, system_instruction))
        return self.session


def _options(provider="google"):
    return ChatOptions(ProviderSettings(provider=provider, model="m"), language="Python", temperature=0.3)


def _controller(adapter, captured=None):
    def factory(settings, *, secrets, provider_cfg, policy):
        if captured is not None:
            captured.update(settings=settings, provider_cfg=provider_cfg, policy=policy)
        return adapter
    return ChatSessionController(
        secrets=SecretsResolver(method="env"),
        providers_cfg={"google": {"timeout": 5}},
        adapter_factory=factory,
        behavior_prompt="Answer in {language}.",
    )


def test_send_streams_increments_and_collects():
    session = FakeSession(["Hel", "lo"])
    adapter = FakeAdapter(session)
    captured = {}
    ctl = _controller(adapter, captured)

    prior = [Message(Role.USER, "a"), Message(Role.MODEL, "b")]
    user = Message(Role.USER, "hi", attached_image="data:image/png;base64,AA==")
    reply = ctl.send(prior, user, _options(), custom_instructions="Be brief.")

    assert list(reply) == ["Hel", "lo"]
    assert reply.text == "Hello" and reply.done
    assert session.sent == ("hi", "data:image/png;base64,AA==")

    _, history, system = adapter.calls[0]
    assert history == prior
    assert system.startswith("Answer in Python.")
    assert system.endswith("Be brief.")
    assert captured["provider_cfg"] == {"timeout": 5}


def test_auto_detect_language_wording():
    ctl = _controller(FakeAdapter(FakeSession([])))
    opts = ChatOptions(ProviderSettings(provider="google", model="m"))
    assert "the language that best fits the user's prompt" in ctl.system_instruction(opts)


def test_configuration_errors_raise_before_streaming():
    def factory(settings, **_):
        raise ConfigurationError("API key for 'google' is not configured. Please set it in the settings.")

    ctl = ChatSessionController(adapter_factory=factory)
    with pytest.raises(ConfigurationError):
        ctl.send([], Message(Role.USER, "hi"), _options())


def test_transport_error_after_increments_keeps_partial():
    reply = _controller(FakeAdapter(FakeSession(["a", "b", "c"], fail_after=2))).send(
        [], Message(Role.USER, "hi"), _options()
    )
    got = []
    with pytest.raises(TransportError):
        for p in reply:
            got.append(p)
    assert got == ["a", "b"]
    assert reply.text == "ab"
    assert not reply.done


def test_cancel_stops_stream():
    cancel = CancelToken()
    reply = _controller(FakeAdapter(FakeSession(["a", "b", "c"]))).send(
        [], Message(Role.USER, "hi"), _options(), cancel=cancel
    )
    it = iter(reply)
    assert next(it) == "a"
    cancel.cancel()
    assert list(it) == []
    assert reply.text == "a"
    assert reply.cancelled


def test_streamed_reply_collect():
    assert StreamedReply(iter(["x", "y"])).collect() == "xy"


def test_unknown_provider_fails_before_any_increment():
    ctl = ChatSessionController(secrets=SecretsResolver(method="env"))
    with pytest.raises(ConfigurationError, match="Unsupported LLM provider: echo"):
        ctl.send([], Message(Role.USER, "hi"), _options(provider="echo"))
