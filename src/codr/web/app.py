from __future__ import annotations

from dataclasses import asdict, replace
from pathlib import Path
from typing import Any, Dict, Optional
import threading

import structlog
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from codr.bootstrap import apply_overrides, build_app
from codr.core.cancellation import CancelToken
from codr.core.conversation import Conversation
from codr.core.errors import ConfigurationError, ConversationStateError, ProviderError
from codr.core.models import ChatOptions, FocusMode
from codr.providers.registry import PROVIDER_MODELS
from codr.storage.transcript import list_sessions

logger = structlog.get_logger(__name__)


class SessionRequest(BaseModel):
    session_id: Optional[str] = None


class StreamRequest(BaseModel):
    session_id: Optional[str] = None
    message: str = ""
    image: Optional[str] = None          # data:<mime>;base64,<data>
    suggestion: Optional[int] = None     # index into the session's suggested replies
    provider: Optional[str] = None
    model: Optional[str] = None
    api_key: Optional[str] = None
    use_builtin_key: Optional[bool] = None
    language: Optional[str] = None
    temperature: Optional[float] = None


class RegenerateRequest(BaseModel):
    session_id: str
    message_id: str


class FocusRequest(BaseModel):
    session_id: str
    message_id: str
    mode: FocusMode


def _message_json(msg) -> Dict[str, Any]:
    return {"id": msg.id, "role": msg.role.value, "content": msg.content, "image": msg.attached_image}


def session_state(conv: Conversation) -> Dict[str, Any]:
    m = conv.manager
    return {
        "session_id": conv.session_id,
        "messages": [_message_json(msg) for msg in m.history],
        "focused_message_id": m.focused_message_id,
        "focus_mode": m.focus_mode.value,
        "suggestions": list(m.suggested_replies),
        "can_undo": m.can_undo,
        "can_redo": m.can_redo,
        "streaming": m.is_streaming,
    }


def _request_options(base: ChatOptions, req: StreamRequest) -> ChatOptions:
    options = apply_overrides(base, req.provider, req.model)
    settings = options.provider_settings
    if req.api_key is not None:
        settings = replace(settings, api_key=req.api_key or None)
    if req.use_builtin_key is not None:
        settings = replace(settings, use_builtin_key=req.use_builtin_key)
    changes: Dict[str, Any] = {"provider_settings": settings}
    if req.language:
        changes["language"] = req.language
    if req.temperature is not None:
        changes["temperature"] = req.temperature
    return replace(options, **changes)


def create_app(
    config_path: Path,
    *,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    adapter_factory=None,
) -> FastAPI:
    config_path = Path(config_path)
    ctx = build_app(config_path, adapter_factory=adapter_factory)
    cfg = ctx["cfg"]
    options = apply_overrides(ctx["options"], provider, model)
    new_conversation = ctx["new_conversation"]
    transcripts_dir = ctx["paths"]["transcripts_dir"] if cfg["storage"]["backend"] == "file" else None

    app = FastAPI()
    app.state.cfg = cfg
    app.state.options = options
    app.state.warnings = ctx["warnings"]
    app.state.sessions: Dict[str, Conversation] = {}
    app.state.lock = threading.Lock()
    # one lock per session: state checks and turn starts must not interleave
    app.state.session_locks: Dict[str, threading.Lock] = {}

    def _session_lock(conv: Conversation) -> threading.Lock:
        with app.state.lock:
            return app.state.session_locks.setdefault(conv.session_id, threading.Lock())

    def _create_session(session_id: Optional[str] = None) -> Conversation:
        conv = new_conversation(session_id=session_id, options_override=app.state.options)
        with app.state.lock:
            app.state.sessions[conv.session_id] = conv
        return conv

    def _get_session(session_id: Optional[str]) -> Conversation:
        if not session_id:
            return _create_session()
        with app.state.lock:
            conv = app.state.sessions.get(session_id)
        if conv is None:
            # Unknown id: resume it from disk if a transcript exists, else start fresh
            return _create_session(session_id if transcripts_dir else None)
        return conv

    def _existing(session_id: str) -> Conversation:
        with app.state.lock:
            conv = app.state.sessions.get(session_id)
        if conv is None:
            raise HTTPException(status_code=404, detail=f"Unknown session '{session_id}'")
        return conv

    def _streaming_response(conv: Conversation, start) -> StreamingResponse:
        cancel = CancelToken()
        try:
            pieces = start(cancel)
        except ConversationStateError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except (ConfigurationError, ValueError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        except ProviderError as e:
            raise HTTPException(status_code=502, detail=str(e))

        def gen():
            try:
                for chunk in pieces:
                    yield chunk
            except ProviderError as e:
                yield f"\n[error] {e}"
            finally:
                # client went away mid-stream
                cancel.cancel()
                pieces.close()

        return StreamingResponse(gen(), media_type="text/plain", headers={"X-Session-Id": conv.session_id})

    @app.get("/api/config")
    def api_config():
        settings = app.state.options.provider_settings
        return JSONResponse(
            {
                "provider": settings.provider,
                "model": settings.model,
                "language": app.state.options.language,
                "temperature": app.state.options.temperature,
                "providers": {k.value: v for k, v in PROVIDER_MODELS.items()},
                "warnings": app.state.warnings or [],
            }
        )

    @app.get("/api/sessions")
    def api_sessions():
        return JSONResponse({"sessions": list_sessions(transcripts_dir) if transcripts_dir else []})

    @app.post("/api/session")
    def api_session(req: Optional[SessionRequest] = None):
        conv = _create_session(req.session_id if req else None)
        return JSONResponse(session_state(conv))

    @app.get("/api/session/{session_id}")
    def api_session_state(session_id: str):
        return JSONResponse(session_state(_existing(session_id)))

    @app.post("/api/stream")
    def api_stream(req: StreamRequest):
        conv = _get_session(req.session_id)
        message = req.message
        if req.suggestion is not None:
            suggestions = conv.manager.suggested_replies
            if not 0 <= req.suggestion < len(suggestions):
                raise HTTPException(status_code=400, detail="No such suggestion")
            message = suggestions[req.suggestion]
        if not message.strip() and not req.image:
            raise HTTPException(status_code=400, detail="Empty message")
        try:
            options = _request_options(app.state.options, req)
        except (ConfigurationError, ValueError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        with _session_lock(conv):
            if conv.manager.is_streaming:
                raise HTTPException(status_code=409, detail="A reply is still streaming")
            conv.options = options
            logger.info("web.stream", session_id=conv.session_id, provider=options.provider_settings.provider)
            return _streaming_response(conv, lambda cancel: conv.stream_turn(message, req.image, cancel=cancel))

    @app.post("/api/regenerate")
    def api_regenerate(req: RegenerateRequest):
        conv = _existing(req.session_id)
        with _session_lock(conv):
            return _streaming_response(conv, lambda cancel: conv.regenerate(req.message_id, cancel=cancel))

    @app.post("/api/undo")
    def api_undo(req: SessionRequest):
        conv = _existing(req.session_id or "")
        with _session_lock(conv):
            return JSONResponse({"changed": conv.undo(), **session_state(conv)})

    @app.post("/api/redo")
    def api_redo(req: SessionRequest):
        conv = _existing(req.session_id or "")
        with _session_lock(conv):
            return JSONResponse({"changed": conv.redo(), **session_state(conv)})

    @app.post("/api/reset")
    def api_reset(req: SessionRequest):
        conv = _existing(req.session_id or "")
        with _session_lock(conv):
            if conv.manager.is_streaming:
                raise HTTPException(status_code=409, detail="A reply is still streaming")
            conv.reset()
            return JSONResponse(session_state(conv))

    @app.post("/api/focus")
    def api_focus(req: FocusRequest):
        conv = _existing(req.session_id)
        with _session_lock(conv):
            try:
                conv.focus(req.message_id, req.mode)
            except KeyError as e:
                raise HTTPException(status_code=404, detail=str(e))
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            return JSONResponse(session_state(conv))

    @app.get("/api/session/{session_id}/messages/{message_id}/segments")
    def api_segments(session_id: str, message_id: str):
        conv = _existing(session_id)
        if conv.manager.find(message_id) is None:
            raise HTTPException(status_code=404, detail=f"Unknown message '{message_id}'")
        return JSONResponse({"segments": [asdict(s) for s in conv.segments(message_id)]})

    return app


def run(
    *,
    config: Path,
    host: str = "127.0.0.1",
    port: int = 8000,
    provider: Optional[str] = None,
    model: Optional[str] = None,
    reload: bool = False,
) -> None:
    import uvicorn

    app = create_app(config, provider=provider, model=model)
    uvicorn.run(app, host=host, port=port, reload=reload)
