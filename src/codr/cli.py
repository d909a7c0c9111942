from __future__ import annotations
from importlib.metadata import version as pkg_version, PackageNotFoundError
from pathlib import Path
from typing import List, Optional
import mimetypes
import random

import typer
from rich.console import Console

from .bootstrap import apply_overrides, build_app
from .core.cancellation import CancelToken
from .core.conversation import Conversation
from .core.errors import ProviderError
from .core.images import encode_data_url
from .core.models import FocusMode, Role
from .core.parser import unify_code
from .providers.registry import known_models
from .ui.render import render_focus, render_segments, render_suggestions

app = typer.Typer(add_completion=False)

HELP = (
    "Commands: /help, /id, /new, /undo, /redo, /regen, /code, /thoughts, /copy [PATH], "
    "/image PATH, /models, /exit, /quit\n"
    "Type a suggestion's number to send it. Ctrl+C while streaming stops the reply."
)

WELCOME_PROMPTS = [
    "Design a responsive portfolio with a bento grid.",
    "Create an interactive product card with a 3D hover effect.",
    "Build a modern SaaS landing page with a frosted glass header.",
    "Generate a registration form with real-time validation feedback.",
    "Build a minimalist weather app UI.",
    "Code a pricing table with a toggle for monthly/yearly plans.",
    "Create a dashboard sidebar navigation menu.",
    "Build a testimonial slider with smooth transitions.",
]

SUPPORTED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/webp")


def load_image(path: Path) -> str:
    mime, _ = mimetypes.guess_type(str(path))
    if mime not in SUPPORTED_IMAGE_TYPES:
        raise ValueError("Only JPEG, PNG, and WEBP images are supported.")
    return encode_data_url(mime, path.read_bytes())


def _last_reply_id(conv: Conversation) -> Optional[str]:
    return next((m.id for m in reversed(conv.history) if m.role == Role.MODEL), None)


def _stream(console: Console, conv: Conversation, start) -> None:
    """Print increments as they arrive. Ctrl+C cancels; the partial reply is kept."""
    cancel = CancelToken()
    try:
        gen = start(cancel)
    except (ProviderError, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]", highlight=False)
        return

    try:
        for piece in gen:
            print(piece, end="", flush=True)
        print("")
    except KeyboardInterrupt:
        cancel.cancel()
        gen.close()
        console.print("\n[yellow][stream interrupted][/yellow]")
    except ProviderError as e:
        console.print(f"\n[red]Error: {e}[/red]", highlight=False)
        return

    render_suggestions(console, conv.manager.suggested_replies)
    last = conv.history[-1] if conv.history else None
    if last is not None and conv.manager.focused_message_id == last.id:
        hint = "/code" if conv.manager.focus_mode is FocusMode.PREVIEW else "/thoughts"
        console.print(f"[dim]({hint} to view)[/dim]")


def _show_focus(console: Console, conv: Conversation, mode: FocusMode) -> None:
    msg = conv.manager.focused_message
    if msg is None:
        console.print("Nothing to show yet.")
        return
    try:
        conv.focus(msg.id, mode)
    except ValueError:
        console.print(f"No {'code' if mode is FocusMode.PREVIEW else 'thoughts'} in the focused reply.")
        return
    render_focus(console, conv.segments(msg.id), mode.value)


def _copy(console: Console, conv: Conversation, arg: str) -> None:
    msg = conv.manager.focused_message
    code = unify_code(conv.segments(msg.id)) if msg else ""
    if not code:
        console.print("No code to copy.")
        return
    if arg:
        Path(arg).write_text(code, encoding="utf-8")
        console.print(f"Saved code to {arg}")
    else:
        print(code)


@app.command()
def chat(
    config: Path = Path("config/default.yaml"),
    provider: Optional[str] = None,
    model: Optional[str] = None,
    resume: Optional[str] = None,
):
    """Interactive coding assistant in the terminal."""
    console = Console()
    ctx = build_app(config)
    cfg = ctx["cfg"]
    for w in ctx["warnings"]:
        console.print(f"[yellow][policy] {w['message']} {w.get('dropped', '')}[/yellow]", highlight=False)

    try:
        options = apply_overrides(ctx["options"], provider, model)
    except ProviderError as e:
        console.print(f"[red]Error: {e}[/red]", highlight=False)
        raise typer.Exit(code=2)

    new_conversation = ctx["new_conversation"]
    conv: Conversation = new_conversation(session_id=resume or cfg["storage"].get("resume"),
                                          options_override=options)
    pending_image: Optional[str] = None
    welcome: List[str] = random.sample(WELCOME_PROMPTS, 3)

    try:
        app_ver = f" v{pkg_version('codr')}"
    except PackageNotFoundError:
        app_ver = ""
    settings = options.provider_settings
    console.print(f"[bold]codr{app_ver}[/bold] ({settings.provider}/{settings.model}). Type /help for commands.",
                  highlight=False)
    if conv.history:
        console.print(f"Resumed session {conv.session_id} with {len(conv.history)} messages.")
        last_id = _last_reply_id(conv)
        if last_id is not None:
            render_segments(console, conv.segments(last_id))
    else:
        render_suggestions(console, welcome)

    while True:
        try:
            user_input = input("codr> ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nBye.")
            return

        if user_input in ("/exit", "/quit"):
            print("Bye.")
            return

        if user_input == "/help":
            print(HELP)
            continue

        if user_input == "/id":
            print(conv.session_id)
            continue

        if user_input == "/new":
            conv = new_conversation(options_override=options)
            pending_image = None
            console.print(f"New session {conv.session_id}")
            render_suggestions(console, welcome)
            continue

        if user_input == "/undo":
            if not conv.undo():
                console.print("Nothing to undo.")
            continue

        if user_input == "/redo":
            if not conv.redo():
                console.print("Nothing to redo.")
            else:
                render_suggestions(console, conv.manager.suggested_replies)
            continue

        if user_input == "/regen":
            reply_id = _last_reply_id(conv)
            if reply_id is None:
                console.print("Nothing to regenerate.")
                continue
            _stream(console, conv, lambda cancel: conv.regenerate(reply_id, cancel=cancel))
            continue

        if user_input == "/code":
            _show_focus(console, conv, FocusMode.PREVIEW)
            continue

        if user_input == "/thoughts":
            _show_focus(console, conv, FocusMode.THOUGHTS)
            continue

        if user_input == "/copy" or user_input.startswith("/copy "):
            _copy(console, conv, user_input[len("/copy"):].strip())
            continue

        if user_input.startswith("/image"):
            arg = user_input[len("/image"):].strip()
            if not arg:
                pending_image = None
                console.print("Image cleared.")
                continue
            try:
                pending_image = load_image(Path(arg).expanduser())
            except (OSError, ValueError) as e:
                console.print(f"[red]Error: {e}[/red]", highlight=False)
                continue
            console.print(f"Attached {arg} to the next message.")
            continue

        if user_input == "/models":
            current = options.provider_settings
            for name in known_models(current.provider):
                marker = "*" if name == current.model else " "
                print(f" {marker} {name}")
            continue

        if not user_input and not pending_image:
            continue

        # Numbered shortcut for the visible suggestions
        shown = conv.manager.suggested_replies or ([] if conv.history else welcome)
        if user_input.isdigit() and 1 <= int(user_input) <= len(shown):
            user_input = shown[int(user_input) - 1]
            console.print(f"[dim]> {user_input}[/dim]", highlight=False)

        text, image = user_input, pending_image
        pending_image = None
        _stream(console, conv, lambda cancel: conv.stream_turn(text, image, cancel=cancel))


@app.command()
def serve(
    config: Path = Path("config/default.yaml"),
    host: str = "127.0.0.1",
    port: int = 8000,
):
    """Serve the HTTP API."""
    from .web.app import run
    run(config=config, host=host, port=port)


if __name__ == "__main__":
    app()
