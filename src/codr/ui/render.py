from __future__ import annotations
from typing import List, Optional, Sequence

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax

from codr.core.parser import (
    CodeSegment, Segment, SuggestionsSegment, TextSegment, ThinkingSegment, code_segments, thinking_of,
)

# rich/pygments lexer names for the languages models tend to emit
_LEXER_ALIASES = {"plaintext": "text", "tsx": "tsx", "jsx": "jsx", "sh": "bash", "shell": "bash"}


def _lexer(language: str) -> str:
    lang = language.lower()
    return _LEXER_ALIASES.get(lang, lang)


def render_code(console: Console, segment: CodeSegment) -> None:
    console.print(Panel(
        Syntax(segment.content, _lexer(segment.language), line_numbers=True, word_wrap=True),
        title=segment.language,
        border_style="cyan",
    ))


def render_thinking(console: Console, segment: ThinkingSegment) -> None:
    console.print(Panel(segment.content, title="thoughts", border_style="magenta", style="dim"))


def render_suggestions(console: Console, suggestions: Sequence[str]) -> None:
    if not suggestions:
        return
    console.print("[bold]Suggestions[/bold] (type the number to send):")
    for i, s in enumerate(suggestions, 1):
        console.print(f"  [cyan]{i}[/cyan]. {s}", highlight=False)


def render_segments(console: Console, segments: Sequence[Segment]) -> None:
    for seg in segments:
        if isinstance(seg, ThinkingSegment):
            render_thinking(console, seg)
        elif isinstance(seg, CodeSegment):
            render_code(console, seg)
        elif isinstance(seg, SuggestionsSegment):
            render_suggestions(console, seg.content)
        elif isinstance(seg, TextSegment):
            console.print(Markdown(seg.content))


def render_focus(console: Console, segments: List[Segment], mode: str) -> bool:
    """Show the focused message's code (preview) or thinking. False if there is nothing."""
    if mode == "thoughts":
        thinking: Optional[ThinkingSegment] = thinking_of(segments)
        if thinking is None:
            return False
        render_thinking(console, thinking)
        return True
    codes = code_segments(segments)
    for seg in codes:
        render_code(console, seg)
    return bool(codes)
