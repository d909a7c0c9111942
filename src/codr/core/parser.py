# src/codr/core/parser.py
"""
Decompose a raw model reply into typed segments.

Markup grammar, in extraction precedence order. Each step removes the span it
matched before the next step runs, so later steps never look inside an
already-extracted block:

    precedence  block                          kept       output position
    ----------  -----------------------------  ---------  ---------------
    1           <thinking> ... </thinking>     first one  first
    2           <suggestions> a|b </suggestions> first one  last
    3           ```lang\\n ... ```              all        in order, with the
    4           free text between/after fences            text around them

A block without its closing delimiter is not a block: it stays in the text.
"""
from __future__ import annotations
import re
from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

_THINKING_RE = re.compile(r"<thinking>(.*?)</thinking>", re.DOTALL)
_SUGGESTIONS_RE = re.compile(r"<suggestions>(.*?)</suggestions>", re.DOTALL)
_CODE_RE = re.compile(r"```(\w+)?\n(.*?)```", re.DOTALL)

DEFAULT_CODE_LANGUAGE = "plaintext"


@dataclass(frozen=True)
class TextSegment:
    content: str
    kind: str = "text"


@dataclass(frozen=True)
class CodeSegment:
    language: str
    content: str
    kind: str = "code"


@dataclass(frozen=True)
class ThinkingSegment:
    content: str
    kind: str = "thinking"


@dataclass(frozen=True)
class SuggestionsSegment:
    content: Tuple[str, ...]
    kind: str = "suggestions"


Segment = Union[TextSegment, CodeSegment, ThinkingSegment, SuggestionsSegment]


def _extract_first(pattern: re.Pattern, text: str) -> Tuple[str | None, str]:
    m = pattern.search(text)
    if m is None:
        return None, text
    return m.group(1), text[:m.start()] + text[m.end():]


def parse(content: str) -> List[Segment]:
    """Total and side-effect free: a missing block just yields no segment."""
    remaining = content or ""

    thinking, remaining = _extract_first(_THINKING_RE, remaining)
    raw_suggestions, remaining = _extract_first(_SUGGESTIONS_RE, remaining)

    head: List[Segment] = []
    if thinking is not None and thinking.strip():
        head.append(ThinkingSegment(thinking.strip()))

    body: List[Segment] = []
    last = 0
    for m in _CODE_RE.finditer(remaining):
        before = remaining[last:m.start()].strip()
        if before:
            body.append(TextSegment(before))
        code = m.group(2).strip()
        if code:
            body.append(CodeSegment(m.group(1) or DEFAULT_CODE_LANGUAGE, code))
        last = m.end()
    tail = remaining[last:].strip()
    if tail:
        body.append(TextSegment(tail))

    if raw_suggestions is not None:
        items = tuple(s.strip() for s in raw_suggestions.split("|") if s.strip())
        if items:
            body.append(SuggestionsSegment(items))

    return head + body


def compose(segments: Sequence[Segment]) -> str:
    """Render segments back into markup that parse() reads to the same segments."""
    chunks: List[str] = []
    for seg in segments:
        if isinstance(seg, ThinkingSegment):
            chunks.append(f"<thinking>\n{seg.content}\n</thinking>")
        elif isinstance(seg, CodeSegment):
            chunks.append(f"```{seg.language}\n{seg.content}\n```")
        elif isinstance(seg, SuggestionsSegment):
            chunks.append(f"<suggestions>{'|'.join(seg.content)}</suggestions>")
        else:
            chunks.append(seg.content)
    return "\n".join(chunks)


def code_segments(segments: Sequence[Segment]) -> List[CodeSegment]:
    return [s for s in segments if isinstance(s, CodeSegment)]


def thinking_of(segments: Sequence[Segment]) -> ThinkingSegment | None:
    return next((s for s in segments if isinstance(s, ThinkingSegment)), None)


def suggestions_of(segments: Sequence[Segment]) -> List[str]:
    seg = next((s for s in segments if isinstance(s, SuggestionsSegment)), None)
    return list(seg.content) if seg else []


def has_focusable(segments: Sequence[Segment]) -> bool:
    return any(isinstance(s, (CodeSegment, ThinkingSegment)) for s in segments)


def unify_code(segments: Sequence[Segment]) -> str:
    """
    Merge a reply's code blocks into one copyable string.
    Web parts (html/css/javascript) become one HTML document; anything else is
    concatenated under language headers.
    """
    parts = code_segments(segments)
    if not parts:
        return ""
    if len(parts) == 1:
        return parts[0].content

    langs = [p.language.lower() for p in parts]
    if any(lang in ("html", "javascript", "css") for lang in langs):
        html = next((p.content for p in parts if p.language.lower() == "html"), "<!-- No HTML provided -->")
        css = "\n\n".join(p.content for p in parts if p.language.lower() == "css")
        js = "\n\n".join(p.content for p in parts if p.language.lower() == "javascript")
        out = html
        if css:
            out += f"\n\n<style>\n{css}\n</style>"
        if js:
            out += f"\n\n<script>\n{js}\n</script>"
        return out.strip()

    return "\n\n".join(f"/*--- {p.language.upper()} ---*/\n\n{p.content}" for p in parts)
