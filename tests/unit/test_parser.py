from __future__ import annotations
import sys
from pathlib import Path

# Make "src" importable
sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from codr.core.parser import (
    CodeSegment, SuggestionsSegment, TextSegment, ThinkingSegment,
    compose, has_focusable, parse, suggestions_of, thinking_of, unify_code,
)


def test_plain_text_is_one_segment():
    assert parse("Hello there") == [TextSegment("Hello there")]


def test_empty_and_whitespace_yield_nothing():
    assert parse("") == []
    assert parse("   \n ") == []


def test_full_reply_orders_thinking_first_and_suggestions_last():
    raw = (
        "<suggestions>Add dark mode|Make it responsive</suggestions>\n"
        "Here is the page:\n"
        "```html\n<h1>Hi</h1>\n```\n"
        "And some style:\n"
        "```css\nh1 { color: red; }\n```\n"
        "Done.\n"
        "<thinking>\nPlan the layout.\n</thinking>"
    )
    segs = parse(raw)
    assert [s.kind for s in segs] == ["thinking", "text", "code", "text", "code", "text", "suggestions"]
    assert segs[0] == ThinkingSegment("Plan the layout.")
    assert segs[2] == CodeSegment("html", "<h1>Hi</h1>")
    assert segs[4] == CodeSegment("css", "h1 { color: red; }")
    assert segs[-1] == SuggestionsSegment(("Add dark mode", "Make it responsive"))


def test_code_without_language_defaults_to_plaintext():
    segs = parse("```\nx = 1\n```")
    assert segs == [CodeSegment("plaintext", "x = 1")]


def test_empty_code_block_is_dropped():
    segs = parse("before\n```js\n   \n```\nafter")
    assert segs == [TextSegment("before"), TextSegment("after")]


def test_unclosed_blocks_stay_text():
    raw = "<thinking>never closed\n```python\nprint(1)"
    segs = parse(raw)
    assert len(segs) == 1
    assert isinstance(segs[0], TextSegment)
    assert "<thinking>" in segs[0].content


def test_only_first_thinking_and_suggestions_are_kept():
    raw = "<thinking>one</thinking><thinking>two</thinking>text<suggestions>a|b</suggestions><suggestions>c</suggestions>"
    segs = parse(raw)
    assert thinking_of(segs).content == "one"
    assert suggestions_of(segs) == ["a", "b"]
    # the second blocks are left in the text
    text = [s for s in segs if isinstance(s, TextSegment)]
    assert "<thinking>two</thinking>" in text[0].content


def test_thinking_is_extracted_before_code():
    raw = "<thinking>\n```python\nnot_code()\n```\n</thinking>\nreal text"
    segs = parse(raw)
    assert segs == [ThinkingSegment("```python\nnot_code()\n```"), TextSegment("real text")]


def test_suggestions_trim_and_skip_empty_items():
    segs = parse("<suggestions> a | | b |</suggestions>")
    assert segs == [SuggestionsSegment(("a", "b"))]
    assert parse("<suggestions> | </suggestions>") == []


def test_compose_reads_back_to_same_segments():
    segs = [
        ThinkingSegment("think"),
        TextSegment("intro"),
        CodeSegment("python", "print('x')"),
        TextSegment("outro"),
        SuggestionsSegment(("one", "two")),
    ]
    assert parse(compose(segs)) == segs


def test_has_focusable():
    assert has_focusable(parse("```py\n1\n```"))
    assert has_focusable(parse("<thinking>x</thinking>"))
    assert not has_focusable(parse("just text <suggestions>a</suggestions>"))


def test_unify_code_merges_web_parts():
    segs = parse(
        "```html\n<p>x</p>\n```\n```css\np { margin: 0; }\n```\n```javascript\nconsole.log(1);\n```"
    )
    out = unify_code(segs)
    assert out.startswith("<p>x</p>")
    assert "<style>\np { margin: 0; }\n</style>" in out
    assert "<script>\nconsole.log(1);\n</script>" in out


def test_unify_code_other_languages_get_headers():
    segs = parse("```python\na = 1\n```\n```bash\necho hi\n```")
    out = unify_code(segs)
    assert "/*--- PYTHON ---*/" in out and "/*--- BASH ---*/" in out


def test_unify_code_single_and_none():
    assert unify_code(parse("```go\nfunc main() {}\n```")) == "func main() {}"
    assert unify_code(parse("no code")) == ""


def test_thinking_code_suggestions_without_text():
    raw = "<thinking>plan</thinking>\n```js\nconsole.log(1)\n```\n<suggestions>Add tests|Refactor</suggestions>"
    assert parse(raw) == [
        ThinkingSegment("plan"),
        CodeSegment("js", "console.log(1)"),
        SuggestionsSegment(("Add tests", "Refactor")),
    ]
    assert parse(compose(parse(raw))) == parse(raw)
