"""Tests for the markdown renderer and syntax highlighter."""

from pathlib import Path
import sys

# Ensure the project root is importable when tests run from the repository root.
sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from preview.config import FeatureFlags
from preview.highlighter import get_highlighter
from preview.renderer import decode_source, heading_slug, render_markdown

PLAIN = FeatureFlags(syntax_highlight=False)
HIGHLIGHT = FeatureFlags(syntax_highlight=True)


@pytest.mark.parametrize(
    "text, slug",
    [
        ("Hello World", "hello-world"),
        ("Hello, World! 2024", "hello-world-2024"),
        ("What's new?", "whats-new"),
        ("already-hyphenated title", "already-hyphenated-title"),
        ("Café Über", "café-über"),
        ("", ""),
    ],
)
def test_heading_slug(text: str, slug: str) -> None:
    assert heading_slug(text) == slug


def test_heading_gets_anchor_as_first_inline_element() -> None:
    html = render_markdown("# Hello World\n", PLAIN)
    assert html.startswith(
        '<h1><a id="hello-world" class="anchor" href="#hello-world">'
        '<span class="octicon octicon-link"></span></a>Hello World</h1>'
    )


def test_heading_slug_uses_whole_plain_text() -> None:
    """Inline code and emphasis inside a heading still contribute to one slug."""
    html = render_markdown("## Using `render()` *fast*\n", PLAIN)
    assert html.count('class="anchor"') == 1
    assert 'id="using-render-fast"' in html


def test_duplicate_headings_share_a_slug() -> None:
    html = render_markdown("# Intro\n\ntext\n\n# Intro\n", PLAIN)
    assert html.count('id="intro"') == 2


def test_rendering_is_deterministic() -> None:
    source = "# Title\n\n```python\nprint('hi')\n```\n\n| a | b |\n|---|---|\n| 1 | 2 |\n"
    for flags in (PLAIN, HIGHLIGHT):
        assert render_markdown(source, flags) == render_markdown(source, flags)


def test_empty_source_renders_empty_body() -> None:
    assert render_markdown("", PLAIN) == ""


def test_gfm_extensions() -> None:
    source = (
        "| a | b |\n|---|---|\n| 1 | 2 |\n\n"
        "~~gone~~\n\n"
        "see https://example.com now\n"
    )
    html = render_markdown(source, PLAIN)
    assert "<table>" in html
    assert "<s>gone</s>" in html
    assert '<a href="https://example.com">' in html


def test_task_lists() -> None:
    html = render_markdown("- [x] done\n- [ ] todo\n", PLAIN)
    assert html.count('type="checkbox"') == 2
    assert "checked" in html


def test_footnotes() -> None:
    html = render_markdown("Text[^1]\n\n[^1]: The note.\n", PLAIN)
    assert 'class="footnotes"' in html
    assert "The note." in html


def test_smart_punctuation() -> None:
    html = render_markdown('"quoted"\n', PLAIN)
    assert "\u201cquoted\u201d" in html


def test_math_spans_are_left_for_mathjax() -> None:
    html = render_markdown("Euler $e^{i\\pi}$\n\n$$\nx < y\n$$\n", PLAIN)
    assert "\\(e^{i\\pi}\\)" in html
    assert "\\[\nx &lt; y\n\\]" in html


def test_raw_html_passes_through() -> None:
    html = render_markdown('<div class="note">kept</div>\n', PLAIN)
    assert '<div class="note">kept</div>' in html


def test_code_block_without_highlighting_uses_default_renderer() -> None:
    html = render_markdown("```python\nprint(1)\n```\n", PLAIN)
    assert '<pre><code class="language-python">' in html
    assert "<span style=" not in html


def test_code_block_is_highlighted() -> None:
    html = render_markdown("```python extra words\ndef f():\n    return 1\n```\n", HIGHLIGHT)
    assert html.startswith('<pre style="background-color:')
    assert "<code>" in html
    assert "<span style=" in html
    assert "language-python" not in html


def test_unknown_language_falls_back_to_plain_text() -> None:
    html = render_markdown("```no-such-language\nfoo <bar>\n```\n", HIGHLIGHT)
    assert '<pre style="background-color:' in html
    assert "foo &lt;bar&gt;" in html


def test_indented_code_block_is_highlighted() -> None:
    html = render_markdown("    plain & simple\n", HIGHLIGHT)
    assert '<pre style="background-color:' in html
    assert "plain &amp; simple" in html


def test_highlighter_is_shared() -> None:
    assert get_highlighter() is get_highlighter()


def test_decode_source_is_lossy() -> None:
    assert decode_source(b"ok \xff") == "ok \ufffd"
    assert decode_source("caf\u00e9".encode("utf-8")) == "caf\u00e9"
