"""Markdown to HTML conversion.

The renderer wraps a markdown-it parser configured like GitHub: tables,
strikethrough, autolinks, footnotes, task lists, smart punctuation and
``$math$`` spans. Raw HTML in the source is passed through untouched because
the server only ever previews the user's own files.

Two extra passes are layered on top of the stock renderer:

* every heading gets an anchor link whose id is derived from its text, and
* code blocks are optionally replaced by Pygments output.
"""

from __future__ import annotations

from functools import lru_cache
from html import escape
from typing import List

from markdown_it import MarkdownIt
from markdown_it.rules_core import StateCore
from markdown_it.token import Token
from mdit_py_plugins.dollarmath import dollarmath_plugin
from mdit_py_plugins.footnote import footnote_plugin
from mdit_py_plugins.tasklists import tasklists_plugin

from .config import FeatureFlags
from .highlighter import get_highlighter

ANCHOR_TEMPLATE = (
    '<a id="{slug}" class="anchor" href="#{slug}">'
    '<span class="octicon octicon-link"></span></a>'
)


def heading_slug(text: str) -> str:
    """Derive an anchor id from the plain text of a heading.

    Repeated headings produce the same slug; ids are not de-duplicated.
    """
    kept = (c for c in text.lower() if c.isalnum() or c in " -")
    return "".join("-" if c == " " else c for c in kept)


def _heading_text(children: List[Token]) -> str:
    return "".join(child.content for child in children if child.type in ("text", "code_inline"))


def _heading_anchors(state: StateCore) -> None:
    tokens = state.tokens
    for index, token in enumerate(tokens):
        if token.type != "heading_open" or index + 1 >= len(tokens):
            continue
        inline = tokens[index + 1]
        if inline.type != "inline":
            continue
        children = inline.children or []
        slug = heading_slug(_heading_text(children))
        anchor = Token("html_inline", "", 0, content=ANCHOR_TEMPLATE.format(slug=slug))
        inline.children = [anchor, *children]


def _render_math_inline(tokens, idx, options, env) -> str:
    return f'<span class="math inline">\\({escape(tokens[idx].content)}\\)</span>'


def _render_math_block(tokens, idx, options, env) -> str:
    token = tokens[idx]
    label = f' id="{escape(token.info)}"' if token.type == "math_block_label" and token.info else ""
    body = token.content.strip("\n")
    return f'<div class="math block"{label}>\\[\n{escape(body)}\n\\]</div>\n'


def _render_highlighted_code(tokens, idx, options, env) -> str:
    token = tokens[idx]
    info = token.info.strip() if token.info else ""
    lang = info.split(maxsplit=1)[0] if info else None
    return get_highlighter().highlight(token.content, lang)


@lru_cache(maxsize=None)
def build_parser(syntax_highlight: bool) -> MarkdownIt:
    """Return the shared parser for one highlighting mode."""
    md = (
        MarkdownIt("gfm-like", {"typographer": True})
        .enable(["replacements", "smartquotes"])
        .use(footnote_plugin)
        .use(tasklists_plugin)
        .use(dollarmath_plugin)
    )
    md.core.ruler.push("heading_anchors", _heading_anchors)

    md.renderer.rules["math_inline"] = _render_math_inline
    md.renderer.rules["math_block"] = _render_math_block
    md.renderer.rules["math_block_label"] = _render_math_block

    if syntax_highlight:
        md.renderer.rules["fence"] = _render_highlighted_code
        md.renderer.rules["code_block"] = _render_highlighted_code

    return md


def decode_source(data: bytes) -> str:
    """Decode file contents as UTF-8, replacing undecodable bytes."""
    return data.decode("utf-8", errors="replace")


def render_markdown(source: str, flags: FeatureFlags) -> str:
    """Render ``source`` to an HTML fragment.

    Rendering never fails: every string is valid Markdown.
    """
    return build_parser(flags.syntax_highlight).render(source)
