"""Pygments backed syntax highlighting for fenced code blocks."""

from __future__ import annotations

import logging
import threading
from html import escape
from typing import Optional

from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexer import Lexer
from pygments.lexers import get_lexer_by_name
from pygments.lexers.special import TextLexer
from pygments.util import ClassNotFound

logger = logging.getLogger(__name__)

DEFAULT_THEME = "github-dark"


class SyntaxHighlighter:
    """Turn a code block into a self-contained, inline-styled HTML fragment.

    Loading the style is the expensive part, so one instance is shared by the
    whole process (see :func:`get_highlighter`) and never mutated afterwards.
    """

    def __init__(self, theme: str = DEFAULT_THEME) -> None:
        self.theme = theme
        self._formatter = HtmlFormatter(style=theme, noclasses=True, nowrap=True)
        self._background = self._formatter.style.background_color or "#ffffff"

    def find_lexer(self, lang: Optional[str]) -> Lexer:
        """Return the lexer for ``lang``, falling back to plain text."""
        if lang:
            try:
                return get_lexer_by_name(lang, stripnl=False)
            except ClassNotFound:
                logger.debug("No grammar for %r, highlighting as plain text", lang)
        return TextLexer(stripnl=False)

    def highlight(self, code: str, lang: Optional[str] = None) -> str:
        inner = highlight(code, self.find_lexer(lang), self._formatter)
        return (
            f'<pre style="background-color: {escape(self._background)};">'
            f"<code>{inner}</code></pre>\n"
        )


_instance: Optional[SyntaxHighlighter] = None
_instance_lock = threading.Lock()


def get_highlighter() -> SyntaxHighlighter:
    """Return the process-wide highlighter, building it on first use."""
    global _instance
    if _instance is None:
        with _instance_lock:
            if _instance is None:
                logger.debug("Loading syntax highlighting theme %s", DEFAULT_THEME)
                _instance = SyntaxHighlighter()
    return _instance
