"""Template handling for HTML rendering."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from html import escape
from pathlib import Path
from typing import Dict, Optional

from .config import FeatureFlags
from .errors import InternalError

logger = logging.getLogger(__name__)

TEMPLATES_PATH = Path(__file__).resolve().parent / "templates"
STATIC_PREFIX = "/@/"

MATHJAX_SNIPPET = (
    '<script defer src="https://cdn.jsdelivr.net/npm/mathjax@3/es5/tex-mml-chtml.js"></script>'
)
RELOAD_SNIPPET = f'<script defer src="{STATIC_PREFIX}reload.js"></script>'


@dataclass(frozen=True)
class RenderedDocument:
    """Everything the page template needs for one response."""

    title: str
    body: str
    flags: FeatureFlags


class TemplateHandler:
    """Handles loading and rendering of the page template."""

    def __init__(self, template_path: Optional[Path] = None):
        """Initialize the template handler.

        Args:
            template_path: Path to the HTML page template
        """
        self.template_path = template_path or TEMPLATES_PATH / "index.html"

    def load_template(self) -> str:
        """Load template from disk.

        Raises:
            InternalError: If the template cannot be read
        """
        try:
            return self.template_path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.error("Error reading template %s: %s", self.template_path, exc)
            raise InternalError(f"Cannot load page template: {exc}") from exc

    def render_page(self, document: RenderedDocument) -> str:
        """Populate the template with one document.

        ``document.body`` is inserted as HTML, the title is escaped.
        """
        head = [f'<link rel="stylesheet" href="{STATIC_PREFIX}style.css">']
        if document.flags.latex:
            head.append(MATHJAX_SNIPPET)
        if document.flags.reload:
            head.append(RELOAD_SNIPPET)

        template = self.load_template()
        replacements: Dict[str, str] = {
            "__TITLE__": escape(document.title),
            "__HEAD__": "\n    ".join(head),
            "__BODY__": document.body,
        }
        # Body goes last so placeholder-like text inside a document is left alone.
        for placeholder, value in replacements.items():
            template = template.replace(placeholder, value)
        return template


class AssetStore:
    """Static files bundled with the package, served under ``/@/``."""

    def __init__(self, static_path: Optional[Path] = None) -> None:
        self.static_path = static_path or TEMPLATES_PATH / "static"
        self.names = frozenset({"style.css", "reload.js"})

    def read(self, name: str) -> Optional[bytes]:
        """Return the bytes of a known asset, or ``None`` for any other name."""
        if name not in self.names:
            return None
        try:
            return (self.static_path / name).read_bytes()
        except OSError as exc:
            raise InternalError(f"Cannot load asset {name}: {exc}") from exc
