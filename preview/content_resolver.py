"""Map request paths onto files, rendered Markdown and directory listings."""

from __future__ import annotations

import logging
import posixpath
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union
from urllib.parse import unquote

from .config import FeatureFlags
from .errors import InternalError
from .renderer import decode_source, render_markdown

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSIONS = frozenset({"md", "markdown"})

MIME_TYPES = {
    "js": "application/javascript",
    "css": "text/css",
    "gif": "image/gif",
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "pdf": "application/pdf",
    "html": "text/html",
    "txt": "text/plain",
}


@dataclass(frozen=True)
class DirectoryEntry:
    name: str
    href: str
    is_dir: bool = False


@dataclass(frozen=True)
class Directory:
    path: str
    entries: Tuple[DirectoryEntry, ...]


@dataclass(frozen=True)
class Markdown:
    title: str
    html: str


@dataclass(frozen=True)
class RawFile:
    data: bytes
    content_type: Optional[str]


@dataclass(frozen=True)
class NotFound:
    path: str


@dataclass(frozen=True)
class Forbidden:
    reason: str


ResolvedContent = Union[Directory, Markdown, RawFile, NotFound, Forbidden]


def extension_of(name: str) -> str:
    return posixpath.splitext(name)[1][1:].lower()


def mime_type(ext: str) -> Optional[str]:
    """Return the content type for a file extension, or ``None`` if unknown."""
    return MIME_TYPES.get(ext.lower())


def is_markdown(name: str) -> bool:
    return extension_of(name) in MARKDOWN_EXTENSIONS


class ContentResolver:
    """Resolve URL paths relative to ``root``.

    Nothing is cached: every call reads the filesystem again so an edited
    document is never served stale. Paths are joined onto ``root`` without
    further sandboxing; the server only listens on loopback for a single user.
    """

    def __init__(self, root: Path, flags: Optional[FeatureFlags] = None) -> None:
        self.root = root
        self.flags = flags or FeatureFlags()

    def resolve(self, url_path: str) -> ResolvedContent:
        """Return what should be served for ``url_path``.

        Raises:
            InternalError: if the filesystem fails for any reason other than a
                missing path.
        """
        decoded = unquote(url_path) or "/"
        if not decoded.startswith("/"):
            decoded = "/" + decoded
        absolute = self.root / decoded.lstrip("/")

        try:
            mode = absolute.stat().st_mode
        except (FileNotFoundError, NotADirectoryError):
            logger.info("not found: %s", decoded)
            return NotFound(decoded)
        except OSError as exc:
            raise InternalError(f"Cannot access {decoded}: {exc}") from exc

        try:
            if stat.S_ISDIR(mode):
                return self._list_directory(absolute, decoded)
            if is_markdown(absolute.name):
                return self._render_markdown(absolute)
            return RawFile(absolute.read_bytes(), mime_type(extension_of(absolute.name)))
        except FileNotFoundError:
            # Removed between stat and read.
            return NotFound(decoded)
        except OSError as exc:
            raise InternalError(f"Cannot read {decoded}: {exc}") from exc

    def _list_directory(self, absolute: Path, url_path: str) -> Directory:
        entries = []
        for child in sorted(absolute.iterdir(), key=lambda entry: entry.name):
            try:
                is_dir = child.is_dir()
            except OSError:
                is_dir = False
            entries.append(
                DirectoryEntry(
                    name=child.name,
                    href=posixpath.join(url_path, child.name),
                    is_dir=is_dir,
                )
            )
        return Directory(path=url_path, entries=tuple(entries))

    def _render_markdown(self, absolute: Path) -> Markdown:
        source = decode_source(absolute.read_bytes())
        return Markdown(title=absolute.name, html=render_markdown(source, self.flags))
