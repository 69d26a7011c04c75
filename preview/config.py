"""Runtime configuration for the preview server."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 5032
DEFAULT_QUEUE_SIZE = 8

T = TypeVar("T")


@dataclass(frozen=True)
class FeatureFlags:
    """Snapshot of the toggles that change how a page is rendered."""

    reload: bool = True
    latex: bool = True
    syntax_highlight: bool = True


@dataclass(frozen=True)
class AppConfig:
    """Everything the server needs to know about its environment."""

    root: Path = field(default_factory=Path.cwd)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    files: Tuple[str, ...] = ()
    browser: Optional[str] = None
    enable_reload: bool = True
    enable_latex: bool = True
    enable_syntax_highlight: bool = True
    watch_opened_only: bool = False
    allow_remote: bool = False
    queue_size: int = DEFAULT_QUEUE_SIZE

    @property
    def features(self) -> FeatureFlags:
        return FeatureFlags(
            reload=self.enable_reload,
            latex=self.enable_latex,
            syntax_highlight=self.enable_syntax_highlight,
        )

    @property
    def base_url(self) -> str:
        host = "localhost" if self.host in {"127.0.0.1", "::1", "localhost"} else self.host
        return f"http://{host}:{self.port}"

    def watch_roots(self) -> Tuple[Tuple[Path, ...], bool]:
        """Return the paths to observe and whether to observe them recursively.

        Opened files are watched on their own only when asked to; otherwise the
        whole root is watched recursively so that any linked document reloads.
        """
        if self.watch_opened_only and self.files:
            return tuple((self.root / name).resolve() for name in self.files), False
        return (self.root.resolve(),), True


def resolve_setting(cli_value: Optional[T], env_name: str, default: T, cast=str) -> T:
    """Resolve a setting from the command line, the environment or a default.

    Priority order:
    1. Value given on the command line
    2. Environment variable ``env_name``
    3. ``default``
    """
    if cli_value is not None:
        return cli_value

    env_value = os.environ.get(env_name)
    if env_value:
        try:
            value = cast(env_value)
        except ValueError:
            logger.warning("Ignoring invalid %s=%r", env_name, env_value)
            return default
        logger.debug("Using %s from environment: %s", env_name, value)
        return value

    return default
