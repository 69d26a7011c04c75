#!/usr/bin/env python3
"""Quickly preview local markdown files in the browser, reloading on change."""

from __future__ import annotations

import argparse
import asyncio
import ipaddress
import logging
import posixpath
import threading
import webbrowser
from html import escape
from pathlib import Path
from typing import Optional, Sequence
from urllib.parse import quote

from aiohttp import web

from preview import (
    AppConfig,
    AssetStore,
    BroadcastHub,
    ContentResolver,
    EventStreamChannel,
    ReloadChannel,
    RenderedDocument,
    TemplateHandler,
    start_watching,
)
from preview.config import DEFAULT_HOST, DEFAULT_PORT, resolve_setting
from preview.content_resolver import (
    Directory,
    Forbidden,
    Markdown,
    NotFound,
    RawFile,
    ResolvedContent,
    extension_of,
    mime_type,
)
from preview.errors import (
    HubClosedError,
    InternalError,
    MethodNotAllowedError,
    NotFoundError,
    PreviewError,
)
from preview.template_handler import STATIC_PREFIX

__version__ = "0.5.0"

RELOAD_PREFIX = "/@reload"
EVENTS_PREFIX = "/@events"
ASSET_CACHE_CONTROL = "max-age=31536000"
DEFAULT_TITLE = "mdopen"

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def is_loopback(address: Optional[str]) -> bool:
    """Return whether a peer address is a loopback address.

    Connections without an IP peer (unix sockets) are local by definition.
    """
    if address is None:
        return True
    try:
        return ipaddress.ip_address(address.split("%", 1)[0]).is_loopback
    except ValueError:
        return False


def matches_prefix(path: str, prefix: str) -> bool:
    return path == prefix or path.startswith(prefix + "/")


def render_listing(directory: Directory) -> str:
    items = "".join(
        f"<li><a href='{escape(quote(entry.href))}'>{escape(entry.name)}{'/' if entry.is_dir else ''}</a></li>"
        for entry in directory.entries
    )
    return f"<h1>Directory</h1><ul>{items or 'Nothing to see here'}</ul>"


class PreviewServer:
    """Serve a directory of markdown files and push reload notifications."""

    def __init__(self, config: AppConfig, hub: Optional[BroadcastHub] = None) -> None:
        self.config = config
        self.flags = config.features
        self.resolver = ContentResolver(config.root, self.flags)
        self.templates = TemplateHandler()
        self.assets = AssetStore()
        self.hub = hub

    # ------------------------------------------------------------------
    # aiohttp lifecycle helpers
    # ------------------------------------------------------------------
    async def on_startup(self, app: web.Application) -> None:
        logger.info("Serving markdown from %s at %s", self.config.root, self.config.base_url)
        if self.config.enable_reload and self.hub is None:
            roots, recursive = self.config.watch_roots()
            self.hub = await asyncio.to_thread(
                start_watching, roots, recursive, self.config.queue_size
            )
        if self.config.files:
            open_browser(self.config)

    async def on_shutdown(self, app: web.Application) -> None:
        if self.hub is not None:
            self.hub.close()

    # ------------------------------------------------------------------
    # Response helpers
    # ------------------------------------------------------------------
    def page(self, title: str, body: str, status: int = 200) -> web.Response:
        html = self.templates.render_page(RenderedDocument(title=title, body=body, flags=self.flags))
        return web.Response(text=html, status=status, content_type="text/html")

    def error_response(self, error: PreviewError) -> web.Response:
        body = f"<h1>{error.status} {escape(error.title)}</h1>"
        if error.message != error.title:
            body += f"<p>{escape(error.message)}</p>"
        try:
            return self.page(DEFAULT_TITLE, body, status=error.status)
        except PreviewError:
            # The template itself is broken; still answer with valid HTML.
            html = f"<!DOCTYPE html><html><head><title>{DEFAULT_TITLE}</title></head><body>{body}</body></html>"
            return web.Response(text=html, status=error.status, content_type="text/html")

    def content_response(self, content: ResolvedContent) -> web.Response:
        if isinstance(content, Markdown):
            return self.page(content.title, content.html)
        if isinstance(content, Directory):
            title = posixpath.basename(content.path.rstrip("/")) or DEFAULT_TITLE
            return self.page(title, render_listing(content))
        if isinstance(content, RawFile):
            response = web.Response(body=content.data)
            if content.content_type:
                response.content_type = content.content_type
            return response
        if isinstance(content, Forbidden):
            return self.page(DEFAULT_TITLE, "<h1>403 Forbidden</h1>", status=403)
        if isinstance(content, NotFound):
            return self.page(DEFAULT_TITLE, "<h1>404 Not Found</h1>", status=404)
        raise TypeError(f"Unexpected content {content!r}")

    # ------------------------------------------------------------------
    # HTTP handlers
    # ------------------------------------------------------------------
    async def handle(self, request: web.Request) -> web.StreamResponse:
        """Dispatch one request: access check, method check, then by path prefix."""
        logger.info("%s %s", request.method, request.path_qs)
        try:
            forbidden = self.check_peer(request)
            if forbidden is not None:
                return self.content_response(forbidden)

            if request.method != "GET":
                logger.info("method not allowed: %s %s", request.method, request.path)
                raise MethodNotAllowedError()

            path = request.rel_url.raw_path
            if path.startswith(STATIC_PREFIX):
                return self.serve_asset(path[len(STATIC_PREFIX):])
            if matches_prefix(path, RELOAD_PREFIX):
                return await self.serve_reload(request, ReloadChannel)
            if matches_prefix(path, EVENTS_PREFIX):
                return await self.serve_reload(request, EventStreamChannel)
            return await self.serve_content(path)
        except InternalError as exc:
            logger.error("cannot serve %s: %s", request.path, exc.message)
            return self.error_response(exc)
        except PreviewError as exc:
            return self.error_response(exc)
        except Exception:
            logger.exception("Unhandled error while serving %s", request.path)
            return self.error_response(InternalError())

    def check_peer(self, request: web.Request) -> Optional[Forbidden]:
        if self.config.allow_remote or is_loopback(request.remote):
            return None
        logger.warning("request to %s from non-loopback address %s", request.path, request.remote)
        return Forbidden(f"non-loopback address {request.remote}")

    def serve_asset(self, name: str) -> web.Response:
        data = self.assets.read(name)
        if data is None:
            logger.info("not found: %s%s", STATIC_PREFIX, name)
            raise NotFoundError()

        response = web.Response(body=data, headers={"Cache-Control": ASSET_CACHE_CONTROL})
        content_type = mime_type(extension_of(name))
        if content_type:
            response.content_type = content_type
        return response

    async def serve_reload(self, request: web.Request, channel_cls) -> web.StreamResponse:
        if not self.config.enable_reload or self.hub is None:
            logger.warning("reload channel requested but live reload is disabled")
            raise NotFoundError("Live reload is disabled")

        try:
            return await channel_cls(self.hub, request).run()
        except HubClosedError as exc:
            raise InternalError("Server is shutting down") from exc

    async def serve_content(self, path: str) -> web.Response:
        # Filesystem reads run in a worker thread so the loop keeps accepting.
        content = await asyncio.to_thread(self.resolver.resolve, path)
        return self.content_response(content)

    # ------------------------------------------------------------------
    # Server bootstrap helpers
    # ------------------------------------------------------------------
    def create_app(self) -> web.Application:
        app = web.Application()
        app.router.add_route("*", "/{tail:.*}", self.handle)
        app.on_startup.append(self.on_startup)
        app.on_shutdown.append(self.on_shutdown)
        return app

    def run(self) -> None:
        app = self.create_app()
        web.run_app(app, host=self.config.host, port=self.config.port)


def file_url(config: AppConfig, name: str) -> str:
    path = Path(name)
    if path.is_absolute():
        try:
            path = path.resolve().relative_to(config.root.resolve())
        except ValueError:
            logger.warning("%s is outside %s and cannot be served", name, config.root)
    return f"{config.base_url}/{quote(path.as_posix().lstrip('/'))}"


def open_browser(config: AppConfig) -> threading.Thread:
    """Open every requested file in the browser without blocking startup."""

    def _open() -> None:
        try:
            controller = webbrowser.get(config.browser) if config.browser else webbrowser.get()
        except webbrowser.Error as exc:
            logger.error("cannot open browser: %s", exc)
            return

        for name in config.files:
            url = file_url(config, name)
            if not controller.open(url):
                logger.error("cannot open browser for %s", url)

    thread = threading.Thread(target=_open, name="mdopen-browser", daemon=True)
    thread.start()
    return thread


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mdopen", description="Quickly preview local markdown files")
    parser.add_argument("files", nargs="*", metavar="FILES", help="Files to open")
    parser.add_argument("-p", "--port", type=int, default=None, help=f"Port to serve (default {DEFAULT_PORT})")
    parser.add_argument("--host", default=None, help=f"Address to bind (default {DEFAULT_HOST})")
    parser.add_argument("-b", "--browser", default=None, help="Browser to open files with")
    parser.add_argument("--no-reload", dest="reload", action="store_false", help="Disable live reload")
    parser.add_argument("--no-latex", dest="latex", action="store_false", help="Do not load MathJax")
    parser.add_argument(
        "--no-highlight", dest="highlight", action="store_false", help="Disable syntax highlighting"
    )
    parser.add_argument(
        "--watch-opened",
        action="store_true",
        help="Only watch the files given on the command line instead of the whole directory",
    )
    parser.add_argument(
        "--allow-remote", action="store_true", help="Accept requests from non-loopback addresses"
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("-v", "--version", action="version", version=__version__)
    return parser


def config_from_args(args: argparse.Namespace, root: Optional[Path] = None) -> AppConfig:
    return AppConfig(
        root=root or Path.cwd(),
        host=resolve_setting(args.host, "MDOPEN_HOST", DEFAULT_HOST),
        port=resolve_setting(args.port, "MDOPEN_PORT", DEFAULT_PORT, int),
        files=tuple(args.files),
        browser=resolve_setting(args.browser, "MDOPEN_BROWSER", None),
        enable_reload=args.reload,
        enable_latex=args.latex,
        enable_syntax_highlight=args.highlight,
        watch_opened_only=args.watch_opened,
        allow_remote=args.allow_remote,
    )


def main(argv: Optional[Sequence[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    server = PreviewServer(config_from_args(args))
    server.run()


if __name__ == "__main__":
    main()
