"""Tests for request routing and page rendering."""

from pathlib import Path
from unittest import mock
import sys

# Ensure the project root is importable when tests run from the repository root.
sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest
from aiohttp.test_utils import TestClient, TestServer, make_mocked_request

from mdopen import PreviewServer, is_loopback, matches_prefix
from preview.broadcast_hub import BroadcastHub
from preview.config import AppConfig
from preview.errors import InternalError


async def _create_test_client(server: PreviewServer) -> TestClient:
    """Spin up an in-memory aiohttp server and client for testing."""
    app = server.create_app()
    test_server = TestServer(app)
    client = TestClient(test_server)
    await client.start_server()
    return client


def _server(root: Path, **overrides) -> PreviewServer:
    return PreviewServer(AppConfig(root=root, **overrides), hub=BroadcastHub())


@pytest.mark.asyncio
async def test_index_lists_directory(tmp_path: Path) -> None:
    (tmp_path / "a.md").write_text("# A")
    (tmp_path / "b.txt").write_text("B")

    client = await _create_test_client(_server(tmp_path))
    try:
        response = await client.get("/")
        assert response.status == 200
        assert response.content_type == "text/html"

        html = await response.text()
        assert "<h1>Directory</h1>" in html
        assert "<a href='/a.md'>a.md</a>" in html
        assert "<a href='/b.txt'>b.txt</a>" in html
        assert html.index("a.md") < html.index("b.txt")
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_empty_directory_listing(tmp_path: Path) -> None:
    client = await _create_test_client(_server(tmp_path))
    try:
        response = await client.get("/")
        assert response.status == 200
        assert "Nothing to see here" in await response.text()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_markdown_page(tmp_path: Path) -> None:
    (tmp_path / "README.md").write_text("# Hello\n\nWorld\n")

    client = await _create_test_client(_server(tmp_path))
    try:
        response = await client.get("/README.md")
        assert response.status == 200
        assert response.content_type == "text/html"

        html = await response.text()
        assert "<title>README.md</title>" in html
        assert '<a id="hello" class="anchor" href="#hello">' in html
        assert '<link rel="stylesheet" href="/@/style.css">' in html
        assert '<script defer src="/@/reload.js"></script>' in html
        assert "mathjax" in html
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_feature_flags_shape_the_page(tmp_path: Path) -> None:
    (tmp_path / "doc.md").write_text("```python\nx = 1\n```\n")

    server = PreviewServer(
        AppConfig(root=tmp_path, enable_reload=False, enable_latex=False, enable_syntax_highlight=False)
    )
    client = await _create_test_client(server)
    try:
        html = await (await client.get("/doc.md")).text()
        assert "reload.js" not in html
        assert "mathjax" not in html
        assert '<pre><code class="language-python">' in html
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_empty_markdown_page_still_renders(tmp_path: Path) -> None:
    (tmp_path / "empty.md").write_text("")

    client = await _create_test_client(_server(tmp_path))
    try:
        response = await client.get("/empty.md")
        assert response.status == 200
        assert '<article class="markdown-body">' in await response.text()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_percent_encoded_path(tmp_path: Path) -> None:
    (tmp_path / "my notes.md").write_text("# Notes")

    client = await _create_test_client(_server(tmp_path))
    try:
        response = await client.get("/my%20notes.md")
        assert response.status == 200
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_missing_path_is_404_page(tmp_path: Path) -> None:
    client = await _create_test_client(_server(tmp_path))
    try:
        response = await client.get("/missing.md")
        assert response.status == 404
        assert response.content_type == "text/html"
        assert "<h1>404 Not Found</h1>" in await response.text()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_raw_files_keep_their_bytes(tmp_path: Path) -> None:
    (tmp_path / "notes.txt").write_text("plain")
    (tmp_path / "blob.bin").write_bytes(b"\x00\x01")

    client = await _create_test_client(_server(tmp_path))
    try:
        response = await client.get("/notes.txt")
        assert response.status == 200
        assert response.content_type == "text/plain"
        assert await response.text() == "plain"

        response = await client.get("/blob.bin")
        assert response.status == 200
        assert await response.read() == b"\x00\x01"
    finally:
        await client.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("method", ["POST", "PUT", "DELETE", "HEAD"])
async def test_non_get_methods_are_rejected(tmp_path: Path, method: str) -> None:
    (tmp_path / "a.md").write_text("# A")

    client = await _create_test_client(_server(tmp_path))
    try:
        response = await client.request(method, "/a.md")
        assert response.status == 405
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_static_assets(tmp_path: Path) -> None:
    client = await _create_test_client(_server(tmp_path))
    try:
        response = await client.get("/@/style.css")
        assert response.status == 200
        assert response.content_type == "text/css"
        assert response.headers["Cache-Control"] == "max-age=31536000"
        assert ".markdown-body" in await response.text()

        response = await client.get("/@/reload.js")
        assert response.status == 200
        assert response.content_type == "application/javascript"

        response = await client.get("/@/missing.css")
        assert response.status == 404
        assert "<h1>404 Not Found</h1>" in await response.text()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_internal_errors_render_500_page(tmp_path: Path) -> None:
    server = _server(tmp_path)

    def boom(path):
        raise InternalError("disk on fire")

    server.resolver.resolve = boom
    client = await _create_test_client(server)
    try:
        response = await client.get("/anything.md")
        assert response.status == 500
        html = await response.text()
        assert "<h1>500 Internal Server Error</h1>" in html
        assert "disk on fire" in html
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_broken_template_still_returns_html(tmp_path: Path) -> None:
    (tmp_path / "a.md").write_text("# A")
    server = _server(tmp_path)
    server.templates.template_path = tmp_path / "no-such-template.html"

    client = await _create_test_client(server)
    try:
        response = await client.get("/a.md")
        assert response.status == 500
        assert response.content_type == "text/html"
        assert "500 Internal Server Error" in await response.text()
    finally:
        await client.close()


@pytest.mark.asyncio
async def test_non_loopback_peer_is_forbidden(tmp_path: Path) -> None:
    transport = mock.Mock()
    transport.get_extra_info.side_effect = (
        lambda name, default=None: ("10.1.2.3", 5555) if name == "peername" else default
    )
    request = make_mocked_request("GET", "/", transport=transport)

    response = await _server(tmp_path).handle(request)

    assert response.status == 403
    assert "<h1>403 Forbidden</h1>" in response.text


@pytest.mark.parametrize(
    "address, expected",
    [
        ("127.0.0.1", True),
        ("127.8.9.10", True),
        ("::1", True),
        ("192.168.1.20", False),
        ("not-an-ip", False),
        (None, True),
    ],
)
def test_is_loopback(address, expected: bool) -> None:
    assert is_loopback(address) is expected


def test_matches_prefix() -> None:
    assert matches_prefix("/@reload", "/@reload")
    assert matches_prefix("/@reload/README.md", "/@reload")
    assert not matches_prefix("/@reloaded.md", "/@reload")
