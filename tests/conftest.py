"""Shared fixtures for trawl tests."""

import asyncio
import socket
import threading
from collections.abc import Generator
from contextlib import closing

import pytest
from aiohttp import web
from click.testing import CliRunner

from trawl.common.cancellation import CancellationToken
from trawl.common.status import StatusEvent, StatusReporter
from tests.utils import collect_events

SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"


@pytest.fixture
def reporter() -> StatusReporter:
    return StatusReporter()


@pytest.fixture
def events(reporter: StatusReporter) -> list[StatusEvent]:
    """Every event published on the ``reporter`` fixture."""
    return collect_events(reporter)


@pytest.fixture
def token() -> CancellationToken:
    return CancellationToken()


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


# =============================================================================
# aiohttp test server fixtures
# =============================================================================


def find_free_port() -> int:
    """Find a free port on localhost.

    Returns:
        An available port number.
    """
    with closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
        s.bind(("", 0))
        s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        return s.getsockname()[1]


class AioHttpTestServer:
    """Wrapper to run aiohttp server in a background thread."""

    def __init__(self, app: web.Application, port: int) -> None:
        self.app = app
        self.port = port
        self.host = "127.0.0.1"
        self._loop: asyncio.AbstractEventLoop | None = None
        self._runner: web.AppRunner | None = None
        self._thread: threading.Thread | None = None
        self._started = threading.Event()

    @property
    def url(self) -> str:
        """Get the base URL of the server."""
        return f"http://{self.host}:{self.port}"

    def start(self) -> None:
        """Start the server in a background thread."""
        self._thread = threading.Thread(target=self._run_server, daemon=True)
        self._thread.start()
        self._started.wait(timeout=5.0)

    def _run_server(self) -> None:
        """Run the server in an asyncio event loop."""
        self._loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self._loop)

        async def start() -> None:
            self._runner = web.AppRunner(self.app)
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.host, self.port)
            await site.start()

        self._loop.run_until_complete(start())
        self._started.set()
        self._loop.run_forever()

    def stop(self) -> None:
        """Stop the server and clean up resources."""
        if self._loop and self._runner:
            future = asyncio.run_coroutine_threadsafe(
                self._runner.cleanup(), self._loop
            )
            future.result(timeout=2.0)

        if self._loop:
            self._loop.call_soon_threadsafe(self._loop.stop)

        if self._thread:
            self._thread.join(timeout=2.0)


def urlset(*urls: str) -> str:
    entries = "".join(f"<url><loc>{u}</loc></url>" for u in urls)
    return f'<?xml version="1.0" encoding="UTF-8"?><urlset xmlns="{SITEMAP_NS}">{entries}</urlset>'


def sitemapindex(*urls: str) -> str:
    entries = "".join(f"<sitemap><loc>{u}</loc></sitemap>" for u in urls)
    return f'<?xml version="1.0" encoding="UTF-8"?><sitemapindex xmlns="{SITEMAP_NS}">{entries}</sitemapindex>'


def create_sitemap_app(base_url: str) -> web.Application:
    """A site with a sitemap index, two child sitemaps and a broken one.

    Routes:
        /sitemap_index.xml   index of pages.xml, posts.xml, missing.xml
        /pages.xml           urlset with /, /about
        /posts.xml           urlset with /blog/first
        /missing.xml         404
        /broken.xml          not XML
        /feed.xml            an RSS document
        /loop.xml            index listing itself and pages.xml
        /shop_index.xml      index of shoes.xml, hats.xml
        /shoes.xml           urlset with three /shoes/ pages
        /hats.xml            urlset with three /hats/ pages
    """

    async def index(request: web.Request) -> web.Response:
        body = sitemapindex(
            f"{base_url}/pages.xml",
            f"{base_url}/posts.xml",
            f"{base_url}/missing.xml",
        )
        return web.Response(text=body, content_type="application/xml")

    async def pages(request: web.Request) -> web.Response:
        body = urlset(f"{base_url}/", f"{base_url}/about")
        return web.Response(text=body, content_type="application/xml")

    async def posts(request: web.Request) -> web.Response:
        body = urlset(f"{base_url}/blog/first")
        return web.Response(text=body, content_type="application/xml")

    async def broken(request: web.Request) -> web.Response:
        return web.Response(text="<urlset><url>", content_type="application/xml")

    async def feed(request: web.Request) -> web.Response:
        return web.Response(
            text="<rss><channel><title>x</title></channel></rss>",
            content_type="application/xml",
        )

    async def loop(request: web.Request) -> web.Response:
        body = sitemapindex(f"{base_url}/loop.xml", f"{base_url}/pages.xml")
        return web.Response(text=body, content_type="application/xml")

    async def shop_index(request: web.Request) -> web.Response:
        body = sitemapindex(f"{base_url}/shoes.xml", f"{base_url}/hats.xml")
        return web.Response(text=body, content_type="application/xml")

    def section(name: str):
        async def handler(request: web.Request) -> web.Response:
            body = urlset(
                *(f"{base_url}/{name}/{i}" for i in range(1, 4))
            )
            return web.Response(text=body, content_type="application/xml")

        return handler

    app = web.Application()
    app.router.add_get("/sitemap_index.xml", index)
    app.router.add_get("/pages.xml", pages)
    app.router.add_get("/posts.xml", posts)
    app.router.add_get("/broken.xml", broken)
    app.router.add_get("/feed.xml", feed)
    app.router.add_get("/loop.xml", loop)
    app.router.add_get("/shop_index.xml", shop_index)
    app.router.add_get("/shoes.xml", section("shoes"))
    app.router.add_get("/hats.xml", section("hats"))
    return app


@pytest.fixture
def sitemap_server() -> Generator[AioHttpTestServer, None, None]:
    """Start an aiohttp server serving the sitemap fixtures.

    Yields:
        AioHttpTestServer instance with the sitemap app running.
    """
    port = find_free_port()
    base_url = f"http://127.0.0.1:{port}"
    server = AioHttpTestServer(create_sitemap_app(base_url), port)
    server.start()
    yield server
    server.stop()
