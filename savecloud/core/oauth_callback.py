"""Local OAuth redirect listener and the interactive authorization surface."""

from __future__ import annotations

import asyncio
import webbrowser
from typing import Protocol

from aiohttp import web
from loguru import logger

from savecloud.exceptions import AuthorizationDenied, LocalIOFailure

CALLBACK_PATH = "/oauth2callback"

_SUCCESS_PAGE = "<html><body><h2>Authentication successful! You can close this window.</h2></body></html>"
_FAILURE_PAGE = "<html><body><h2>Authentication failed. You can close this window.</h2></body></html>"
_HANDLED_PAGE = "<html><body><h2>This sign-in request was already handled.</h2></body></html>"

# Upper bound for in-flight responses when the listener shuts down
_SHUTDOWN_TIMEOUT = 2.0


class AuthorizationSurface(Protocol):
    """Where the user grants access (a browser tab, an embedded window …)."""

    def open(self, url: str) -> None: ...

    def close(self) -> None: ...


class BrowserSurface:
    """Opens the consent page in the system browser. Nothing to close afterwards."""

    def open(self, url: str) -> None:
        logger.info("Opening browser for Google Drive authorization")
        if not webbrowser.open(url):
            logger.warning(f"Could not open a browser, visit this URL manually: {url}")

    def close(self) -> None:
        return None


class CallbackListener:
    """
    Short-lived aiohttp server for the OAuth redirect.

    Resolves with the first ``code`` it receives or fails with
    AuthorizationDenied on the first ``error``; later requests only get an
    informational page. Any other path is answered with 404 by the router.
    """

    def __init__(self, port: int, host: str = "127.0.0.1", path: str = CALLBACK_PATH) -> None:
        self._host = host
        self._port = port
        self._path = path
        self._runner: web.AppRunner | None = None
        self._result: asyncio.Future[str] | None = None
        self._closed = False

    @property
    def redirect_uri(self) -> str:
        return f"http://localhost:{self._port}{self._path}"

    async def start(self) -> None:
        self._result = asyncio.get_running_loop().create_future()

        app = web.Application()
        app.router.add_get(self._path, self._handle)
        self._runner = web.AppRunner(app, access_log=None, shutdown_timeout=_SHUTDOWN_TIMEOUT)
        await self._runner.setup()
        try:
            await web.TCPSite(self._runner, self._host, self._port).start()
        except OSError as e:
            await self._runner.cleanup()
            self._runner = None
            raise LocalIOFailure(f"Cannot listen on port {self._port}: {e}") from e
        logger.debug(f"OAuth callback listener on {self._host}:{self._port}")

    async def wait_for_code(self, timeout: float) -> str:
        if self._result is None:
            raise RuntimeError("Listener not started")
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout)
        except asyncio.TimeoutError as e:
            raise AuthorizationDenied("Timed out waiting for authorization") from e

    async def close(self) -> None:
        """Stop listening. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._result is not None and not self._result.done():
            self._result.cancel()
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        logger.debug("OAuth callback listener closed")

    async def _handle(self, request: web.Request) -> web.Response:
        if self._result is None or self._result.done():
            return web.Response(text=_HANDLED_PAGE, content_type="text/html")

        error = request.query.get("error", "")
        code = request.query.get("code", "")
        if error:
            self._result.set_exception(AuthorizationDenied(f"Google auth error: {error}"))
            return web.Response(text=_FAILURE_PAGE, content_type="text/html")
        if code:
            self._result.set_result(code)
            return web.Response(text=_SUCCESS_PAGE, content_type="text/html")
        return web.Response(status=400, text=_FAILURE_PAGE, content_type="text/html")
