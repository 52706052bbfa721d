"""Tests for the local OAuth redirect listener."""

from __future__ import annotations

import asyncio
import socket

import httpx
import pytest
import pytest_asyncio

from savecloud.core.oauth_callback import CALLBACK_PATH, CallbackListener
from savecloud.exceptions import AuthorizationDenied, LocalIOFailure


@pytest.fixture
def port(config) -> int:
    return config.oauth_redirect_port


@pytest_asyncio.fixture
async def listener(port: int):
    callback = CallbackListener(port)
    await callback.start()
    yield callback
    await callback.close()


async def _get(port: int, path: str) -> httpx.Response:
    async with httpx.AsyncClient(trust_env=False) as client:
        return await client.get(f"http://127.0.0.1:{port}{path}")


class TestCallbackListener:
    def test_redirect_uri(self) -> None:
        assert CallbackListener(8085).redirect_uri == f"http://localhost:8085{CALLBACK_PATH}"

    @pytest.mark.asyncio
    async def test_code_resolves_wait(self, listener: CallbackListener, port: int) -> None:
        response = await _get(port, f"{CALLBACK_PATH}?code=abc&scope=drive.file")

        assert response.status_code == 200
        assert "successful" in response.text
        assert response.headers["content-type"].startswith("text/html")
        assert await listener.wait_for_code(1.0) == "abc"

    @pytest.mark.asyncio
    async def test_error_is_denied(self, listener: CallbackListener, port: int) -> None:
        response = await _get(port, f"{CALLBACK_PATH}?error=access_denied")

        assert response.status_code == 200
        assert "failed" in response.text
        with pytest.raises(AuthorizationDenied, match="access_denied"):
            await listener.wait_for_code(1.0)

    @pytest.mark.asyncio
    async def test_first_redirect_wins(self, listener: CallbackListener, port: int) -> None:
        await _get(port, f"{CALLBACK_PATH}?code=first")
        second = await _get(port, f"{CALLBACK_PATH}?error=access_denied")

        assert second.status_code == 200
        assert "already handled" in second.text
        assert await listener.wait_for_code(1.0) == "first"

    @pytest.mark.asyncio
    async def test_other_paths_leave_the_flow_pending(self, listener: CallbackListener, port: int) -> None:
        favicon = await _get(port, "/favicon.ico")
        assert favicon.status_code == 404

        with pytest.raises(AuthorizationDenied):
            await listener.wait_for_code(0.05)

        await _get(port, f"{CALLBACK_PATH}?code=late")
        assert await listener.wait_for_code(1.0) == "late"

    @pytest.mark.asyncio
    async def test_missing_code_is_bad_request(self, listener: CallbackListener, port: int) -> None:
        response = await _get(port, CALLBACK_PATH)

        assert response.status_code == 400
        with pytest.raises(AuthorizationDenied):
            await listener.wait_for_code(0.05)

    @pytest.mark.asyncio
    async def test_timeout_is_denied(self, listener: CallbackListener) -> None:
        with pytest.raises(AuthorizationDenied, match="Timed out"):
            await listener.wait_for_code(0.05)

    @pytest.mark.asyncio
    async def test_wait_before_start(self, port: int) -> None:
        with pytest.raises(RuntimeError):
            await CallbackListener(port).wait_for_code(0.05)

    @pytest.mark.asyncio
    async def test_port_in_use(self, port: int) -> None:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
            busy.bind(("127.0.0.1", port))
            busy.listen()
            callback = CallbackListener(port)
            with pytest.raises(LocalIOFailure, match=str(port)):
                await callback.start()
            await callback.close()

    @pytest.mark.asyncio
    async def test_close_releases_port(self, port: int) -> None:
        callback = CallbackListener(port)
        await callback.start()
        await _get(port, f"{CALLBACK_PATH}?code=abc")

        await callback.close()
        await callback.close()

        with pytest.raises(httpx.ConnectError):
            await _get(port, f"{CALLBACK_PATH}?code=again")
        again = CallbackListener(port)
        await again.start()
        await again.close()

    @pytest.mark.asyncio
    async def test_close_cancels_pending_wait(self, listener: CallbackListener) -> None:
        waiter = asyncio.ensure_future(listener.wait_for_code(5.0))
        await asyncio.sleep(0)

        await listener.close()

        with pytest.raises(asyncio.CancelledError):
            await waiter
