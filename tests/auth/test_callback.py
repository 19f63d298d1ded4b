"""Tests for the local OAuth redirect listener, against a real port."""

import asyncio
import socket

import httpx
import pytest

from mcpz.auth.models.errors import AuthorizationError, AuthorizationTimeoutError
from mcpz.auth.services.callback import OAuthCallbackListener
from mcpz.utils.network import get_free_port


@pytest.fixture
async def listener():
    listener = OAuthCallbackListener(port=get_free_port())
    yield listener
    await listener.stop()


async def get_callback(listener: OAuthCallbackListener, path: str) -> httpx.Response:
    async with httpx.AsyncClient() as client:
        return await client.get(f"http://127.0.0.1:{listener.port}{path}")


class TestOAuthCallbackListener:
    async def test_successful_callback(self, listener):
        # Arrange
        await listener.start()
        waiter = asyncio.create_task(listener.wait_for_callback(timeout=5))

        # Act
        response = await get_callback(listener, "/callback?code=abc&state=xyz")
        result = await waiter

        # Assert
        assert response.status_code == 200
        assert "Authorization Successful" in response.text
        assert "window.close" in response.text
        assert result.code == "abc"
        assert result.state == "xyz"

    async def test_error_callback(self, listener):
        # Arrange
        await listener.start()
        waiter = asyncio.create_task(listener.wait_for_callback(timeout=5))

        # Act
        response = await get_callback(
            listener, "/callback?error=access_denied&error_description=User+said+no"
        )

        # Assert
        assert response.status_code == 400
        with pytest.raises(AuthorizationError, match="access_denied: User said no"):
            await waiter

    async def test_missing_code(self, listener):
        # Arrange
        await listener.start()
        waiter = asyncio.create_task(listener.wait_for_callback(timeout=5))

        # Act
        response = await get_callback(listener, "/callback?state=only")

        # Assert
        assert response.status_code == 400
        with pytest.raises(AuthorizationError, match="Missing authorization code"):
            await waiter

    async def test_unknown_path_is_404(self, listener):
        await listener.start()

        response = await get_callback(listener, "/other")

        assert response.status_code == 404

    async def test_error_description_is_escaped(self, listener):
        # Arrange
        await listener.start()
        waiter = asyncio.create_task(listener.wait_for_callback(timeout=5))

        # Act
        response = await get_callback(
            listener, "/callback?error=bad&error_description=%3Cb%3Ehi%3C%2Fb%3E"
        )

        # Assert
        assert "<b>hi</b>" not in response.text
        assert "&lt;b&gt;hi&lt;/b&gt;" in response.text
        with pytest.raises(AuthorizationError):
            await waiter

    async def test_timeout_releases_port(self, listener):
        # Arrange
        await listener.start()

        # Act & Assert
        with pytest.raises(AuthorizationTimeoutError, match="within 0.2 seconds"):
            await listener.wait_for_callback(timeout=0.2)

        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(("127.0.0.1", listener.port))

    async def test_port_in_use_fails_fast(self, listener):
        # Arrange
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", listener.port))
            blocker.listen(1)

            # Act & Assert
            with pytest.raises(OSError):
                await listener.start()

    async def test_stop_is_idempotent(self, listener):
        await listener.start()
        await listener.stop()
        await listener.stop()

    async def test_wait_before_start(self, listener):
        with pytest.raises(RuntimeError, match="not been started"):
            await listener.wait_for_callback(timeout=0.1)
