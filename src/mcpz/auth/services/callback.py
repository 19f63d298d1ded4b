"""Local HTTP listener that receives the OAuth authorization redirect."""

from __future__ import annotations

import asyncio
import html
import logging
import socket
import sys

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, Response
from starlette.routing import Route

from mcpz.auth.models.errors import AuthorizationError, AuthorizationTimeoutError
from mcpz.auth.models.flow import CallbackResult
from mcpz.utils.logging import get_logger, resolve_logger

default_logger = get_logger(__name__)

CALLBACK_PATH = "/callback"

_PAGE = """<html>
  <head><meta charset="UTF-8"></head>
  <body>
    <h1>{title}</h1>
    <p>{message}</p>
    <script>setTimeout(() => window.close(), {close_after});</script>
  </body>
</html>"""


def _page(title: str, message: str, close_after: int) -> str:
    return _PAGE.format(
        title=title, message=html.escape(message), close_after=close_after
    )


class OAuthCallbackListener:
    """Serves ``GET /callback`` on a fixed local port until one redirect arrives.

    The socket is bound in :meth:`start`, so a port conflict fails fast with
    ``OSError`` instead of surfacing inside the server task.
    """

    def __init__(
        self,
        port: int,
        host: str = "127.0.0.1",
        logger: logging.Logger | None = None,
    ):
        self.port = port
        self.host = host
        self._logger = resolve_logger(logger, default_logger)
        self._app = Starlette(routes=[Route(CALLBACK_PATH, self._handle_callback)])
        self._server: uvicorn.Server | None = None
        self._server_task: asyncio.Task | None = None
        self._socket: socket.socket | None = None
        self._result: asyncio.Future[CallbackResult] | None = None

    @property
    def redirect_uri(self) -> str:
        return f"http://localhost:{self.port}{CALLBACK_PATH}"

    async def start(self) -> None:
        """Bind the port and start serving.

        Raises:
            OSError: If the port is already in use
        """
        self._result = asyncio.get_running_loop().create_future()
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        if sys.platform != "win32":
            self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self._socket.bind((self.host, self.port))
        except OSError:
            self._socket.close()
            self._socket = None
            raise
        self._socket.listen(16)
        self._socket.setblocking(False)

        config = uvicorn.Config(
            app=self._app, log_level="warning", lifespan="off", access_log=False
        )
        self._server = uvicorn.Server(config)
        self._server_task = asyncio.create_task(
            self._server.serve(sockets=[self._socket]),
            name=f"oauth_callback_{self.port}",
        )

        while not self._server.started:
            if self._server_task.done():
                self._server_task.result()
                raise OSError(f"Callback server on port {self.port} exited during startup")
            await asyncio.sleep(0.01)

        self._logger.debug(f"Callback server listening on {self.redirect_uri}")

    async def wait_for_callback(self, timeout: float = 300.0) -> CallbackResult:
        """Wait for the redirect, stopping the listener if ``timeout`` elapses.

        Raises:
            AuthorizationError: If the redirect carried an error or no code
            AuthorizationTimeoutError: If no redirect arrived in time
        """
        if self._result is None:
            raise RuntimeError("Callback listener has not been started")

        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout)
        except asyncio.TimeoutError:
            await self.stop()
            raise AuthorizationTimeoutError(
                f"Authorization timeout - no callback received within {timeout:g} seconds"
            ) from None

    async def stop(self) -> None:
        """Stop serving and release the port. Safe to call more than once."""
        if self._server is not None:
            self._server.should_exit = True
        if self._server_task is not None:
            try:
                await self._server_task
            except Exception as e:
                self._logger.debug(f"Callback server stopped with error: {e}")
            self._server_task = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        self._server = None
        if self._result is not None and not self._result.done():
            self._result.cancel()

    async def _handle_callback(self, request: Request) -> Response:
        params = request.query_params
        code = params.get("code")
        state = params.get("state")
        error = params.get("error")
        error_description = params.get("error_description")

        if error:
            message = f"{error}: {error_description}" if error_description else error
            self._settle(error=AuthorizationError(message))
            return HTMLResponse(_page("Authorization Failed", message, 3000), status_code=400)

        if not code:
            self._settle(error=AuthorizationError("Missing authorization code"))
            return HTMLResponse(
                _page("Invalid Callback", "Missing authorization code", 3000),
                status_code=400,
            )

        self._settle(result=CallbackResult(code=code, state=state))
        return HTMLResponse(
            _page(
                "Authorization Successful",
                "You can close this window and return to the terminal.",
                2000,
            )
        )

    def _settle(
        self,
        result: CallbackResult | None = None,
        error: Exception | None = None,
    ) -> None:
        if self._result is None or self._result.done():
            return
        if error is not None:
            self._result.set_exception(error)
        else:
            self._result.set_result(result)
