import asyncio
import logging
import time

import httpx

from mcpz.errors import ServerNotReadyError
from mcpz.utils.logging import get_logger, resolve_logger

default_logger = get_logger(__name__)

POLL_INTERVAL = 0.1
ATTEMPT_TIMEOUT = 0.5
READY_TIMEOUT = 30.0


async def wait_for_http_ready(
    url: str,
    timeout: float = READY_TIMEOUT,
    interval: float = POLL_INTERVAL,
    logger: logging.Logger | None = None,
) -> None:
    """Poll ``url`` with HEAD requests until the server answers.

    Any status from 200 to 499 counts as ready; 5xx responses and
    connection errors mean the server is still starting.

    Raises:
        ServerNotReadyError: If ``timeout`` seconds pass without a ready answer
    """
    log = resolve_logger(logger, default_logger)
    start = time.monotonic()
    deadline = start + timeout

    async with httpx.AsyncClient(timeout=ATTEMPT_TIMEOUT) as client:
        while True:
            try:
                response = await client.head(url)
                if 200 <= response.status_code < 500:
                    log.debug(f"{url} ready after {time.monotonic() - start:.2f}s")
                    return
                log.debug(f"{url} answered {response.status_code}, still starting")
            except httpx.HTTPError:
                pass

            if time.monotonic() + interval >= deadline:
                break
            await asyncio.sleep(interval)

    elapsed = time.monotonic() - start
    raise ServerNotReadyError(f"HTTP server {url} not ready after {elapsed:.1f}s")
