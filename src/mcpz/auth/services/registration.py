"""OAuth 2.1 dynamic client registration service.

Implements RFC 7591 (OAuth 2.0 Dynamic Client Registration Protocol)
to register this library as a client of a discovered authorization server.
"""

from __future__ import annotations

import logging
import time

import httpx
from pydantic import ValidationError

from mcpz.auth.models.errors import RegistrationError
from mcpz.auth.models.registration import (
    DEFAULT_CLIENT_NAME,
    DEFAULT_REDIRECT_URI,
    ClientCredentials,
    ClientMetadata,
)
from mcpz.utils.logging import get_logger, resolve_logger

default_logger = get_logger(__name__)


class DynamicClientRegistrar:
    """Registers OAuth clients with an authorization server's registration endpoint.

    Every call performs a fresh registration; credentials are not cached.
    """

    def __init__(self, timeout: float = 30.0, logger: logging.Logger | None = None):
        """Initialize the registrar.

        Args:
            timeout: HTTP request timeout in seconds
            logger: Optional logger override
        """
        self.timeout = timeout
        self._logger = resolve_logger(logger, default_logger)
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def register_client(
        self,
        registration_endpoint: str,
        client_name: str | None = None,
        redirect_uri: str | None = None,
    ) -> ClientCredentials:
        """Register a new OAuth client.

        Args:
            registration_endpoint: Client registration endpoint URL
            client_name: Name shown to the user on the consent screen
            redirect_uri: Callback URI; defaults to a localhost callback

        Returns:
            Issued client credentials (``client_secret`` empty for public clients)

        Raises:
            RegistrationError: On non-2xx responses, missing ``client_id``,
                or network failures
        """
        metadata = ClientMetadata(
            client_name=client_name or DEFAULT_CLIENT_NAME,
            redirect_uris=[redirect_uri or DEFAULT_REDIRECT_URI],
        )
        self._logger.debug(f"Registering client at {registration_endpoint}")

        try:
            response = await self._http_client.post(
                registration_endpoint,
                json=metadata.model_dump(mode="json"),
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise RegistrationError(f"HTTP error during registration: {e}") from e

        if not 200 <= response.status_code < 300:
            self._logger.error(
                f"Client registration failed with {response.status_code}"
            )
            raise RegistrationError(
                f"DCR registration failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        return self._handle_successful_registration(response, registration_endpoint)

    def _handle_successful_registration(
        self, response: httpx.Response, registration_endpoint: str
    ) -> ClientCredentials:
        try:
            response_data = response.json()
        except ValueError as e:
            raise RegistrationError(f"Invalid registration response format: {e}") from e

        if not isinstance(response_data, dict) or not response_data.get("client_id"):
            raise RegistrationError("DCR response missing client_id")

        try:
            credentials = ClientCredentials.model_validate(response_data)
        except ValidationError as e:
            raise RegistrationError(f"Invalid registration response format: {e}") from e

        if credentials.client_id_issued_at is None:
            credentials.client_id_issued_at = int(time.time())

        self._logger.info(
            f"Registered client {credentials.client_id} at {registration_endpoint}"
        )
        return credentials

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()
