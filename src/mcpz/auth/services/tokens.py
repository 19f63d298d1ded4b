"""OAuth 2.1 token exchange and refresh service.

Token endpoint interactions (RFC 6749) with PKCE verification (RFC 7636),
always sent as ``application/x-www-form-urlencoded``.
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from mcpz.auth.models.errors import TokenError, TokenExchangeError, TokenRefreshError
from mcpz.auth.models.tokens import (
    RefreshTokenRequest,
    TokenRequest,
    TokenResponse,
    TokenSet,
)
from mcpz.utils.logging import get_logger, resolve_logger

default_logger = get_logger(__name__)

_FORM_HEADERS = {
    "Content-Type": "application/x-www-form-urlencoded",
    "Accept": "application/json",
}


class OAuth2TokenManager:
    """Exchanges authorization codes and refresh tokens for token sets."""

    def __init__(self, timeout: float = 30.0, logger: logging.Logger | None = None):
        """Initialize OAuth token manager.

        Args:
            timeout: HTTP request timeout in seconds
            logger: Optional logger override
        """
        self.timeout = timeout
        self._logger = resolve_logger(logger, default_logger)
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def exchange_code_for_token(self, token_request: TokenRequest) -> TokenSet:
        """Exchange an authorization code for tokens (RFC 6749 Section 4.1.3).

        Raises:
            TokenExchangeError: On non-2xx responses, a missing
                ``access_token``, or network failures
        """
        self._logger.debug(f"Exchanging authorization code at {token_request.token_endpoint}")
        response_model = await self._post(
            token_request.token_endpoint,
            token_request.to_form_data(),
            TokenExchangeError,
            "Token exchange",
        )
        return response_model.to_token_set(
            client_id=token_request.client_id,
            client_secret=token_request.client_secret,
        )

    async def refresh_access_token(self, refresh_request: RefreshTokenRequest) -> TokenSet:
        """Refresh an access token (RFC 6749 Section 6).

        The previous refresh token is kept when the server does not rotate it.

        Raises:
            TokenRefreshError: On non-2xx responses, a missing
                ``access_token``, or network failures
        """
        self._logger.debug(f"Refreshing access token at {refresh_request.token_endpoint}")
        response_model = await self._post(
            refresh_request.token_endpoint,
            refresh_request.to_form_data(),
            TokenRefreshError,
            "Token refresh",
        )
        return response_model.to_token_set(
            client_id=refresh_request.client_id,
            client_secret=refresh_request.client_secret,
            previous_refresh_token=refresh_request.refresh_token,
        )

    async def _post(
        self,
        token_endpoint: str,
        form_data: dict[str, str],
        error_type: type[TokenError],
        operation: str,
    ) -> TokenResponse:
        try:
            response = await self._http_client.post(
                token_endpoint, data=form_data, headers=_FORM_HEADERS
            )
        except httpx.HTTPError as e:
            raise error_type(f"HTTP error during {operation.lower()}: {e}") from e

        if not 200 <= response.status_code < 300:
            self._logger.warning(f"{operation} failed with {response.status_code}")
            raise error_type(
                f"{operation} failed: {response.status_code} {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            response_data = response.json()
        except ValueError as e:
            raise error_type(f"Invalid token response format: {e}") from e

        if not isinstance(response_data, dict) or not response_data.get("access_token"):
            raise error_type(f"{operation} response missing access_token")

        try:
            return TokenResponse.model_validate(response_data)
        except ValidationError as e:
            raise error_type(f"Invalid token response format: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client and clean up resources."""
        await self._http_client.aclose()
