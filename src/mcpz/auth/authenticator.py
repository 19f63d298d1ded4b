"""Token acquisition for OAuth-protected MCP servers.

Reuses stored tokens, refreshes them ahead of expiry, and falls back to a
full DCR registration plus interactive authorization when needed.
"""

from __future__ import annotations

import ipaddress
import logging
from enum import Enum
from urllib.parse import urlsplit

import httpx
from pydantic import ValidationError

from mcpz.auth.models.discovery import AuthCapabilities
from mcpz.auth.models.errors import (
    AuthenticationRequiredError,
    OAuth2Error,
    TokenRefreshError,
    TokenVerificationError,
)
from mcpz.auth.models.tokens import TokenSet
from mcpz.auth.services.flow import InteractiveOAuthFlow, OAuthFlowOptions
from mcpz.auth.services.registration import DynamicClientRegistrar
from mcpz.auth.storage import FileTokenStore, TokenStore
from mcpz.utils.logging import get_logger, resolve_logger

default_logger = get_logger(__name__)

REFRESH_BUFFER_SECONDS = 5 * 60
VERIFY_PATH = "/oauth/verify"


class AuthMode(str, Enum):
    """Which token lifecycle to apply to a server.

    ``AUTO`` treats loopback hosts as self-hosted and everything else as an
    external provider.
    """

    AUTO = "auto"
    SELF_HOSTED = "self-hosted"
    EXTERNAL = "external"


def is_loopback_url(url: str) -> bool:
    try:
        host = urlsplit(url).hostname
    except ValueError:
        return False
    if not host:
        return False
    if host == "localhost":
        return True
    try:
        return ipaddress.ip_address(host).is_loopback
    except ValueError:
        return False


def redirect_port(redirect_uri: str) -> int:
    parts = urlsplit(redirect_uri)
    if parts.port:
        return parts.port
    return 443 if parts.scheme == "https" else 80


class DcrAuthenticator:
    """Ensures a valid token set exists for a server base URL.

    External mode stores tokens under ``tokens:<base_url>`` and refreshes
    them when they expire within five minutes. Self-hosted mode stores them
    under ``dcr-tokens:<base_url>`` and checks liveness against the server's
    ``/oauth/verify`` endpoint instead.
    """

    def __init__(
        self,
        redirect_uri: str,
        token_store: TokenStore | None = None,
        headless: bool = False,
        mode: AuthMode | str = AuthMode.AUTO,
        client_name: str | None = None,
        callback_timeout: float | None = None,
        logger: logging.Logger | None = None,
    ):
        """Initialize the authenticator.

        Args:
            redirect_uri: Callback URI; its port is where the listener binds
            token_store: Token persistence (defaults to ``./.mcpz/tokens.json``)
            headless: Hand the URL to the user instead of opening a browser
            mode: Explicit self-hosted/external choice, or auto-detection
            client_name: Name to register the DCR client under
            callback_timeout: Seconds to wait for the redirect
            logger: Optional logger override
        """
        self.redirect_uri = redirect_uri
        self.token_store = token_store if token_store is not None else FileTokenStore.default()
        self.headless = headless
        self.mode = AuthMode(mode)
        self.client_name = client_name
        self.callback_timeout = callback_timeout
        self._logger = resolve_logger(logger, default_logger)
        self._registrar = DynamicClientRegistrar(logger=self._logger)
        self._oauth_flow = InteractiveOAuthFlow()
        self._http_client = httpx.AsyncClient(timeout=10.0)

    def is_self_hosted(self, base_url: str) -> bool:
        if self.mode is AuthMode.AUTO:
            return is_loopback_url(base_url)
        return self.mode is AuthMode.SELF_HOSTED

    async def ensure_authenticated(
        self, base_url: str, capabilities: AuthCapabilities
    ) -> TokenSet:
        """Return a usable token set for ``base_url``.

        Raises:
            AuthenticationRequiredError: If a new authorization is needed but
                the server lacks registration/authorization/token endpoints
            OAuth2Error: If registration, authorization or token exchange fails
            TokenVerificationError: If a self-hosted server rejects a new token
        """
        if self.is_self_hosted(base_url):
            return await self._ensure_authenticated_self_hosted(base_url, capabilities)
        return await self._ensure_authenticated_external(base_url, capabilities)

    async def delete_tokens(self, base_url: str) -> None:
        """Forget the external-mode tokens stored for ``base_url``."""
        await self.token_store.delete(f"tokens:{base_url}")
        self._logger.debug(f"Deleted tokens for {base_url}")

    async def close(self) -> None:
        await self._registrar.close()
        await self._oauth_flow.close()
        await self._http_client.aclose()

    async def _ensure_authenticated_external(
        self, base_url: str, capabilities: AuthCapabilities
    ) -> TokenSet:
        token_key = f"tokens:{base_url}"
        tokens = await self._load(token_key)

        if tokens is not None and tokens.expires_within(REFRESH_BUFFER_SECONDS):
            self._logger.debug("Refreshing access token")
            try:
                tokens = await self._refresh(tokens, capabilities.token_endpoint)
                await self._save(token_key, tokens)
                self._logger.debug("Token refreshed successfully")
            except OAuth2Error as e:
                self._logger.warning(f"Token refresh failed, re-authenticating: {e}")
                await self.token_store.delete(token_key)
                tokens = None

        if tokens is not None:
            return tokens

        self._logger.debug("No valid tokens found, starting external OAuth authentication")
        tokens = await self._authorize(capabilities)
        await self._save(token_key, tokens)
        self._logger.debug("Authentication successful, tokens saved")
        return tokens

    async def _ensure_authenticated_self_hosted(
        self, base_url: str, capabilities: AuthCapabilities
    ) -> TokenSet:
        token_key = f"dcr-tokens:{base_url}"
        tokens = await self._load(token_key)

        if tokens is not None:
            if await self._verify(base_url, tokens):
                return tokens
            await self.token_store.delete(token_key)

        self._logger.debug("No valid tokens found, starting self-hosted DCR authentication")
        tokens = await self._authorize(capabilities)

        if not await self._verify(base_url, tokens):
            self._logger.error("DCR token verification failed after authentication")
            raise TokenVerificationError(
                "Self-hosted DCR authentication completed but token verification failed"
            )

        await self._save(token_key, tokens)
        self._logger.debug("Self-hosted DCR authentication successful, tokens saved")
        return tokens

    async def _authorize(self, capabilities: AuthCapabilities) -> TokenSet:
        if not (
            capabilities.registration_endpoint
            and capabilities.authorization_endpoint
            and capabilities.token_endpoint
        ):
            raise AuthenticationRequiredError(
                "Server does not provide required OAuth endpoints "
                "(registration, authorization and token endpoints are all needed)"
            )

        self._logger.debug("Registering OAuth client")
        client = await self._registrar.register_client(
            capabilities.registration_endpoint,
            client_name=self.client_name,
            redirect_uri=self.redirect_uri,
        )

        return await self._oauth_flow.perform_auth_flow(
            capabilities.authorization_endpoint,
            capabilities.token_endpoint,
            client.client_id,
            client.client_secret,
            OAuthFlowOptions(
                port=redirect_port(self.redirect_uri),
                redirect_uri=self.redirect_uri,
                scopes=capabilities.scopes,
                pkce=True,
                headless=self.headless,
                timeout=self.callback_timeout,
                logger=self._logger,
            ),
        )

    async def _refresh(self, tokens: TokenSet, token_endpoint: str | None) -> TokenSet:
        if not token_endpoint:
            raise TokenRefreshError("Token endpoint not available for refresh")
        if not tokens.can_refresh():
            raise TokenRefreshError("Stored tokens lack refresh token or client credentials")

        return await self._oauth_flow.refresh_tokens(
            token_endpoint,
            tokens.refresh_token,
            tokens.client_id,
            tokens.client_secret,
        )

    async def _verify(self, base_url: str, tokens: TokenSet) -> bool:
        """Ask a self-hosted server to echo the token back."""
        try:
            response = await self._http_client.get(
                f"{base_url.rstrip('/')}{VERIFY_PATH}",
                headers={"Authorization": f"Bearer {tokens.access_token}"},
            )
            if response.status_code != 200:
                self._logger.debug(f"Token verification returned {response.status_code}")
                return False
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            self._logger.debug(f"Token verification failed: {e}")
            return False
        return isinstance(payload, dict) and payload.get("token") == tokens.access_token

    async def _load(self, key: str) -> TokenSet | None:
        stored = await self.token_store.get(key)
        if stored is None:
            return None
        try:
            return TokenSet.model_validate(stored)
        except ValidationError as e:
            self._logger.warning(f"Discarding malformed stored tokens under {key}: {e}")
            await self.token_store.delete(key)
            return None

    async def _save(self, key: str, tokens: TokenSet) -> None:
        await self.token_store.set(key, tokens.model_dump(mode="json"))
