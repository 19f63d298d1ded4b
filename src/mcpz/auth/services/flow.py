"""Interactive OAuth 2.1 authorization code flow.

Drives one authorization attempt end to end: PKCE generation, the local
callback listener, sending the user to the authorization URL, and the code
exchange at the token endpoint.
"""

from __future__ import annotations

import logging
import subprocess
import sys
from collections.abc import Callable
from dataclasses import dataclass, field

from mcpz.auth.models.flow import AuthorizationRequest, FlowState
from mcpz.auth.models.security import PKCEParameters
from mcpz.auth.models.tokens import RefreshTokenRequest, TokenRequest, TokenSet
from mcpz.auth.primitives.pkce import generate_pkce
from mcpz.auth.services.callback import CALLBACK_PATH, OAuthCallbackListener
from mcpz.auth.services.tokens import OAuth2TokenManager
from mcpz.utils.logging import get_logger, resolve_logger

default_logger = get_logger(__name__)

HEADLESS_CALLBACK_TIMEOUT = 60.0
INTERACTIVE_CALLBACK_TIMEOUT = 300.0


def print_authorization_url(url: str) -> None:
    print(f"Please visit this URL to authorize:\n{url}", file=sys.stderr, flush=True)


def open_browser(url: str, logger: logging.Logger | None = None) -> None:
    """Open ``url`` in the platform browser without waiting for it.

    Failures are logged; the callback listener keeps waiting regardless.
    """
    log = resolve_logger(logger, default_logger)
    if sys.platform == "darwin":
        command = ["open", url]
    elif sys.platform == "win32":
        command = ["cmd", "/c", "start", "", url.replace("&", "^&")]
    else:
        command = ["xdg-open", url]

    try:
        subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )
    except OSError as e:
        log.warning(f"Could not open browser ({e}); visit the authorization URL manually")


@dataclass
class OAuthFlowOptions:
    """Options for a single authorization attempt.

    ``timeout`` defaults to 60 seconds headless and 300 seconds interactive.
    """

    port: int
    redirect_uri: str | None = None
    scopes: list[str] | None = None
    resource: str | None = None
    pkce: bool = False
    headless: bool = False
    timeout: float | None = None
    on_authorization_url: Callable[[str], None] | None = None
    logger: logging.Logger | None = field(default=None, repr=False)


class InteractiveOAuthFlow:
    """Runs authorization code flows and refreshes their tokens."""

    def __init__(self, token_manager: OAuth2TokenManager | None = None):
        self._token_manager = token_manager or OAuth2TokenManager()
        self.state = FlowState.IDLE

    async def perform_auth_flow(
        self,
        authorization_endpoint: str,
        token_endpoint: str,
        client_id: str,
        client_secret: str,
        options: OAuthFlowOptions,
    ) -> TokenSet:
        """Authorize the user and exchange the resulting code for tokens.

        The callback listener is always stopped before returning, whether the
        attempt succeeded, failed or timed out.

        Args:
            authorization_endpoint: Authorization server's authorize URL
            token_endpoint: Token endpoint for the code exchange
            client_id: Registered client id
            client_secret: Registered client secret (may be empty)
            options: Listener port, PKCE, headless mode and timeouts

        Returns:
            TokenSet carrying the client credentials used

        Raises:
            OSError: If the callback port cannot be bound
            AuthorizationError: If the redirect reports an error or times out
            TokenExchangeError: If the code exchange fails
        """
        log = resolve_logger(options.logger, default_logger)
        listener = OAuthCallbackListener(port=options.port, logger=log)

        pkce: PKCEParameters | None = None
        if options.pkce:
            log.debug("Generating PKCE parameters")
            pkce = generate_pkce()

        self.state = FlowState.IDLE
        try:
            await listener.start()
            self.state = FlowState.LISTENING

            redirect_uri = (
                options.redirect_uri or f"http://localhost:{options.port}{CALLBACK_PATH}"
            )
            authorization_url = AuthorizationRequest(
                authorization_endpoint=authorization_endpoint,
                client_id=client_id,
                redirect_uri=redirect_uri,
                code_challenge=pkce.code_challenge if pkce else None,
                code_challenge_method=pkce.code_challenge_method if pkce else None,
                resource=options.resource,
                scope=" ".join(options.scopes) if options.scopes else None,
            ).build_authorization_url()

            if options.headless:
                (options.on_authorization_url or print_authorization_url)(authorization_url)
            elif options.on_authorization_url is not None:
                options.on_authorization_url(authorization_url)
            else:
                log.debug("Opening browser for OAuth authorization")
                open_browser(authorization_url, log)

            self.state = FlowState.AWAITING_REDIRECT
            timeout = options.timeout or (
                HEADLESS_CALLBACK_TIMEOUT if options.headless else INTERACTIVE_CALLBACK_TIMEOUT
            )
            callback = await listener.wait_for_callback(timeout)

            self.state = FlowState.EXCHANGING
            tokens = await self._token_manager.exchange_code_for_token(
                TokenRequest(
                    token_endpoint=token_endpoint,
                    code=callback.code,
                    redirect_uri=redirect_uri,
                    client_id=client_id,
                    client_secret=client_secret,
                    code_verifier=pkce.code_verifier if pkce else None,
                )
            )
            self.state = FlowState.COMPLETE
            return tokens

        except Exception as e:
            self.state = FlowState.FAILED
            log.error(f"OAuth flow failed: {e}")
            raise
        finally:
            await listener.stop()

    async def refresh_tokens(
        self,
        token_endpoint: str,
        refresh_token: str,
        client_id: str,
        client_secret: str | None,
    ) -> TokenSet:
        """Refresh a token set, keeping the old refresh token if none is issued.

        Raises:
            TokenRefreshError: If the refresh fails
        """
        return await self._token_manager.refresh_access_token(
            RefreshTokenRequest(
                token_endpoint=token_endpoint,
                refresh_token=refresh_token,
                client_id=client_id,
                client_secret=client_secret,
            )
        )

    async def close(self) -> None:
        await self._token_manager.close()
