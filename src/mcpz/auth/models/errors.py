"""OAuth failures raised while authenticating to an MCP server.

Discovery never raises past its public entry point; the remaining types
surface to callers of ``connect`` as descriptive failures.
"""

from __future__ import annotations


class OAuth2Error(Exception):
    """Root of every authentication failure."""


class EndpointError(OAuth2Error):
    """An authorization server endpoint answered with an error.

    Carries the HTTP status and raw body when the failure came from a
    response rather than the network.
    """

    def __init__(self, message: str, status_code: int | None = None, body: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class DiscoveryError(OAuth2Error):
    """Protected resource or authorization server metadata was unusable."""


class RegistrationError(EndpointError):
    """The registration endpoint rejected the client or returned garbage."""


class TokenError(EndpointError):
    """The token endpoint call failed."""


class TokenRefreshError(TokenError):
    """A refresh_token grant failed."""


class TokenExchangeError(TokenError):
    """An authorization_code grant failed."""


class AuthorizationError(OAuth2Error):
    """The redirect carried an error or no code."""


class AuthorizationTimeoutError(AuthorizationError):
    """No redirect reached the callback listener in time."""


class PKCEError(OAuth2Error):
    """Verifier or challenge generation failed."""


class AuthenticationRequiredError(OAuth2Error):
    """The server needs OAuth but advertises no usable endpoints."""


class TokenVerificationError(OAuth2Error):
    """A freshly issued token was rejected by the server."""
