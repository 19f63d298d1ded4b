"""Token models for OAuth 2.1.

``TokenSet`` is the persisted form; requests and responses model the token
endpoint exchange itself.
"""

from __future__ import annotations

import time
from dataclasses import dataclass

from pydantic import BaseModel


def now_ms() -> int:
    return int(time.time() * 1000)


class TokenSet(BaseModel):
    """Tokens issued for one authenticated base URL.

    A set can refresh itself only when it carries the refresh token and the
    client credentials it was issued to.
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: int | None = None  # Epoch milliseconds; None never expires
    scopes: list[str] | None = None
    client_id: str | None = None
    client_secret: str | None = None

    def expires_within(self, buffer_seconds: float) -> bool:
        """Check whether the token expires before ``now + buffer_seconds``."""
        if self.expires_at is None:
            return False
        return now_ms() + buffer_seconds * 1000 >= self.expires_at

    def can_refresh(self) -> bool:
        return bool(self.refresh_token and self.client_id and self.client_secret)


class TokenResponse(BaseModel):
    """OAuth 2.1 token response (RFC 6749 Section 5.1)."""

    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None  # Seconds until expiry
    refresh_token: str | None = None
    scope: str | None = None

    def calculate_expires_at(self) -> int | None:
        """Absolute expiry in epoch milliseconds, or None if no expiry."""
        if self.expires_in is None:
            return None
        return now_ms() + self.expires_in * 1000

    def to_token_set(
        self,
        client_id: str | None,
        client_secret: str | None,
        previous_refresh_token: str | None = None,
    ) -> TokenSet:
        """Convert to a TokenSet, keeping ``previous_refresh_token`` if none was issued."""
        return TokenSet(
            access_token=self.access_token,
            refresh_token=self.refresh_token or previous_refresh_token,
            expires_at=self.calculate_expires_at(),
            scopes=self.scope.split(" ") if self.scope else None,
            client_id=client_id,
            client_secret=client_secret,
        )


@dataclass(frozen=True)
class TokenRequest:
    """Authorization code exchange parameters (RFC 6749 Section 4.1.3)."""

    token_endpoint: str
    code: str
    redirect_uri: str
    client_id: str
    client_secret: str | None = None
    code_verifier: str | None = None  # RFC 7636 PKCE
    grant_type: str = "authorization_code"

    def to_form_data(self) -> dict[str, str]:
        """Token requests must use form encoding, not JSON."""
        data = {
            "grant_type": self.grant_type,
            "code": self.code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
        }

        if self.client_secret:
            data["client_secret"] = self.client_secret
        if self.code_verifier:
            data["code_verifier"] = self.code_verifier

        return data


@dataclass(frozen=True)
class RefreshTokenRequest:
    """Refresh token request parameters (RFC 6749 Section 6)."""

    token_endpoint: str
    refresh_token: str
    client_id: str
    client_secret: str | None = None
    grant_type: str = "refresh_token"

    def to_form_data(self) -> dict[str, str]:
        data = {
            "grant_type": self.grant_type,
            "refresh_token": self.refresh_token,
            "client_id": self.client_id,
        }

        if self.client_secret:
            data["client_secret"] = self.client_secret

        return data
