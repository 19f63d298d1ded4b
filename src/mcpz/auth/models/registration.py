"""Client registration models for OAuth 2.0 Dynamic Client Registration."""

from __future__ import annotations

from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_CLIENT_NAME = "mcpz-client"
DEFAULT_REDIRECT_URI = "http://localhost:3000/callback"

_LOOPBACK_HOSTS = {"localhost", "127.0.0.1", "::1"}


class ClientMetadata(BaseModel):
    """OAuth 2.0 Client Metadata for dynamic registration (RFC 7591)."""

    client_name: str = DEFAULT_CLIENT_NAME
    redirect_uris: list[str] = Field(default=[DEFAULT_REDIRECT_URI], min_length=1)
    grant_types: list[str] = Field(default=["authorization_code", "refresh_token"])
    response_types: list[str] = Field(default=["code"])
    token_endpoint_auth_method: str = "client_secret_basic"

    @field_validator("redirect_uris")
    @classmethod
    def validate_redirect_uris(cls, v: list[str]) -> list[str]:
        """Redirect URIs must use HTTPS unless they point at a loopback host."""
        for uri in v:
            parsed = urlparse(uri)
            if parsed.scheme == "http" and parsed.hostname not in _LOOPBACK_HOSTS:
                raise ValueError(f"Redirect URI must use HTTPS or localhost: {uri}")
        return v


class ClientCredentials(BaseModel):
    """OAuth 2.0 Client Credentials from registration response."""

    model_config = ConfigDict(extra="allow")

    client_id: str
    client_secret: str = ""  # Empty for public clients
    client_id_issued_at: int | None = None
    client_secret_expires_at: int | None = None

    @field_validator("client_secret", mode="before")
    @classmethod
    def default_secret(cls, v: str | None) -> str:
        return v or ""
