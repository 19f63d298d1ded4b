"""Discovery-related models for OAuth 2.1 server metadata.

Contains models for Protected Resource Metadata (RFC 9728) and
Authorization Server Metadata (RFC 8414), plus the capability summary
the authenticator consumes.
"""

from __future__ import annotations

from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict


class ProtectedResourceMetadata(BaseModel):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""

    model_config = ConfigDict(extra="allow")

    resource: str | None = None
    authorization_servers: list[str] = []
    scopes_supported: list[str] | None = None

    # Optional fields from RFC 9728
    bearer_methods_supported: list[str] | None = None
    resource_documentation: str | None = None
    resource_policy_uri: str | None = None
    resource_tos_uri: str | None = None


class AuthorizationServerMetadata(BaseModel):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414).

    Every field is optional: servers in the wild omit required members and
    discovery only needs the endpoints that are present.
    """

    model_config = ConfigDict(extra="allow")

    issuer: str | None = None
    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    registration_endpoint: str | None = None
    introspection_endpoint: str | None = None
    revocation_endpoint: str | None = None
    scopes_supported: list[str] | None = None
    response_types_supported: list[str] | None = None
    grant_types_supported: list[str] | None = None
    code_challenge_methods_supported: list[str] | None = None


@dataclass(frozen=True)
class AuthCapabilities:
    """OAuth surface discovered for a base URL.

    Derived on every connection attempt and never persisted.
    """

    supports_dcr: bool
    registration_endpoint: str | None = None
    authorization_endpoint: str | None = None
    token_endpoint: str | None = None
    introspection_endpoint: str | None = None
    scopes: list[str] | None = None

    @classmethod
    def from_metadata(
        cls,
        metadata: AuthorizationServerMetadata,
        resource_scopes: list[str] | None = None,
    ) -> AuthCapabilities:
        """Build capabilities, preferring resource-level scopes."""
        return cls(
            supports_dcr=bool(metadata.registration_endpoint),
            registration_endpoint=metadata.registration_endpoint,
            authorization_endpoint=metadata.authorization_endpoint,
            token_endpoint=metadata.token_endpoint,
            introspection_endpoint=metadata.introspection_endpoint,
            scopes=resource_scopes or metadata.scopes_supported,
        )
