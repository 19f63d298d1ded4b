"""OAuth 2.1 server discovery primitive.

Implements RFC 9728 (Protected Resource Metadata) and RFC 8414
(Authorization Server Metadata) discovery to find OAuth endpoints and
capabilities for MCP servers.

Every probe degrades to "nothing found": network errors, non-2xx responses
and malformed JSON are absorbed so the public entry point always returns an
:class:`AuthCapabilities`.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urljoin, urlsplit, urlunsplit

import httpx
from pydantic import ValidationError

from mcpz.auth.models.discovery import (
    AuthCapabilities,
    AuthorizationServerMetadata,
    ProtectedResourceMetadata,
)
from mcpz.utils.logging import get_logger, resolve_logger

default_logger = get_logger(__name__)

DEFAULT_DISCOVERY_TIMEOUT = 5.0

PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"
AUTHORIZATION_SERVER_PATH = "/.well-known/oauth-authorization-server"

_RESOURCE_METADATA_PATTERN = re.compile(
    r'resource_metadata=(?:"([^"]+)"|([^\s,]+))', re.IGNORECASE
)
_ISSUER_PATTERN = re.compile(r'(?:authorization_server|issuer)="([^"]+)"', re.IGNORECASE)

_JSON_HEADERS = {"Accept": "application/json"}


def normalize_url(url: str) -> str:
    """Strip query, fragment and trailing slashes."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", "")).rstrip("/")


def get_origin(url: str) -> str:
    """``scheme://host[:port]`` of ``url``, or ``url`` itself if it cannot be parsed."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.netloc:
        return url
    return f"{parts.scheme}://{parts.netloc}"


def get_path(url: str) -> str:
    """Path component of ``url`` without query or fragment; ``""`` for the root."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return ""
    return "" if path in ("", "/") else path


class OAuthDiscovery:
    """Runs the layered OAuth discovery chain for an MCP server URL.

    Order of attempts, stopping at the first success:
    1. ``WWW-Authenticate: ... resource_metadata="..."`` challenge on the resource
    2. Root ``/.well-known/oauth-protected-resource`` (with sub-path refinement)
    3. Path-specific ``/.well-known/oauth-protected-resource{path}``
    4. Authorization server metadata for the first listed authorization server
    5. Issuer hint from the challenge header
    6. Authorization server metadata at the resource's own origin
    """

    def __init__(
        self,
        timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
        logger: logging.Logger | None = None,
    ):
        """Initialize OAuth discovery.

        Args:
            timeout: HTTP request timeout in seconds
            logger: Optional logger override
        """
        self.timeout = timeout
        self._logger = resolve_logger(logger, default_logger)
        self._http_client = httpx.AsyncClient(timeout=timeout)

    async def probe_auth_capabilities(self, base_url: str) -> AuthCapabilities:
        """Discover the OAuth capabilities of ``base_url``.

        Never raises; returns ``AuthCapabilities(supports_dcr=False)`` when
        nothing is found.
        """
        try:
            resource_url = normalize_url(base_url)
            resource_scopes: list[str] | None = None

            prm = await self.discover_protected_resource_metadata(resource_url)
            if prm is not None and prm.authorization_servers:
                resource_scopes = prm.scopes_supported
                asm = await self.discover_authorization_server_metadata(
                    prm.authorization_servers[0]
                )
                if asm is not None:
                    return AuthCapabilities.from_metadata(asm, resource_scopes)

            issuer = await self.discover_authorization_server_issuer(resource_url)
            if issuer:
                asm = await self.discover_authorization_server_metadata(issuer)
                if asm is not None:
                    return AuthCapabilities.from_metadata(asm, resource_scopes)

            asm = await self.discover_authorization_server_metadata(
                get_origin(resource_url)
            )
            if asm is not None:
                return AuthCapabilities.from_metadata(asm, resource_scopes)

        except Exception as e:
            self._logger.debug(f"Auth discovery failed for {base_url}: {e}")

        return AuthCapabilities(supports_dcr=False)

    async def discover_protected_resource_metadata(
        self, resource_url: str
    ) -> ProtectedResourceMetadata | None:
        """Locate protected resource metadata for ``resource_url`` (RFC 9728)."""
        metadata = await self._discover_from_challenge(resource_url)
        if metadata is not None:
            return metadata

        origin = get_origin(resource_url)
        path = get_path(resource_url)
        sub_path_url = f"{origin}{PROTECTED_RESOURCE_PATH}{path}"

        root = await self._fetch_protected_resource_metadata(
            f"{origin}{PROTECTED_RESOURCE_PATH}"
        )
        if root is not None:
            if root.resource == resource_url or not path:
                return root
            if root.resource and resource_url.startswith(root.resource):
                specific = await self._fetch_protected_resource_metadata(sub_path_url)
                return specific or root

        if path:
            return await self._fetch_protected_resource_metadata(sub_path_url)

        return None

    async def discover_authorization_server_metadata(
        self, auth_server_url: str
    ) -> AuthorizationServerMetadata | None:
        """Fetch ``{origin}/.well-known/oauth-authorization-server`` (RFC 8414)."""
        metadata_url = f"{get_origin(auth_server_url)}{AUTHORIZATION_SERVER_PATH}"
        self._logger.debug(f"Fetching authorization server metadata from: {metadata_url}")
        payload = await self._get_json(metadata_url)
        if payload is None:
            return None
        try:
            return AuthorizationServerMetadata.model_validate(payload)
        except ValidationError as e:
            self._logger.debug(f"Invalid authorization server metadata: {e}")
            return None

    async def discover_authorization_server_issuer(self, resource_url: str) -> str | None:
        """Extract an ``authorization_server``/``issuer`` hint from the challenge header."""
        header = await self._probe_challenge_header(resource_url, retry_with_post=False)
        if not header:
            return None
        match = _ISSUER_PATTERN.search(header)
        return match.group(1) if match else None

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._http_client.aclose()

    async def _discover_from_challenge(
        self, resource_url: str
    ) -> ProtectedResourceMetadata | None:
        header = await self._probe_challenge_header(resource_url, retry_with_post=True)
        if not header:
            return None

        match = _RESOURCE_METADATA_PATTERN.search(header)
        if not match:
            return None

        metadata_url = urljoin(resource_url, match.group(1) or match.group(2))
        self._logger.debug(f"Found resource metadata URL in WWW-Authenticate: {metadata_url}")
        return await self._fetch_protected_resource_metadata(metadata_url)

    async def _probe_challenge_header(
        self, resource_url: str, retry_with_post: bool
    ) -> str | None:
        """Return the ``WWW-Authenticate`` header of the resource, if any.

        Only headers are read; a streaming body (SSE) is never consumed.
        """
        try:
            header = await self._read_header("GET", resource_url)
            if not header and retry_with_post:
                header = await self._read_header("POST", resource_url, content=b"{}")
            return header
        except httpx.HTTPError as e:
            self._logger.debug(f"Challenge probe failed for {resource_url}: {e}")
            return None

    async def _read_header(
        self, method: str, url: str, content: bytes | None = None
    ) -> str | None:
        headers = dict(_JSON_HEADERS)
        if content is not None:
            headers["Content-Type"] = "application/json"
        async with self._http_client.stream(
            method, url, headers=headers, content=content
        ) as response:
            return response.headers.get("www-authenticate")

    async def _fetch_protected_resource_metadata(
        self, metadata_url: str
    ) -> ProtectedResourceMetadata | None:
        self._logger.debug(f"Fetching protected resource metadata from: {metadata_url}")
        payload = await self._get_json(metadata_url)
        if payload is None:
            return None
        try:
            return ProtectedResourceMetadata.model_validate(payload)
        except ValidationError as e:
            self._logger.debug(f"Invalid protected resource metadata: {e}")
            return None

    async def _get_json(self, url: str) -> object | None:
        try:
            response = await self._http_client.get(url, headers=_JSON_HEADERS)
            if not 200 <= response.status_code < 300:
                return None
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            self._logger.debug(f"Metadata request to {url} failed: {e}")
            return None


async def probe_auth_capabilities(
    base_url: str,
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    logger: logging.Logger | None = None,
) -> AuthCapabilities:
    """Run :meth:`OAuthDiscovery.probe_auth_capabilities` with a short-lived client."""
    discovery = OAuthDiscovery(timeout=timeout, logger=logger)
    try:
        return await discovery.probe_auth_capabilities(base_url)
    finally:
        await discovery.close()
