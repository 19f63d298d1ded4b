"""PKCE (Proof Key for Code Exchange) generation for OAuth 2.1 security.

Implements RFC 7636 with the S256 challenge method.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from mcpz.auth.models.errors import PKCEError
from mcpz.auth.models.security import PKCEParameters

VERIFIER_BYTES = 32


def _base64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


class PKCEManager:
    """Generates PKCE parameters for authorization code flows.

    The verifier is 32 random bytes, base64url encoded without padding,
    which yields a 43-character string.
    """

    def generate_parameters(self) -> PKCEParameters:
        """Generate a fresh verifier and its S256 challenge.

        Raises:
            PKCEError: If parameter generation fails
        """
        try:
            code_verifier = self._generate_code_verifier()
            return PKCEParameters(
                code_verifier=code_verifier,
                code_challenge=self._generate_code_challenge(code_verifier),
                code_challenge_method="S256",
            )
        except Exception as e:
            raise PKCEError(f"Failed to generate PKCE parameters: {e}") from e

    def _generate_code_verifier(self) -> str:
        return _base64url(secrets.token_bytes(VERIFIER_BYTES))

    def _generate_code_challenge(self, code_verifier: str) -> str:
        """BASE64URL-ENCODE(SHA256(ASCII(code_verifier))) per RFC 7636 Section 4.2."""
        return _base64url(hashlib.sha256(code_verifier.encode("ascii")).digest())


def generate_pkce() -> PKCEParameters:
    return PKCEManager().generate_parameters()
