"""Security-related models for OAuth 2.1 authentication."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal

_UNRESERVED = re.compile(r"^[A-Za-z0-9\-._~]+$")


@dataclass(frozen=True)
class PKCEParameters:
    """PKCE (Proof Key for Code Exchange) parameters (RFC 7636).

    One set per authorization attempt. The verifier is a secret and must
    never be logged.
    """

    code_verifier: str = field(repr=False)
    code_challenge: str = field()
    code_challenge_method: Literal["S256", "plain"] = field(default="S256")

    def __post_init__(self) -> None:
        """Validate PKCE parameters meet RFC 7636 requirements."""
        if not (43 <= len(self.code_verifier) <= 128):
            raise ValueError("code_verifier must be 43-128 characters")
        if not _UNRESERVED.match(self.code_verifier):
            raise ValueError("code_verifier contains characters outside [A-Za-z0-9-._~]")
        if self.code_challenge_method not in ("S256", "plain"):
            raise ValueError(
                f"Unsupported code challenge method: {self.code_challenge_method}"
            )
