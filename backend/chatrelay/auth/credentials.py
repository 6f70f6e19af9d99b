"""Credential validation for WebSocket handshakes and cookie-authenticated HTTP calls.

The account service signs ``{id, username, email}`` with a shared HS256
secret and stores the result in a cookie. Validation never raises: callers
get an :class:`AuthResult` that either carries an :class:`Identity` or the
reason there is none, so an unauthenticated connection is an explicit,
testable state rather than a missing attribute.
"""
import logging
from enum import Enum
from typing import Optional

import jwt
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class Identity(BaseModel):
    """The identity bound to a connection after validation."""
    id: str = Field(..., description="Account ID")
    username: str = Field(..., description="Display name at token issue time")


class AuthError(str, Enum):
    """Why a credential did not produce an identity."""
    MISSING_TOKEN = "missing_token"
    INVALID_TOKEN = "invalid_token"
    MISSING_CLAIMS = "missing_claims"


class AuthResult(BaseModel):
    identity: Optional[Identity] = None
    error: Optional[AuthError] = None

    @property
    def ok(self) -> bool:
        return self.identity is not None


class CredentialValidator:
    """Extracts and verifies the session token carried in a Cookie header."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", cookie_name: str = "token"):
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.cookie_name = cookie_name

    def extract_token(self, cookie_header: Optional[str]) -> Optional[str]:
        """Return the value of the session cookie, or None if it is absent or empty."""
        if not cookie_header:
            return None
        prefix = f"{self.cookie_name}="
        for pair in cookie_header.split(";"):
            pair = pair.strip()
            if pair.startswith(prefix):
                return pair[len(prefix):] or None
        return None

    def validate(self, cookie_header: Optional[str]) -> AuthResult:
        """Verify the session cookie and decode the identity it carries.

        Args:
            cookie_header: Raw ``Cookie`` header from the handshake request.

        Returns:
            AuthResult with ``identity`` set on success, ``error`` otherwise.
        """
        token = self.extract_token(cookie_header)
        if token is None:
            logger.debug("[Auth] No %s cookie presented", self.cookie_name)
            return AuthResult(error=AuthError.MISSING_TOKEN)

        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.PyJWTError as e:
            logger.warning("[Auth] Token rejected: %s (%s)", e, type(e).__name__)
            return AuthResult(error=AuthError.INVALID_TOKEN)

        user_id = payload.get("id")
        username = payload.get("username")
        if user_id is None or username is None:
            logger.warning("[Auth] Token missing id/username claims")
            return AuthResult(error=AuthError.MISSING_CLAIMS)

        return AuthResult(identity=Identity(id=str(user_id), username=str(username)))
