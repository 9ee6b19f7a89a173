"""
Authentication service - verifies Supabase access tokens.

Tokens are issued by Supabase Auth (magic link); the portal only checks them.
"""
import logging
from typing import Optional

from jose import JWTError, jwt

from ..config import Settings, get_settings
from ..schemas.auth import CurrentUser

logger = logging.getLogger(__name__)


class AuthService:
    """Service for authentication operations."""

    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.secret_key = settings.supabase_jwt_secret
        self.algorithm = settings.jwt_algorithm
        self.audience = settings.jwt_audience

    def decode_token(self, token: str) -> Optional[dict]:
        """
        Decode and validate a JWT token.

        Returns:
            Decoded token payload or None if invalid
        """
        if not self.secret_key:
            logger.error("[Auth] SUPABASE_JWT_SECRET is not configured")
            return None
        try:
            return jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                audience=self.audience or None,
                options={"verify_aud": bool(self.audience)},
            )
        except JWTError as e:
            logger.warning(f"[Auth] Token decode error: {e}")
            return None

    def verify_access_token(self, token: str) -> Optional[CurrentUser]:
        """Verify an access token and return the caller if valid."""
        payload = self.decode_token(token)
        if not payload or not payload.get("sub"):
            return None
        return CurrentUser(
            id=payload["sub"],
            email=payload.get("email"),
            role=payload.get("role"),
        )


# Singleton instance
_auth_service: Optional[AuthService] = None


def get_auth_service() -> AuthService:
    """Get the singleton auth service instance."""
    global _auth_service
    if _auth_service is None:
        _auth_service = AuthService()
    return _auth_service
