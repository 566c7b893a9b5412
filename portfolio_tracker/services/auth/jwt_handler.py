# portfolio_tracker/services/auth/jwt_handler.py
"""
JWT access-token validation.

Tokens are issued by the external auth collaborator; this service only
checks them. The `sub` claim carries the principal id (a UUID string).

create_access_token exists for tests and operator tooling.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt

from portfolio_tracker.config import settings
from portfolio_tracker.services.exceptions import InvalidCredentialsError, TokenExpiredError


class JWTHandler:
    """
    Handles JWT access tokens.

    Access tokens contain:
    - sub: Principal ID (UUID string)
    - exp: Expiration timestamp
    - iat: Issued at timestamp
    - type: "access"
    """

    @staticmethod
    def create_access_token(
        principal_id: str | uuid.UUID,
        expires_delta: timedelta | None = None,
    ) -> str:
        """
        Create a signed access token for a principal.

        Example:
            token = JWTHandler.create_access_token("0b9f6a3e-7c1d-4e2f-9a8b-1c2d3e4f5a6b")
        """
        if expires_delta is None:
            expires_delta = timedelta(minutes=settings.jwt_access_token_expire_minutes)

        now = datetime.now(timezone.utc)
        payload = {
            "sub": str(principal_id),
            "exp": now + expires_delta,
            "iat": now,
            "type": "access",
        }

        return jwt.encode(
            payload,
            settings.jwt_secret_key,
            algorithm=settings.jwt_algorithm,
        )

    @staticmethod
    def decode_access_token(token: str) -> dict[str, Any]:
        """
        Validate signature, expiry and token type, and return the payload.

        Raises:
            TokenExpiredError: If the token has expired
            InvalidCredentialsError: If the token is invalid or malformed
        """
        try:
            payload = jwt.decode(
                token,
                settings.jwt_secret_key,
                algorithms=[settings.jwt_algorithm],
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Access token has expired")
        except JWTError as e:
            raise InvalidCredentialsError(f"Invalid token: {str(e)}")

        if payload.get("type") != "access":
            raise InvalidCredentialsError("Invalid token type")
        return payload

    @staticmethod
    def validate_access_token(token: str) -> str:
        """
        Validate an access token and return the principal id.

        Raises:
            TokenExpiredError: If the token has expired
            InvalidCredentialsError: If the token is invalid or `sub` is not a UUID
        """
        payload = JWTHandler.decode_access_token(token)
        subject = payload.get("sub")
        try:
            return str(uuid.UUID(str(subject)))
        except ValueError:
            raise InvalidCredentialsError("Token subject is not a valid principal id")
