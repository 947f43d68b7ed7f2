# backend/tradeclarity/services/auth/jwt_handler.py
"""
Verification of access tokens issued by the managed auth service.

This API never issues tokens. It only checks the signature, expiry and
audience of bearer tokens and reads the subject (user id) and email.

Security notes:
- Tokens are stateless; nothing is stored server-side
- Uses the auth service's shared secret (HS256 by default)
"""

from typing import Any

from jose import JWTError, jwt

from tradeclarity.config import settings
from tradeclarity.services.exceptions import InvalidTokenError, TokenExpiredError


class JWTHandler:
    """
    Validates bearer tokens.

    Token claims used:
    - sub: User ID (string, the auth service's user UUID)
    - email: User's email (optional)
    - aud: "authenticated" unless configured otherwise
    - exp: Expiration timestamp
    """

    @staticmethod
    def validate_access_token(token: str) -> dict[str, Any]:
        """
        Validate an access token and return its payload.

        Args:
            token: The JWT string to validate

        Returns:
            Dict containing the token payload

        Raises:
            TokenExpiredError: If the token has expired
            InvalidTokenError: If the token is invalid, malformed or has no subject

        Example:
            payload = JWTHandler.validate_access_token(token)
            user_id = payload["sub"]
        """
        audience = settings.auth_jwt_audience
        try:
            payload = jwt.decode(
                token,
                settings.auth_jwt_secret,
                algorithms=[settings.auth_jwt_algorithm],
                audience=audience,
                options={"verify_aud": audience is not None},
            )
        except jwt.ExpiredSignatureError:
            raise TokenExpiredError("Access token has expired")
        except JWTError as e:
            raise InvalidTokenError(f"Invalid token: {str(e)}")

        if not payload.get("sub"):
            raise InvalidTokenError("Token has no subject")

        return payload
