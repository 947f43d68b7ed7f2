"""
Authentication helpers.

Sessions are owned by the managed auth service; this package only
verifies the bearer tokens it issues.

Usage:
    from tradeclarity.services.auth import JWTHandler

    payload = JWTHandler.validate_access_token(token)
    user_id = payload["sub"]
"""

from tradeclarity.services.auth.jwt_handler import JWTHandler

__all__ = [
    "JWTHandler",
]
