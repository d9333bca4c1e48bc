"""
Bearer tokens for the developer portal

Tokens are HS256 JWTs scoped to Paygate by issuer and audience, so a token
minted for another service sharing the signing key is rejected.
"""

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from pydantic import BaseModel, EmailStr, ValidationError

from ..models.auth import UserRole

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("JWT_ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

TOKEN_ISSUER = "paygate"
TOKEN_AUDIENCE = "paygate-developer-portal"
REQUIRED_CLAIMS = ["sub", "email", "role", "iss", "aud", "iat", "exp"]


class DeveloperClaims(BaseModel):
    sub: str
    email: EmailStr
    role: UserRole
    iat: int
    exp: int


class JWTError(Exception):
    pass


def create_access_token(data: Dict[str, Any], expires_minutes: Optional[int] = None) -> str:
    """
    Sign a portal token carrying ``sub``, ``email`` and ``role``

    Args:
        data: Developer claims
        expires_minutes: Lifetime, defaults to JWT_ACCESS_TOKEN_EXPIRE_MINUTES
    """
    issued_at = datetime.now(timezone.utc)
    lifetime = timedelta(minutes=expires_minutes or JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    claims = {
        **data,
        "iss": TOKEN_ISSUER,
        "aud": TOKEN_AUDIENCE,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + lifetime).timestamp()),
    }
    return jwt.encode(claims, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_jwt(token: str) -> DeveloperClaims:
    """
    Verify signature, expiry, issuer and audience, then validate the role

    Raises:
        JWTError: On any verification failure or an unknown role
    """
    try:
        claims = jwt.decode(
            token,
            JWT_SECRET_KEY,
            algorithms=[JWT_ALGORITHM],
            audience=TOKEN_AUDIENCE,
            issuer=TOKEN_ISSUER,
            options={"require": REQUIRED_CLAIMS},
        )
    except jwt.ExpiredSignatureError as e:
        raise JWTError("Token has expired") from e
    except jwt.InvalidTokenError as e:
        raise JWTError(f"Invalid token: {e}") from e

    try:
        return DeveloperClaims.model_validate(claims)
    except ValidationError as e:
        raise JWTError(f"Invalid token claims: {e.errors()[0]['msg']}") from e
