"""
Developer portal authentication

Portal routes take a bearer JWT; the resolved user id is also left on
``request.state`` so request logs and audit entries can name the developer.
"""

from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..models.auth import CurrentPrincipal
from ..utils.jwt import JWTError, decode_jwt

bearer_scheme = HTTPBearer(scheme_name="DeveloperToken", auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_user(
    request: Request,
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> CurrentPrincipal:
    """Resolve the developer behind the bearer token, 401 when absent or invalid"""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Authentication required")

    try:
        claims = decode_jwt(credentials.credentials)
    except JWTError as e:
        raise _unauthorized("Invalid or expired token") from e

    request.state.user_id = claims.sub
    return CurrentPrincipal(user_id=claims.sub, email=claims.email, role=claims.role)


CurrentUser = Annotated[CurrentPrincipal, Depends(get_current_user)]
