"""Bearer-token identity verification for the chat endpoints."""

from uuid import UUID

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import InvalidTokenError

from .config import settings

http_bearer = HTTPBearer(auto_error=False)


def verify_access_token(token: str) -> UUID | None:
    """Return the authenticated user id for `token`, or None when it is not valid."""
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except InvalidTokenError:
        return None

    # Refresh tokens carry type=refresh and must not open the API.
    token_type = payload.get("type")
    if token_type is not None and token_type != "access":
        return None

    try:
        return UUID(str(payload.get("sub")))
    except (TypeError, ValueError):
        return None


async def get_current_user_id(
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
) -> UUID:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Unauthorized")

    user_id = verify_access_token(credentials.credentials)
    if user_id is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id
