"""Dependencies for API endpoints."""
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.security import decode_token
from app.schemas.user import CurrentUser, UserRole
from app.utils.exceptions import AuthenticationError, AuthorizationError

bearer_scheme = HTTPBearer(scheme_name="Bearer", auto_error=False)


def _user_from_token(token: str) -> CurrentUser:
    try:
        payload = decode_token(token)
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired") from None
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Invalid authentication token") from e

    if payload.get("type") != "access" or payload.get("sub") is None:
        raise AuthenticationError("Invalid authentication token")
    try:
        return CurrentUser(id=int(payload["sub"]), role=payload.get("role") or UserRole.CUSTOMER)
    except ValueError as e:
        raise AuthenticationError("Invalid authentication token") from e


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> CurrentUser:
    """Caller identity; 401 when no valid bearer token is supplied"""
    if credentials is None:
        raise AuthenticationError("Not authenticated")
    return _user_from_token(credentials.credentials)


async def get_optional_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[CurrentUser]:
    """Caller identity, or None for anonymous requests"""
    if credentials is None:
        return None
    return _user_from_token(credentials.credentials)


def require_roles(*roles: UserRole):
    """Dependency factory restricting an endpoint to the given roles"""

    async def checker(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current_user.role not in roles:
            raise AuthorizationError("You do not have permission to perform this action")
        return current_user

    return checker


require_admin_or_dev = require_roles(UserRole.ADMIN, UserRole.DEV)
require_dev = require_roles(UserRole.DEV)
