from typing import Dict, Any
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ecahub.core.jwt_auth import jwt_manager
from ecahub.core.exceptions import AuthenticationError, AuthorizationError

security = HTTPBearer(
    scheme_name="Bearer JWT",
    description="Access token issued by the platform authentication service",
)

ADMIN_ROLE = "admin"
PARENT_ROLE = "parent"


def _principal_from_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return {
            "id": int(payload["sub"]),
            "role": payload["role"],
            "school_id": int(payload["school_id"]),
        }
    except (TypeError, ValueError):
        raise AuthenticationError("Token contains malformed identifiers")


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Dict[str, Any]:
    """Dependency для аутентификации любого пользователя по JWT"""
    token = credentials.credentials
    if not token or not token.strip():
        raise AuthenticationError("Authentication data is required")

    payload = jwt_manager.decode_token(token.strip())
    return _principal_from_payload(payload)


async def get_current_admin(
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """Dependency: только администратор школы"""
    if current_user["role"] != ADMIN_ROLE:
        raise AuthorizationError("Administrator role required")
    return current_user


async def get_current_parent(
    current_user: Dict[str, Any] = Depends(get_current_user),
) -> Dict[str, Any]:
    """Dependency: только родитель"""
    if current_user["role"] != PARENT_ROLE:
        raise AuthorizationError("Parent role required")
    return current_user
