"""FastAPI dependencies for auth and DB session."""

import uuid
from typing import Annotated

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.security import decode_access_token
from app.models.enums import StaffRole
from app.services.authorization import AuthContext

security_scheme = HTTPBearer(auto_error=False)


def _optional_uuid(value) -> uuid.UUID | None:
    return uuid.UUID(str(value)) if value else None


async def get_auth_context(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security_scheme)],
) -> AuthContext:
    """Extract and validate the JWT, return the caller's AuthContext."""
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required.",
        )

    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired. Please log in again.",
        )
    except jwt.PyJWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token.",
        )

    try:
        ctx = AuthContext(
            user_id=uuid.UUID(payload["sub"]),
            role=StaffRole(payload.get("role")),
            laboratory_id=_optional_uuid(payload.get("laboratory_id")),
            client_id=_optional_uuid(payload.get("client_id")),
        )
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication token.",
        )

    request.state.user_id = str(ctx.user_id)
    return ctx


CurrentAuth = Annotated[AuthContext, Depends(get_auth_context)]
