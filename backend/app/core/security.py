"""JWT token handling.

Tokens are minted by the external auth service with the shared secret;
``create_access_token`` exists for the seed script and the test suite.
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt

from app.config import settings
from app.models.enums import StaffRole


def create_access_token(
    user_id: uuid.UUID,
    role: StaffRole,
    laboratory_id: uuid.UUID | None = None,
    client_id: uuid.UUID | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token carrying the caller's storage identity."""
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(hours=settings.JWT_EXPIRY_HOURS))
    payload = {
        "sub": str(user_id),
        "role": role.value,
        "laboratory_id": str(laboratory_id) if laboratory_id else None,
        "client_id": str(client_id) if client_id else None,
        "iat": now,
        "exp": expire,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Decode and validate a JWT access token. Raises jwt.PyJWTError on failure."""
    return jwt.decode(
        token,
        settings.SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
        options={"require": ["sub", "exp"]},
    )
