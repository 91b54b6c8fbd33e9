from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from jose import jwt

from schoolpay.core.config import settings
from schoolpay.core.enums import UserRole


def create_access_token(
    *,
    user_id: UUID,
    role: UserRole,
    claims: Optional[Dict[str, Any]] = None,
    expires_minutes: Optional[int] = None,
) -> str:
    """Bearer token carrying the caller's id and role; extra profile claims are optional."""
    if expires_minutes is None:
        expires_minutes = settings.access_token_expire_minutes

    to_encode: Dict[str, Any] = {k: v for k, v in (claims or {}).items() if v is not None}
    to_encode.update(
        {
            "sub": str(user_id),
            "user_id": str(user_id),
            "role": role.value,
            "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
        }
    )
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Raises jose.JWTError for a bad signature, an expired token or garbage input."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
