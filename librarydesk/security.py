from datetime import timedelta
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from librarydesk.config import settings
from librarydesk.errors import UnauthorizedError
from librarydesk.models import utcnow

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        # Unknown or corrupt hash format
        return False


def create_access_token(user_id: int, role: str, expires_minutes: Optional[int] = None) -> str:
    """Sign a bearer token carrying the user id and role."""
    minutes = expires_minutes if expires_minutes is not None else settings.jwt_expiration_minutes
    payload = {
        "sub": str(user_id),
        "role": role,
        "exp": utcnow() + timedelta(minutes=minutes),
    }
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    try:
        payload = jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        raise UnauthorizedError("Invalid or expired token") from e
    if not payload.get("sub"):
        raise UnauthorizedError("Invalid or expired token")
    return payload
