"""
Access tokens (HS256 JWT). Credential checks happen upstream; this service
only issues and reads the bearer tokens the API accepts.
"""

import jwt
import logging
from datetime import datetime, timedelta
from typing import Optional

from config import get_settings

logger = logging.getLogger(__name__)


def create_access_token(data: dict, expires_minutes: Optional[int] = None) -> str:
    settings = get_settings()
    to_encode = data.copy()
    expire = datetime.utcnow() + timedelta(minutes=expires_minutes or settings.jwt_expiration_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Optional[dict]:
    """Return the token payload, or None if it is invalid or expired"""
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as e:
        logger.warning(f"Rejected access token: {e}")
        return None
