import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import jwt, JWTError
from hiready.core.config import SECRET_KEY, ALGORITHM

logger = logging.getLogger(__name__)


def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=60))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_access_token(token: str) -> Optional[str]:
    """
    Decode a bearer token and return its subject (user email).

    Returns None when the token is invalid, expired or has no subject.
    """
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.debug(f"Token rejected: {e}")
        return None
    return payload.get("sub")
