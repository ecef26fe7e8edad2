from datetime import datetime, timedelta, timezone

import jwt

from scheduling.core import config


def create_access_token(subject: str, expires_minutes: int = 60) -> str:
    issued_at = datetime.now(timezone.utc)
    payload = {"sub": subject, "exp": issued_at + timedelta(minutes=expires_minutes), "iat": issued_at}
    return jwt.encode(payload, config.JWT_SECRET_KEY, algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[config.JWT_ALGORITHM])
