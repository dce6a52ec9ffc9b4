from datetime import datetime, timedelta, timezone
from jose import jwt, JWTError
from cochera.config import settings


TAB_TOKEN_TYPE = "tab"


def create_tab_token(tab_id: str) -> str:
    """Create a signed handle for a server-side tab session."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": tab_id,
        "type": TAB_TOKEN_TYPE,
        "exp": now + timedelta(minutes=settings.session_token_expiration_minutes),
        "iat": now,
    }
    return jwt.encode(payload, settings.session_secret, algorithm=settings.jwt_algorithm)


def decode_tab_token(token: str) -> dict | None:
    """Decode and validate a tab token. Returns payload or None if invalid."""
    try:
        payload = jwt.decode(token, settings.session_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if payload.get("type") != TAB_TOKEN_TYPE or not payload.get("sub"):
        return None
    return payload
