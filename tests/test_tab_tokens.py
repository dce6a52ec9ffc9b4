from datetime import datetime, timedelta, timezone

from jose import jwt

from cochera.auth.jwt import create_tab_token, decode_tab_token
from cochera.config import settings


def _encode(payload: dict, secret: str | None = None) -> str:
    return jwt.encode(payload, secret or settings.session_secret, algorithm=settings.jwt_algorithm)


def test_tab_token_round_trip():
    payload = decode_tab_token(create_tab_token("tab-123"))

    assert payload["sub"] == "tab-123"
    assert payload["type"] == "tab"


def test_other_token_types_are_rejected():
    token = _encode({"sub": "tab-1", "type": "access", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)})

    assert decode_tab_token(token) is None


def test_expired_token_is_rejected():
    token = _encode({"sub": "tab-1", "type": "tab", "exp": datetime.now(timezone.utc) - timedelta(minutes=5)})

    assert decode_tab_token(token) is None


def test_token_signed_with_another_secret_is_rejected():
    token = _encode(
        {"sub": "tab-1", "type": "tab", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)},
        secret="someone-else",
    )

    assert decode_tab_token(token) is None


def test_token_without_subject_is_rejected():
    token = _encode({"type": "tab", "exp": datetime.now(timezone.utc) + timedelta(minutes=5)})

    assert decode_tab_token(token) is None


def test_garbage_is_rejected():
    assert decode_tab_token("not-a-jwt") is None
