from __future__ import annotations

from typing import Any

import httpx
from postgrest.exceptions import APIError
from supabase import AuthError, AuthRetryableError


NOT_FOUND_CODE = "PGRST116"
INSUFFICIENT_PRIVILEGE_CODE = "42501"
UNIQUE_VIOLATION_CODE = "23505"

# PostgREST could not reach or talk to Postgres.
TRANSIENT_POSTGREST_CODES = frozenset({"PGRST000", "PGRST001", "PGRST002", "PGRST003"})
# SQLSTATE: admin_shutdown, crash_shutdown, cannot_connect_now.
TRANSIENT_SQLSTATES = frozenset({"57P01", "57P02", "57P03"})
TRANSIENT_HTTP_STATUSES = frozenset({502, 503, 504})

GENERIC_MESSAGE = "Ocurrió un error inesperado. Intenta nuevamente."

# Exceptions a backend call may raise; routers catch exactly these.
BACKEND_ERRORS: tuple[type[BaseException], ...] = (APIError, AuthError, httpx.HTTPError)

# Checked in order, first match wins.
KNOWN_PHRASES: tuple[tuple[str, str], ...] = (
    ("invalid login", "Credenciales incorrectas."),
    ("invalid credentials", "Credenciales incorrectas."),
    ("rate limit", "Demasiados intentos. Espera unos segundos."),
    ("email not confirmed", "Debes confirmar tu email antes de ingresar."),
    ("user already registered", "El email ya está registrado."),
    ("unique_username_global", "El nombre de usuario ya está en uso."),
    ("check constraint", "Error de validación en la base de datos."),
)

KNOWN_CODES: dict[str, str] = {
    UNIQUE_VIOLATION_CODE: "El registro ya existe.",
    INSUFFICIENT_PRIVILEGE_CODE: "Permiso denegado: no tienes autoridad sobre este recurso.",
}

# Narrower wording where the operation tells us which constraint tripped.
OPERATION_CODES: dict[tuple[str, str], str] = {
    ("staff_create", UNIQUE_VIOLATION_CODE): "El nombre de usuario ya está en uso.",
}


def error_code(exc: BaseException) -> str | None:
    code = getattr(exc, "code", None)
    if code is None:
        return None
    return str(code)


def error_status(exc: BaseException) -> int | None:
    status = getattr(exc, "status", None)
    if status is None:
        status = getattr(exc, "status_code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def error_message(exc: BaseException) -> str:
    message = getattr(exc, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(exc)


def is_not_found(exc: BaseException) -> bool:
    return error_code(exc) == NOT_FOUND_CODE


def is_authorization_error(exc: BaseException) -> bool:
    return error_code(exc) == INSUFFICIENT_PRIVILEGE_CODE or error_status(exc) in {401, 403}


def is_transient(exc: BaseException) -> bool:
    """True only for infrastructure failures worth retrying."""
    if is_not_found(exc) or is_authorization_error(exc):
        return False
    if isinstance(exc, (httpx.TransportError, AuthRetryableError, ConnectionError, TimeoutError)):
        return True
    code = error_code(exc)
    if code:
        if code in TRANSIENT_POSTGREST_CODES or code in TRANSIENT_SQLSTATES:
            return True
        if len(code) == 5 and code.startswith("08"):
            return True
    return error_status(exc) in TRANSIENT_HTTP_STATUSES


def translate_error(
    exc: BaseException,
    fallback: str = GENERIC_MESSAGE,
    *,
    operation: str | None = None,
) -> str:
    code = error_code(exc)
    if operation is not None and (operation, code) in OPERATION_CODES:
        return OPERATION_CODES[(operation, code)]
    if code in KNOWN_CODES:
        return KNOWN_CODES[code]
    lowered = error_message(exc).lower()
    for phrase, translated in KNOWN_PHRASES:
        if phrase in lowered:
            return translated
    return fallback


def diagnostic_detail(exc: BaseException) -> dict[str, Any]:
    details = getattr(exc, "details", None)
    hint = getattr(exc, "hint", None)
    return {
        "message": error_message(exc) or "Error desconocido al ejecutar la operación.",
        "code": error_code(exc) or "UNKNOWN_CODE",
        "details": details if details is not None else repr(exc),
        "hint": hint or "Revisa los registros del servidor para más detalles.",
    }


def backend_error_http_status(exc: BaseException) -> int:
    if is_transient(exc):
        return 503
    if is_authorization_error(exc):
        return 403
    if is_not_found(exc):
        return 404
    if error_code(exc) == UNIQUE_VIOLATION_CODE:
        return 409
    return 502


def backend_error_detail(*, operation: str, exc: BaseException, fallback: str = GENERIC_MESSAGE) -> dict[str, Any]:
    return {
        "type": "backend_error",
        "operation": operation,
        "retryable": is_transient(exc),
        "message": translate_error(exc, fallback, operation=operation),
    }
