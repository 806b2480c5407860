"""Structured errors raised by the backend access layer."""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

import httpx


class ErrorKind(str, Enum):
    DUPLICATE_ACCOUNT = "duplicate_account"
    INVALID_CREDENTIALS = "invalid_credentials"
    EMAIL_NOT_CONFIRMED = "email_not_confirmed"
    INVALID_EMAIL = "invalid_email"
    RATE_LIMITED = "rate_limited"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    NETWORK = "network"
    UNKNOWN = "unknown"


class BackendError(Exception):
    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        status: Optional[int] = None,
        code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status = status
        self.code = code

    def __repr__(self) -> str:
        return (
            f"BackendError(kind={self.kind.value!r}, status={self.status!r}, "
            f"code={self.code!r}, message={self.message!r})"
        )


_PERMISSION_CODES = {"42501"}
_NOT_FOUND_CODES = {"PGRST116", "user_not_found"}
_DUPLICATE_CODES = {"user_already_exists", "email_exists", "23505"}
_CREDENTIAL_CODES = {"invalid_credentials", "invalid_grant"}
_RATE_CODES = {"over_email_send_rate_limit", "over_request_rate_limit"}


def classify_error(
    message: str, *, status: Optional[int] = None, code: Optional[str] = None
) -> ErrorKind:
    text = (message or "").lower()
    if code in _PERMISSION_CODES or "row-level security" in text:
        return ErrorKind.PERMISSION_DENIED
    if code in _RATE_CODES or status == 429:
        return ErrorKind.RATE_LIMITED
    if "rate limit" in text or "too many" in text:
        return ErrorKind.RATE_LIMITED
    if code in _DUPLICATE_CODES or "already" in text or "registered" in text:
        return ErrorKind.DUPLICATE_ACCOUNT
    if "invalid login credentials" in text:
        return ErrorKind.INVALID_CREDENTIALS
    if code in _CREDENTIAL_CODES and "refresh" not in text:
        return ErrorKind.INVALID_CREDENTIALS
    if code == "email_not_confirmed" or "email not confirmed" in text:
        return ErrorKind.EMAIL_NOT_CONFIRMED
    if code == "email_address_invalid" or "invalid email" in text:
        return ErrorKind.INVALID_EMAIL
    if code in _NOT_FOUND_CODES or "not found" in text:
        return ErrorKind.NOT_FOUND
    return ErrorKind.UNKNOWN


def _safe_json(response: httpx.Response) -> Optional[dict]:
    try:
        data = response.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else {"data": data}


def _pick_code(payload: dict) -> Optional[str]:
    for key in ("error_code", "code"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    error = payload.get("error")
    if isinstance(error, str) and "_" in error and " " not in error:
        return error
    return None


def _pick_message(payload: dict) -> Optional[str]:
    for key in ("msg", "message", "error_description", "error"):
        value: Any = payload.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def error_from_response(response: httpx.Response) -> BackendError:
    status = response.status_code
    payload = _safe_json(response)
    if payload is None:
        snippet = (response.text or "").strip().replace("\n", " ")[:240]
        message = snippet or f"Request failed (HTTP {status})"
        return BackendError(
            message, kind=classify_error(message, status=status), status=status
        )
    message = _pick_message(payload) or f"Request failed (HTTP {status})"
    code = _pick_code(payload)
    return BackendError(
        message,
        kind=classify_error(message, status=status, code=code),
        status=status,
        code=code,
    )
