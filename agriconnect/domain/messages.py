"""User-facing text for backend error kinds, kept apart from backend wording."""

from typing import Dict, Optional

from ..infra.backend_errors import BackendError, ErrorKind


DUPLICATE_ACCOUNT = "An account with this email already exists."
INVALID_CREDENTIALS = (
    "Invalid email or password. Please check your credentials and try again."
)
EMAIL_NOT_CONFIRMED = (
    "Please confirm your email address before logging in. "
    "Check your inbox for the confirmation email."
)
INVALID_EMAIL = "Please enter a valid email address."
RATE_LIMITED = "Too many attempts. Please wait a few minutes before trying again."
LOGIN_FAILED = "Login failed. Please try again."
REGISTRATION_FAILED = "Registration failed. Please try again."
GENERIC_FAILURE = (
    "Something went wrong. Please try again or contact support if the problem continues."
)
SESSION_NOT_CREATED = "Signed in, but session was not created. Please retry."
SIGNUP_VERIFY = "Account created! Please check your email to verify your account."
SIGNUP_OK = "Account created successfully! Redirecting…"
RESEND_RATE_LIMITED = "Too many requests. Please wait a moment and try again."
RESEND_NOT_FOUND = "No account found with that email. Please sign up again."
RESEND_FAILED = "Failed to resend verification email."
RESEND_OK = "Verification email sent. Please check your inbox."
PERMISSION_DENIED_LISTING = (
    "Permission denied (RLS). Please fix your RLS policies for farm_produce."
)


_LOGIN_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.INVALID_CREDENTIALS: INVALID_CREDENTIALS,
    ErrorKind.EMAIL_NOT_CONFIRMED: EMAIL_NOT_CONFIRMED,
    ErrorKind.INVALID_EMAIL: INVALID_EMAIL,
    ErrorKind.RATE_LIMITED: RATE_LIMITED,
}

_RESEND_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.RATE_LIMITED: RESEND_RATE_LIMITED,
    ErrorKind.NOT_FOUND: RESEND_NOT_FOUND,
}


def login_error_message(error: BackendError) -> str:
    return _LOGIN_MESSAGES.get(error.kind, LOGIN_FAILED)


def signup_error_message(error: BackendError) -> str:
    if error.kind == ErrorKind.DUPLICATE_ACCOUNT:
        return DUPLICATE_ACCOUNT
    if error.kind == ErrorKind.NETWORK:
        return REGISTRATION_FAILED
    return error.message or REGISTRATION_FAILED


def resend_error_message(error: BackendError) -> str:
    return _RESEND_MESSAGES.get(error.kind) or error.message or RESEND_FAILED


def listing_error_message(error: BackendError) -> str:
    if error.kind == ErrorKind.PERMISSION_DENIED:
        return PERMISSION_DENIED_LISTING
    return f"Database Error: {error.message}"


def unexpected_error_message(exc: Optional[BaseException], fallback: str) -> str:
    detail = str(exc) if exc is not None else ""
    return f"Unexpected Error: {detail or fallback}"
