"""Sign-up, sign-in, sign-out and session lookups against the auth service."""

from __future__ import annotations

from typing import Optional, Tuple

from ...domain import messages
from ...domain.stats import safe_role
from ...domain.validation import EMAIL_RE, validate_sign_in, validate_sign_up
from ...infra.backend_client import BackendClient
from ...infra.backend_errors import BackendError, ErrorKind
from ...infra.session_store import SessionStore
from ...observability.logging_utils import log_event, log_failure
from ...schemas import Account, AuthSession, FormResult, SignInForm, SignUpForm


CHECK_EMAIL_ROUTE = "/check-email"
LANDING_ROUTE = "/products"

_SIGNUP_ROUTES = {
    "farmer": "/farmer/dashboard",
    "buyer": "/buyer/dashboard",
}


def redirect_for_role(role: Optional[str]) -> str:
    """Landing route after sign-in; every role currently lands on listings."""
    return LANDING_ROUTE


def signup_redirect_for_role(role: Optional[str]) -> str:
    return _SIGNUP_ROUTES.get(safe_role(role), "/dashboard")


def _optional(text: str) -> Optional[str]:
    value = (text or "").strip()
    return value or None


async def fetch_account_by_email(
    backend: BackendClient, email: str, *, access_token: Optional[str] = None
) -> Optional[Account]:
    query = (
        backend.table("accounts_user")
        .select("*")
        .eq("email", email.strip().lower())
    )
    row = await backend.fetch_one(query, access_token=access_token)
    return Account.model_validate(row) if row else None


async def fetch_role_by_email(
    backend: BackendClient, email: str, *, access_token: Optional[str] = None
) -> Optional[str]:
    """Missing profile rows or lookup failures still allow sign-in."""
    try:
        account = await fetch_account_by_email(backend, email, access_token=access_token)
    except BackendError as exc:
        log_failure("role_lookup_failed", kind=exc.kind.value, error=exc.message)
        return None
    return account.role if account else None


async def sign_up(
    backend: BackendClient, form: SignUpForm
) -> Tuple[FormResult, Optional[AuthSession]]:
    errors = validate_sign_up(form)
    if errors:
        return FormResult(success=False, errors=errors), None

    metadata = {
        "first_name": form.first_name.strip(),
        "last_name": form.last_name.strip(),
        "phone_number": _optional(form.phone_number),
        "location": _optional(form.location),
        "preferred_language": form.preferred_language,
        "role": form.role,
    }
    try:
        result = await backend.sign_up(form.email.strip(), form.password, metadata)
    except BackendError as exc:
        log_failure("sign_up_failed", kind=exc.kind.value)
        return FormResult(success=False, message=messages.signup_error_message(exc)), None
    except Exception as exc:
        log_failure("sign_up_unexpected", error=str(exc))
        return FormResult(success=False, message=messages.REGISTRATION_FAILED), None

    log_event("sign_up", role=form.role, verified=result.session is not None)
    if result.session is None:
        return (
            FormResult(
                success=True,
                message=messages.SIGNUP_VERIFY,
                redirect=CHECK_EMAIL_ROUTE,
            ),
            None,
        )
    return (
        FormResult(
            success=True,
            message=messages.SIGNUP_OK,
            redirect=signup_redirect_for_role(form.role),
        ),
        result.session,
    )


async def sign_in(
    backend: BackendClient, form: SignInForm
) -> Tuple[FormResult, Optional[AuthSession]]:
    errors = validate_sign_in(form)
    if errors:
        return FormResult(success=False, errors=errors), None

    email = form.email.strip().lower()
    try:
        try:
            session = await backend.sign_in(email, form.password)
        except BackendError as exc:
            log_failure("sign_in_failed", kind=exc.kind.value)
            field_errors = {}
            if exc.kind == ErrorKind.INVALID_CREDENTIALS:
                field_errors = {
                    "email": "Check your email",
                    "password": "Check your password",
                }
            return (
                FormResult(
                    success=False,
                    message=messages.login_error_message(exc),
                    errors=field_errors,
                ),
                None,
            )

        try:
            user = await backend.get_user(session.access_token)
        except BackendError:
            user = None
        session_email = ((user.email if user else None) or "").strip().lower()
        if not session_email:
            return FormResult(success=False, message=messages.SESSION_NOT_CREATED), None

        role = await fetch_role_by_email(
            backend, session_email, access_token=session.access_token
        )
    except Exception as exc:
        log_failure("sign_in_unexpected", error=str(exc))
        return FormResult(success=False, message=messages.GENERIC_FAILURE), None

    log_event("sign_in", role=safe_role(role))
    return (
        FormResult(
            success=True,
            redirect=redirect_for_role(role),
            data={"role": safe_role(role)},
        ),
        session,
    )


async def sign_out(
    backend: BackendClient, store: SessionStore, session_id: Optional[str]
) -> FormResult:
    session = store.get(session_id) if session_id else None
    if session_id:
        store.delete(session_id)
    if session is not None:
        try:
            await backend.sign_out(session.access_token)
        except BackendError as exc:
            log_failure("sign_out_failed", kind=exc.kind.value)
    return FormResult(success=True, redirect="/login")


async def current_session(
    backend: BackendClient, store: SessionStore, session_id: Optional[str]
) -> Optional[AuthSession]:
    """Stored session for the cookie, refreshed once when the token is rejected."""
    if not session_id:
        return None
    session = store.get(session_id)
    if session is None:
        return None
    try:
        user = await backend.get_user(session.access_token)
    except BackendError as exc:
        if exc.kind == ErrorKind.NETWORK:
            return session
        if not session.refresh_token:
            store.delete(session_id)
            return None
        try:
            session = await backend.refresh_session(session.refresh_token)
        except BackendError:
            store.delete(session_id)
            return None
        store.set(session_id, session)
        return session
    if user.email != session.user.email:
        session = session.model_copy(update={"user": user})
        store.set(session_id, session)
    return session


async def redirect_if_signed_in(
    backend: BackendClient, session: Optional[AuthSession]
) -> Optional[str]:
    """Where an already signed-in visitor to the login page is sent."""
    email = ((session.user.email if session else None) or "").strip().lower()
    if not email:
        return None
    role = await fetch_role_by_email(backend, email, access_token=session.access_token)
    return redirect_for_role(role)


async def resend_verification(backend: BackendClient, email: str) -> FormResult:
    address = (email or "").strip()
    if not address:
        return FormResult(success=False, message="Please enter your email address.")
    if not EMAIL_RE.match(address):
        return FormResult(success=False, message=messages.INVALID_EMAIL)
    try:
        await backend.resend_signup(address)
    except BackendError as exc:
        log_failure("resend_verification_failed", kind=exc.kind.value)
        return FormResult(success=False, message=messages.resend_error_message(exc))
    return FormResult(success=True, message=messages.RESEND_OK)
