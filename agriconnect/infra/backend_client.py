"""HTTP client for the managed backend platform (auth, data, storage, realtime)."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from ..observability.logging_utils import log_event, log_failure
from ..schemas import AuthSession, AuthUser, SignUpResult
from .backend_errors import BackendError, ErrorKind, error_from_response
from .config import AppConfig, get_config


@dataclass(frozen=True)
class BackendSettings:
    url: str
    anon_key: str
    timeout_seconds: float = 15.0
    produce_bucket: str = "produce-photos"

    @classmethod
    def from_config(cls, cfg: Optional[AppConfig] = None) -> "BackendSettings":
        cfg = cfg or get_config()
        return cls(
            url=cfg.backend_url.rstrip("/"),
            anon_key=cfg.backend_anon_key or "",
            timeout_seconds=float(cfg.backend_timeout_seconds),
            produce_bucket=cfg.produce_bucket,
        )

    @property
    def realtime_url(self) -> str:
        base = self.url
        if base.startswith("https://"):
            base = "wss://" + base[len("https://"):]
        elif base.startswith("http://"):
            base = "ws://" + base[len("http://"):]
        return f"{base}/realtime/v1/websocket?apikey={quote(self.anon_key)}&vsn=1.0.0"


def _format_value(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass
class Query:
    """Declarative select against one table of the data API."""

    table: str
    columns: str = "*"
    filters: List[Tuple[str, str]] = field(default_factory=list)
    order_by: Optional[Tuple[str, bool]] = None
    row_limit: Optional[int] = None

    def select(self, columns: str) -> "Query":
        self.columns = columns
        return self

    def eq(self, column: str, value: Any) -> "Query":
        self.filters.append((column, f"eq.{_format_value(value)}"))
        return self

    def neq(self, column: str, value: Any) -> "Query":
        self.filters.append((column, f"neq.{_format_value(value)}"))
        return self

    def not_null(self, column: str) -> "Query":
        self.filters.append((column, "not.is.null"))
        return self

    def order(self, column: str, *, ascending: bool = True) -> "Query":
        self.order_by = (column, ascending)
        return self

    def limit(self, count: int) -> "Query":
        self.row_limit = max(1, int(count))
        return self

    def to_params(self) -> List[Tuple[str, str]]:
        params: List[Tuple[str, str]] = [("select", self.columns)]
        params.extend(self.filters)
        if self.order_by:
            column, ascending = self.order_by
            params.append(("order", f"{column}.{'asc' if ascending else 'desc'}"))
        if self.row_limit is not None:
            params.append(("limit", str(self.row_limit)))
        return params


def _parse_user(payload: Any) -> Optional[AuthUser]:
    if not isinstance(payload, dict) or not payload.get("id"):
        return None
    return AuthUser(
        id=str(payload["id"]),
        email=payload.get("email"),
        user_metadata=payload.get("user_metadata") or {},
    )


def _parse_session(payload: Any) -> Optional[AuthSession]:
    if not isinstance(payload, dict) or not payload.get("access_token"):
        return None
    user = _parse_user(payload.get("user"))
    if user is None:
        return None
    expires_at = payload.get("expires_at")
    if expires_at is None and payload.get("expires_in") is not None:
        try:
            expires_at = int(time.time()) + int(payload["expires_in"])
        except (TypeError, ValueError):
            expires_at = None
    return AuthSession(
        access_token=payload["access_token"],
        refresh_token=payload.get("refresh_token"),
        expires_at=expires_at,
        user=user,
    )


class BackendClient:
    """One handle for every backend call made by the app.

    Created once at application startup and closed at shutdown; pages receive
    it through dependency injection instead of importing a global.
    """

    def __init__(
        self,
        settings: BackendSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings
        self._client = httpx.AsyncClient(
            base_url=settings.url,
            timeout=settings.timeout_seconds,
            transport=transport,
            headers={"apikey": settings.anon_key, "Accept": "application/json"},
            trust_env=False,
        )
        self._realtime = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def realtime(self):
        from .realtime import RealtimeClient

        if self._realtime is None:
            self._realtime = RealtimeClient(self.settings.realtime_url)
        return self._realtime

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._realtime is not None:
            await self._realtime.close()
        await self._client.aclose()

    async def __aenter__(self) -> "BackendClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        access_token: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        request_headers = dict(headers or {})
        request_headers["Authorization"] = (
            f"Bearer {access_token or self.settings.anon_key}"
        )
        started = time.perf_counter()
        try:
            response = await self._client.request(
                method, path, headers=request_headers, **kwargs
            )
        except httpx.HTTPError as exc:
            log_failure("backend_request_failed", method=method, path=path, error=str(exc))
            raise BackendError(
                f"Network error: {exc}", kind=ErrorKind.NETWORK
            ) from exc
        elapsed_ms = int((time.perf_counter() - started) * 1000)
        log_event(
            "backend_request",
            method=method,
            path=path,
            status=response.status_code,
            elapsed_ms=elapsed_ms,
        )
        if response.status_code >= 400:
            error = error_from_response(response)
            log_failure(
                "backend_error",
                path=path,
                status=error.status,
                kind=error.kind.value,
                code=error.code,
            )
            raise error
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(
                f"Backend returned non-JSON response ({response.status_code})",
                status=response.status_code,
            ) from exc

    # ---- auth ---------------------------------------------------------------

    async def sign_up(
        self, email: str, password: str, metadata: Dict[str, Any]
    ) -> SignUpResult:
        response = await self._request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password, "data": metadata},
        )
        payload = self._json(response) or {}
        session = _parse_session(payload)
        user = session.user if session else _parse_user(payload.get("user") or payload)
        return SignUpResult(user=user, session=session)

    async def sign_in(self, email: str, password: str) -> AuthSession:
        response = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = _parse_session(self._json(response))
        if session is None:
            raise BackendError("Auth service returned no session")
        return session

    async def refresh_session(self, refresh_token: str) -> AuthSession:
        response = await self._request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        session = _parse_session(self._json(response))
        if session is None:
            raise BackendError("Auth service returned no session")
        return session

    async def sign_out(self, access_token: str) -> None:
        await self._request("POST", "/auth/v1/logout", access_token=access_token)

    async def get_user(self, access_token: str) -> AuthUser:
        response = await self._request(
            "GET", "/auth/v1/user", access_token=access_token
        )
        user = _parse_user(self._json(response))
        if user is None:
            raise BackendError("User not found", kind=ErrorKind.NOT_FOUND)
        return user

    async def resend_signup(self, email: str) -> None:
        await self._request(
            "POST", "/auth/v1/resend", json={"type": "signup", "email": email}
        )

    # ---- data ---------------------------------------------------------------

    def table(self, name: str) -> Query:
        return Query(table=name)

    async def fetch(
        self, query: Query, *, access_token: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        response = await self._request(
            "GET",
            f"/rest/v1/{query.table}",
            params=query.to_params(),
            access_token=access_token,
        )
        payload = self._json(response)
        if not isinstance(payload, list):
            return []
        return [row for row in payload if isinstance(row, dict)]

    async def fetch_one(
        self, query: Query, *, access_token: Optional[str] = None
    ) -> Optional[Dict[str, Any]]:
        if query.row_limit is None:
            query.limit(1)
        rows = await self.fetch(query, access_token=access_token)
        return rows[0] if rows else None

    async def insert(
        self,
        table: str,
        records: List[Dict[str, Any]],
        *,
        access_token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        response = await self._request(
            "POST",
            f"/rest/v1/{table}",
            json=records,
            headers={"Prefer": "return=representation"},
            access_token=access_token,
        )
        payload = self._json(response)
        return payload if isinstance(payload, list) else []

    async def update(
        self,
        query: Query,
        values: Dict[str, Any],
        *,
        access_token: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        response = await self._request(
            "PATCH",
            f"/rest/v1/{query.table}",
            params=query.filters,
            json=values,
            headers={"Prefer": "return=representation"},
            access_token=access_token,
        )
        payload = self._json(response)
        return payload if isinstance(payload, list) else []

    # ---- storage ------------------------------------------------------------

    async def upload(
        self,
        bucket: str,
        path: str,
        data: bytes,
        *,
        content_type: str,
        upsert: bool = False,
        access_token: Optional[str] = None,
    ) -> None:
        await self._request(
            "POST",
            f"/storage/v1/object/{bucket}/{quote(path)}",
            content=data,
            headers={
                "Content-Type": content_type,
                "x-upsert": "true" if upsert else "false",
                "cache-control": "3600",
            },
            access_token=access_token,
        )

    def public_url(self, bucket: str, path: str) -> str:
        return f"{self.settings.url}/storage/v1/object/public/{bucket}/{quote(path)}"
