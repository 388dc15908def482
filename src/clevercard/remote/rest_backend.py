"""REST adapter for a Supabase-style backend.

Auth goes through the GoTrue endpoints under ``/auth/v1`` and tables through
PostgREST under ``/rest/v1``. The session lives in memory only.

Usage:
    backend = RestBackend.from_config(load_app_config().remote)
    session = await backend.sign_in("t@school.edu", "secret1")
    rows = await backend.select("classes", {"teacher_id": session.user_id})
"""

from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any

import httpx
import structlog

from clevercard.config.app_config import RemoteConfig
from clevercard.core.errors import AuthError, NetworkError
from clevercard.core.models import Session, SessionEvent
from clevercard.remote.contract import SessionCallback, Unsubscribe

logger = structlog.get_logger(__name__)

# Status codes the auth endpoints use for rejected credentials
AUTH_REJECT_STATUSES = {400, 401, 403, 422}

# Refresh this many seconds before the token actually expires
EXPIRY_MARGIN_SECONDS = 30


def _error_message(response: httpx.Response) -> str:
    """Pull a human-readable message out of an error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    if isinstance(body, dict):
        for key in ("error_description", "msg", "message", "error"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return f"HTTP {response.status_code}"


def _session_from_payload(payload: dict[str, Any]) -> Session:
    """Build a Session from a GoTrue token or signup response."""
    user = payload.get("user") or payload
    if not user.get("id"):
        raise AuthError("Authentication response did not include a user")

    expires_at = payload.get("expires_at")
    if expires_at is None and payload.get("expires_in"):
        expires_at = int(time.time()) + int(payload["expires_in"])

    return Session(
        user_id=user["id"],
        email=user.get("email") or "",
        access_token=payload.get("access_token"),
        refresh_token=payload.get("refresh_token"),
        expires_at=expires_at,
    )


class RestBackend:
    """``RemoteBackend`` over httpx.

    One ``httpx.AsyncClient`` is shared by every call. Session-change events
    are emitted for sign-in, sign-out, token refresh, and for tokens the
    server no longer accepts.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the backend.

        Args:
            base_url: Project URL (e.g. https://xyz.supabase.co)
            api_key: Public (anon) API key
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"apikey": api_key},
        )
        self._session: Session | None = None
        self._callbacks: list[SessionCallback] = []
        self._refresh_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: RemoteConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> RestBackend:
        """Create a backend from the ``remote`` config section."""
        if not config.base_url:
            raise NetworkError("Remote base_url is not configured")
        return cls(
            base_url=config.base_url,
            api_key=config.get_api_key() or "",
            timeout=config.timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> RestBackend:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Session change notifications
    # -------------------------------------------------------------------------

    def on_session_change(self, callback: SessionCallback) -> Unsubscribe:
        """Subscribe to ``(event, session)`` notifications."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    async def _emit(self, event: str, session: Session | None) -> None:
        logger.debug("session_event", session_event=event, has_session=session is not None)
        for callback in list(self._callbacks):
            result = callback(event, session)
            if inspect.isawaitable(result):
                await result

    # -------------------------------------------------------------------------
    # HTTP plumbing
    # -------------------------------------------------------------------------

    def _auth_headers(self) -> dict[str, str]:
        token = self._api_key
        if self._session is not None and self._session.access_token:
            token = self._session.access_token
        return {"Authorization": f"Bearer {token}"}

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("remote_unreachable", method=method, url=url, error=str(e))
            raise NetworkError(f"Could not reach {self.base_url}: {e}") from e

    async def _auth_request(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request(method, url, **kwargs)
        if response.status_code in AUTH_REJECT_STATUSES:
            raise AuthError(_error_message(response))
        if response.is_error:
            raise NetworkError(_error_message(response), status_code=response.status_code)
        if not response.content:
            return {}
        return response.json()

    async def _table_request(self, method: str, url: str, **kwargs: Any) -> Any:
        await self._ensure_fresh_session()
        headers = {**kwargs.pop("headers", {}), **self._auth_headers()}
        response = await self._request(method, url, headers=headers, **kwargs)

        if response.status_code == 401 and self._session is not None:
            # Token revoked or expired elsewhere
            logger.info("session_rejected_by_server", table_url=url)
            self._session = None
            await self._emit(SessionEvent.SIGNED_OUT, None)
            raise AuthError(_error_message(response))

        if response.is_error:
            raise NetworkError(_error_message(response), status_code=response.status_code)
        if not response.content:
            return None
        return response.json()

    # -------------------------------------------------------------------------
    # Auth
    # -------------------------------------------------------------------------

    async def get_session(self) -> Session | None:
        """Return the current session, refreshing it when close to expiry."""
        await self._ensure_fresh_session()
        return self._session

    async def _ensure_fresh_session(self) -> None:
        session = self._session
        if session is None or session.expires_at is None or not session.refresh_token:
            return
        if session.expires_at - EXPIRY_MARGIN_SECONDS > time.time():
            return

        async with self._refresh_lock:
            if self._session is not session:
                return
            try:
                payload = await self._auth_request(
                    "POST",
                    "/auth/v1/token",
                    params={"grant_type": "refresh_token"},
                    json={"refresh_token": session.refresh_token},
                )
            except AuthError:
                logger.info("session_refresh_rejected", user_id=session.user_id)
                self._session = None
                await self._emit(SessionEvent.SIGNED_OUT, None)
                return

            self._session = _session_from_payload(payload)
            logger.debug("session_refreshed", user_id=self._session.user_id)
            await self._emit(SessionEvent.TOKEN_REFRESHED, self._session)

    async def sign_in(self, email: str, password: str) -> Session:
        """Exchange email and password for a session."""
        payload = await self._auth_request(
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        session = _session_from_payload(payload)
        if not session.is_active:
            raise AuthError("Authentication response did not include an access token")

        self._session = session
        logger.info("remote_signed_in", user_id=session.user_id)
        await self._emit(SessionEvent.SIGNED_IN, session)
        return session

    async def sign_up(self, email: str, password: str) -> Session:
        """Register an account; the session is inactive until confirmed."""
        payload = await self._auth_request(
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": password},
        )
        session = _session_from_payload(payload)
        if session.is_active:
            self._session = session
            await self._emit(SessionEvent.SIGNED_IN, session)
        logger.info("remote_signed_up", user_id=session.user_id, confirmed=session.is_active)
        return session

    async def sign_out(self) -> None:
        """Revoke the session on the server and forget it locally."""
        session = self._session
        if session is None:
            return

        try:
            await self._auth_request(
                "POST",
                "/auth/v1/logout",
                headers={"Authorization": f"Bearer {session.access_token}"},
            )
        finally:
            self._session = None
            await self._emit(SessionEvent.SIGNED_OUT, None)
        logger.info("remote_signed_out", user_id=session.user_id)

    # -------------------------------------------------------------------------
    # Tables
    # -------------------------------------------------------------------------

    @staticmethod
    def _filter_params(filters: dict[str, Any] | None, columns: str) -> dict[str, str]:
        params = {"select": columns}
        for column, value in (filters or {}).items():
            params[column] = f"eq.{value}"
        return params

    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        columns: str = "*",
    ) -> list[dict[str, Any]]:
        """Read rows matching equality filters."""
        rows = await self._table_request(
            "GET",
            f"/rest/v1/{table}",
            params=self._filter_params(filters, columns),
        )
        return list(rows or [])

    async def select_one(
        self,
        table: str,
        filters: dict[str, Any],
        columns: str = "*",
    ) -> dict[str, Any] | None:
        """Read a single row, or None if nothing matches."""
        params = self._filter_params(filters, columns)
        params["limit"] = "1"
        rows = await self._table_request("GET", f"/rest/v1/{table}", params=params)
        return rows[0] if rows else None

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return the stored representation."""
        rows = await self._table_request(
            "POST",
            f"/rest/v1/{table}",
            json=record,
            headers={"Prefer": "return=representation"},
        )
        if isinstance(rows, list):
            if not rows:
                raise NetworkError(f"Insert into {table} returned no row")
            return rows[0]
        if not isinstance(rows, dict):
            raise NetworkError(f"Insert into {table} returned no row")
        return rows
