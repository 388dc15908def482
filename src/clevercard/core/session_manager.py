"""Session management (F2).

Single authoritative source of "who is signed in". Drives the session
lifecycle against the remote backend and writes the resulting user into
the shared application state.

States:
    UNKNOWN -> CHECKING -> AUTHENTICATED | ANONYMOUS
    AUTHENTICATED -> ANONYMOUS   (sign-out or revocation elsewhere)
"""

from __future__ import annotations

import asyncio
from enum import Enum, auto
from typing import Any

import structlog

from clevercard.core.errors import AuthError, CleverCardError, ValidationError
from clevercard.core.models import (
    MIN_PASSWORD_LENGTH,
    Session,
    SessionEvent,
    User,
    validate_email,
)
from clevercard.core.state import StateContainer
from clevercard.remote.contract import PROFILES_TABLE, RemoteBackend, Unsubscribe

logger = structlog.get_logger(__name__)


class SessionStatus(Enum):
    """Where the session lifecycle currently stands."""

    UNKNOWN = auto()  # initialize() not called yet
    CHECKING = auto()  # looking for an existing session
    AUTHENTICATED = auto()
    ANONYMOUS = auto()


def _as_core_error(error: Exception) -> CleverCardError:
    if isinstance(error, CleverCardError):
        return error
    return AuthError(str(error) or error.__class__.__name__)


class SessionManager:
    """Owns sign-in, sign-up, sign-out and session discovery.

    Failures are reported both ways: the message lands in the shared
    ``error`` field and the exception is raised to the caller.

    Usage:
        async with SessionManager(backend, container) as sessions:
            await sessions.sign_in("t@school.edu", "secret1")
    """

    def __init__(self, backend: RemoteBackend, container: StateContainer):
        self._backend = backend
        self._container = container
        self._status = SessionStatus.UNKNOWN
        self._check_task: asyncio.Task[None] | None = None
        self._unsubscribe: Unsubscribe | None = None

    @property
    def status(self) -> SessionStatus:
        return self._status

    @property
    def user(self) -> User | None:
        return self._container.state.user

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def initialize(self) -> None:
        """Discover an existing session and subscribe to session changes.

        Concurrent calls while CHECKING wait on the same check. Once settled,
        further calls are no-ops; a failed check may be retried.
        """
        if self._unsubscribe is None:
            self._unsubscribe = self._backend.on_session_change(self._on_session_change)

        if self._check_task is None or self._check_failed():
            self._check_task = asyncio.ensure_future(self._check_session())
        await asyncio.shield(self._check_task)

    def _check_failed(self) -> bool:
        task = self._check_task
        if task is None or not task.done():
            return False
        return task.cancelled() or task.exception() is not None

    async def _check_session(self) -> None:
        self._status = SessionStatus.CHECKING
        self._container.replace(is_loading=True)
        epoch = self._container.epoch

        try:
            session = await self._backend.get_session()
            user = None
            if session is not None and session.is_active:
                profile = await self._fetch_profile(session)
                user = User.from_session(session, profile)
        except Exception as e:
            error = _as_core_error(e)
            logger.warning("session_check_failed", error=str(error))
            self._status = SessionStatus.ANONYMOUS
            self._container.replace(error=str(error), is_loading=False)
            if error is e:
                raise
            raise error from e

        if user is not None and epoch == self._container.epoch:
            self._status = SessionStatus.AUTHENTICATED
            self._container.replace(user=user, is_loading=False)
            logger.info("session_restored", user_id=user.id)
        else:
            self._status = SessionStatus.ANONYMOUS
            self._container.replace(is_loading=False)
            logger.info("no_existing_session")

    async def close(self) -> None:
        """Drop the session-change subscription."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.debug("session_subscription_closed")

    async def __aenter__(self) -> SessionManager:
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _on_session_change(self, event: str, session: Session | None) -> None:
        """React to out-of-band session changes reported by the backend."""
        if event == SessionEvent.SIGNED_OUT or session is None:
            if self._container.state.user is not None:
                logger.info("session_invalidated", session_event=event)
            self._status = SessionStatus.ANONYMOUS
            self._container.clear_user()

    async def _fetch_profile(self, session: Session) -> dict[str, Any] | None:
        """Fetch the profile row; a missing or unreadable profile yields defaults."""
        try:
            return await self._backend.select_one(PROFILES_TABLE, {"id": session.user_id})
        except CleverCardError as e:
            logger.warning("profile_fetch_failed", user_id=session.user_id, error=str(e))
            return None

    # -------------------------------------------------------------------------
    # Auth actions
    # -------------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> User:
        """Sign in and merge the profile into the shared user.

        A sign-out reported by the backend while the sign-in is in flight
        wins: the user is not written and AuthError is raised.

        Raises:
            AuthError: Credentials rejected, or the session ended meanwhile
            NetworkError: Backend unreachable
        """
        self._container.replace(is_loading=True, error=None)
        epoch = self._container.epoch

        try:
            if not email or not password:
                raise AuthError("Please fill in all fields")
            session = await self._backend.sign_in(email, password)
            profile = await self._fetch_profile(session)
            user = User.from_session(session, profile)
        except Exception as e:
            error = _as_core_error(e)
            logger.warning("sign_in_failed", error=str(error))
            self._container.replace(error=str(error), is_loading=False)
            if error is e:
                raise
            raise error from e

        if epoch != self._container.epoch:
            error = AuthError("Session ended before sign-in completed")
            logger.warning("sign_in_superseded", user_id=user.id)
            self._status = SessionStatus.ANONYMOUS
            self._container.replace(error=str(error), is_loading=False)
            raise error

        self._status = SessionStatus.AUTHENTICATED
        self._container.replace(user=user, is_loading=False)
        logger.info("signed_in", user_id=user.id, role=user.role)
        return user

    async def sign_up(self, email: str, password: str, full_name: str) -> Session:
        """Create an account and its profile row.

        The shared user is left untouched: a new account signs in
        explicitly (typically after confirming its email).

        Raises:
            ValidationError: Malformed email or too short password
            AuthError: Registration rejected
            NetworkError: Backend unreachable
        """
        self._container.replace(is_loading=True, error=None)

        try:
            if not full_name or not email or not password:
                raise ValidationError("Please fill in all fields")
            if not validate_email(email):
                raise ValidationError(f"Invalid email address: {email}")
            if len(password) < MIN_PASSWORD_LENGTH:
                raise ValidationError(
                    f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
                )
            session = await self._backend.sign_up(email, password)
        except Exception as e:
            error = _as_core_error(e)
            logger.warning("sign_up_failed", error=str(error))
            self._container.replace(error=str(error), is_loading=False)
            if error is e:
                raise
            raise error from e

        try:
            await self._backend.insert(
                PROFILES_TABLE,
                {"id": session.user_id, "full_name": full_name, "role": "teacher"},
            )
        except CleverCardError as e:
            logger.warning("profile_insert_failed", user_id=session.user_id, error=str(e))

        self._container.replace(is_loading=False)
        logger.info("signed_up", user_id=session.user_id, confirmed=session.is_active)
        return session

    async def sign_out(self) -> None:
        """Revoke the session and clear user and collections in one swap.

        The local clear happens even if the remote revoke fails; the failure
        is still reported.
        """
        self._container.replace(is_loading=True)

        try:
            await self._backend.sign_out()
        except Exception as e:
            error = _as_core_error(e)
            logger.warning("sign_out_failed", error=str(error))
            self._status = SessionStatus.ANONYMOUS
            self._container.reset(is_loading=False, error=str(error))
            if error is e:
                raise
            raise error from e

        self._status = SessionStatus.ANONYMOUS
        self._container.reset(is_loading=False)
        logger.info("signed_out")
