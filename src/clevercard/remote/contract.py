"""Contract for the remote persistence backend.

The session manager and the store only talk to this protocol. ``RestBackend``
is the shipped implementation; tests use in-memory fakes.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol

from clevercard.core.models import Session

SessionCallback = Callable[[str, Session | None], Awaitable[None] | None]
Unsubscribe = Callable[[], None]

PROFILES_TABLE = "profiles"
CLASSES_TABLE = "classes"
STUDENTS_TABLE = "students"
REPORTS_TABLE = "report_cards"


class RemoteBackend(Protocol):
    """Auth plus tabular storage reachable over the network.

    Auth methods raise ``AuthError`` for rejected credentials and
    ``NetworkError`` when the backend cannot be reached. Table methods
    raise ``NetworkError`` for any failed request.
    """

    async def get_session(self) -> Session | None:
        """Return the current session, if any."""
        ...

    async def sign_in(self, email: str, password: str) -> Session:
        """Exchange credentials for a session."""
        ...

    async def sign_up(self, email: str, password: str) -> Session:
        """Register a new account.

        The returned session has no access token when the backend requires
        email confirmation first.
        """
        ...

    async def sign_out(self) -> None:
        """Revoke the current session."""
        ...

    def on_session_change(self, callback: SessionCallback) -> Unsubscribe:
        """Subscribe to ``(event, session)`` notifications."""
        ...

    async def select(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        columns: str = "*",
    ) -> list[dict[str, Any]]:
        """Read rows matching equality filters."""
        ...

    async def select_one(
        self,
        table: str,
        filters: dict[str, Any],
        columns: str = "*",
    ) -> dict[str, Any] | None:
        """Read a single row, or None if nothing matches."""
        ...

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        """Insert a row and return the stored representation."""
        ...
