"""Pytest configuration for phased testing.

Tests are organized by phase (f1, f2, ..., f6).
Only tests for the current phase and completed phases should run.
Future phase tests are automatically skipped.

Shared in-memory fakes for the remote backend and the capture devices
live here as well.
"""

import asyncio
import itertools
from pathlib import Path
from typing import Any

import pytest
import structlog

from clevercard.capture.devices import AudioHandle
from clevercard.capture.recognition import Recognition
from clevercard.core.errors import AuthError, CaptureFailure
from clevercard.core.models import RegisterRow, Session, SessionEvent
from clevercard.core.session_manager import SessionManager
from clevercard.core.state import StateContainer
from clevercard.core.store import AppStore

# Current implementation phase
CURRENT_PHASE = 6


def pytest_collection_modifyitems(config, items):
    """Skip tests from phases that haven't been implemented yet."""
    for item in items:
        # Extract phase from path (tests/f2/... -> 2)
        parts = Path(str(item.fspath)).parts
        for part in parts:
            if part.startswith("f") and part[1:].isdigit():
                test_phase = int(part[1:])
                if test_phase > CURRENT_PHASE:
                    item.add_marker(
                        pytest.mark.skip(
                            reason=f"Phase F{test_phase} not yet implemented (current: F{CURRENT_PHASE})"
                        )
                    )
                break


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo structlog configuration done by CLI commands."""
    yield
    structlog.reset_defaults()


# =============================================================================
# REMOTE BACKEND FAKE
# =============================================================================


class FakeBackend:
    """In-memory RemoteBackend.

    - ``accounts``: email -> (password, user_id)
    - ``tables``: table name -> rows
    - ``failures``: method name -> exception raised by that method
    - ``gates``: method name -> asyncio.Event the call waits on
    Inserts echo the record back with a generated ``id`` and ``created_at``.
    """

    def __init__(self):
        self.accounts: dict[str, tuple[str, str]] = {}
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.failures: dict[str, Exception] = {}
        self.gates: dict[str, asyncio.Event] = {}
        self.calls: list[tuple[str, Any]] = []
        self.session: Session | None = None
        self.confirm_sign_ups = False
        self._callbacks: list = []
        self._ids = itertools.count(1)

    async def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()
        failure = self.failures.get(method)
        if failure is not None:
            raise failure

    def on_session_change(self, callback):
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._callbacks)

    async def emit(self, event: str, session: Session | None) -> None:
        for callback in list(self._callbacks):
            result = callback(event, session)
            if asyncio.iscoroutine(result):
                await result

    def add_account(self, email: str, password: str, user_id: str, **profile: Any) -> None:
        self.accounts[email] = (password, user_id)
        if profile:
            self.tables.setdefault("profiles", []).append({"id": user_id, **profile})

    async def get_session(self) -> Session | None:
        await self._enter("get_session")
        return self.session

    async def sign_in(self, email: str, password: str) -> Session:
        await self._enter("sign_in", email)
        account = self.accounts.get(email)
        if account is None or account[0] != password:
            raise AuthError("Invalid login credentials")
        self.session = Session(user_id=account[1], email=email, access_token=f"token-{account[1]}")
        await self.emit(SessionEvent.SIGNED_IN, self.session)
        return self.session

    async def sign_up(self, email: str, password: str) -> Session:
        await self._enter("sign_up", email)
        if email in self.accounts:
            raise AuthError("User already registered")
        user_id = f"user-{next(self._ids)}"
        self.accounts[email] = (password, user_id)
        token = f"token-{user_id}" if self.confirm_sign_ups else None
        return Session(user_id=user_id, email=email, access_token=token)

    async def sign_out(self) -> None:
        await self._enter("sign_out")
        self.session = None
        await self.emit(SessionEvent.SIGNED_OUT, None)

    async def select(self, table: str, filters=None, columns: str = "*") -> list[dict[str, Any]]:
        await self._enter("select", table, filters, columns)
        rows = self.tables.get(table, [])
        return [
            dict(row)
            for row in rows
            if all(row.get(k) == v for k, v in (filters or {}).items())
        ]

    async def select_one(self, table: str, filters, columns: str = "*") -> dict[str, Any] | None:
        await self._enter("select_one", table, filters)
        rows = await self.select(table, filters, columns)
        return rows[0] if rows else None

    async def insert(self, table: str, record: dict[str, Any]) -> dict[str, Any]:
        await self._enter("insert", table, record)
        row = {"id": f"{table}-{next(self._ids)}", "created_at": "2024-01-15T10:00:00Z", **record}
        if table == "report_cards":
            row.setdefault("updated_at", row["created_at"])
        self.tables.setdefault(table, []).append(row)
        return dict(row)


def _class_row(class_id: str, teacher_id: str = "u1", name: str = "Grade 5A") -> dict[str, Any]:
    return {
        "id": class_id,
        "school_id": "default",
        "teacher_id": teacher_id,
        "name": name,
        "subject": "Mathematics",
        "academic_year": "2024",
        "created_at": "2024-01-10T08:00:00Z",
    }


def _report_row(report_id: str, student_id: str = "s1", total: float = 80.0, **extra: Any) -> dict[str, Any]:
    row = {
        "id": report_id,
        "student_id": student_id,
        "term": "Term 1",
        "academic_year": "2024",
        "scores": {"Mathematics": total},
        "teacher_remarks": "",
        "ai_insights": None,
        "total_score": total,
        "grade": "B",
        "position": None,
        "created_at": "2024-03-01T08:00:00Z",
        "updated_at": "2024-03-01T08:00:00Z",
    }
    row.update(extra)
    return row


@pytest.fixture
def class_row():
    """Factory for remote class rows."""
    return _class_row


@pytest.fixture
def report_row():
    """Factory for remote report card rows."""
    return _report_row


@pytest.fixture
def backend() -> FakeBackend:
    fake = FakeBackend()
    fake.add_account("t@school.edu", "secret1", "u1", full_name="Ada Teacher", role="teacher")
    return fake


@pytest.fixture
def container() -> StateContainer:
    return StateContainer()


@pytest.fixture
def sessions(backend, container) -> SessionManager:
    return SessionManager(backend, container)


@pytest.fixture
def store(backend, container) -> AppStore:
    return AppStore(backend, container)


# =============================================================================
# CAPTURE FAKES
# =============================================================================


class FakeCamera:
    def __init__(self, image: bytes = b"\x89PNG fake", granted: bool = True):
        self.image = image
        self.granted = granted
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.captures = 0

    async def request_permission(self) -> bool:
        return self.granted

    async def capture_photo(self) -> bytes:
        self.captures += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.image


class FakeMicrophone:
    def __init__(self, granted: bool = True, duration: float = 4.2):
        self.granted = granted
        self.duration = duration
        self.recording = False
        self.start_error: Exception | None = None
        self.play_error: Exception | None = None
        self.started = 0
        self.stopped = 0
        self.played: list[AudioHandle] = []

    async def request_permission(self) -> bool:
        return self.granted

    async def start_recording(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.recording = True
        self.started += 1

    async def stop_recording(self) -> AudioHandle:
        if not self.recording:
            raise CaptureFailure("Microphone is not recording")
        self.recording = False
        self.stopped += 1
        return AudioHandle(path=Path(f"/tmp/remark_{self.stopped}.wav"), duration_seconds=self.duration)

    async def play(self, handle: AudioHandle) -> None:
        if self.play_error is not None:
            raise self.play_error
        self.played.append(handle)


class FakeRecognizer:
    def __init__(self, recognition: Recognition | None = None):
        self.recognition = recognition or Recognition(
            text="Student Name: John Doe\nMathematics: 85",
            rows=[RegisterRow(name="John Doe", scores={"Mathematics": 85.0})],
            confidence=0.9,
        )
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.calls = 0

    async def recognize(self, image: bytes) -> Recognition:
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.recognition


class FakeTranscriber:
    def __init__(self, text: str = "Shows great improvement in reading."):
        self.text = text
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.handles: list[AudioHandle] = []

    async def transcribe(self, handle: AudioHandle) -> str:
        self.handles.append(handle)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return self.text


@pytest.fixture
def camera() -> FakeCamera:
    return FakeCamera()


@pytest.fixture
def recognizer() -> FakeRecognizer:
    return FakeRecognizer()


@pytest.fixture
def microphone() -> FakeMicrophone:
    return FakeMicrophone()


@pytest.fixture
def transcriber() -> FakeTranscriber:
    return FakeTranscriber()
