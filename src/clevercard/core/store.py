"""Entity store (F3).

In-memory projection of the remote classes, students and report cards.

Consistency rules:
- load_* replaces the whole collection with the remote result; a failed
  load leaves the previous collection in place and only sets ``error``.
- create_* appends only after the backend confirms the insert; a failed
  create sets ``error`` and raises to the caller.
- Results of operations started before a sign-out are discarded.
"""

from __future__ import annotations

import dataclasses
from typing import Any, TypeVar

import structlog

from clevercard.core.errors import AuthError, CleverCardError, NetworkError, ValidationError
from clevercard.core.models import (
    AppState,
    ClassCreate,
    ReportCard,
    ReportCardCreate,
    SchoolClass,
    Student,
    StudentCreate,
)
from clevercard.core.state import StateContainer
from clevercard.remote.contract import (
    CLASSES_TABLE,
    REPORTS_TABLE,
    STUDENTS_TABLE,
    RemoteBackend,
)

logger = structlog.get_logger(__name__)

R = TypeVar("R", SchoolClass, Student, ReportCard)

# Classes are read together with the size of their roster
CLASS_COLUMNS = "*,students(count)"


def _as_core_error(error: Exception) -> CleverCardError:
    if isinstance(error, CleverCardError):
        return error
    return NetworkError(str(error) or error.__class__.__name__)


class AppStore:
    """CRUD over classes, students and report cards.

    Reads and writes go through the shared ``StateContainer``; every local
    change is one whole-snapshot swap.
    """

    def __init__(self, backend: RemoteBackend, container: StateContainer):
        self._backend = backend
        self._container = container

    @property
    def state(self) -> AppState:
        return self._container.state

    # -------------------------------------------------------------------------
    # Utility actions
    # -------------------------------------------------------------------------

    def set_error(self, error: str | None) -> None:
        self._container.replace(error=error)

    def clear_error(self) -> None:
        self._container.replace(error=None)

    def set_loading(self, loading: bool) -> None:
        self._container.replace(is_loading=loading)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def _load(
        self,
        field_name: str,
        table: str,
        record_type: type[R],
        filters: dict[str, Any] | None,
        columns: str = "*",
    ) -> tuple[R, ...] | None:
        """Fetch a collection and swap it in.

        Returns the new collection, or None when the load failed or was
        discarded.
        """
        epoch = self._container.epoch
        try:
            rows = await self._backend.select(table, filters, columns=columns)
            records = tuple(record_type.from_row(row) for row in rows)
        except Exception as e:
            error = _as_core_error(e)
            if epoch != self._container.epoch:
                logger.info("load_failure_discarded_after_reset", table=table, error=str(error))
                return None
            logger.warning("load_failed", table=table, error=str(error))
            self._container.replace(error=str(error))
            return None

        if epoch != self._container.epoch:
            logger.info("load_discarded_after_reset", table=table)
            return None

        self._container.replace(**{field_name: records})
        logger.debug("collection_loaded", table=table, count=len(records))
        return records

    async def load_classes(self) -> tuple[SchoolClass, ...] | None:
        """Replace ``classes`` with the signed-in teacher's classes.

        Does nothing while signed out.
        """
        user = self.state.user
        if user is None:
            return None
        return await self._load(
            "classes",
            CLASSES_TABLE,
            SchoolClass,
            {"teacher_id": user.id},
            columns=CLASS_COLUMNS,
        )

    async def load_students(self, class_id: str | None = None) -> tuple[Student, ...] | None:
        """Replace ``students``, optionally scoped to one class."""
        filters = {"class_id": class_id} if class_id else None
        return await self._load("students", STUDENTS_TABLE, Student, filters)

    async def load_reports(self, student_id: str | None = None) -> tuple[ReportCard, ...] | None:
        """Replace ``reports``, optionally scoped to one student."""
        filters = {"student_id": student_id} if student_id else None
        return await self._load("reports", REPORTS_TABLE, ReportCard, filters)

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    async def _create(
        self,
        field_name: str,
        table: str,
        record_type: type[R],
        payload: dict[str, Any],
    ) -> R:
        """Insert a row and append the confirmed record."""
        epoch = self._container.epoch
        try:
            row = await self._backend.insert(table, payload)
            record = record_type.from_row(row)
        except Exception as e:
            error = _as_core_error(e)
            logger.warning("create_failed", table=table, error=str(error))
            self._container.replace(error=str(error))
            if error is e:
                raise
            raise error from e

        if epoch != self._container.epoch:
            logger.info("create_not_applied_after_reset", table=table, record_id=record.id)
            return record

        self._container.update(
            lambda s: dataclasses.replace(s, **{field_name: getattr(s, field_name) + (record,)})
        )
        logger.info("record_created", table=table, record_id=record.id)
        return record

    def _fail(self, error: CleverCardError) -> CleverCardError:
        self._container.replace(error=str(error))
        return error

    async def create_class(self, class_data: dict[str, Any] | ClassCreate) -> SchoolClass:
        """Create a class owned by the signed-in teacher.

        Raises:
            AuthError: Nobody is signed in
            ValidationError: Incomplete class data
            NetworkError: Insert failed
        """
        self.clear_error()
        user = self.state.user
        if user is None:
            raise self._fail(AuthError("User not authenticated"))

        try:
            payload = ClassCreate.parse(class_data).to_insert()
        except ValidationError as e:
            raise self._fail(e)

        payload["teacher_id"] = user.id
        return await self._create("classes", CLASSES_TABLE, SchoolClass, payload)

    async def create_student(self, student_data: dict[str, Any] | StudentCreate) -> Student:
        """Add a student to a class.

        When classes are loaded, ``class_id`` must name one of them.

        Raises:
            ValidationError: Incomplete data or unknown class
            NetworkError: Insert failed
        """
        self.clear_error()
        try:
            student = StudentCreate.parse(student_data)
            known = {c.id for c in self.state.classes}
            if known and student.class_id not in known:
                raise ValidationError(f"Unknown class: {student.class_id}")
        except ValidationError as e:
            raise self._fail(e)

        return await self._create("students", STUDENTS_TABLE, Student, student.to_insert())

    async def create_report(self, report_data: dict[str, Any] | ReportCardCreate) -> ReportCard:
        """Store a report card.

        Raises:
            ValidationError: Incomplete report data
            NetworkError: Insert failed
        """
        self.clear_error()
        try:
            payload = ReportCardCreate.parse(report_data).to_insert()
        except ValidationError as e:
            raise self._fail(e)

        return await self._create("reports", REPORTS_TABLE, ReportCard, payload)
