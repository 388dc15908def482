"""Read-only views over an AppState snapshot (F5).

Dashboard counts, report statistics, list filters, and matching of
scanned register rows to known students.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from clevercard.core.models import AppState, RegisterRow, ReportCard, SchoolClass, Student
from clevercard.utils.text_utils import normalize_whitespace

# Term filter value meaning "every term"
ALL_TERMS = "current"


@dataclass(frozen=True)
class DashboardSummary:
    """Counts shown on the home screen."""

    total_classes: int
    total_students: int
    total_reports: int
    average_score: float
    reports_with_insights: int


def average_score(reports: Iterable[ReportCard]) -> float:
    """Mean ``total_score`` over the reports (0.0 when there are none)."""
    scores = [r.total_score for r in reports]
    if not scores:
        return 0.0
    return sum(scores) / len(scores)


def top_performers(reports: Iterable[ReportCard], limit: int = 3) -> list[ReportCard]:
    """Highest ``total_score`` first; the input is left untouched."""
    return sorted(reports, key=lambda r: r.total_score, reverse=True)[:limit]


def reports_with_insights(reports: Iterable[ReportCard]) -> list[ReportCard]:
    return [r for r in reports if r.ai_insights]


def filter_reports_by_term(reports: Iterable[ReportCard], term: str = ALL_TERMS) -> list[ReportCard]:
    if term == ALL_TERMS:
        return list(reports)
    return [r for r in reports if r.term == term]


def summarize(state: AppState) -> DashboardSummary:
    """Build the dashboard summary from one snapshot."""
    return DashboardSummary(
        total_classes=len(state.classes),
        total_students=len(state.students),
        total_reports=len(state.reports),
        average_score=average_score(state.reports),
        reports_with_insights=len(reports_with_insights(state.reports)),
    )


def search_classes(classes: Iterable[SchoolClass], query: str) -> list[SchoolClass]:
    """Case-insensitive match on class name or subject."""
    needle = query.strip().lower()
    return [c for c in classes if needle in c.name.lower() or needle in c.subject.lower()]


def search_students(
    students: Iterable[Student],
    query: str = "",
    class_id: str | None = None,
) -> list[Student]:
    """Match on name or registration number, optionally within one class."""
    needle = query.strip().lower()
    return [
        s
        for s in students
        if (needle in s.full_name.lower() or needle in s.registration_number.lower())
        and (class_id is None or s.class_id == class_id)
    ]


def _name_key(name: str) -> str:
    return normalize_whitespace(name).casefold()


def match_register_rows(
    rows: Iterable[RegisterRow],
    students: Iterable[Student],
) -> list[tuple[RegisterRow, Student | None]]:
    """Pair each scanned row with the student of the same name.

    Names compare case- and whitespace-insensitively; rows with no match
    (or an ambiguous one) pair with None.
    """
    by_name: dict[str, list[Student]] = {}
    for student in students:
        by_name.setdefault(_name_key(student.full_name), []).append(student)

    pairs: list[tuple[RegisterRow, Student | None]] = []
    for row in rows:
        candidates = by_name.get(_name_key(row.name), [])
        pairs.append((row, candidates[0] if len(candidates) == 1 else None))
    return pairs
