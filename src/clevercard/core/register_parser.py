"""Register text parser (F4).

Turns recognized register text into ``RegisterRow`` entries. Two layouts
are understood:

Block layout, one "name" line followed by "Subject: score" lines:

    Student Name: John Doe
    Mathematics: 85
    English: 78

Table layout, a header row whose first cell is the name column:

    Name | Mathematics | English
    John Doe | 85 | 78
"""

from __future__ import annotations

import re

import structlog

from clevercard.core.models import RegisterRow
from clevercard.utils.text_utils import normalize_whitespace, parse_score

logger = structlog.get_logger(__name__)

NAME_KEYS = {"student name", "student", "name", "full name", "pupil"}

TABLE_DELIMITERS = ["|", "\t", ";", ","]

KEY_VALUE_PATTERN = re.compile(r"^\s*([^:]+?)\s*:\s*(.*?)\s*$")


def _split_table_line(line: str, delimiter: str) -> list[str]:
    cells = [normalize_whitespace(c) for c in line.strip().strip(delimiter).split(delimiter)]
    return cells


def _find_table_header(lines: list[str]) -> tuple[int, str, list[str]] | None:
    """Locate a table header: (line index, delimiter, subject columns)."""
    for index, line in enumerate(lines):
        for delimiter in TABLE_DELIMITERS:
            if delimiter not in line:
                continue
            cells = _split_table_line(line, delimiter)
            if len(cells) >= 2 and cells[0].lower() in NAME_KEYS:
                return index, delimiter, cells[1:]
    return None


def _parse_table(lines: list[str], header_index: int, delimiter: str, subjects: list[str]) -> list[RegisterRow]:
    rows: list[RegisterRow] = []
    for line in lines[header_index + 1 :]:
        if delimiter not in line:
            continue
        cells = _split_table_line(line, delimiter)
        # Markdown separator rows such as |---|---|
        if not cells or all(set(c) <= set("-: ") for c in cells):
            continue
        name = cells[0]
        if not name:
            continue
        scores: dict[str, float] = {}
        for subject, raw in zip(subjects, cells[1:]):
            score = parse_score(raw)
            if subject and score is not None:
                scores[subject] = score
        rows.append(RegisterRow(name=name, scores=scores))
    return rows


def _parse_blocks(lines: list[str]) -> list[RegisterRow]:
    rows: list[RegisterRow] = []
    name: str | None = None
    scores: dict[str, float] = {}

    for line in lines:
        match = KEY_VALUE_PATTERN.match(line)
        if not match:
            continue
        key = normalize_whitespace(match.group(1))
        value = normalize_whitespace(match.group(2))

        if key.lower() in NAME_KEYS:
            if name:
                rows.append(RegisterRow(name=name, scores=scores))
            name = value or None
            scores = {}
            continue

        score = parse_score(value) if value else None
        if name and score is not None:
            scores[key] = score

    if name:
        rows.append(RegisterRow(name=name, scores=scores))
    return rows


def parse_register_text(text: str) -> list[RegisterRow]:
    """Extract student rows from register text.

    Args:
        text: Raw text produced by recognition

    Returns:
        Rows in reading order; empty when nothing looks like a student line
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return []

    header = _find_table_header(lines)
    if header is not None:
        index, delimiter, subjects = header
        rows = _parse_table(lines, index, delimiter, subjects)
        layout = "table"
    else:
        rows = _parse_blocks(lines)
        layout = "blocks"

    logger.debug("register_text_parsed", layout=layout, rows=len(rows))
    return rows
