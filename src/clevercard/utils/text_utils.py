"""Text processing utilities.

Common text manipulation functions used across modules.
"""

import re

# Patterns for removing thinking/reasoning blocks from model output
THINK_PATTERNS = [
    re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<thinking>.*?</thinking>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<analysis>.*?</analysis>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<reasoning>.*?</reasoning>", re.DOTALL | re.IGNORECASE),
]

SCORE_PATTERN = re.compile(r"^\s*(-?\d+(?:[.,]\d+)?)\s*%?\s*$")


def strip_think(text: str) -> str:
    """Remove thinking/reasoning blocks from model output.

    Args:
        text: Raw model output

    Returns:
        Cleaned text without thinking artifacts
    """
    result = text
    for pattern in THINK_PATTERNS:
        result = pattern.sub("", result)
    return result.strip()


def normalize_whitespace(text: str) -> str:
    """Collapse runs of whitespace into single spaces."""
    return " ".join(text.split())


def parse_score(raw: str) -> float | None:
    """Parse a score such as "85", "85%" or "85,5".

    Returns:
        The score as float, or None if ``raw`` is not a number
    """
    match = SCORE_PATTERN.match(raw)
    if not match:
        return None
    return float(match.group(1).replace(",", "."))
