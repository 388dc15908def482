"""AI insights for report cards (F5).

Asks the AI endpoint for strengths, weaknesses, recommendations and
improvements given a report's scores and the teacher's remarks (often a
transcribed voice remark).
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import structlog

from clevercard.core.errors import ProcessingFailure, ValidationError
from clevercard.core.models import AIInsight
from clevercard.llm.client import LLMClient, LLMError

logger = structlog.get_logger(__name__)

DEFAULT_MAX_INSIGHTS = 5

INSIGHTS_SYSTEM_PROMPT = """You help teachers write report cards.
Given a student's scores per subject and the teacher's remarks, return a JSON
object {"insights": [...]} where each insight has:
- "type": one of "strength", "weakness", "recommendation", "improvement"
- "subject": the subject it refers to, or null for general remarks
- "message": one short sentence addressed to parents
- "confidence": a number between 0 and 1
Base every insight on the data given; do not invent subjects."""


def _build_user_message(scores: dict[str, float], remarks: str) -> str:
    return (
        f"Scores:\n{json.dumps(scores, ensure_ascii=False, indent=2)}\n\n"
        f"Teacher remarks:\n{remarks.strip() or '(none)'}"
    )


def _parse_insights(payload: dict[str, Any], max_insights: int) -> list[AIInsight]:
    raw_items = payload.get("insights")
    if not isinstance(raw_items, list):
        raise ProcessingFailure("AI response has no insights list")

    insights: list[AIInsight] = []
    for item in raw_items:
        if not isinstance(item, dict):
            continue
        item = dict(item)
        try:
            item["confidence"] = min(max(float(item.get("confidence", 0.5)), 0.0), 1.0)
            insights.append(AIInsight.from_row(item))
        except (TypeError, ValueError, ValidationError) as e:
            logger.debug("insight_skipped", error=str(e))
        if len(insights) >= max_insights:
            break
    return insights


def generate_insights(
    scores: dict[str, float],
    remarks: str = "",
    client: LLMClient | None = None,
    max_insights: int = DEFAULT_MAX_INSIGHTS,
) -> list[AIInsight]:
    """Generate insights for one report.

    Args:
        scores: Subject -> score
        remarks: Teacher remarks
        client: AI client (created from config if omitted)
        max_insights: Upper bound on returned insights

    Returns:
        Valid insights; malformed entries are dropped

    Raises:
        ProcessingFailure: The AI request failed or returned no list
    """
    if not scores and not remarks.strip():
        return []

    client = client or LLMClient()
    try:
        payload = client.simple_json(INSIGHTS_SYSTEM_PROMPT, _build_user_message(scores, remarks))
    except LLMError as e:
        raise ProcessingFailure(f"Insight generation failed: {e}") from e

    insights = _parse_insights(payload, max_insights)
    logger.info("insights_generated", count=len(insights), subjects=len(scores))
    return insights


async def generate_insights_async(
    scores: dict[str, float],
    remarks: str = "",
    client: LLMClient | None = None,
    max_insights: int = DEFAULT_MAX_INSIGHTS,
) -> list[AIInsight]:
    """``generate_insights`` off the event loop."""
    return await asyncio.to_thread(generate_insights, scores, remarks, client, max_insights)
