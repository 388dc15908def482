"""Tests for AI insight generation (F5)."""

from unittest.mock import MagicMock

import pytest

from clevercard.core.errors import ProcessingFailure
from clevercard.core.insights import generate_insights, generate_insights_async
from clevercard.llm.client import LLMConnectionError


@pytest.fixture
def mock_llm_client():
    client = MagicMock()
    client.simple_json.return_value = {
        "insights": [
            {"type": "strength", "subject": "Mathematics", "message": "Excellent problem solving.", "confidence": 0.9},
            {"type": "weakness", "subject": "English", "message": "Essay structure needs work.", "confidence": 1.7},
            {"type": "praise", "message": "Unknown type is dropped.", "confidence": 0.5},
            "not an object",
            {"type": "recommendation", "message": "Read 20 minutes daily."},
        ]
    }
    return client


class TestGenerateInsights:
    def test_valid_insights_kept(self, mock_llm_client):
        insights = generate_insights({"Mathematics": 92, "English": 61}, "Bright student.", client=mock_llm_client)

        assert [i.type for i in insights] == ["strength", "weakness", "recommendation"]
        assert insights[1].confidence == 1.0
        assert insights[2].subject is None
        assert insights[2].confidence == 0.5

    def test_prompt_contains_scores_and_remarks(self, mock_llm_client):
        generate_insights({"Mathematics": 92}, "Bright student.", client=mock_llm_client)

        _system, user_message = mock_llm_client.simple_json.call_args.args
        assert '"Mathematics": 92' in user_message
        assert "Bright student." in user_message

    def test_max_insights(self, mock_llm_client):
        insights = generate_insights({"Mathematics": 92}, client=mock_llm_client, max_insights=1)
        assert len(insights) == 1

    def test_nothing_to_analyse(self, mock_llm_client):
        assert generate_insights({}, "  ", client=mock_llm_client) == []
        mock_llm_client.simple_json.assert_not_called()

    def test_client_error(self, mock_llm_client):
        mock_llm_client.simple_json.side_effect = LLMConnectionError("Could not connect")

        with pytest.raises(ProcessingFailure, match="Insight generation failed"):
            generate_insights({"Mathematics": 92}, client=mock_llm_client)

    def test_missing_list(self, mock_llm_client):
        mock_llm_client.simple_json.return_value = {"summary": "fine"}

        with pytest.raises(ProcessingFailure, match="no insights list"):
            generate_insights({"Mathematics": 92}, client=mock_llm_client)

    @pytest.mark.asyncio
    async def test_async_wrapper(self, mock_llm_client):
        insights = await generate_insights_async({"Mathematics": 92}, client=mock_llm_client)
        assert len(insights) == 3
