"""
Test suite for the structured-JSON LLM client

Covers the single sanitize pass, strict schema validation and the
fail-closed behaviour of generate_json.

Run tests with: pytest backend/tests/test_llm_client.py -v
"""

import pytest
from unittest.mock import patch, MagicMock

import httpx
from openai import APITimeoutError
from openai import RateLimitError as OpenAIRateLimitError
from pydantic import BaseModel

from services.errors import AnalysisError, ParseError, RateLimitError
from services.llm_client import generate_json, sanitize_json_text


class Thing(BaseModel):
    name: str
    count: int


def completion(content):
    """Build a fake chat completion carrying `content`."""
    response = MagicMock()
    response.choices = [MagicMock(message=MagicMock(content=content))]
    return response


def openai_rate_limit():
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    return OpenAIRateLimitError(
        "rate limited",
        response=httpx.Response(429, request=request),
        body=None,
    )


# ============================================================================
# TEST CASES - sanitize_json_text
# ============================================================================

class TestSanitize:

    def test_strips_code_fences(self):
        assert sanitize_json_text('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_removes_trailing_commas(self):
        assert sanitize_json_text('{"a": [1, 2,], "b": 3,}') == '{"a": [1, 2], "b": 3}'

    def test_extracts_outer_braces(self):
        assert sanitize_json_text('Here you go: {"a": {"b": 1}} hope it helps') == '{"a": {"b": 1}}'

    def test_none_is_empty(self):
        assert sanitize_json_text(None) == ""


# ============================================================================
# TEST CASES - generate_json
# ============================================================================

class TestGenerateJson:

    def test_valid_json_is_validated(self):
        with patch('services.llm_client.client') as mock_client:
            mock_client.chat.completions.create.return_value = completion('{"name": "x", "count": 2}')

            result = generate_json("prompt", Thing)

            assert result == Thing(name="x", count=2)
            kwargs = mock_client.chat.completions.create.call_args.kwargs
            assert kwargs["response_format"] == {"type": "json_object"}

    def test_fenced_json_with_trailing_comma_is_accepted(self):
        with patch('services.llm_client.client') as mock_client:
            mock_client.chat.completions.create.return_value = completion(
                '```json\n{"name": "x", "count": 2,}\n```'
            )

            assert generate_json("prompt", Thing).count == 2

    def test_unparseable_output_fails_closed(self):
        with patch('services.llm_client.client') as mock_client:
            mock_client.chat.completions.create.return_value = completion("{name: x, count: }")

            with pytest.raises(ParseError, match="JSON parsing failed"):
                generate_json("prompt", Thing)

    def test_schema_mismatch_uses_callers_error(self):
        with patch('services.llm_client.client') as mock_client:
            mock_client.chat.completions.create.return_value = completion('{"name": "x"}')

            with pytest.raises(AnalysisError, match="validation"):
                generate_json("prompt", Thing, error_cls=AnalysisError)

    def test_non_object_json_rejected(self):
        with patch('services.llm_client.client') as mock_client:
            mock_client.chat.completions.create.return_value = completion("[1, 2, 3]")

            with pytest.raises(ParseError):
                generate_json("prompt", Thing)

    def test_empty_content_rejected(self):
        with patch('services.llm_client.client') as mock_client:
            mock_client.chat.completions.create.return_value = completion(None)

            with pytest.raises(ParseError, match="empty response"):
                generate_json("prompt", Thing)

    def test_timeout_becomes_callers_error(self):
        with patch('services.llm_client.client') as mock_client:
            mock_client.chat.completions.create.side_effect = APITimeoutError(
                request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
            )

            with pytest.raises(AnalysisError, match="LLM request failed"):
                generate_json("prompt", Thing, error_cls=AnalysisError)

    def test_rate_limit_retries_then_raises(self):
        with patch('services.llm_client.client') as mock_client, \
             patch('services.llm_client.time.sleep') as mock_sleep:
            mock_client.chat.completions.create.side_effect = openai_rate_limit()

            with pytest.raises(RateLimitError):
                generate_json("prompt", Thing)

            assert mock_client.chat.completions.create.call_count > 1
            assert mock_sleep.call_count == mock_client.chat.completions.create.call_count - 1

    def test_rate_limit_then_success(self):
        with patch('services.llm_client.client') as mock_client, \
             patch('services.llm_client.time.sleep'):
            mock_client.chat.completions.create.side_effect = [
                openai_rate_limit(),
                completion('{"name": "ok", "count": 1}'),
            ]

            assert generate_json("prompt", Thing).name == "ok"
