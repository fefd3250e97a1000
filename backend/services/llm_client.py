# backend/services/llm_client.py
"""
Structured-JSON LLM client

Every LLM call in the pipeline goes through `generate_json`:

1. Send the prompt with `response_format={"type": "json_object"}`
2. Retry 429s with exponential backoff
3. Run ONE sanitize pass over the text (code fences, trailing commas,
   outermost {...} span)
4. Decode and validate against a pydantic model

Anything that fails after step 3 fails closed with the caller's error type.
"""

import json
import logging
import random
import re
import time
from typing import Optional, Type, TypeVar

from openai import OpenAI, APITimeoutError, APIConnectionError, APIError
from openai import RateLimitError as OpenAIRateLimitError
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

import config
from services.errors import PipelineError, ParseError, RateLimitError

logger = logging.getLogger(__name__)

# Initialize OpenAI client
client = OpenAI(
    api_key=config.OPENAI_API_KEY,
    timeout=config.LLM_TIMEOUT_SECONDS,
    max_retries=0,
)

JSON_ONLY_INSTRUCTION = (
    "IMPORTANT: Return ONLY valid JSON. No markdown code blocks, no explanations, "
    "no extra text. Ensure all strings are properly quoted and no trailing commas."
)

DEFAULT_SYSTEM_PROMPT = (
    "You are a precise recruiting analysis engine. "
    "You must return STRICT JSON ONLY (no prose, no markdown) following the given schema."
)

T = TypeVar("T", bound=BaseModel)

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")


def sanitize_json_text(text: str) -> str:
    """
    Single cleanup pass over raw LLM output.

    - strips ``` / ```json fences
    - removes trailing commas before } or ]
    - keeps only the outermost {...} span when there is surrounding prose
    """
    if text is None:
        return ""

    cleaned = _FENCE_RE.sub("", text).strip()
    cleaned = _TRAILING_COMMA_RE.sub(r"\1", cleaned)

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end > start:
        cleaned = cleaned[start:end + 1]

    return cleaned


def call_openai_with_backoff(
    *,
    messages,
    model: Optional[str] = None,
    temperature: float = 0.3,
    max_attempts: Optional[int] = None,
):
    """Retries OpenAI calls with exponential backoff to avoid 429 rate-limit errors."""
    attempts = max_attempts or config.LLM_MAX_RETRIES + 1
    model = model or config.LLM_MODEL

    for attempt in range(attempts):
        try:
            return client.chat.completions.create(
                model=model,
                temperature=temperature,
                response_format={"type": "json_object"},
                messages=messages,
            )
        except OpenAIRateLimitError:
            if attempt == attempts - 1:
                raise RateLimitError("LLM provider rate limit exceeded")
            wait = min(20, 2 ** attempt) + random.random()
            logger.warning("Rate limit hit. Retrying in %.1fs...", wait)
            time.sleep(wait)


def generate_json(
    prompt: str,
    schema: Type[T],
    *,
    system: str = DEFAULT_SYSTEM_PROMPT,
    temperature: float = 0.3,
    error_cls: Type[PipelineError] = ParseError,
) -> T:
    """
    Ask the LLM for JSON and validate it against `schema`.

    Args:
        prompt: The user prompt (JSON shape is described inside it)
        schema: Pydantic model the decoded object must satisfy
        system: System prompt
        temperature: Sampling temperature
        error_cls: Error raised on timeout, provider error or invalid JSON

    Returns:
        A validated `schema` instance

    Raises:
        RateLimitError: the provider kept throttling after all retries
        error_cls: any other failure
    """
    messages = [
        {"role": "system", "content": system},
        {"role": "user", "content": f"{prompt}\n\n{JSON_ONLY_INSTRUCTION}"},
    ]

    try:
        response = call_openai_with_backoff(messages=messages, temperature=temperature)
    except (APITimeoutError, APIConnectionError) as e:
        raise error_cls(f"LLM request failed: {e}") from e
    except APIError as e:
        raise error_cls(f"LLM provider error: {e}") from e

    try:
        raw = response.choices[0].message.content
    except (AttributeError, IndexError, TypeError) as e:
        raise error_cls("LLM returned an empty response") from e

    text = sanitize_json_text(raw or "")
    if not text:
        raise error_cls("LLM returned an empty response")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.error("Failed to parse JSON response: %s", text[:500])
        raise error_cls(f"JSON parsing failed: {e.msg}") from e

    if not isinstance(data, dict):
        raise error_cls("LLM response is not a JSON object")

    try:
        return schema.model_validate(data)
    except PydanticValidationError as e:
        logger.error("LLM JSON failed %s validation: %s", schema.__name__, e)
        raise error_cls(f"LLM response failed {schema.__name__} validation") from e
