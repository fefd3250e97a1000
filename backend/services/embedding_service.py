"""
Embedding Service for Semantic Matching
Generates and compares embeddings using OpenAI's text-embedding-3-small model.
"""

import logging
import math
import random
import time
from typing import Any, List

from openai import OpenAI, APIConnectionError, APITimeoutError, InternalServerError, APIError
from openai import RateLimitError as OpenAIRateLimitError

import config
from services.errors import EmbeddingError, RateLimitError, ValidationError

logger = logging.getLogger(__name__)

# Initialize OpenAI client
client = OpenAI(
    api_key=config.OPENAI_API_KEY,
    timeout=config.EMBEDDING_TIMEOUT_SECONDS,
    max_retries=0,
)

# Model for embeddings - text-embedding-3-small produces 1536 dimensions
EMBEDDING_MODEL = config.EMBEDDING_MODEL

_TRANSIENT_ERRORS = (APIConnectionError, APITimeoutError, InternalServerError, OpenAIRateLimitError)


def _coerce_vector(item: Any) -> List[float]:
    """
    Normalize one embedding entry to a list of floats.

    Providers hand back either a bare array, or an object carrying the array
    under `embedding` / `values`.
    """
    if isinstance(item, dict):
        values = item.get("values", item.get("embedding"))
    elif isinstance(item, (list, tuple)):
        values = item
    else:
        values = getattr(item, "embedding", None)
        if values is None:
            values = getattr(item, "values", None)

    if not isinstance(values, (list, tuple)) or not values:
        raise EmbeddingError("Failed to generate embeddings: Invalid embedding format")

    try:
        return [float(v) for v in values]
    except (TypeError, ValueError) as e:
        raise EmbeddingError("Failed to generate embeddings: Invalid embedding format") from e


def generate_embedding(text: str) -> List[float]:
    """
    Generate embedding for text using OpenAI's text-embedding-3-small model.

    Transient provider failures are retried EMBEDDING_MAX_RETRIES times with
    exponential backoff; a call that still fails is treated as failed.

    Args:
        text: The text to generate embedding for

    Returns:
        List of 1536 floats representing the embedding vector

    Raises:
        ValidationError: text is empty or whitespace
        RateLimitError: the provider kept returning 429
        EmbeddingError: no embedding or a malformed payload came back
    """
    if not text or not text.strip():
        raise ValidationError("Text cannot be empty")

    attempts = config.EMBEDDING_MAX_RETRIES + 1

    for attempt in range(attempts):
        try:
            response = client.embeddings.create(
                model=EMBEDDING_MODEL,
                input=text.strip()
            )
            break
        except _TRANSIENT_ERRORS as e:
            if attempt == attempts - 1:
                if isinstance(e, OpenAIRateLimitError):
                    raise RateLimitError("Embedding provider rate limit exceeded") from e
                raise EmbeddingError(f"Embedding provider unavailable: {e}") from e
            wait = min(8, 2 ** attempt) * 0.5 + random.random() * 0.1
            logger.warning("Embedding call failed (%s). Retrying in %.1fs...", type(e).__name__, wait)
            time.sleep(wait)
        except APIError as e:
            raise EmbeddingError(f"Embedding provider error: {e}") from e

    data = getattr(response, "data", None)
    if not data:
        raise EmbeddingError("Failed to generate embeddings: No embeddings returned")

    return _coerce_vector(data[0])


def calculate_similarity(embedding1: List[float], embedding2: List[float]) -> float:
    """
    Calculate cosine similarity between two embedding vectors.

    Args:
        embedding1: First embedding vector
        embedding2: Second embedding vector

    Returns:
        Cosine similarity score between -1 and 1 (higher = more similar)
    """
    if len(embedding1) != len(embedding2):
        raise ValueError("Embeddings must have the same dimension")

    # Calculate dot product
    dot_product = sum(a * b for a, b in zip(embedding1, embedding2))

    # Calculate magnitudes
    magnitude1 = math.sqrt(sum(a * a for a in embedding1))
    magnitude2 = math.sqrt(sum(b * b for b in embedding2))

    # Avoid division by zero
    if magnitude1 == 0 or magnitude2 == 0:
        return 0.0

    return dot_product / (magnitude1 * magnitude2)
