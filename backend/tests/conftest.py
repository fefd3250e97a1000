"""
Pytest configuration and shared fixtures for all tests.

This file is automatically loaded by pytest before running tests.
It points the backend at an in-memory SQLite database and a dummy OpenAI
key, so no test ever talks to a real database or provider.
"""

import os
import re
import sys

# Add backend directory to path for imports FIRST
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Load the real .env file if it exists (for optional settings like LOG_LEVEL)
from dotenv import load_dotenv
env_path = os.path.join(os.path.dirname(__file__), '..', '.env')
load_dotenv(env_path)

# Tests always run against in-memory SQLite, whatever .env says
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("OPENAI_API_KEY", "test-api-key-for-testing")

import pytest
from sqlmodel import SQLModel

import models  # noqa: F401  (registers tables)
from db import engine


# ============================================================================
# DATABASE - fresh tables and fresh singletons for every test
# ============================================================================

@pytest.fixture(autouse=True)
def fresh_database():
    """Recreate all tables and reset process-wide singletons around each test."""
    from services.candidate_pipeline import reset_candidate_pipeline
    from services.processing_status import reset_processing_tracker
    from services.vector_index import reset_vector_index

    SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    reset_processing_tracker()
    reset_vector_index()
    reset_candidate_pipeline()

    yield engine

    reset_candidate_pipeline()
    reset_vector_index()
    reset_processing_tracker()
    SQLModel.metadata.drop_all(engine)


# ============================================================================
# FAKE CAPABILITIES
# ============================================================================

# Small fixed vocabulary; each word is one embedding dimension.
VOCABULARY = [
    "go", "golang", "kubernetes", "backend", "senior", "engineer",
    "docker", "microservices", "grpc", "postgres",
    "react", "css", "html", "javascript", "frontend", "figma", "typescript",
    "python", "django", "ml",
]


def bag_of_words_embedding(text: str) -> list:
    """
    Deterministic stand-in for the embedding provider.

    Counts vocabulary words; the trailing constant dimension keeps every
    vector non-zero.
    """
    tokens = re.findall(r"[a-z]+", (text or "").lower())
    return [float(tokens.count(word)) for word in VOCABULARY] + [0.1]


@pytest.fixture
def fake_embedder():
    """Embedding function with predictable similarity between texts."""
    return bag_of_words_embedding
