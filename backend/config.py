"""
Centralized configuration: all settings loaded from environment variables
with sensible defaults for local development.

Values are read once at import time. Tests override them through the
environment before the backend modules are imported (see tests/conftest.py).
"""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

# Load .env from this file's directory first, then any .env in the cwd
load_dotenv(dotenv_path=Path(__file__).parent / ".env")
load_dotenv()

# ── Database ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv("DATABASE_URL")

# ── OpenAI ──────────────────────────────────────────────────────────────────
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")

LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))
LLM_MAX_RETRIES = int(os.getenv("LLM_MAX_RETRIES", "4"))
EMBEDDING_TIMEOUT_SECONDS = float(os.getenv("EMBEDDING_TIMEOUT_SECONDS", "30"))
EMBEDDING_MAX_RETRIES = int(os.getenv("EMBEDDING_MAX_RETRIES", "2"))

# ── Vector index ────────────────────────────────────────────────────────────
VECTOR_NAMESPACE = os.getenv("VECTOR_NAMESPACE", "candidates-job-matching")
VECTOR_INDEX_TIMEOUT_SECONDS = float(os.getenv("VECTOR_INDEX_TIMEOUT_SECONDS", "10"))

# ── GitHub ──────────────────────────────────────────────────────────────────
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN")
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")
GITHUB_TIMEOUT_SECONDS = float(os.getenv("GITHUB_TIMEOUT_SECONDS", "30"))
GITHUB_MAX_PAGES = int(os.getenv("GITHUB_MAX_PAGES", "3"))

# ── Portfolio analysis ──────────────────────────────────────────────────────
PORTFOLIO_TOP_REPOS = int(os.getenv("PORTFOLIO_TOP_REPOS", "5"))
PORTFOLIO_CONCURRENCY = int(os.getenv("PORTFOLIO_CONCURRENCY", "3"))

# ── Processing status ───────────────────────────────────────────────────────
STATUS_TTL_SECONDS = float(os.getenv("STATUS_TTL_SECONDS", "3600"))

# ── CORS ────────────────────────────────────────────────────────────────────
# Comma-separated origins, e.g. "http://localhost:3000,https://app.example.com"
_raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000")
CORS_ORIGINS: List[str] = [o.strip() for o in _raw_origins.split(",") if o.strip()]

# ── Uploads ─────────────────────────────────────────────────────────────────
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(100 * 1024 * 1024)))
ALLOWED_EXTENSIONS = {".pdf", ".docx", ".zip"}

# ── Logging ─────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# ── LLM limits ──────────────────────────────────────────────────────────────
MAX_RESUME_CHARS = int(os.getenv("MAX_RESUME_CHARS", "28000"))
MAX_README_CHARS = int(os.getenv("MAX_README_CHARS", "3000"))
