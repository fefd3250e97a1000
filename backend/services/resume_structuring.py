"""
Resume Structuring Service

Turns raw resume text into a structured candidate record with one LLM call.

Guarantees on every returned record:
- `name` is never empty ("Unknown Candidate" when it can't be found)
- `email` always looks like local@domain.tld; missing or malformed addresses
  are replaced by a unique placeholder
- skills are de-duplicated (case-insensitive) in their original order
"""

import logging
import re
import time
from typing import List, Optional
from uuid import uuid4

import config
from prompts.recruiting_prompts import PromptTemplates
from services.errors import ParseError, ValidationError
from services.llm_client import generate_json
from services.schemas import ParsedResumeData

logger = logging.getLogger(__name__)

UNKNOWN_CANDIDATE_NAME = "Unknown Candidate"
PLACEHOLDER_DOMAIN = "placeholder.com"

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def is_valid_email(email: Optional[str]) -> bool:
    return bool(email) and bool(EMAIL_RE.match(email))


def generate_placeholder_email() -> str:
    """Generate a unique placeholder address for resumes without one."""
    millis = int(time.time() * 1000)
    suffix = uuid4().hex[:10]
    return f"noemail+{millis}-{suffix}@{PLACEHOLDER_DOMAIN}"


def ensure_valid_email(email: Optional[str]) -> str:
    """Return `email` if it is well formed, otherwise a fresh placeholder."""
    if email:
        email = email.strip()
    if not is_valid_email(email):
        return generate_placeholder_email()
    return email


def _dedupe_skills(skills: List[str]) -> List[str]:
    seen = set()
    result = []
    for skill in skills:
        key = skill.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(skill)
    return result


def structure_resume(resume_text: str) -> ParsedResumeData:
    """
    Extract structured candidate data from resume text.

    Args:
        resume_text: Raw text extracted from an uploaded resume

    Returns:
        ParsedResumeData with name/email guarantees applied and rawText set

    Raises:
        ValidationError: resume text is empty
        ParseError: the LLM output could not be decoded or validated
        RateLimitError: the LLM provider throttled us
    """
    if not resume_text or not resume_text.strip():
        raise ValidationError("Resume text cannot be empty")

    snippet = resume_text[:config.MAX_RESUME_CHARS]

    parsed = generate_json(
        PromptTemplates.resume_structuring(snippet),
        ParsedResumeData,
        system=PromptTemplates.RESUME_SYSTEM,
        temperature=0.2,
        error_cls=ParseError,
    )

    name = parsed.name or UNKNOWN_CANDIDATE_NAME
    email = ensure_valid_email(parsed.email)
    if email != parsed.email:
        logger.info("No usable email for %s, using placeholder %s", name, email)

    return parsed.model_copy(update={
        "name": name,
        "email": email,
        "skills": _dedupe_skills(parsed.skills),
        "rawText": resume_text,
    })
