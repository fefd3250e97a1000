# backend/models.py
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import uuid4

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class Job(SQLModel, table=True):
    """
    A position recruiters upload resumes against.

    The embedding is attached lazily the first time the job is ranked.
    """
    __tablename__ = "jobs"

    id: str = Field(default_factory=new_id, primary_key=True)
    title: str
    description: str = Field(default="")

    embedding: Optional[List[float]] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)


class Candidate(SQLModel, table=True):
    """
    One applicant for one job.

    `score` is the latest semantic match on a 0-100 scale. It is a cache of
    the last ranking run and is only written when ranking is asked to.
    """
    __tablename__ = "candidates"

    id: str = Field(default_factory=new_id, primary_key=True)
    job_id: str = Field(foreign_key="jobs.id", index=True)

    name: str
    email: str = Field(index=True)
    phone: Optional[str] = None

    skills: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    experience: str = Field(default="")
    education: str = Field(default="")

    score: Optional[float] = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)


class Resume(SQLModel, table=True):
    """
    Stores one uploaded resume and its structured extraction.

    A candidate keeps every resume it ever uploaded; the latest one wins.
    """
    __tablename__ = "resumes"

    id: str = Field(default_factory=new_id, primary_key=True)
    candidate_id: str = Field(foreign_key="candidates.id", index=True)

    file_url: str
    parsed_text: str = Field(default="")
    parsed_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    uploaded_at: datetime = Field(default_factory=utcnow, nullable=False)


class Portfolio(SQLModel, table=True):
    """
    External evidence about a candidate and the result of analysing it.

    `analyzed_at` stays NULL until a full analysis has been saved.
    """
    __tablename__ = "portfolios"

    id: str = Field(default_factory=new_id, primary_key=True)
    candidate_id: str = Field(foreign_key="candidates.id", unique=True, index=True)

    github: Optional[str] = None
    linkedin: Optional[str] = None
    website: Optional[str] = None

    overall_score: Optional[float] = None      # 0-10
    resume_alignment: Optional[float] = None   # 0-10
    recommendation: Optional[str] = None
    technical_level: Optional[str] = None
    summary: Optional[str] = None

    strengths: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    weaknesses: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    concerns: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    standout_qualities: List[str] = Field(default_factory=list, sa_column=Column(JSON))

    # raw analysis so we don't lose anything
    analysis_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    analyzed_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)


class Transcript(SQLModel, table=True):
    __tablename__ = "transcripts"

    id: str = Field(default_factory=new_id, primary_key=True)
    candidate_id: str = Field(foreign_key="candidates.id", index=True)
    file_url: str
    content: str = Field(default="")
    uploaded_at: datetime = Field(default_factory=utcnow, nullable=False)


class VectorEntry(SQLModel, table=True):
    """
    One stored vector of the similarity index.

    Ids are caller-assigned and encode the entity kind, e.g. "resume-<id>".
    """
    __tablename__ = "vector_entries"

    namespace: str = Field(primary_key=True)
    vector_id: str = Field(primary_key=True)

    values: List[float] = Field(sa_column=Column(JSON, nullable=False))
    meta: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column("metadata", JSON))

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)
