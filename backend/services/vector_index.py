"""
Vector Index

Nearest-neighbour store for resume and job embeddings, kept in the same
database as everything else. Vectors live in the `vector_entries` table as
JSON arrays and similarity is computed with cosine similarity, the same way
answers were compared in the embedding service.

Ids are caller-assigned and must encode the entity kind:
    "resume-<resumeId>", "job-<jobId>"
Downstream consumers parse the prefix back with `parse_vector_id`.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

import config
from db import engine
from models import VectorEntry, utcnow
from services.embedding_service import calculate_similarity
from services.errors import ValidationError, VectorIndexError

logger = logging.getLogger(__name__)

# Upper bound on results per query to keep scans cheap
MAX_TOP_K = 100

RESUME_PREFIX = "resume-"
JOB_PREFIX = "job-"


def resume_vector_id(resume_id: str) -> str:
    return f"{RESUME_PREFIX}{resume_id}"


def job_vector_id(job_id: str) -> str:
    return f"{JOB_PREFIX}{job_id}"


def parse_vector_id(vector_id: str) -> Tuple[Optional[str], str]:
    """
    Split a vector id into (kind, entity_id).

    Returns (None, vector_id) for ids without a known prefix.
    """
    for kind, prefix in (("resume", RESUME_PREFIX), ("job", JOB_PREFIX)):
        if vector_id.startswith(prefix) and len(vector_id) > len(prefix):
            return kind, vector_id[len(prefix):]
    return None, vector_id


@dataclass
class VectorMatch:
    id: str
    score: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class VectorIndex:
    """
    Upsert / query / delete over stored embeddings.

    All store failures surface as VectorIndexError.
    """

    def __init__(self, namespace: Optional[str] = None, bind=None):
        self.namespace = namespace or config.VECTOR_NAMESPACE
        self.engine = bind if bind is not None else engine

    def upsert(self, vector_id: str, values: List[float], metadata: Optional[Dict[str, Any]] = None) -> None:
        """Insert or overwrite one vector."""
        self.upsert_many([(vector_id, values, metadata)])

    def upsert_many(
        self,
        entries: Iterable[Tuple[str, List[float], Optional[Dict[str, Any]]]],
        session: Optional[Session] = None,
    ) -> None:
        """
        Insert or overwrite several vectors in one transaction.

        When `session` is given the entries join the caller's transaction and
        the caller commits.
        """
        entries = list(entries)
        for vector_id, values, _ in entries:
            if not vector_id:
                raise ValidationError("Vector id is required")
            if not values:
                raise ValidationError(f"Vector {vector_id} has no values")

        if session is not None:
            self._stage(session, entries)
            return

        try:
            with Session(self.engine) as db_session:
                self._stage(db_session, entries)
                db_session.commit()
        except SQLAlchemyError as e:
            raise VectorIndexError(f"Vector upsert failed: {e}") from e

        logger.debug("Upserted %d vectors into %s", len(entries), self.namespace)

    def _stage(self, session: Session, entries) -> None:
        for vector_id, values, metadata in entries:
            existing = session.get(VectorEntry, (self.namespace, vector_id))
            if existing:
                existing.values = [float(v) for v in values]
                existing.meta = dict(metadata or {})
                existing.updated_at = utcnow()
                session.add(existing)
            else:
                session.add(VectorEntry(
                    namespace=self.namespace,
                    vector_id=vector_id,
                    values=[float(v) for v in values],
                    meta=dict(metadata or {}),
                ))

    def query(
        self,
        values: List[float],
        top_k: int,
        filter: Optional[Dict[str, Any]] = None,
    ) -> List[VectorMatch]:
        """
        Find the stored vectors closest to `values`.

        Args:
            values: Query vector
            top_k: Maximum number of matches (>= 1, capped at MAX_TOP_K)
            filter: Exact-match metadata filter, e.g. {"jobId": "...", "type": "resume"}

        Returns:
            Matches sorted by cosine similarity, highest first. Equal scores
            keep insertion order.
        """
        if not values:
            raise ValidationError("Query vector is required")
        if top_k is None or top_k < 1:
            raise ValidationError("top_k must be at least 1")
        top_k = min(top_k, MAX_TOP_K)

        try:
            with Session(self.engine) as db_session:
                rows = db_session.exec(
                    select(VectorEntry)
                    .where(VectorEntry.namespace == self.namespace)
                    .order_by(VectorEntry.created_at, VectorEntry.vector_id)
                ).all()
                candidates = [(row.vector_id, list(row.values or []), dict(row.meta or {})) for row in rows]
        except SQLAlchemyError as e:
            raise VectorIndexError(f"Vector query failed: {e}") from e

        matches: List[VectorMatch] = []
        for vector_id, stored, metadata in candidates:
            if filter and any(metadata.get(k) != v for k, v in filter.items()):
                continue
            if len(stored) != len(values):
                logger.warning(
                    "Skipping vector %s: dimension %d != query dimension %d",
                    vector_id, len(stored), len(values),
                )
                continue
            score = calculate_similarity(values, stored)
            matches.append(VectorMatch(id=vector_id, score=score, metadata=metadata))

        # sort() is stable, so ties stay in insertion order
        matches.sort(key=lambda m: m.score, reverse=True)
        return matches[:top_k]

    def fetch(self, vector_id: str) -> Optional[VectorMatch]:
        try:
            with Session(self.engine) as db_session:
                row = db_session.get(VectorEntry, (self.namespace, vector_id))
                if row is None:
                    return None
                return VectorMatch(id=row.vector_id, score=1.0, metadata=dict(row.meta or {}))
        except SQLAlchemyError as e:
            raise VectorIndexError(f"Vector fetch failed: {e}") from e

    def delete_one(self, vector_id: str) -> None:
        """Delete one vector. Missing ids are ignored."""
        try:
            with Session(self.engine) as db_session:
                row = db_session.get(VectorEntry, (self.namespace, vector_id))
                if row is None:
                    logger.debug("Vector %s not found in %s, nothing to delete", vector_id, self.namespace)
                    return
                db_session.delete(row)
                db_session.commit()
        except SQLAlchemyError as e:
            raise VectorIndexError(f"Vector delete failed for {vector_id}: {e}") from e

    def delete_many(self, vector_ids: Iterable[str]) -> List[str]:
        """
        Best-effort bulk delete.

        Every id is attempted even after a failure.

        Returns:
            The ids that could not be deleted
        """
        failed: List[str] = []
        for vector_id in vector_ids:
            try:
                self.delete_one(vector_id)
                logger.info("Deleted embedding from vector index: %s", vector_id)
            except VectorIndexError as e:
                logger.error("Error deleting %s from vector index: %s", vector_id, e)
                failed.append(vector_id)
        return failed


# Singleton instance
_index_instance: Optional[VectorIndex] = None


def get_vector_index() -> VectorIndex:
    """Get or create the shared VectorIndex for the configured namespace."""
    global _index_instance
    if _index_instance is None:
        _index_instance = VectorIndex()
    return _index_instance


def reset_vector_index() -> None:
    """Reset the singleton instance (useful for testing)."""
    global _index_instance
    _index_instance = None
