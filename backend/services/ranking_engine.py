# backend/services/ranking_engine.py
"""
Ranking Engine

Orders a job's candidates by semantic similarity, blended with their
portfolio score when a completed portfolio analysis exists.

Score scales. Everything is brought to [0, 1] before it is combined:

    similarity          cosine from the vector index, clamped to [0, 1]
    portfolio           Portfolio.overall_score (0-10) / 10
    Candidate.score     similarity * 100 (0-100), written only on request

    overall = 0.6 * similarity + 0.4 * portfolio    (analysed candidates)
    overall = similarity                            (everyone else)
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional

from sqlmodel import Session, select

from db import engine
from models import Candidate, Job, Portfolio, Resume, utcnow
from services.embedding_service import generate_embedding
from services.errors import NotFoundError, ValidationError
from services.schemas import RankedCandidate
from services.vector_index import (
    VectorIndex,
    get_vector_index,
    job_vector_id,
    parse_vector_id,
)

logger = logging.getLogger(__name__)

SIMILARITY_WEIGHT = 0.6
PORTFOLIO_WEIGHT = 0.4

DEFAULT_TOP_K = 50


def _clamp_unit(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def normalize_similarity(raw_similarity: float) -> float:
    """Cosine similarity in [-1, 1] -> [0, 1]. Opposed vectors count as no match."""
    return _clamp_unit(raw_similarity)


def normalize_portfolio_score(overall_score: Optional[float]) -> Optional[float]:
    """Portfolio overall score on 0-10 -> [0, 1]."""
    if overall_score is None:
        return None
    return _clamp_unit(overall_score / 10.0)


def similarity_to_candidate_score(similarity: float) -> float:
    """[0, 1] similarity -> the 0-100 value persisted on Candidate.score."""
    return round(_clamp_unit(similarity) * 100.0, 2)


def candidate_score_to_similarity(score: Optional[float]) -> Optional[float]:
    if score is None:
        return None
    return _clamp_unit(score / 100.0)


def blend_scores(similarity: float, portfolio_score: Optional[float]) -> float:
    """Combine normalized similarity and portfolio score; result stays in [0, 1]."""
    similarity = _clamp_unit(similarity)
    if portfolio_score is None:
        return similarity
    return _clamp_unit(SIMILARITY_WEIGHT * similarity + PORTFOLIO_WEIGHT * _clamp_unit(portfolio_score))


def job_embedding_text(job: Job) -> str:
    return f"{job.title}\n\n{job.description}".strip()


class RankingEngine:
    """
    Ranks candidates for a job.

    Capabilities are injectable for testing:
        index:    VectorIndex (or anything with its query/upsert methods)
        embedder: callable text -> vector
    """

    def __init__(
        self,
        index: Optional[VectorIndex] = None,
        embedder: Optional[Callable[[str], List[float]]] = None,
        bind=None,
    ):
        self.index = index or get_vector_index()
        self.embedder = embedder or generate_embedding
        self.engine = bind if bind is not None else engine

    def ensure_job_embedding(self, session: Session, job: Job) -> List[float]:
        """
        Return the job's embedding, generating and storing it on first use.

        The vector is also upserted as "job-<id>" so it can be looked up by id.
        """
        if job.embedding:
            return list(job.embedding)

        vector = self.embedder(job_embedding_text(job))
        job.embedding = vector
        job.updated_at = utcnow()
        session.add(job)
        session.commit()
        session.refresh(job)

        self.index.upsert(job_vector_id(job.id), vector, {"jobId": job.id, "type": "job"})
        logger.info("Generated job embedding for %s (%d dimensions)", job.id, len(vector))
        return vector

    def rank(
        self,
        job_id: str,
        candidate_ids: Optional[Iterable[str]] = None,
        top_k: int = DEFAULT_TOP_K,
        threshold: float = 0.0,
        update_scores: bool = False,
    ) -> List[RankedCandidate]:
        """
        Rank the job's candidates.

        Args:
            job_id: Job to rank for
            candidate_ids: Restrict the result to these candidates
            top_k: How many resume vectors to pull from the index
            threshold: Minimum similarity in [0, 1]; lower entries are dropped
            update_scores: Write the similarity through to Candidate.score

        Returns:
            Ranked candidates, best first; ties broken by candidate id

        Raises:
            NotFoundError: job does not exist
        """
        with Session(self.engine) as session:
            job = session.get(Job, job_id)
            if job is None:
                raise NotFoundError("Job not found")

            vector = self.ensure_job_embedding(session, job)
            return self._rank_vector(
                session,
                vector,
                {"jobId": job_id, "type": "resume"},
                top_k=top_k,
                threshold=threshold,
                candidate_ids=candidate_ids,
                update_scores=update_scores,
            )

    def match_description(
        self,
        job_description: str,
        top_k: int = 10,
        threshold: float = 0.0,
        job_id: Optional[str] = None,
        update_scores: bool = False,
    ) -> List[RankedCandidate]:
        """Rank stored resumes against free text instead of a saved job."""
        if not job_description or not job_description.strip():
            raise ValidationError("jobDescription is required and must be a string")

        vector = self.embedder(job_description)
        metadata_filter = {"type": "resume"}
        if job_id:
            metadata_filter["jobId"] = job_id

        with Session(self.engine) as session:
            return self._rank_vector(
                session,
                vector,
                metadata_filter,
                top_k=top_k,
                threshold=threshold,
                candidate_ids=None,
                update_scores=update_scores and bool(job_id),
            )

    def _rank_vector(
        self,
        session: Session,
        vector: List[float],
        metadata_filter: Dict[str, str],
        top_k: int,
        threshold: float,
        candidate_ids: Optional[Iterable[str]],
        update_scores: bool,
    ) -> List[RankedCandidate]:
        if not 0.0 <= threshold <= 1.0:
            raise ValidationError("threshold must be between 0 and 1")

        allowed = set(candidate_ids) if candidate_ids is not None else None
        matches = self.index.query(vector, top_k, filter=metadata_filter)

        # best resume per candidate; matches arrive highest first
        best: Dict[str, Dict] = {}
        for match in matches:
            kind, resume_id = parse_vector_id(match.id)
            if kind != "resume":
                continue

            candidate_id = match.metadata.get("candidateId")
            if not candidate_id:
                resume = session.get(Resume, resume_id)
                if resume is None:
                    logger.warning("Could not find resume %s for vector %s", resume_id, match.id)
                    continue
                candidate_id = resume.candidate_id

            if allowed is not None and candidate_id not in allowed:
                continue
            if candidate_id in best:
                continue

            similarity = normalize_similarity(match.score)
            if similarity < threshold:
                continue

            best[candidate_id] = {
                "resume_id": resume_id,
                "similarity": similarity,
                "metadata": match.metadata,
            }

        if not best:
            return []

        candidates = {
            c.id: c for c in session.exec(
                select(Candidate).where(Candidate.id.in_(list(best.keys())))
            ).all()
        }
        portfolios = {
            p.candidate_id: p for p in session.exec(
                select(Portfolio).where(Portfolio.candidate_id.in_(list(best.keys())))
            ).all()
        }

        ranked: List[RankedCandidate] = []
        for candidate_id, entry in best.items():
            candidate = candidates.get(candidate_id)
            if candidate is None:
                logger.warning("Vector for missing candidate %s, skipping", candidate_id)
                continue

            portfolio = portfolios.get(candidate_id)
            portfolio_score = None
            if portfolio is not None and portfolio.analyzed_at is not None:
                portfolio_score = normalize_portfolio_score(portfolio.overall_score)

            ranked.append(RankedCandidate(
                candidateId=candidate_id,
                resumeId=entry["resume_id"],
                score=round(blend_scores(entry["similarity"], portfolio_score), 6),
                similarity=round(entry["similarity"], 6),
                portfolioScore=portfolio_score,
                metadata=entry["metadata"],
            ))

            if update_scores:
                candidate.score = similarity_to_candidate_score(entry["similarity"])
                candidate.updated_at = utcnow()
                session.add(candidate)

        if update_scores:
            session.commit()

        ranked.sort(key=lambda r: (-r.score, r.candidateId))
        logger.info("Ranked %d candidates (threshold: %.2f)", len(ranked), threshold)
        return ranked
