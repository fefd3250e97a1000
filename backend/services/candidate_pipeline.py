# backend/services/candidate_pipeline.py
"""
Candidate Pipeline

Drives one upload batch for a job from raw resume text to ranked,
portfolio-scored candidates:

    parsing_resumes       -> structure each resume with the LLM
    creating_candidates   -> match against existing candidates by email
    generating_embeddings -> job vector first, then one vector per resume;
                             candidate, resume, portfolio URLs and vector are
                             written in one transaction per resume
    semantic_matching     -> rank the job and write Candidate.score
    portfolio_analysis    -> analyse the top 10% (1..10) with a GitHub URL
    complete

Every resume ends up with an explicit ItemOutcome (success / skipped /
failed). Only a failure that affects the whole batch (e.g. the job
embedding) aborts the run and moves the tracker to `error`.
"""

import asyncio
import logging
import math
from typing import Callable, List, Literal, Optional, Tuple

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

import config
from db import engine
from models import Candidate, Job, Portfolio, Resume, Transcript, utcnow
from services.embedding_service import generate_embedding
from services.errors import (
    EmbeddingError,
    NotFoundError,
    ParseError,
    PipelineError,
    RateLimitError,
    ValidationError,
    VectorIndexError,
)
from services.portfolio_analyzer import PortfolioAnalyzer
from services.processing_status import (
    ProcessingStatusTracker,
    Stage,
    get_processing_tracker,
)
from services.ranking_engine import RankingEngine
from services.resume_structuring import structure_resume
from services.schemas import (
    ParsedResumeData,
    PortfolioAnalysisInput,
    PortfolioAnalysisResult,
    RankedCandidate,
    ResumeData,
)
from services.vector_index import MAX_TOP_K, VectorIndex, get_vector_index, resume_vector_id

logger = logging.getLogger(__name__)

# Portfolio analysis after an upload covers this share of scored candidates
TOP_CANDIDATE_SHARE = 0.1
MIN_AUTO_ANALYSES = 1
MAX_AUTO_ANALYSES = 10

# Hard cap on concurrent portfolio analyses
MAX_ANALYSIS_CONCURRENCY = 5


class ResumeDocument(BaseModel):
    """
    One resume of an upload batch, already converted to text.

    `error` is set when the file could not be read; the item is skipped.
    """
    filename: str
    text: str = ""
    file_url: str = ""
    error: Optional[str] = None


class ItemOutcome(BaseModel):
    filename: str
    status: Literal["success", "skipped", "failed"]
    candidateId: Optional[str] = None
    resumeId: Optional[str] = None
    reason: Optional[str] = None


class AnalysisSummary(BaseModel):
    analyzed: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = []


class BatchResult(BaseModel):
    jobId: str
    analyzed: int = 0
    skipped: int = 0
    failed: int = 0
    errors: List[str] = []
    outcomes: List[ItemOutcome] = []
    matches: List[RankedCandidate] = []
    portfolio: Optional[AnalysisSummary] = None


def auto_analysis_count(scored_candidates: int) -> int:
    """How many top candidates get a portfolio analysis after an upload."""
    if scored_candidates <= 0:
        return 0
    wanted = math.ceil(scored_candidates * TOP_CANDIDATE_SHARE)
    return max(MIN_AUTO_ANALYSES, min(MAX_AUTO_ANALYSES, wanted))


def resume_data_for(resume: Optional[Resume]) -> ResumeData:
    """Build the analyzer's resume evidence from a stored resume."""
    if resume is None:
        return ResumeData()
    parsed = resume.parsed_data or {}
    return ResumeData(
        skills=parsed.get("skills") or [],
        experience=parsed.get("experience") or [],
        projects=parsed.get("projects") or [],
        education=parsed.get("education") or "",
        rawText=resume.parsed_text or parsed.get("rawText") or "",
    )


def _latest_resume(session: Session, candidate_id: str) -> Optional[Resume]:
    return session.exec(
        select(Resume)
        .where(Resume.candidate_id == candidate_id)
        .order_by(Resume.uploaded_at.desc())
    ).first()


def _portfolio_for(session: Session, candidate_id: str) -> Optional[Portfolio]:
    return session.exec(
        select(Portfolio).where(Portfolio.candidate_id == candidate_id)
    ).first()


class CandidatePipeline:
    """
    Upload, rank and portfolio-analysis orchestration.

    Capabilities are injectable for testing:
        structurer: text -> ParsedResumeData
        embedder:   text -> vector
        index:      VectorIndex
        analyzer:   object with `analyze(PortfolioAnalysisInput)`
        tracker:    ProcessingStatusTracker
    """

    def __init__(
        self,
        structurer: Optional[Callable[[str], ParsedResumeData]] = None,
        embedder: Optional[Callable[[str], List[float]]] = None,
        index: Optional[VectorIndex] = None,
        analyzer=None,
        tracker: Optional[ProcessingStatusTracker] = None,
        bind=None,
    ):
        self.structurer = structurer or structure_resume
        self.embedder = embedder or generate_embedding
        self.index = index or get_vector_index()
        self.analyzer = analyzer or PortfolioAnalyzer()
        self.tracker = tracker or get_processing_tracker()
        self.engine = bind if bind is not None else engine
        self.ranking = RankingEngine(index=self.index, embedder=self.embedder, bind=self.engine)

    # ================== UPLOAD BATCH ==================

    async def process_resume_batch(
        self,
        job_id: str,
        documents: List[ResumeDocument],
        analyze_top: bool = True,
    ) -> BatchResult:
        """
        Run one upload batch for `job_id`.

        Raises:
            NotFoundError: job does not exist
            PipelineError: a batch-level failure; the tracker is left at `error`
        """
        with Session(self.engine) as session:
            if session.get(Job, job_id) is None:
                raise NotFoundError("Job not found")

        async with self.tracker.exclusive_async(job_id):
            self.tracker.start_run(job_id, f"Uploading {len(documents)} resume(s)")
            try:
                return await self._run_batch(job_id, documents, analyze_top)
            except PipelineError as e:
                self.tracker.fail(job_id, e.message)
                raise
            except Exception as e:
                logger.exception("Unexpected failure processing batch for job %s", job_id)
                self.tracker.fail(job_id, str(e) or e.__class__.__name__)
                raise

    async def _run_batch(
        self,
        job_id: str,
        documents: List[ResumeDocument],
        analyze_top: bool,
    ) -> BatchResult:
        total = len(documents)
        outcomes: List[ItemOutcome] = []

        # ---- parsing_resumes ----
        parsed_items: List[Tuple[ResumeDocument, ParsedResumeData]] = []
        for i, document in enumerate(documents):
            self.tracker.update(job_id, Stage.PARSING_RESUMES, f"Parsing {document.filename}", i, total)
            if document.error:
                logger.warning("Skipping %s: %s", document.filename, document.error)
                outcomes.append(ItemOutcome(
                    filename=document.filename,
                    status="skipped",
                    reason=f"{document.filename}: {document.error}",
                ))
                continue
            try:
                parsed = await asyncio.to_thread(self.structurer, document.text)
            except (ParseError, ValidationError) as e:
                logger.warning("Skipping %s: %s", document.filename, e.message)
                outcomes.append(ItemOutcome(
                    filename=document.filename,
                    status="skipped",
                    reason=f"{document.filename}: {e.message}",
                ))
                continue
            except RateLimitError as e:
                logger.warning("Rate limited while parsing %s", document.filename)
                outcomes.append(ItemOutcome(
                    filename=document.filename,
                    status="failed",
                    reason=f"{document.filename}: {e.message}",
                ))
                continue
            parsed_items.append((document, parsed))

        # ---- creating_candidates ----
        self.tracker.update(
            job_id, Stage.CREATING_CANDIDATES,
            f"Creating {len(parsed_items)} candidate record(s)", 0, len(parsed_items),
        )
        with Session(self.engine) as session:
            emails = [parsed.email for _, parsed in parsed_items]
            existing = {
                c.email: c.id for c in session.exec(
                    select(Candidate)
                    .where(Candidate.job_id == job_id)
                    .where(Candidate.email.in_(emails))
                ).all()
            } if emails else {}

        # ---- generating_embeddings ----
        if parsed_items:
            self.tracker.update(job_id, Stage.GENERATING_EMBEDDINGS, "Generating job embedding")
            await asyncio.to_thread(self._ensure_job_vector, job_id)

        for i, (document, parsed) in enumerate(parsed_items):
            self.tracker.update(
                job_id, Stage.GENERATING_EMBEDDINGS,
                f"Embedding {document.filename}", i, len(parsed_items),
            )
            try:
                vector = await asyncio.to_thread(self.embedder, self._embedding_text(document, parsed))
            except (EmbeddingError, ValidationError, RateLimitError) as e:
                logger.warning("Embedding failed for %s: %s", document.filename, e.message)
                outcomes.append(ItemOutcome(
                    filename=document.filename,
                    status="failed",
                    reason=f"{document.filename}: {e.message}",
                ))
                continue

            outcome = self._persist_item(job_id, document, parsed, vector, existing.get(parsed.email))
            if outcome.status == "success":
                existing[parsed.email] = outcome.candidateId
            outcomes.append(outcome)

        succeeded = [o for o in outcomes if o.status == "success"]
        result = BatchResult(
            jobId=job_id,
            analyzed=len(succeeded),
            skipped=sum(1 for o in outcomes if o.status == "skipped"),
            failed=sum(1 for o in outcomes if o.status == "failed"),
            errors=[o.reason for o in outcomes if o.status != "success" and o.reason],
            outcomes=outcomes,
        )

        if not succeeded:
            self.tracker.complete(job_id, f"No resumes processed ({result.skipped} skipped, {result.failed} failed)")
            return result

        # ---- semantic_matching ----
        self.tracker.update(job_id, Stage.SEMANTIC_MATCHING, "Ranking candidates against the job")
        result.matches = await asyncio.to_thread(
            self.ranking.rank, job_id, None, MAX_TOP_K, 0.0, True
        )

        # ---- portfolio_analysis ----
        if analyze_top:
            top_n = auto_analysis_count(len(result.matches))
            self.tracker.update(
                job_id, Stage.PORTFOLIO_ANALYSIS,
                f"Analyzing portfolios of the top {top_n} candidate(s)",
            )
            result.portfolio = await self.analyze_top_candidates(job_id, top_n=top_n)

        self.tracker.complete(
            job_id,
            f"Processed {result.analyzed} resume(s), {result.skipped} skipped, {result.failed} failed",
        )
        return result

    def _ensure_job_vector(self, job_id: str) -> List[float]:
        with Session(self.engine) as session:
            job = session.get(Job, job_id)
            if job is None:
                raise NotFoundError("Job not found")
            return self.ranking.ensure_job_embedding(session, job)

    @staticmethod
    def _embedding_text(document: ResumeDocument, parsed: ParsedResumeData) -> str:
        text = parsed.rawText or document.text
        return text[:config.MAX_RESUME_CHARS]

    def _persist_item(
        self,
        job_id: str,
        document: ResumeDocument,
        parsed: ParsedResumeData,
        vector: List[float],
        existing_candidate_id: Optional[str],
    ) -> ItemOutcome:
        """Write candidate, resume, portfolio URLs and vector in one transaction."""
        with Session(self.engine) as session:
            try:
                candidate = session.get(Candidate, existing_candidate_id) if existing_candidate_id else None
                if candidate is None:
                    candidate = Candidate(job_id=job_id, name=parsed.name, email=parsed.email)
                candidate.name = parsed.name
                candidate.phone = parsed.phone
                candidate.skills = list(parsed.skills)
                candidate.experience = parsed.experience
                candidate.education = parsed.education
                candidate.updated_at = utcnow()
                session.add(candidate)

                resume = Resume(
                    candidate_id=candidate.id,
                    file_url=document.file_url or document.filename,
                    parsed_text=document.text,
                    parsed_data=parsed.model_dump(exclude={"rawText"}),
                )
                session.add(resume)

                if parsed.github or parsed.linkedin or parsed.website:
                    portfolio = _portfolio_for(session, candidate.id) or Portfolio(candidate_id=candidate.id)
                    portfolio.github = parsed.github or portfolio.github
                    portfolio.linkedin = parsed.linkedin or portfolio.linkedin
                    portfolio.website = parsed.website or portfolio.website
                    portfolio.updated_at = utcnow()
                    session.add(portfolio)

                self.index.upsert_many(
                    [(
                        resume_vector_id(resume.id),
                        vector,
                        {
                            "type": "resume",
                            "jobId": job_id,
                            "candidateId": candidate.id,
                            "resumeId": resume.id,
                            "name": candidate.name,
                            "email": candidate.email,
                        },
                    )],
                    session=session,
                )
                session.commit()
            except (SQLAlchemyError, VectorIndexError) as e:
                session.rollback()
                logger.error("Could not save %s: %s", document.filename, e)
                return ItemOutcome(
                    filename=document.filename,
                    status="failed",
                    reason=f"{document.filename}: could not save candidate",
                )

            logger.info("Saved candidate %s (%s) from %s", candidate.name, candidate.id, document.filename)
            return ItemOutcome(
                filename=document.filename,
                status="success",
                candidateId=candidate.id,
                resumeId=resume.id,
            )

    # ================== PORTFOLIO ANALYSIS ==================

    async def analyze_top_candidates(
        self,
        job_id: str,
        top_n: int = 5,
        min_score: float = 0.0,
        concurrency: Optional[int] = None,
    ) -> AnalysisSummary:
        """
        Run portfolio analysis on the best-scored candidates of a job.

        Args:
            job_id: Job whose candidates to analyse
            top_n: How many candidates (by Candidate.score) to consider
            min_score: Minimum normalized match score in [0, 1]
            concurrency: Parallel analyses (default from config, capped at 5)

        Candidates without a GitHub URL are skipped and the analyzer is never
        called for them. A failed analysis leaves `analyzed_at` unset.
        """
        if top_n < 1:
            raise ValidationError("topN must be at least 1")
        if not 0.0 <= min_score <= 1.0:
            raise ValidationError("minScore must be between 0 and 1")
        concurrency = max(1, min(MAX_ANALYSIS_CONCURRENCY, concurrency or config.PORTFOLIO_CONCURRENCY))

        summary = AnalysisSummary()
        work: List[Tuple[str, str, str, PortfolioAnalysisInput]] = []

        with Session(self.engine) as session:
            job = session.get(Job, job_id)
            if job is None:
                raise NotFoundError("Job not found")

            candidates = session.exec(
                select(Candidate)
                .where(Candidate.job_id == job_id)
                .where(Candidate.score.is_not(None))
                .where(Candidate.score >= min_score * 100.0)
                .order_by(Candidate.score.desc(), Candidate.id)
                .limit(top_n)
            ).all()

            for candidate in candidates:
                portfolio = _portfolio_for(session, candidate.id)
                if portfolio is None or not portfolio.github:
                    logger.info("Skipping %s: no GitHub URL", candidate.name)
                    summary.skipped += 1
                    continue

                work.append((
                    candidate.id,
                    candidate.name,
                    portfolio.github,
                    PortfolioAnalysisInput(
                        candidateId=candidate.id,
                        resumeData=resume_data_for(_latest_resume(session, candidate.id)),
                        github=portfolio.github,
                        jobDescription=job.description,
                    ),
                ))

        if not work:
            return summary

        logger.info(
            "Analyzing %d portfolio(s) for job %s with concurrency %d",
            len(work), job_id, concurrency,
        )
        semaphore = asyncio.Semaphore(concurrency)

        async def run(analysis_input: PortfolioAnalysisInput):
            async with semaphore:
                try:
                    return await asyncio.to_thread(self.analyzer.analyze, analysis_input), None
                except PipelineError as e:
                    return None, e.message
                except Exception as e:
                    logger.exception("Unexpected portfolio analysis failure for %s", analysis_input.candidateId)
                    return None, f"Unexpected analysis error: {e.__class__.__name__}"

        outcomes = await asyncio.gather(*(run(item[3]) for item in work))

        # saved here, on the event loop, one at a time
        for (candidate_id, name, github_url, _), (analysis, error) in zip(work, outcomes):
            if error is None:
                try:
                    self.save_portfolio_analysis(candidate_id, github_url, analysis)
                except SQLAlchemyError as e:
                    logger.error("Could not save portfolio analysis for %s: %s", name, e)
                    error = "could not save portfolio analysis"
            if error is not None:
                logger.error("Portfolio analysis failed for %s: %s", name, error)
                summary.failed += 1
                summary.errors.append(f"{name}: {error}")
                continue
            summary.analyzed += 1

        logger.info(
            "Portfolio analysis for job %s: %d analyzed, %d skipped, %d failed",
            job_id, summary.analyzed, summary.skipped, summary.failed,
        )
        return summary

    def save_portfolio_analysis(
        self,
        candidate_id: str,
        github_url: Optional[str],
        result: PortfolioAnalysisResult,
    ) -> Portfolio:
        """Upsert the candidate's portfolio with a completed analysis."""
        with Session(self.engine) as session:
            if session.get(Candidate, candidate_id) is None:
                raise NotFoundError("Candidate not found")

            portfolio = _portfolio_for(session, candidate_id) or Portfolio(candidate_id=candidate_id)
            portfolio.github = github_url or portfolio.github
            portfolio.overall_score = result.overallScore
            portfolio.resume_alignment = result.resumeAlignment
            portfolio.recommendation = result.recommendation
            portfolio.technical_level = result.technicalLevel
            portfolio.summary = result.summary
            portfolio.strengths = list(result.strengths)
            portfolio.weaknesses = list(result.weaknesses)
            portfolio.concerns = list(result.concerns)
            portfolio.standout_qualities = list(result.standoutQualities)
            portfolio.analysis_data = result.model_dump(mode="json")
            portfolio.analyzed_at = utcnow()
            portfolio.updated_at = utcnow()

            session.add(portfolio)
            session.commit()
            session.refresh(portfolio)

        logger.info("Saved portfolio analysis for candidate %s", candidate_id)
        return portfolio

    def get_portfolio_analysis(self, candidate_id: str) -> Optional[Portfolio]:
        """The candidate's portfolio record, or None if nothing was stored yet."""
        with Session(self.engine) as session:
            if session.get(Candidate, candidate_id) is None:
                raise NotFoundError("Candidate not found")
            return _portfolio_for(session, candidate_id)

    def portfolio_summary(self, job_id: str) -> dict:
        """Counts shown next to the processing status of a job."""
        with Session(self.engine) as session:
            if session.get(Job, job_id) is None:
                raise NotFoundError("Job not found")

            candidates = session.exec(select(Candidate).where(Candidate.job_id == job_id)).all()
            ids = [c.id for c in candidates]
            portfolios = session.exec(
                select(Portfolio).where(Portfolio.candidate_id.in_(ids))
            ).all() if ids else []

        with_github = [p for p in portfolios if p.github]
        analyzed = [p for p in portfolios if p.analyzed_at is not None]
        return {
            "totalCandidates": len(candidates),
            "candidatesWithPortfolio": len(portfolios),
            "candidatesWithGithub": len(with_github),
            "candidatesAnalyzed": len(analyzed),
            "pendingAnalysis": len([p for p in with_github if p.analyzed_at is None]),
        }

    # ================== DELETION ==================

    def delete_candidate(self, candidate_id: str) -> dict:
        """
        Delete a candidate and everything hanging off it.

        Vector deletes are best-effort: ids that could not be removed are
        logged and reported, and the database rows are deleted regardless.
        """
        with Session(self.engine) as session:
            candidate = session.get(Candidate, candidate_id)
            if candidate is None:
                raise NotFoundError("Candidate not found")

            resumes = session.exec(select(Resume).where(Resume.candidate_id == candidate_id)).all()
            failed_vectors = self.index.delete_many([resume_vector_id(r.id) for r in resumes])
            if failed_vectors:
                logger.warning(
                    "Could not delete %d vector(s) for candidate %s: %s",
                    len(failed_vectors), candidate_id, failed_vectors,
                )

            for transcript in session.exec(select(Transcript).where(Transcript.candidate_id == candidate_id)).all():
                session.delete(transcript)
            portfolio = _portfolio_for(session, candidate_id)
            if portfolio is not None:
                session.delete(portfolio)
            for resume in resumes:
                session.delete(resume)
            session.flush()
            session.delete(candidate)
            session.commit()

        logger.info("Deleted candidate %s (%d resumes)", candidate_id, len(resumes))
        return {
            "candidateId": candidate_id,
            "deletedResumes": len(resumes),
            "failedVectorDeletes": failed_vectors,
        }


# Singleton instance
_pipeline_instance: Optional[CandidatePipeline] = None


def get_candidate_pipeline() -> CandidatePipeline:
    """Get or create the shared pipeline with default capabilities."""
    global _pipeline_instance
    if _pipeline_instance is None:
        _pipeline_instance = CandidatePipeline()
    return _pipeline_instance


def reset_candidate_pipeline() -> None:
    """Reset the singleton instance (useful for testing)."""
    global _pipeline_instance
    _pipeline_instance = None
