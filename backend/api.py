# backend/api.py
# HTTP surface for jobs, resume uploads, ranking and portfolio analysis.

import io, logging, re, zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import fitz
import docx
from fastapi import Depends, FastAPI, File, Query, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlmodel import Session, select

import config
from db import get_session, init_db
from models import Candidate, Job, Portfolio, Resume, utcnow
from services.candidate_pipeline import ResumeDocument, get_candidate_pipeline
from services.errors import NotFoundError, PipelineError, RateLimitError, ValidationError
from services.portfolio_analyzer import PortfolioAnalyzer
from services.processing_status import get_processing_tracker
from services.ranking_engine import RankingEngine, candidate_score_to_similarity
from services.schemas import PortfolioAnalysisInput
from services.embedding_service import generate_embedding
from services.vector_index import get_vector_index

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ---------- FastAPI & CORS ----------
app = FastAPI(title="Candidate Ranking API")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    init_db()


# ---------- Error responses ----------
@app.exception_handler(PipelineError)
async def pipeline_error_handler(request, exc: PipelineError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    headers = None
    if isinstance(exc, RateLimitError) and exc.retry_after is not None:
        headers = {"Retry-After": str(int(exc.retry_after))}
    return JSONResponse(status_code=exc.status_code, content=exc.to_response(), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", []) if p != "body")
    message = f"{field}: {first.get('msg', 'invalid request')}" if field else "Invalid request"
    return JSONResponse(status_code=400, content={"success": False, "error": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request, exc: Exception):
    logger.exception("%s %s crashed", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"success": False, "error": "Internal server error"})


# ---------- Helpers ----------
def extract_pdf_text(data: bytes) -> str:
    with fitz.open(stream=data, filetype="pdf") as doc:
        return "\n".join(p.get_text() for p in doc)

def extract_docx_text(data: bytes) -> str:
    d = docx.Document(io.BytesIO(data))
    return "\n".join(p.text for p in d.paragraphs)

def clean_text(t: str) -> str:
    t = t.replace("\x00", " ")
    t = re.sub(r"[ \t]+", " ", t)
    t = re.sub(r"\n{2,}", "\n", t)
    return t.strip()

def extract_text(filename: str, data: bytes) -> str:
    suffix = Path(filename).suffix.lower()
    if suffix == ".pdf":
        return clean_text(extract_pdf_text(data))
    if suffix == ".docx":
        return clean_text(extract_docx_text(data))
    raise ValidationError(f"Unsupported file type: {filename}")

def read_document(filename: str, data: bytes, file_url: str) -> ResumeDocument:
    """Extract one file's text; an unreadable file becomes a document carrying the error."""
    try:
        text = extract_text(filename, data)
    except ValidationError:
        raise
    except Exception as e:
        logger.warning("Could not read %s: %s", filename, e)
        return ResumeDocument(
            filename=Path(filename).name,
            file_url=file_url,
            error="Could not read file (corrupt or unsupported document)",
        )
    return ResumeDocument(filename=Path(filename).name, text=text, file_url=file_url)

def expand_upload(filename: str, data: bytes) -> List[ResumeDocument]:
    """One upload -> resume documents. ZIP archives are flattened to their PDF/DOCX members."""
    if Path(filename).suffix.lower() != ".zip":
        return [read_document(filename, data, filename)]

    documents: List[ResumeDocument] = []
    try:
        archive = zipfile.ZipFile(io.BytesIO(data))
    except zipfile.BadZipFile as e:
        raise ValidationError(f"{filename} is not a valid ZIP archive") from e

    with archive:
        for member in archive.infolist():
            name = member.filename
            if member.is_dir() or name.startswith("__MACOSX/") or Path(name).name.startswith("."):
                continue
            if Path(name).suffix.lower() not in {".pdf", ".docx"}:
                continue
            try:
                member_data = archive.read(member)
            except (zipfile.BadZipFile, OSError) as e:
                logger.warning("Could not extract %s from %s: %s", name, filename, e)
                documents.append(ResumeDocument(
                    filename=Path(name).name,
                    file_url=f"{filename}/{name}",
                    error="Could not extract file from ZIP archive",
                ))
                continue
            documents.append(read_document(name, member_data, f"{filename}/{name}"))
    return documents

def job_out(job: Job, candidate_count: Optional[int] = None) -> Dict[str, Any]:
    out = {
        "id": job.id,
        "title": job.title,
        "description": job.description,
        "hasEmbedding": bool(job.embedding),
        "createdAt": job.created_at.isoformat(),
        "updatedAt": job.updated_at.isoformat(),
    }
    if candidate_count is not None:
        out["candidateCount"] = candidate_count
    return out

def portfolio_out(portfolio: Optional[Portfolio]) -> Optional[Dict[str, Any]]:
    if portfolio is None:
        return None
    return {
        "github": portfolio.github,
        "linkedin": portfolio.linkedin,
        "website": portfolio.website,
        "overallScore": portfolio.overall_score,
        "resumeAlignment": portfolio.resume_alignment,
        "recommendation": portfolio.recommendation,
        "technicalLevel": portfolio.technical_level,
        "summary": portfolio.summary,
        "strengths": portfolio.strengths or [],
        "weaknesses": portfolio.weaknesses or [],
        "concerns": portfolio.concerns or [],
        "standoutQualities": portfolio.standout_qualities or [],
        "analysis": portfolio.analysis_data,
        "analyzedAt": portfolio.analyzed_at.isoformat() if portfolio.analyzed_at else None,
    }

def candidate_out(candidate: Candidate, portfolio: Optional[Portfolio] = None, resumes: Optional[List[Resume]] = None) -> Dict[str, Any]:
    out = {
        "id": candidate.id,
        "jobId": candidate.job_id,
        "name": candidate.name,
        "email": candidate.email,
        "phone": candidate.phone,
        "skills": candidate.skills or [],
        "experience": candidate.experience,
        "education": candidate.education,
        "score": candidate.score,
        "matchScore": candidate_score_to_similarity(candidate.score),
        "portfolio": portfolio_out(portfolio),
        "createdAt": candidate.created_at.isoformat(),
    }
    if resumes is not None:
        out["resumes"] = [
            {"id": r.id, "fileUrl": r.file_url, "uploadedAt": r.uploaded_at.isoformat()}
            for r in resumes
        ]
    return out


# ---------- Request schemas ----------
class CreateJobReq(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""

class RankReq(BaseModel):
    candidateIds: Optional[List[str]] = None
    topK: int = Field(default=50, ge=1, le=100)
    threshold: float = Field(default=0.0, ge=0, le=1)
    updateScores: bool = False

class AnalyzeTopReq(BaseModel):
    jobId: str
    topN: int = Field(default=5, ge=1, le=50)
    minScore: float = Field(default=0.0, ge=0, le=1)
    concurrency: Optional[int] = Field(default=None, ge=1)

class MatchReq(BaseModel):
    jobDescription: str
    jobId: Optional[str] = None
    topK: int = Field(default=10, ge=1, le=100)
    threshold: float = Field(default=0.0, ge=0, le=1)
    updateScores: bool = False

class AddEmbeddingReq(BaseModel):
    text: str
    metadata: Dict[str, Any] = {}


# ---------- Health ----------
@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {"success": True, "status": "ok"}


# ---------- Jobs ----------
@app.post("/api/jobs", status_code=201)
def create_job(req: CreateJobReq, session: Session = Depends(get_session)) -> Dict[str, Any]:
    job = Job(title=req.title.strip(), description=req.description.strip())
    session.add(job)
    session.commit()
    session.refresh(job)
    logger.info("Created job %s (%s)", job.id, job.title)
    return {"success": True, "job": job_out(job)}


@app.get("/api/jobs")
def list_jobs(session: Session = Depends(get_session)) -> Dict[str, Any]:
    jobs = session.exec(select(Job).order_by(Job.created_at.desc())).all()
    counts: Dict[str, int] = {}
    for candidate in session.exec(select(Candidate)).all():
        counts[candidate.job_id] = counts.get(candidate.job_id, 0) + 1
    return {"success": True, "jobs": [job_out(j, counts.get(j.id, 0)) for j in jobs]}


@app.get("/api/jobs/{job_id}")
def get_job(job_id: str, session: Session = Depends(get_session)) -> Dict[str, Any]:
    job = session.get(Job, job_id)
    if job is None:
        raise NotFoundError("Job not found")

    candidates = session.exec(
        select(Candidate)
        .where(Candidate.job_id == job_id)
        .order_by(Candidate.score.desc(), Candidate.id)
    ).all()
    portfolios = {
        p.candidate_id: p for p in session.exec(
            select(Portfolio).where(Portfolio.candidate_id.in_([c.id for c in candidates]))
        ).all()
    } if candidates else {}

    out = job_out(job, len(candidates))
    out["candidates"] = [candidate_out(c, portfolios.get(c.id)) for c in candidates]
    return {"success": True, "job": out}


# ---------- Resume upload ----------
@app.post("/api/jobs/{job_id}/resumes")
async def upload_resumes(
    job_id: str,
    files: List[UploadFile] = File(...),
    analyzeTop: bool = Query(default=True),
) -> Dict[str, Any]:
    """
    Accepts PDF / DOCX resumes or ZIP archives of them and runs the full
    parse -> embed -> rank -> portfolio pipeline for the job.
    """
    if not files:
        raise ValidationError("No files uploaded")

    documents: List[ResumeDocument] = []
    total_bytes = 0
    for upload in files:
        filename = upload.filename or "resume"
        if Path(filename).suffix.lower() not in config.ALLOWED_EXTENSIONS:
            raise ValidationError(f"Unsupported file type: {filename}. Use PDF, DOCX or ZIP.")

        data = await upload.read()
        total_bytes += len(data)
        if total_bytes > config.MAX_UPLOAD_BYTES:
            raise ValidationError("Upload too large")
        if not data:
            raise ValidationError(f"{filename} is empty")

        documents.extend(expand_upload(filename, data))

    if not documents:
        raise ValidationError("No PDF or DOCX resumes found in upload")

    result = await get_candidate_pipeline().process_resume_batch(job_id, documents, analyze_top=analyzeTop)
    return {"success": True, **result.model_dump(mode="json")}


@app.get("/api/jobs/{job_id}/portfolio-status")
def portfolio_status(job_id: str) -> Dict[str, Any]:
    pipeline = get_candidate_pipeline()
    summary = pipeline.portfolio_summary(job_id)
    status = get_processing_tracker().get(job_id)
    return {
        "success": True,
        "jobId": job_id,
        "processing": status.model_dump(mode="json"),
        **summary,
    }


# ---------- Ranking ----------
@app.post("/api/jobs/{job_id}/rank")
def rank_job(job_id: str, req: RankReq) -> Dict[str, Any]:
    engine = RankingEngine()
    ranked = engine.rank(
        job_id,
        candidate_ids=req.candidateIds,
        top_k=req.topK,
        threshold=req.threshold,
        update_scores=req.updateScores,
    )
    return {
        "success": True,
        "jobId": job_id,
        "rankings": [r.model_dump() for r in ranked],
        "count": len(ranked),
    }


@app.post("/api/match-candidates")
def match_candidates(req: MatchReq) -> Dict[str, Any]:
    logger.info("Matching candidates%s", f" for job {req.jobId}" if req.jobId else "")
    matches = RankingEngine().match_description(
        req.jobDescription,
        top_k=req.topK,
        threshold=req.threshold,
        job_id=req.jobId,
        update_scores=req.updateScores,
    )
    return {"success": True, "matches": [m.model_dump() for m in matches], "count": len(matches)}


@app.post("/api/add-embedding")
def add_embedding(req: AddEmbeddingReq) -> Dict[str, Any]:
    if not req.text or not req.text.strip():
        raise ValidationError("Invalid or missing text input")

    vector = generate_embedding(req.text)
    vector_id = str(req.metadata.get("id") or f"item-{int(utcnow().timestamp() * 1000)}")
    get_vector_index().upsert(vector_id, vector, req.metadata)
    return {"success": True, "message": "Embedding added successfully", "id": vector_id}


# ---------- Portfolio analysis ----------
@app.post("/api/jobs/analyze-top-candidates")
async def analyze_top_candidates(req: AnalyzeTopReq) -> Dict[str, Any]:
    summary = await get_candidate_pipeline().analyze_top_candidates(
        req.jobId,
        top_n=req.topN,
        min_score=req.minScore,
        concurrency=req.concurrency,
    )
    return {"success": True, "jobId": req.jobId, **summary.model_dump()}


@app.post("/api/portfolio-analyze")
def portfolio_analyze(req: PortfolioAnalysisInput) -> Dict[str, Any]:
    """Analyse one candidate's GitHub portfolio and store the result."""
    if not req.github:
        raise ValidationError("github URL is required")

    pipeline = get_candidate_pipeline()
    # fail fast on unknown candidates before spending LLM calls
    pipeline.get_portfolio_analysis(req.candidateId)

    result = PortfolioAnalyzer().analyze(req)
    pipeline.save_portfolio_analysis(req.candidateId, req.github, result)
    return {"success": True, "analysis": result.model_dump()}


@app.get("/api/portfolio/{candidate_id}")
def get_portfolio(candidate_id: str) -> Dict[str, Any]:
    portfolio = get_candidate_pipeline().get_portfolio_analysis(candidate_id)
    if portfolio is None or portfolio.analyzed_at is None:
        raise NotFoundError("Portfolio analysis not found")
    return {"success": True, "portfolio": portfolio_out(portfolio)}


# ---------- Candidates ----------
@app.get("/api/candidates")
def list_candidates(jobId: Optional[str] = None, session: Session = Depends(get_session)) -> Dict[str, Any]:
    stmt = select(Candidate)
    if jobId:
        stmt = stmt.where(Candidate.job_id == jobId)
    candidates = session.exec(stmt.order_by(Candidate.score.desc(), Candidate.id)).all()
    portfolios = {
        p.candidate_id: p for p in session.exec(
            select(Portfolio).where(Portfolio.candidate_id.in_([c.id for c in candidates]))
        ).all()
    } if candidates else {}
    return {
        "success": True,
        "candidates": [candidate_out(c, portfolios.get(c.id)) for c in candidates],
        "count": len(candidates),
    }


@app.get("/api/candidates/{candidate_id}")
def get_candidate(candidate_id: str, session: Session = Depends(get_session)) -> Dict[str, Any]:
    candidate = session.get(Candidate, candidate_id)
    if candidate is None:
        raise NotFoundError("Candidate not found")

    portfolio = session.exec(select(Portfolio).where(Portfolio.candidate_id == candidate_id)).first()
    resumes = session.exec(
        select(Resume).where(Resume.candidate_id == candidate_id).order_by(Resume.uploaded_at.desc())
    ).all()
    return {"success": True, "candidate": candidate_out(candidate, portfolio, resumes)}


@app.delete("/api/candidates/{candidate_id}")
def delete_candidate(candidate_id: str) -> Dict[str, Any]:
    result = get_candidate_pipeline().delete_candidate(candidate_id)
    return {"success": True, **result}
