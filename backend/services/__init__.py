# backend/services/__init__.py
"""
Services Package for the Candidate Ranking backend

Ingestion:
    - resume_structuring: Turn raw resume text into a structured candidate record
    - embedding_service: Generate embeddings for semantic search
    - vector_index: Store and query resume / job embeddings

Ranking:
    - ranking_engine: Similarity ranking blended with portfolio scores

Portfolio analysis:
    - github_client: Read-only GitHub REST client
    - portfolio_analyzer: Four-phase LLM review of a candidate's repositories

Orchestration:
    - processing_status: Per-job pipeline stage tracking
    - candidate_pipeline: Upload batch, top-candidate analysis, deletion
"""

from .errors import (
    PipelineError,
    EmbeddingError,
    VectorIndexError,
    ParseError,
    AnalysisError,
    ValidationError,
    NotFoundError,
    RateLimitError,
    GitHubError,
    StatusTransitionError,
)

# Ingestion
from .embedding_service import generate_embedding, calculate_similarity
from .vector_index import (
    VectorIndex,
    VectorMatch,
    get_vector_index,
    reset_vector_index,
)
from .resume_structuring import structure_resume, generate_placeholder_email

# Ranking
from .ranking_engine import (
    RankingEngine,
    normalize_similarity,
    normalize_portfolio_score,
    blend_scores,
)

# Portfolio analysis
from .portfolio_analyzer import (
    PortfolioAnalyzer,
    analyze_portfolio,
    recommendation_for_score,
)

# Orchestration
from .processing_status import (
    ProcessingStatusTracker,
    Stage,
    get_processing_tracker,
    reset_processing_tracker,
)
from .candidate_pipeline import (
    CandidatePipeline,
    ResumeDocument,
    get_candidate_pipeline,
    reset_candidate_pipeline,
)

__all__ = [
    # Errors
    "PipelineError",
    "EmbeddingError",
    "VectorIndexError",
    "ParseError",
    "AnalysisError",
    "ValidationError",
    "NotFoundError",
    "RateLimitError",
    "GitHubError",
    "StatusTransitionError",
    # Ingestion
    "generate_embedding",
    "calculate_similarity",
    "VectorIndex",
    "VectorMatch",
    "get_vector_index",
    "reset_vector_index",
    "structure_resume",
    "generate_placeholder_email",
    # Ranking
    "RankingEngine",
    "normalize_similarity",
    "normalize_portfolio_score",
    "blend_scores",
    # Portfolio analysis
    "PortfolioAnalyzer",
    "analyze_portfolio",
    "recommendation_for_score",
    # Orchestration
    "ProcessingStatusTracker",
    "Stage",
    "get_processing_tracker",
    "reset_processing_tracker",
    "CandidatePipeline",
    "ResumeDocument",
    "get_candidate_pipeline",
    "reset_candidate_pipeline",
]
