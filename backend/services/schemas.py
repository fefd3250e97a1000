# backend/services/schemas.py
"""
Typed shapes shared by the pipeline stages.

Field names follow the camelCase JSON the LLM prompts ask for, so the same
models validate LLM output and serialize API responses.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


CareerLevel = Literal["junior", "mid", "senior", "lead", "unknown"]
ImpressivenessLevel = Literal["exceptional", "strong", "solid", "basic"]
ResumeMatchLevel = Literal["perfect_match", "strong_match", "partial_match", "weak_match", "no_match"]
Recommendation = Literal["strong_hire", "interview", "maybe", "pass"]


def _clamp_0_10(value: Any) -> float:
    score = float(value)
    return max(0.0, min(10.0, score))


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(str(v).strip() for v in value if str(v).strip())
    return str(value).strip()


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def _optional_url(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in {"null", "none", "n/a"}:
        return None
    return text


# ---------- Resume structuring ----------

class ParsedResumeData(BaseModel):
    name: str = ""
    email: str = ""
    phone: Optional[str] = None
    skills: List[str] = []
    experience: str = ""
    education: str = ""
    github: Optional[str] = None
    linkedin: Optional[str] = None
    website: Optional[str] = None
    rawText: str = ""

    @field_validator("name", "email", mode="before")
    @classmethod
    def _strip(cls, v):
        return "" if v is None else str(v).strip()

    @field_validator("experience", "education", mode="before")
    @classmethod
    def _join(cls, v):
        return _as_text(v)

    @field_validator("skills", mode="before")
    @classmethod
    def _skills(cls, v):
        return _as_str_list(v)

    @field_validator("phone", "github", "linkedin", "website", mode="before")
    @classmethod
    def _urls(cls, v):
        return _optional_url(v)


# ---------- Portfolio analysis ----------

class ResumeData(BaseModel):
    """Resume evidence handed to the portfolio analyzer."""
    model_config = ConfigDict(extra="allow")

    skills: List[str] = []
    experience: List[str] = []
    projects: List[str] = []
    rawText: str = ""

    @field_validator("skills", "experience", "projects", mode="before")
    @classmethod
    def _lists(cls, v):
        return _as_str_list(v)

    @field_validator("rawText", mode="before")
    @classmethod
    def _raw(cls, v):
        return _as_text(v)


class PortfolioAnalysisInput(BaseModel):
    candidateId: str
    resumeData: ResumeData
    github: Optional[str] = None
    jobDescription: Optional[str] = None


class CandidateProfile(BaseModel):
    technicalSkills: List[str] = []
    careerLevel: CareerLevel = "unknown"
    projectThemes: List[str] = []
    searchCriteria: List[str] = []

    @field_validator("technicalSkills", "projectThemes", "searchCriteria", mode="before")
    @classmethod
    def _lists(cls, v):
        return _as_str_list(v)

    @field_validator("careerLevel", mode="before")
    @classmethod
    def _level(cls, v):
        level = str(v or "").strip().lower()
        for known in ("junior", "mid", "senior", "lead"):
            if level.startswith(known):
                return known
        return "unknown"


class SelectedRepo(BaseModel):
    name: str
    fullName: str
    url: str = ""
    relevanceScore: float = 0.0
    reason: str = ""

    @field_validator("relevanceScore", mode="before")
    @classmethod
    def _score(cls, v):
        return _clamp_0_10(v if v is not None else 0)


class RepoSelection(BaseModel):
    selectedRepos: List[SelectedRepo] = []


_IMPRESSIVENESS_ALIASES = {
    "good": "solid",
    "average": "basic",
    "weak": "basic",
}


class RepoVerdict(BaseModel):
    """What the LLM says about one repository."""
    qualityScore: float
    relevanceScore: float
    impressivenessLevel: ImpressivenessLevel = "basic"
    resumeMatchLevel: ResumeMatchLevel = "partial_match"
    technologies: List[str] = []
    strengths: List[str] = []
    concerns: List[str] = []
    matchesResumeClaims: bool = False
    resumeClaimsValidated: List[str] = []
    resumeClaimsContradicted: List[str] = []
    insights: str = ""

    @field_validator("qualityScore", "relevanceScore", mode="before")
    @classmethod
    def _scores(cls, v):
        return _clamp_0_10(v)

    @field_validator("impressivenessLevel", mode="before")
    @classmethod
    def _impressiveness(cls, v):
        level = str(v or "basic").strip().lower()
        return _IMPRESSIVENESS_ALIASES.get(level, level)

    @field_validator("resumeMatchLevel", mode="before")
    @classmethod
    def _match(cls, v):
        return str(v or "partial_match").strip().lower()

    @field_validator(
        "technologies", "strengths", "concerns",
        "resumeClaimsValidated", "resumeClaimsContradicted",
        mode="before",
    )
    @classmethod
    def _lists(cls, v):
        return _as_str_list(v)

    @field_validator("insights", mode="before")
    @classmethod
    def _insights(cls, v):
        return _as_text(v)


class RepoAnalysis(RepoVerdict):
    repo: str
    url: str = ""
    activityLevel: str = "inactive"
    recentCommits: int = 0


class SynthesisOut(BaseModel):
    """Raw final assessment from the LLM, before policy is applied."""
    overallScore: float
    summary: str = ""
    strengths: List[str] = []
    weaknesses: List[str] = []
    concerns: List[str] = []
    resumeAlignment: float = 0.0
    recommendation: Optional[str] = None
    technicalLevel: str = "unknown"
    standoutQualities: List[str] = []

    @field_validator("overallScore", "resumeAlignment", mode="before")
    @classmethod
    def _scores(cls, v):
        return _clamp_0_10(v)

    @field_validator("strengths", "weaknesses", "concerns", "standoutQualities", mode="before")
    @classmethod
    def _lists(cls, v):
        return _as_str_list(v)

    @field_validator("summary", "technicalLevel", mode="before")
    @classmethod
    def _text(cls, v):
        return _as_text(v)


class PortfolioAnalysisResult(BaseModel):
    candidateId: str
    overallScore: float = Field(ge=0, le=10)
    recommendation: Recommendation
    summary: str
    topProjects: List[RepoAnalysis] = []
    strengths: List[str] = []
    weaknesses: List[str] = []
    concerns: List[str] = []
    standoutQualities: List[str] = []
    resumeAlignment: float = Field(ge=0, le=10)
    technicalLevel: str


# ---------- Ranking ----------

class RankedCandidate(BaseModel):
    candidateId: str
    resumeId: str
    score: float = Field(ge=0, le=1)
    similarity: float = Field(ge=0, le=1)
    portfolioScore: Optional[float] = None
    metadata: Dict[str, Any] = {}
