# backend/services/portfolio_analyzer.py
"""
Agentic Portfolio Analyzer

Multi-phase LLM analysis of a candidate's GitHub portfolio.

Workflow (strictly sequential, each phase consumes the previous one):
1. Context Gathering    - extract a technical profile from the resume
2. Repository Discovery - pre-rank repos on cheap signals, then let the LLM pick
3. Deep Analysis        - per-repo verdict (README + languages + activity)
4. Final Synthesis      - one scored assessment with a hire recommendation

Each phase is a plain function of (input, capability) so it can be tested
with a fake LLM or GitHub client. `PortfolioAnalyzer` is the small driver
that runs them in order.

Error policy:
- no GitHub URL       -> ValidationError (callers should not invoke us)
- one repo fails      -> skipped, the rest continue
- synthesis fails     -> AnalysisError, nothing is written
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import config
from prompts.recruiting_prompts import PromptTemplates
from services import github_client
from services.errors import AnalysisError, GitHubError, RateLimitError, ValidationError
from services.llm_client import generate_json
from services.schemas import (
    CandidateProfile,
    PortfolioAnalysisInput,
    PortfolioAnalysisResult,
    RepoAnalysis,
    RepoSelection,
    RepoVerdict,
    ResumeData,
    SelectedRepo,
    SynthesisOut,
)

logger = logging.getLogger(__name__)

# Bounds on how many repos get a deep (expensive) analysis
MIN_TOP_REPOS = 3
MAX_TOP_REPOS = 8

# How many repos survive the cheap pre-ranking and are shown to the LLM
PRERANK_LIMIT = 20

# How many analysed repos are reported as top projects
TOP_PROJECTS = 3

# Recommendation policy: first threshold the score reaches wins (inclusive)
RECOMMENDATION_THRESHOLDS = [
    (9.0, "strong_hire"),
    (7.0, "interview"),
    (5.0, "maybe"),
]


LLMCall = Callable[..., Any]


def recommendation_for_score(overall_score: float) -> str:
    """
    Map a 0-10 portfolio score to a recommendation.

    >=9 strong_hire, >=7 interview, >=5 maybe, otherwise pass.
    """
    for threshold, recommendation in RECOMMENDATION_THRESHOLDS:
        if overall_score >= threshold:
            return recommendation
    return "pass"


def _resume_payload(resume_data: ResumeData) -> Dict[str, Any]:
    payload = resume_data.model_dump()
    payload["rawText"] = payload.get("rawText", "")[:config.MAX_RESUME_CHARS]
    return payload


def _parse_github_date(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


# ================== PHASE 1: CONTEXT GATHERING ==================

def gather_context(
    resume_data: ResumeData,
    job_description: Optional[str],
    llm: LLMCall = generate_json,
) -> CandidateProfile:
    """Derive the candidate's technical profile from their resume."""
    prompt = PromptTemplates.context_gathering(_resume_payload(resume_data), job_description)
    profile = llm(
        prompt,
        CandidateProfile,
        system=PromptTemplates.RECRUITER_SYSTEM,
        error_cls=AnalysisError,
    )

    # Resume skills always count, even if the LLM dropped some
    known = {s.lower() for s in profile.technicalSkills}
    extra = [s for s in resume_data.skills if s.lower() not in known]
    if extra:
        profile = profile.model_copy(update={"technicalSkills": profile.technicalSkills + extra})

    return profile


# ================== PHASE 2: REPOSITORY DISCOVERY ==================

def prerank_repositories(
    repos: List[Dict[str, Any]],
    skills: List[str],
    limit: int = PRERANK_LIMIT,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    Order repositories on cheap signals before any LLM sees them.

    Signals: stars (log scaled), recency of the last push, primary language
    and topic overlap with the candidate's skills, and whether the repo has a
    description at all. Ties fall back to the repo name.
    """
    now = now or datetime.now(timezone.utc)
    skill_set = {s.strip().lower() for s in skills if s and s.strip()}

    def signal(repo: Dict[str, Any]) -> float:
        stars = int(repo.get("stargazers_count", 0) or 0)
        score = math.log1p(stars) * 2.0

        pushed = _parse_github_date(repo.get("pushed_at") or repo.get("updated_at"))
        if pushed is not None:
            age_days = max(0.0, (now - pushed).total_seconds() / 86400.0)
            score += max(0.0, 1.0 - age_days / 730.0) * 3.0

        language = (repo.get("language") or "").lower()
        if language and language in skill_set:
            score += 3.0

        topics = {str(t).lower() for t in (repo.get("topics") or [])}
        score += min(3, len(topics & skill_set)) * 1.0

        if repo.get("description"):
            score += 0.5

        return score

    ranked = sorted(repos, key=lambda r: (-signal(r), str(r.get("name", "")).lower()))
    return ranked[:limit]


def _repo_summary(repo: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": repo.get("name"),
        "fullName": repo.get("full_name"),
        "url": repo.get("html_url"),
        "description": repo.get("description"),
        "language": repo.get("language"),
        "stars": repo.get("stargazers_count", 0),
        "topics": repo.get("topics") or [],
        "lastUpdated": repo.get("pushed_at") or repo.get("updated_at"),
    }


def _as_selected(repo: Dict[str, Any], relevance: float = 0.0, reason: str = "") -> SelectedRepo:
    return SelectedRepo(
        name=repo.get("name") or "",
        fullName=repo.get("full_name") or "",
        url=repo.get("html_url") or "",
        relevanceScore=relevance,
        reason=reason,
    )


def discover_repositories(
    repos: List[Dict[str, Any]],
    profile: CandidateProfile,
    llm: LLMCall = generate_json,
    top_n: int = config.PORTFOLIO_TOP_REPOS,
) -> List[SelectedRepo]:
    """
    Pick the repositories worth a deep analysis.

    The LLM only chooses among the pre-ranked shortlist; names it invents are
    dropped. If it picks nothing usable the pre-ranking decides.
    """
    top_n = max(MIN_TOP_REPOS, min(MAX_TOP_REPOS, top_n))

    shortlist = prerank_repositories(repos, profile.technicalSkills)
    if not shortlist:
        return []

    by_full_name = {str(r.get("full_name", "")).lower(): r for r in shortlist}

    prompt = PromptTemplates.repository_discovery(
        [_repo_summary(r) for r in shortlist],
        profile.technicalSkills,
        profile.careerLevel,
        profile.projectThemes,
        top_n,
    )

    selected: List[SelectedRepo] = []
    try:
        selection = llm(
            prompt,
            RepoSelection,
            system=PromptTemplates.RECRUITER_SYSTEM,
            error_cls=AnalysisError,
        )
        seen = set()
        for choice in selection.selectedRepos:
            key = choice.fullName.lower()
            repo = by_full_name.get(key)
            if repo is None or key in seen:
                logger.debug("Dropping unknown or duplicate repo selection: %s", choice.fullName)
                continue
            seen.add(key)
            selected.append(_as_selected(repo, choice.relevanceScore, choice.reason))
    except AnalysisError as e:
        logger.warning("Repository discovery failed, using pre-ranking: %s", e)

    if not selected:
        selected = [
            _as_selected(repo, reason="Selected by stars, recency and skill overlap")
            for repo in shortlist[:top_n]
        ]

    return selected[:top_n]


# ================== PHASE 3: DEEP REPOSITORY ANALYSIS ==================

def analyze_repositories(
    selected_repos: List[SelectedRepo],
    profile: CandidateProfile,
    resume_data: ResumeData,
    llm: LLMCall = generate_json,
    github=github_client,
) -> List[RepoAnalysis]:
    """
    Analyse each selected repository in turn.

    A repository whose GitHub data or LLM verdict can't be obtained is
    skipped; partial results beat no result. Rate limiting is only raised
    when it left no repository analysed.
    """
    analyses: List[RepoAnalysis] = []
    rate_limited: Optional[RateLimitError] = None
    resume_payload = _resume_payload(resume_data)

    for selected in selected_repos:
        owner, _, repo_name = selected.fullName.partition("/")
        if not owner or not repo_name:
            logger.warning("Skipping repo with malformed name: %s", selected.fullName)
            continue

        try:
            languages = github.fetch_repo_languages(owner, repo_name)
            readme = github.fetch_repo_readme(owner, repo_name)
            activity = github.calculate_activity_score(
                github.fetch_repo_commit_activity(owner, repo_name)
            )

            prompt = PromptTemplates.deep_analysis(
                repo_name=selected.name,
                repo_url=selected.url,
                reason=selected.reason,
                readme=readme[:config.MAX_README_CHARS] if readme else None,
                languages=languages,
                activity_level=activity["level"],
                recent_commits=activity["score"],
                resume_data=resume_payload,
                technical_skills=profile.technicalSkills,
                career_level=profile.careerLevel,
            )
            verdict = llm(
                prompt,
                RepoVerdict,
                system=PromptTemplates.RECRUITER_SYSTEM,
                error_cls=AnalysisError,
            )
        except RateLimitError as e:
            logger.warning("Rate limited analyzing repo %s: %s", selected.fullName, e)
            rate_limited = e
            continue
        except (GitHubError, AnalysisError) as e:
            logger.error("Error analyzing repo %s: %s", selected.fullName, e)
            continue

        analyses.append(RepoAnalysis(
            repo=selected.name,
            url=selected.url,
            activityLevel=activity["level"],
            recentCommits=activity["score"],
            **verdict.model_dump(),
        ))

    if not analyses and rate_limited is not None:
        raise rate_limited

    return analyses


# ================== PHASE 4: FINAL SYNTHESIS ==================

def synthesize(
    candidate_id: str,
    profile: CandidateProfile,
    analyses: List[RepoAnalysis],
    resume_data: ResumeData,
    job_description: Optional[str],
    llm: LLMCall = generate_json,
) -> PortfolioAnalysisResult:
    """
    Aggregate the per-repo verdicts into the final assessment.

    Top projects come from the analyses that actually completed, and the
    recommendation follows `recommendation_for_score`, not the LLM's label.
    """
    prompt = PromptTemplates.final_synthesis(
        technical_skills=profile.technicalSkills,
        career_level=profile.careerLevel,
        project_themes=profile.projectThemes,
        resume_data=_resume_payload(resume_data),
        repo_analyses=[a.model_dump() for a in analyses],
        job_description=job_description,
    )

    raw = llm(
        prompt,
        SynthesisOut,
        system=PromptTemplates.RECRUITER_SYSTEM,
        error_cls=AnalysisError,
    )

    recommendation = recommendation_for_score(raw.overallScore)
    if raw.recommendation and raw.recommendation != recommendation:
        logger.info(
            "LLM recommended %s for score %.1f; policy gives %s",
            raw.recommendation, raw.overallScore, recommendation,
        )

    top_projects = sorted(analyses, key=lambda a: -(a.qualityScore + a.relevanceScore))[:TOP_PROJECTS]

    return PortfolioAnalysisResult(
        candidateId=candidate_id,
        overallScore=round(raw.overallScore, 1),
        recommendation=recommendation,
        summary=raw.summary or "No summary provided.",
        topProjects=top_projects,
        strengths=raw.strengths,
        weaknesses=raw.weaknesses,
        concerns=raw.concerns,
        standoutQualities=raw.standoutQualities,
        resumeAlignment=round(raw.resumeAlignment, 1),
        technicalLevel=raw.technicalLevel or profile.careerLevel,
    )


# ================== MAIN ORCHESTRATOR ==================

class PortfolioAnalyzer:
    """
    Runs the four phases in order for one candidate.

    Capabilities are injectable for testing:
        llm:    callable with the `generate_json` signature
        github: object with the `services.github_client` functions
    """

    def __init__(self, llm: Optional[LLMCall] = None, github=None, top_n: Optional[int] = None):
        self.llm = llm or generate_json
        self.github = github or github_client
        self.top_n = top_n or config.PORTFOLIO_TOP_REPOS

    def analyze(self, analysis_input: PortfolioAnalysisInput) -> PortfolioAnalysisResult:
        if not analysis_input.github:
            raise ValidationError("github URL is required for portfolio analysis")

        candidate_id = analysis_input.candidateId
        logger.info("Starting portfolio analysis for candidate %s", candidate_id)

        # PHASE 1: Context Gathering
        profile = gather_context(analysis_input.resumeData, analysis_input.jobDescription, self.llm)
        logger.info("Phase 1 done: %d skills, level %s", len(profile.technicalSkills), profile.careerLevel)

        # PHASE 2: Repository Discovery
        try:
            portfolio = self.github.fetch_github_portfolio(analysis_input.github)
        except GitHubError as e:
            raise AnalysisError(f"Could not fetch GitHub portfolio: {e.message}") from e

        selected = discover_repositories(portfolio["repos"], profile, self.llm, self.top_n)
        logger.info(
            "Phase 2 done: selected %d of %d repositories: %s",
            len(selected), len(portfolio["repos"]), [r.name for r in selected],
        )

        # PHASE 3: Deep Analysis
        analyses = analyze_repositories(
            selected, profile, analysis_input.resumeData, self.llm, self.github
        )
        logger.info("Phase 3 done: analyzed %d/%d repositories", len(analyses), len(selected))

        # PHASE 4: Final Synthesis
        result = synthesize(
            candidate_id,
            profile,
            analyses,
            analysis_input.resumeData,
            analysis_input.jobDescription,
            self.llm,
        )
        logger.info(
            "Portfolio analysis complete for %s - Overall: %.1f/10, Recommendation: %s",
            candidate_id, result.overallScore, result.recommendation,
        )
        return result


def analyze_portfolio(analysis_input: PortfolioAnalysisInput) -> PortfolioAnalysisResult:
    """Convenience function using the default LLM and GitHub capabilities."""
    return PortfolioAnalyzer().analyze(analysis_input)
