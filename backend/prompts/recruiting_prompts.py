# backend/prompts/recruiting_prompts.py
"""
Recruiting Prompt Templates

LLM prompt templates for resume structuring and the four portfolio analysis
phases. Every template asks for a single JSON object; the shapes here must
stay in sync with the pydantic models in services/schemas.py.

Usage:
    from prompts.recruiting_prompts import PromptTemplates

    prompt = PromptTemplates.resume_structuring(resume_text)
"""

import json
from typing import Any, Dict, List, Optional


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


class PromptTemplates:
    """
    Static class containing all prompt templates used by the pipeline.

    All methods are static and return formatted prompt strings ready for LLM consumption.
    """

    RESUME_SYSTEM = (
        "You are a resume parser. Return ONLY compact JSON that conforms exactly "
        "to the requested shape. Do not include any text outside JSON."
    )

    RECRUITER_SYSTEM = (
        "You are a senior technical recruiter evaluating software engineering candidates. "
        "Be honest and critical. Return STRICT JSON ONLY (no prose, no markdown)."
    )

    @staticmethod
    def resume_structuring(resume_text: str) -> str:
        return f"""Extract structured information from the following resume text.

Resume Text:
{resume_text}

Extract the following information:
1. Candidate's full name
2. Email address
3. Phone number (if available)
4. List of technical skills (programming languages, frameworks, tools, technologies)
5. Work experience summary (combine all experience into a single descriptive paragraph)
6. Education summary (degrees, institutions, graduation years)
7. GitHub profile URL (if available)
8. LinkedIn profile URL (if available)
9. Personal website URL (if available)

RULES:
- If you cannot find the name, use "Unknown Candidate"
- If you cannot find the email, use an empty string
- Extract ALL technical skills mentioned. Be generous: a skill listed by mistake is better than a missing one
- For experience and education, write a brief summary paragraph
- Only include URLs that are actually present in the resume, otherwise null

Respond with JSON only:
{{
  "name": "John Doe",
  "email": "john.doe@example.com",
  "phone": "+1234567890",
  "skills": ["JavaScript", "React", "Node.js", "Python"],
  "experience": "5 years as Software Engineer at ABC Corp ...",
  "education": "B.S. Computer Science from University of Example (2018).",
  "github": "https://github.com/johndoe",
  "linkedin": "https://linkedin.com/in/johndoe",
  "website": "https://johndoe.dev"
}}"""

    @staticmethod
    def context_gathering(resume_data: Dict[str, Any], job_description: Optional[str] = None) -> str:
        job_block = f"Job Requirements:\n{job_description}\n" if job_description else ""
        return f"""You are analyzing a candidate's resume to extract their technical profile.

Resume Data:
{_dump(resume_data)}

{job_block}
Extract the following information:
1. Technical skills mentioned (programming languages, frameworks, tools)
2. Career level based on experience (junior/mid/senior/lead)
3. Project themes (e.g., "web development", "machine learning", "mobile apps")
4. Search criteria for finding relevant GitHub repositories

Respond with JSON only:
{{
  "technicalSkills": ["skill1", "skill2"],
  "careerLevel": "mid",
  "projectThemes": ["theme1", "theme2"],
  "searchCriteria": ["criteria1", "criteria2"]
}}"""

    @staticmethod
    def repository_discovery(
        repo_summaries: List[Dict[str, Any]],
        technical_skills: List[str],
        career_level: str,
        project_themes: List[str],
        top_n: int,
    ) -> str:
        return f"""You are evaluating GitHub repositories to find the most impressive and relevant ones for a candidate.

Candidate Profile:
- Technical Skills: {", ".join(technical_skills) or "unknown"}
- Career Level: {career_level}
- Project Themes: {", ".join(project_themes) or "unknown"}

Available Repositories ({len(repo_summaries)} shortlisted):
{_dump(repo_summaries)}

Your task:
1. Filter out trivial repos (tutorials, toy projects, practice exercises)
2. Rank remaining repos by relevance to the candidate's skills and themes,
   project complexity, and quality signals (stars, activity, description quality)
3. Select the top {top_n} most impressive and relevant repositories.
   Use ONLY repositories from the list above, with their exact fullName.

For each selected repo, provide:
- relevanceScore (0-10): How well it matches the candidate's profile
- reason: Brief explanation of why this repo is impressive/relevant

Respond with JSON only:
{{
  "selectedRepos": [
    {{
      "name": "repo-name",
      "fullName": "username/repo-name",
      "url": "https://github.com/username/repo-name",
      "relevanceScore": 8,
      "reason": "Demonstrates advanced React skills with production-quality code"
    }}
  ]
}}"""

    @staticmethod
    def deep_analysis(
        repo_name: str,
        repo_url: str,
        reason: str,
        readme: Optional[str],
        languages: Dict[str, int],
        activity_level: str,
        recent_commits: int,
        resume_data: Dict[str, Any],
        technical_skills: List[str],
        career_level: str,
    ) -> str:
        return f"""You are conducting a deep technical analysis of a GitHub repository for candidate evaluation.

Repository: {repo_name}
URL: {repo_url}
Why Selected: {reason}

README Content:
{readme or "No README available"}

Languages Used (bytes):
{_dump(languages)}

Commit Activity (last 12 weeks): {recent_commits} commits ({activity_level})

Candidate's Resume Claims:
{_dump(resume_data)}

Candidate Profile:
- Skills: {", ".join(technical_skills) or "unknown"}
- Level: {career_level}

Analyze this repository:

1. Impressiveness: rate qualityScore (0-10) and impressivenessLevel: exceptional/strong/solid/basic
2. Resume Match: rate relevanceScore (0-10) and resumeMatchLevel:
   perfect_match/strong_match/partial_match/weak_match/no_match
   - List resume claims this project VALIDATES (resumeClaimsValidated)
   - List resume claims this project CONTRADICTS (resumeClaimsContradicted)
3. Technical Analysis: technologies used, strengths, concerns or red flags, overall insights

Respond with JSON only:
{{
  "qualityScore": 8,
  "relevanceScore": 9,
  "impressivenessLevel": "strong",
  "resumeMatchLevel": "strong_match",
  "technologies": ["React", "TypeScript", "Node.js"],
  "strengths": ["Well documented", "Good architecture"],
  "concerns": ["Limited test coverage"],
  "matchesResumeClaims": true,
  "resumeClaimsValidated": ["Claims 5 years React experience - validated by advanced React patterns"],
  "resumeClaimsContradicted": [],
  "insights": "Demonstrates strong full-stack skills with modern tooling."
}}"""

    @staticmethod
    def final_synthesis(
        technical_skills: List[str],
        career_level: str,
        project_themes: List[str],
        resume_data: Dict[str, Any],
        repo_analyses: List[Dict[str, Any]],
        job_description: Optional[str] = None,
    ) -> str:
        job_block = f"Job Requirements:\n{job_description}\n" if job_description else ""
        return f"""You are a senior technical recruiter providing a final hiring assessment.

Candidate Profile:
- Technical Skills: {", ".join(technical_skills) or "unknown"}
- Career Level: {career_level}
- Project Themes: {", ".join(project_themes) or "unknown"}

Resume Data:
{_dump(resume_data)}

GitHub Repository Analysis ({len(repo_analyses)} repositories):
{_dump(repo_analyses)}

{job_block}
Provide a hiring assessment:

1. overallScore: portfolio quality score (0-10)
2. strengths demonstrated through projects
3. weaknesses or gaps in the portfolio
4. concerns or red flags
5. resumeAlignment: resume-portfolio alignment score (0-10)
6. recommendation: strong_hire | interview | maybe | pass
7. technicalLevel: actual technical level demonstrated (may differ from resume claims)
8. standoutQualities that make this candidate unique

If the portfolio doesn't match resume claims, say so.

Respond with JSON only:
{{
  "overallScore": 8.5,
  "summary": "Strong backend developer with proven track record...",
  "strengths": ["Strength 1", "Strength 2"],
  "weaknesses": ["Gap 1"],
  "concerns": [],
  "resumeAlignment": 9,
  "recommendation": "interview",
  "technicalLevel": "mid-to-senior",
  "standoutQualities": ["Quality 1"]
}}"""
