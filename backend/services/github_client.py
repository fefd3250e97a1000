"""
GitHub API client for fetching repository and user data
Uses GitHub REST API v3 (read-only). A GITHUB_TOKEN raises the rate limit
but is optional.
"""

import logging
import re
from typing import Any, Dict, List, Optional

import requests

import config
from services.errors import GitHubError, RateLimitError

logger = logging.getLogger(__name__)

PER_PAGE = 100

_USERNAME_PATTERNS = [
    re.compile(r"github\.com/([^/?#\s]+)", re.IGNORECASE),
    re.compile(r"^@?([A-Za-z0-9-]+)$"),
]


def _headers(accept: str = "application/vnd.github.v3+json") -> Dict[str, str]:
    headers = {"Accept": accept}
    if config.GITHUB_TOKEN:
        headers["Authorization"] = f"Bearer {config.GITHUB_TOKEN}"
    return headers


def _get(path: str, params: Optional[Dict[str, Any]] = None, accept: Optional[str] = None) -> requests.Response:
    """
    GET a GitHub API path and raise on anything but success.

    Raises:
        RateLimitError: 429, or 403 with the rate limit exhausted
        GitHubError: any other non-2xx status, timeout or connection failure
    """
    url = f"{config.GITHUB_API_URL}{path}"
    try:
        response = requests.get(
            url,
            headers=_headers(accept) if accept else _headers(),
            params=params,
            timeout=config.GITHUB_TIMEOUT_SECONDS,
        )
    except requests.Timeout as e:
        raise GitHubError(f"GitHub API timed out: {path}") from e
    except requests.RequestException as e:
        raise GitHubError(f"GitHub API request failed: {e}") from e

    if response.status_code == 429 or (
        response.status_code == 403 and response.headers.get("X-RateLimit-Remaining") == "0"
    ):
        retry_after = response.headers.get("Retry-After")
        raise RateLimitError(
            "GitHub API rate limit exceeded",
            retry_after=float(retry_after) if retry_after and retry_after.isdigit() else None,
        )

    if not response.ok:
        raise GitHubError(
            f"GitHub API error: {response.status_code} {response.reason}",
            status=response.status_code,
        )

    return response


def _get_json(path: str, params: Optional[Dict[str, Any]] = None) -> Any:
    """GET a GitHub API path and decode the JSON body; a malformed body is a GitHubError."""
    response = _get(path, params=params)
    try:
        return response.json()
    except ValueError as e:
        raise GitHubError(f"GitHub API returned invalid JSON: {path}", status=response.status_code) from e



def extract_github_username(url: Optional[str]) -> Optional[str]:
    """
    Extract GitHub username from various GitHub URL formats.

    Accepts "https://github.com/user", "github.com/user/repo", "@user" or a bare "user".
    """
    if not url:
        return None

    text = url.strip()
    for pattern in _USERNAME_PATTERNS:
        match = pattern.search(text)
        if match and match.group(1):
            return match.group(1)

    return None


def fetch_user_profile(username: str) -> Dict[str, Any]:
    """Fetch user profile information."""
    return _get_json(f"/users/{username}")


def fetch_user_repos(username: str, include_forked: bool = False) -> List[Dict[str, Any]]:
    """
    Fetch user's public repositories, most recently updated first.

    Archived and disabled repositories are always dropped; forks unless
    `include_forked` is set.
    """
    repos: List[Dict[str, Any]] = []

    for page in range(1, config.GITHUB_MAX_PAGES + 1):
        batch = _get_json(
            f"/users/{username}/repos",
            params={"sort": "updated", "per_page": PER_PAGE, "page": page},
        )
        if not isinstance(batch, list):
            raise GitHubError("GitHub API returned an unexpected repository list")
        repos.extend(batch)
        if len(batch) < PER_PAGE:
            break

    if not include_forked:
        repos = [repo for repo in repos if not repo.get("fork")]

    return [repo for repo in repos if not repo.get("archived") and not repo.get("disabled")]


def fetch_repo_languages(owner: str, repo: str) -> Dict[str, int]:
    """Fetch languages used in a repository (language -> bytes)."""
    return _get_json(f"/repos/{owner}/{repo}/languages")


def fetch_repo_readme(owner: str, repo: str) -> Optional[str]:
    """Fetch README content for a repository. Returns None when unavailable."""
    try:
        return _get(f"/repos/{owner}/{repo}/readme", accept="application/vnd.github.v3.raw").text
    except (GitHubError, RateLimitError) as e:
        logger.warning("Error fetching README for %s/%s: %s", owner, repo, e)
        return None


def fetch_repo_commit_activity(owner: str, repo: str) -> List[Dict[str, Any]]:
    """
    Fetch weekly commit activity for a repository (last 52 weeks).

    GitHub answers 202 while it computes the statistics; that counts as no data.
    """
    try:
        response = _get(f"/repos/{owner}/{repo}/stats/commit_activity")
    except (GitHubError, RateLimitError) as e:
        logger.warning("Error fetching commit activity for %s/%s: %s", owner, repo, e)
        return []

    if response.status_code == 202:
        return []

    try:
        data = response.json()
    except ValueError:
        logger.warning("Malformed commit activity for %s/%s", owner, repo)
        return []
    return data if isinstance(data, list) else []


def aggregate_languages(repos: List[Dict[str, Any]]) -> Dict[str, int]:
    """Count repositories per primary language."""
    counts: Dict[str, int] = {}
    for repo in repos:
        language = repo.get("language")
        if language:
            counts[language] = counts.get(language, 0) + 1
    return counts


def calculate_activity_score(commit_activity: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Calculate activity score based on recent commits.

    Returns:
        {"score": commits in the last 12 weeks, "level": activity label}
    """
    recent_weeks = commit_activity[-12:]  # Last 3 months
    total_commits = sum(int(week.get("total", 0) or 0) for week in recent_weeks)

    level = "inactive"
    if total_commits > 100:
        level = "very active"
    elif total_commits > 50:
        level = "active"
    elif total_commits > 20:
        level = "moderate"
    elif total_commits > 5:
        level = "light"

    return {"score": total_commits, "level": level}


def fetch_github_portfolio(github_url: str) -> Dict[str, Any]:
    """
    Fetch comprehensive GitHub data for a user.

    Raises:
        GitHubError: the URL has no username or the user can't be fetched
    """
    username = extract_github_username(github_url)
    if not username:
        raise GitHubError("Invalid GitHub URL or username")

    profile = fetch_user_profile(username)
    repos = fetch_user_repos(username, include_forked=False)

    return {
        "username": username,
        "profile": profile,
        "repos": repos,
        "languageStats": aggregate_languages(repos),
        "totalRepos": len(repos),
        "totalStars": sum(int(repo.get("stargazers_count", 0) or 0) for repo in repos),
    }
