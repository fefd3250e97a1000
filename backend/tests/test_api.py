"""
Test suite for the HTTP API

This module tests the FastAPI endpoints to ensure:
- Jobs can be created, listed and fetched
- Resume uploads (DOCX and ZIP) run the candidate pipeline
- Ranking, matching and portfolio endpoints return the documented shapes
- Every failure renders as {"success": false, "error": ...} with the right status

Run tests with: pytest backend/tests/test_api.py -v
"""

import io
import zipfile

import docx
import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch

from api import app
from services.candidate_pipeline import CandidatePipeline
from services.errors import RateLimitError
from services.schemas import ParsedResumeData, PortfolioAnalysisResult
from services.vector_index import get_vector_index


# ============================================================================
# FIXTURES - Reusable test setup components
# ============================================================================

def structure_first_line(text):
    """Fake structurer reading "Name|email|github" from the first line."""
    name, email, github = (text.split("\n")[0].split("|") + ["", "", ""])[:3]
    return ParsedResumeData(name=name, email=email, github=github or None, skills=["Go"], rawText=text)


class StubAnalyzer:
    def __init__(self):
        self.calls = []

    def analyze(self, analysis_input):
        self.calls.append(analysis_input.candidateId)
        return PortfolioAnalysisResult(
            candidateId=analysis_input.candidateId,
            overallScore=9.2,
            recommendation="strong_hire",
            summary="Excellent Go portfolio.",
            resumeAlignment=9.0,
            technicalLevel="senior",
        )


@pytest.fixture
def analyzer():
    return StubAnalyzer()


@pytest.fixture
def test_client(fake_embedder, analyzer):
    """
    TestClient wired to a pipeline with fake capabilities.
    The ranking engine's default embedder is replaced as well.
    """
    pipeline = CandidatePipeline(
        structurer=structure_first_line,
        embedder=fake_embedder,
        index=get_vector_index(),
        analyzer=analyzer,
    )
    with patch('api.get_candidate_pipeline', return_value=pipeline), \
         patch('services.ranking_engine.generate_embedding', side_effect=fake_embedder), \
         patch('api.generate_embedding', side_effect=fake_embedder):
        yield TestClient(app)


def make_docx(*lines):
    document = docx.Document()
    for line in lines:
        document.add_paragraph(line)
    buffer = io.BytesIO()
    document.save(buffer)
    return buffer.getvalue()


def make_zip(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in files.items():
            archive.writestr(name, data)
    return buffer.getvalue()


DOCX_MIME = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


@pytest.fixture
def job(test_client):
    response = test_client.post("/api/jobs", json={
        "title": "Backend Engineer",
        "description": "Senior Backend Engineer, Go, Kubernetes",
    })
    return response.json()["job"]


def upload(test_client, job_id, files, analyze_top=True):
    return test_client.post(
        f"/api/jobs/{job_id}/resumes",
        params={"analyzeTop": str(analyze_top).lower()},
        files=[("files", (name, data, DOCX_MIME)) for name, data in files],
    )


# ============================================================================
# TEST CASES - jobs
# ============================================================================

class TestJobs:

    def test_health(self, test_client):
        assert test_client.get("/api/health").json() == {"success": True, "status": "ok"}

    def test_create_list_and_get(self, test_client, job):
        assert job["title"] == "Backend Engineer"
        assert job["hasEmbedding"] is False

        listed = test_client.get("/api/jobs").json()
        assert [j["id"] for j in listed["jobs"]] == [job["id"]]
        assert listed["jobs"][0]["candidateCount"] == 0

        fetched = test_client.get(f"/api/jobs/{job['id']}").json()
        assert fetched["job"]["candidates"] == []

    def test_missing_job_is_404(self, test_client):
        response = test_client.get("/api/jobs/does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Job not found"}

    def test_blank_title_is_400(self, test_client):
        response = test_client.post("/api/jobs", json={"title": ""})

        assert response.status_code == 400
        assert response.json()["success"] is False


# ============================================================================
# TEST CASES - uploads and status
# ============================================================================

class TestUploads:

    def test_docx_upload_creates_candidates(self, test_client, job, analyzer):
        response = upload(test_client, job["id"], [
            ("jane.docx", make_docx("Jane|jane@example.com|https://github.com/jane", "Go Kubernetes backend")),
            ("pixel.docx", make_docx("Pixel|pixel@example.com|", "React CSS frontend")),
        ])

        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["analyzed"] == 2
        assert body["skipped"] == 0
        assert len(body["matches"]) == 2
        assert body["portfolio"]["analyzed"] == 1
        assert len(analyzer.calls) == 1

        job_out = test_client.get(f"/api/jobs/{job['id']}").json()["job"]
        assert [c["name"] for c in job_out["candidates"]][0] == "Jane"
        assert job_out["candidates"][0]["portfolio"]["recommendation"] == "strong_hire"

    def test_zip_upload_is_flattened(self, test_client, job):
        archive = make_zip({
            "resumes/a.docx": make_docx("A|a@example.com|", "Go"),
            "resumes/b.docx": make_docx("B|b@example.com|", "Go"),
            "resumes/notes.txt": b"ignore me",
            "__MACOSX/resumes/._a.docx": b"junk",
        })

        response = test_client.post(
            f"/api/jobs/{job['id']}/resumes",
            params={"analyzeTop": "false"},
            files=[("files", ("batch.zip", archive, "application/zip"))],
        )

        body = response.json()
        assert body["analyzed"] == 2
        assert sorted(o["filename"] for o in body["outcomes"]) == ["a.docx", "b.docx"]

    def test_corrupt_zip_member_is_skipped(self, test_client, job):
        archive = make_zip({
            "bad.pdf": b"not a pdf",
            "good.docx": make_docx("Good|good@example.com|", "Go backend"),
        })

        response = test_client.post(
            f"/api/jobs/{job['id']}/resumes",
            params={"analyzeTop": "false"},
            files=[("files", ("batch.zip", archive, "application/zip"))],
        )

        body = response.json()
        assert response.status_code == 200
        assert (body["analyzed"], body["skipped"]) == (1, 1)
        statuses = {o["filename"]: o["status"] for o in body["outcomes"]}
        assert statuses == {"bad.pdf": "skipped", "good.docx": "success"}
        assert body["errors"][0].startswith("bad.pdf: Could not read file")

    def test_corrupt_loose_file_is_skipped(self, test_client, job):
        response = upload(test_client, job["id"], [
            ("broken.docx", b"definitely not a docx"),
            ("ok.docx", make_docx("Ok|ok@example.com|", "Go")),
        ], analyze_top=False)

        body = response.json()
        assert response.status_code == 200
        assert (body["analyzed"], body["skipped"]) == (1, 1)

    def test_unsupported_extension_is_400(self, test_client, job):
        response = test_client.post(
            f"/api/jobs/{job['id']}/resumes",
            files=[("files", ("resume.txt", b"plain text", "text/plain"))],
        )

        assert response.status_code == 400
        assert "Unsupported file type" in response.json()["error"]

    def test_upload_for_missing_job_is_404(self, test_client):
        response = upload(test_client, "nope", [("a.docx", make_docx("A|a@example.com|", "Go"))])

        assert response.status_code == 404

    def test_portfolio_status(self, test_client, job):
        idle = test_client.get(f"/api/jobs/{job['id']}/portfolio-status").json()
        assert idle["processing"]["stage"] == "idle"

        upload(test_client, job["id"], [
            ("a.docx", make_docx("A|a@example.com|https://github.com/a", "Go")),
        ], analyze_top=False)

        status = test_client.get(f"/api/jobs/{job['id']}/portfolio-status").json()
        assert status["processing"]["stage"] == "complete"
        assert status["totalCandidates"] == 1
        assert status["candidatesWithGithub"] == 1
        assert status["pendingAnalysis"] == 1


# ============================================================================
# TEST CASES - ranking and matching
# ============================================================================

class TestRanking:

    def test_rank_endpoint(self, test_client, job):
        upload(test_client, job["id"], [
            ("go.docx", make_docx("Gopher|go@example.com|", "Senior backend engineer Go Kubernetes")),
            ("fe.docx", make_docx("Pixel|fe@example.com|", "React CSS HTML frontend")),
        ], analyze_top=False)

        body = test_client.post(f"/api/jobs/{job['id']}/rank", json={"threshold": 0.0}).json()

        assert body["count"] == 2
        scores = [r["score"] for r in body["rankings"]]
        assert scores == sorted(scores, reverse=True)
        assert all(0 <= s <= 1 for s in scores)

    def test_rank_threshold_out_of_range_is_400(self, test_client, job):
        response = test_client.post(f"/api/jobs/{job['id']}/rank", json={"threshold": 2})

        assert response.status_code == 400

    def test_match_candidates_requires_description(self, test_client):
        response = test_client.post("/api/match-candidates", json={"jobDescription": "   "})

        assert response.status_code == 400
        assert response.json()["error"] == "jobDescription is required and must be a string"

    def test_match_candidates(self, test_client, job):
        upload(test_client, job["id"], [
            ("fe.docx", make_docx("Pixel|fe@example.com|", "React CSS frontend")),
        ], analyze_top=False)

        body = test_client.post("/api/match-candidates", json={"jobDescription": "React frontend"}).json()

        assert body["success"] is True
        assert body["count"] == 1

    def test_add_embedding(self, test_client):
        body = test_client.post("/api/add-embedding", json={
            "text": "Go developer",
            "metadata": {"id": "resume-manual", "type": "resume"},
        }).json()

        assert body == {"success": True, "message": "Embedding added successfully", "id": "resume-manual"}
        assert get_vector_index().fetch("resume-manual") is not None

    def test_rate_limit_is_429(self, test_client):
        with patch('api.generate_embedding', side_effect=RateLimitError("Embedding provider rate limit exceeded", retry_after=5)):
            response = test_client.post("/api/add-embedding", json={"text": "Go developer"})

        assert response.status_code == 429
        assert response.json()["retryAfter"] == 5
        assert response.headers["Retry-After"] == "5"


# ============================================================================
# TEST CASES - candidates and portfolios
# ============================================================================

class TestCandidates:

    def _seed(self, test_client, job):
        upload(test_client, job["id"], [
            ("a.docx", make_docx("A|a@example.com|https://github.com/a", "Go")),
        ], analyze_top=False)
        return test_client.get("/api/candidates", params={"jobId": job["id"]}).json()["candidates"][0]

    def test_list_and_get_candidate(self, test_client, job):
        candidate = self._seed(test_client, job)

        detail = test_client.get(f"/api/candidates/{candidate['id']}").json()["candidate"]

        assert detail["name"] == "A"
        assert len(detail["resumes"]) == 1
        assert detail["portfolio"]["github"] == "https://github.com/a"
        assert 0 <= detail["matchScore"] <= 1

    def test_portfolio_not_found_until_analyzed(self, test_client, job):
        candidate = self._seed(test_client, job)

        assert test_client.get(f"/api/portfolio/{candidate['id']}").status_code == 404

    def test_portfolio_analyze_endpoint(self, test_client, job):
        candidate = self._seed(test_client, job)

        with patch('api.PortfolioAnalyzer') as analyzer_class:
            analyzer_class.return_value = StubAnalyzer()
            response = test_client.post("/api/portfolio-analyze", json={
                "candidateId": candidate["id"],
                "resumeData": {"skills": ["Go"], "rawText": "Go"},
                "github": "https://github.com/a",
            })

        assert response.json()["analysis"]["recommendation"] == "strong_hire"
        stored = test_client.get(f"/api/portfolio/{candidate['id']}").json()["portfolio"]
        assert stored["overallScore"] == 9.2
        assert stored["analyzedAt"] is not None

    def test_portfolio_analyze_requires_github(self, test_client, job):
        candidate = self._seed(test_client, job)

        response = test_client.post("/api/portfolio-analyze", json={
            "candidateId": candidate["id"],
            "resumeData": {"skills": ["Go"]},
        })

        assert response.status_code == 400

    def test_analyze_top_candidates_endpoint(self, test_client, job, analyzer):
        self._seed(test_client, job)

        body = test_client.post("/api/jobs/analyze-top-candidates", json={"jobId": job["id"], "topN": 3}).json()

        assert body["analyzed"] == 1
        assert len(analyzer.calls) == 1

    def test_delete_candidate(self, test_client, job):
        candidate = self._seed(test_client, job)

        response = test_client.delete(f"/api/candidates/{candidate['id']}")

        assert response.json()["success"] is True
        assert test_client.get(f"/api/candidates/{candidate['id']}").status_code == 404
