"""
Test suite for the Vector Index

This module tests the SQL-backed vector index to ensure:
- Upserted vectors can be queried back by similarity
- Query results never exceed top_k and are sorted highest first
- Metadata filters are exact matches
- Upsert overwrites existing ids
- Deletes are idempotent and bulk deletes are best-effort

Run tests with: pytest backend/tests/test_vector_index.py -v
"""

import pytest
from unittest.mock import patch

from services.errors import ValidationError, VectorIndexError
from services.vector_index import (
    MAX_TOP_K,
    VectorIndex,
    get_vector_index,
    job_vector_id,
    parse_vector_id,
    reset_vector_index,
    resume_vector_id,
)


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def index():
    return VectorIndex(namespace="test-namespace")


@pytest.fixture
def populated_index(index):
    """Three resume vectors for job-a and one for job-b."""
    index.upsert(resume_vector_id("r1"), [1.0, 0.0, 0.0], {"type": "resume", "jobId": "job-a"})
    index.upsert(resume_vector_id("r2"), [0.8, 0.6, 0.0], {"type": "resume", "jobId": "job-a"})
    index.upsert(resume_vector_id("r3"), [0.0, 1.0, 0.0], {"type": "resume", "jobId": "job-a"})
    index.upsert(resume_vector_id("r4"), [1.0, 0.0, 0.0], {"type": "resume", "jobId": "job-b"})
    return index


# ============================================================================
# TEST CASES - ids
# ============================================================================

class TestVectorIds:

    def test_resume_and_job_prefixes(self):
        assert resume_vector_id("abc") == "resume-abc"
        assert job_vector_id("xyz") == "job-xyz"

    def test_parse_vector_id(self):
        assert parse_vector_id("resume-abc") == ("resume", "abc")
        assert parse_vector_id("job-xyz") == ("job", "xyz")
        assert parse_vector_id("item-123") == (None, "item-123")
        assert parse_vector_id("resume-") == (None, "resume-")


# ============================================================================
# TEST CASES - upsert / query
# ============================================================================

class TestQuery:

    def test_upsert_then_query_returns_the_vector(self, index):
        """An upserted vector is its own nearest neighbour with similarity ~1."""
        index.upsert("resume-only", [0.3, 0.4, 0.5], {"type": "resume"})

        matches = index.query([0.3, 0.4, 0.5], top_k=1)

        assert len(matches) == 1
        assert matches[0].id == "resume-only"
        assert matches[0].score == pytest.approx(1.0)
        assert matches[0].metadata == {"type": "resume"}

    def test_results_sorted_and_bounded_by_top_k(self, populated_index):
        matches = populated_index.query([1.0, 0.0, 0.0], top_k=2)

        assert len(matches) <= 2
        scores = [m.score for m in matches]
        assert scores == sorted(scores, reverse=True)

    def test_metadata_filter_is_exact(self, populated_index):
        matches = populated_index.query([1.0, 0.0, 0.0], top_k=10, filter={"jobId": "job-a"})

        assert {m.id for m in matches} == {"resume-r1", "resume-r2", "resume-r3"}
        assert [m.id for m in matches][0] == "resume-r1"

    def test_ties_keep_insertion_order(self, index):
        index.upsert("resume-first", [1.0, 0.0], {})
        index.upsert("resume-second", [1.0, 0.0], {})

        matches = index.query([1.0, 0.0], top_k=2)

        assert [m.id for m in matches] == ["resume-first", "resume-second"]

    def test_top_k_must_be_positive(self, index):
        with pytest.raises(ValidationError):
            index.query([1.0], top_k=0)

    def test_top_k_is_capped(self, index):
        index.upsert_many((f"resume-{i}", [1.0, float(i)], {}) for i in range(MAX_TOP_K + 5))

        matches = index.query([1.0, 1.0], top_k=MAX_TOP_K + 50)

        assert len(matches) == MAX_TOP_K

    def test_dimension_mismatch_is_skipped(self, index):
        index.upsert("resume-short", [1.0, 0.0], {})
        index.upsert("resume-long", [1.0, 0.0, 0.0], {})

        matches = index.query([1.0, 0.0, 0.0], top_k=5)

        assert [m.id for m in matches] == ["resume-long"]

    def test_upsert_overwrites(self, index):
        index.upsert("resume-x", [1.0, 0.0], {"version": 1})
        index.upsert("resume-x", [0.0, 1.0], {"version": 2})

        matches = index.query([0.0, 1.0], top_k=5)

        assert len(matches) == 1
        assert matches[0].metadata == {"version": 2}
        assert matches[0].score == pytest.approx(1.0)

    def test_namespaces_are_isolated(self, index):
        other = VectorIndex(namespace="other-namespace")
        index.upsert("resume-mine", [1.0, 0.0], {})
        other.upsert("resume-theirs", [1.0, 0.0], {})

        assert [m.id for m in index.query([1.0, 0.0], top_k=5)] == ["resume-mine"]

    def test_upsert_requires_values(self, index):
        with pytest.raises(ValidationError):
            index.upsert("resume-empty", [], {})


# ============================================================================
# TEST CASES - fetch / delete
# ============================================================================

class TestDelete:

    def test_delete_one_removes_vector(self, populated_index):
        populated_index.delete_one("resume-r1")

        assert populated_index.fetch("resume-r1") is None
        assert populated_index.fetch("resume-r2") is not None

    def test_delete_missing_id_is_noop(self, index):
        index.delete_one("resume-does-not-exist")

    def test_delete_many_is_best_effort(self, populated_index):
        """A failing id is reported and the remaining ids are still deleted."""
        original = populated_index.delete_one

        def flaky_delete(vector_id):
            if vector_id == "resume-r2":
                raise VectorIndexError("boom")
            original(vector_id)

        with patch.object(populated_index, "delete_one", side_effect=flaky_delete):
            failed = populated_index.delete_many(["resume-r1", "resume-r2", "resume-r3"])

        assert failed == ["resume-r2"]
        assert populated_index.fetch("resume-r1") is None
        assert populated_index.fetch("resume-r2") is not None
        assert populated_index.fetch("resume-r3") is None


# ============================================================================
# TEST CASES - singleton
# ============================================================================

class TestSingleton:

    def test_get_vector_index_returns_same_instance(self):
        assert get_vector_index() is get_vector_index()

    def test_reset_creates_new_instance(self):
        first = get_vector_index()
        reset_vector_index()
        assert get_vector_index() is not first
