# tests/test_database.py
import pytest
import sqlite3
from datetime import datetime, timedelta

from seo_audit.database import SqliteJobStore, get_job_store
from seo_audit.exceptions import ConfigurationError
from seo_audit.models import (
    AnalysisJob,
    AnalysisType,
    CategoryResult,
    Issue,
    JobStatus,
    Priority,
    Recommendation,
    SeoCheck,
    SeoValidation,
    Severity,
)


@pytest.fixture
def test_db(tmp_path):
    """Pytest fixture to set up and tear down a test job store."""
    db = SqliteJobStore(db_url=f"sqlite:///{tmp_path / 'jobs.db'}")
    yield db
    db.close()


def make_job(job_id="job-1", status=JobStatus.RUNNING, **overrides) -> AnalysisJob:
    defaults = dict(
        id=job_id,
        url="https://example.com",
        analysis_type=AnalysisType.TECHNICAL_SEO,
        expected_categories=["technical", "ux"],
        status=status,
    )
    defaults.update(overrides)
    return AnalysisJob(**defaults)


def test_upsert_and_get_roundtrip(test_db):
    """Tests a job and its category results survive storage unchanged."""
    job = make_job(
        status=JobStatus.PARTIAL_FAILURE,
        categories=[
            CategoryResult(
                category="technical",
                score=72,
                issues=[Issue(Severity.WARNING, "Title is 78 characters", "title")],
                attempts=1,
                prompt_id="tpl-1",
            ),
            CategoryResult.failed("ux", "TransientLLMError: gave up", attempts=3),
        ],
        overall_score=72.0,
        error_reason="PartialFailure",
        error="1 of 2 categories did not produce a score: ux (failed)",
    )

    test_db.upsert_job(job)

    assert test_db.get_job("job-1") == job


def test_get_missing_job(test_db):
    assert test_db.get_job("nope") is None


def test_upsert_is_idempotent(test_db):
    """Tests repeating a write leaves exactly one row."""
    job = make_job()
    test_db.upsert_job(job)
    test_db.upsert_job(job)

    rows = test_db.conn.execute("SELECT id FROM analysis_jobs WHERE id = ?", ("job-1",)).fetchall()
    assert len(rows) == 1


def test_upsert_updates_existing_row(test_db):
    job = make_job()
    test_db.upsert_job(job)

    job.status = JobStatus.COMPLETED
    job.overall_score = 88.0
    test_db.upsert_job(job)

    stored = test_db.get_job("job-1")
    assert stored.status == JobStatus.COMPLETED
    assert stored.overall_score == 88.0


def test_late_non_terminal_write_ignored(test_db):
    """Tests a stale running write cannot overwrite a terminal row."""
    test_db.upsert_job(make_job(status=JobStatus.COMPLETED, overall_score=90.0))
    test_db.upsert_job(make_job(status=JobStatus.RUNNING))

    stored = test_db.get_job("job-1")
    assert stored.status == JobStatus.COMPLETED
    assert stored.overall_score == 90.0


def test_list_jobs_newest_first_with_filter(test_db):
    now = datetime.now()
    test_db.upsert_job(make_job("old", status=JobStatus.COMPLETED, created_at=now - timedelta(days=2)))
    test_db.upsert_job(make_job("mid", status=JobStatus.FAILED, created_at=now - timedelta(days=1)))
    test_db.upsert_job(make_job("new", status=JobStatus.COMPLETED, created_at=now))

    assert [j.id for j in test_db.list_jobs()] == ["new", "mid", "old"]
    assert [j.id for j in test_db.list_jobs(status=JobStatus.COMPLETED)] == ["new", "old"]
    assert [j.id for j in test_db.list_jobs(limit=1, offset=1)] == ["mid"]


def test_delete_job(test_db):
    test_db.upsert_job(make_job())

    assert test_db.delete_job("job-1") is True
    assert test_db.delete_job("job-1") is False
    assert test_db.get_job("job-1") is None


def test_count_by_status(test_db):
    test_db.upsert_job(make_job("a", status=JobStatus.COMPLETED))
    test_db.upsert_job(make_job("b", status=JobStatus.COMPLETED))
    test_db.upsert_job(make_job("c", status=JobStatus.FAILED))

    assert test_db.count_by_status() == {"completed": 2, "failed": 1}


def test_get_job_store_factory(tmp_path):
    store = get_job_store(f"sqlite:///{tmp_path / 'factory.db'}")
    try:
        assert isinstance(store, SqliteJobStore)
    finally:
        store.close()


@pytest.mark.parametrize("url", ["", None, "postgresql://localhost/seo"])
def test_get_job_store_rejects_bad_urls(url):
    with pytest.raises(ConfigurationError):
        get_job_store(url)


def test_review_fields_roundtrip(test_db):
    """Tests rule checks, summary and recommendations are stored with the job."""
    check = SeoCheck(
        area="title_tag",
        score=20,
        issues=["Title too short (less than 30 characters)"],
        recommendations=["Expand title to 50-60 characters"],
        measured={"length": 12},
    )
    job = make_job(
        status=JobStatus.COMPLETED,
        validation=SeoValidation(checks=[check], overall_score=20),
        summary="YOUR SEO SITUATION: the title needs work.",
        recommendations=[
            Recommendation(title="Lengthen the title", priority=Priority.HIGH, category="technical"),
        ],
    )

    test_db.upsert_job(job)

    assert test_db.get_job("job-1") == job


def test_old_schema_gets_new_columns(tmp_path):
    """Tests a database created before the review columns existed is upgraded on open."""
    path = tmp_path / "old.db"
    conn = sqlite3.connect(path)
    conn.execute("""
        CREATE TABLE analysis_jobs (
            id TEXT PRIMARY KEY, url TEXT NOT NULL, analysis_type TEXT NOT NULL,
            status TEXT NOT NULL, created_at TIMESTAMP NOT NULL,
            updated_at TIMESTAMP NOT NULL, overall_score REAL, custom_prompt_id TEXT,
            error TEXT, error_reason TEXT, expected_categories TEXT NOT NULL,
            categories TEXT NOT NULL
        )
    """)
    conn.execute(
        "INSERT INTO analysis_jobs VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        ("legacy", "https://example.com", "technical-seo", "completed",
         datetime.now().isoformat(), datetime.now().isoformat(), 80.0, None, None, None,
         '["technical"]', "[]"),
    )
    conn.commit()
    conn.close()

    store = SqliteJobStore(f"sqlite:///{path}")
    try:
        assert {"validation", "summary", "recommendations"} <= store.get_table_columns()
        legacy = store.get_job("legacy")
        assert legacy.validation is None
        assert legacy.recommendations == []
        store.upsert_job(make_job("fresh", summary="ok"))
        assert store.get_job("fresh").summary == "ok"
    finally:
        store.close()
