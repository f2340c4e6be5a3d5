"""Tests for the HTTP trigger: auth, cron routes and health."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from cronspine.api import create_app
from cronspine.api.deps import get_executor
from cronspine.jobs.registry import JobRegistry

AUTH = {"Authorization": "Bearer s3cret"}


@pytest.fixture
def registry(recording_job) -> JobRegistry:
    registry = JobRegistry()
    job, _ = recording_job()
    registry.register(job)
    return registry


@pytest.fixture
def client(settings, registry, conn) -> TestClient:
    return TestClient(create_app(settings, registry, conn=conn))


class TestAuth:
    def test_missing_secret_rejected(self, client):
        response = client.get("/cron/test-job")
        assert response.status_code == 401
        body = response.json()
        assert body["title"] == "Unauthorized"
        assert body["status"] == 401

    def test_wrong_secret_rejected(self, client):
        response = client.get("/cron/test-job", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_bearer_accepted(self, client):
        assert client.get("/cron/test-job", headers=AUTH).status_code == 200

    def test_header_accepted(self, client):
        response = client.post("/cron/test-job", headers={"X-Cron-Secret": "s3cret"})
        assert response.status_code == 200

    def test_health_and_docs_need_no_secret(self, client):
        assert client.get("/health").status_code == 200
        assert client.get("/openapi.json").status_code == 200

    def test_unconfigured_secret_refuses_in_production(self, settings, registry, conn):
        app = create_app(settings.model_copy(update={"cron_secret": None}), registry, conn=conn)
        response = TestClient(app).get("/cron/test-job")
        assert response.status_code == 401
        assert response.json()["detail"] == "Cron secret is not configured on this server."

    def test_unconfigured_secret_open_in_development(self, settings, registry, conn):
        dev = settings.model_copy(update={"cron_secret": None, "environment": "development"})
        response = TestClient(create_app(dev, registry, conn=conn)).get("/cron/test-job")
        assert response.status_code == 200


class TestTrigger:
    def test_runs_batch(self, client, items):
        items.enqueue("test-job", "A")
        items.enqueue("test-job", "B")

        response = client.get("/cron/test-job", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["processed"] == 2
        assert body["completed"] == 2
        assert body["hasMore"] is False
        assert body["duration"].endswith("ms")
        assert "timestamp" in body

    def test_unknown_job(self, client):
        response = client.get("/cron/nope", headers=AUTH)
        assert response.status_code == 404
        assert response.json() == {"title": "Not Found", "status": 404, "detail": "Unknown job: nope"}

    def test_unknown_variant(self, client):
        response = client.get("/cron/test-job?job=screening", headers=AUTH)
        assert response.status_code == 404

    def test_crash_answers_500(self, settings, recording_job, conn):
        def broken_calendar(day):
            raise RuntimeError("calendar service down")

        job, _ = recording_job(daily=True, is_business_day=broken_calendar)
        registry = JobRegistry()
        registry.register(job)
        client = TestClient(create_app(settings, registry, conn=conn))

        response = client.get("/cron/test-job", headers=AUTH)

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "calendar service down"

    def test_all_variants(self, settings, recording_job, conn, items):
        mark, _ = recording_job(variant="mark-to-market")
        screening, _ = recording_job(variant="screening")
        registry = JobRegistry()
        registry.register(mark)
        registry.register(screening)
        items.enqueue(mark.job_type, "index:1")
        client = TestClient(create_app(settings, registry, conn=conn))

        body = client.get("/cron/test-job?job=all", headers=AUTH).json()

        assert body["success"] is True
        assert set(body["results"]) == {"mark-to-market", "screening"}
        assert body["results"]["mark-to-market"]["processed"] == 1
        assert body["results"]["screening"]["processed"] == 0
        assert body["hasMore"] is False

    def test_all_variants_share_one_budget(self, settings, recording_job, conn, items, executor, mono):
        mark, mark_rec = recording_job(variant="mark-to-market")
        screening, screening_rec = recording_job(variant="screening")
        mark_rec.on_call[("*", "RESEARCH")] = lambda: mono.advance(55)
        registry = JobRegistry()
        registry.register(mark)
        registry.register(screening)
        items.enqueue(mark.job_type, "index:1")
        items.enqueue(screening.job_type, "index:1")
        app = create_app(settings, registry, conn=conn)
        app.dependency_overrides[get_executor] = lambda: executor

        body = TestClient(app).get("/cron/test-job?job=all", headers=AUTH).json()

        assert body["hasMore"] is True
        assert body["results"]["mark-to-market"]["processed"] == 0
        skipped = body["results"]["screening"]
        assert skipped["processed"] == 0
        assert skipped["hasMore"] is True
        assert skipped["message"] == "time budget exhausted before the batch started"
        assert not screening_rec.calls

    def test_all_without_variants(self, client):
        assert client.get("/cron/test-job?job=all", headers=AUTH).status_code == 404


class TestStatus:
    def test_reports_pending_work(self, client, items):
        items.enqueue("test-job", "A")

        body = client.get("/cron/test-job/status", headers=AUTH).json()

        assert body["jobType"] == "test-job"
        assert body["pending"] == 1
        assert body["items"]["PENDING"] == 1
        assert body["progress"] is None

    def test_progress_after_run(self, client, items):
        items.enqueue("test-job", "A")
        client.get("/cron/test-job", headers=AUTH)

        body = client.get("/cron/test-job/status", headers=AUTH).json()

        assert body["pending"] == 0
        assert body["progress"]["processed_count"] == 1
        assert body["progress"]["completed_at"] is not None


class TestHealth:
    def test_healthy(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["jobs"] == ["test-job"]
        assert body["checks"]["database"]["status"] == "ok"

    def test_database_down(self, settings, registry):
        class BrokenConnection:
            def execute(self, *args, **kwargs):
                raise RuntimeError("disk I/O error")

        client = TestClient(create_app(settings, registry, conn=BrokenConnection()))
        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"
