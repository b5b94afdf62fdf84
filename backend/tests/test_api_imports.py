"""HTTP contract tests for the bulk import and polling endpoints."""

import pytest
from fastapi.testclient import TestClient

from idea_importer.main import create_app
from idea_importer.services.import_coordinator import ImportCoordinator

from conftest import FakeSink, idea_rows, make_csv, make_settings


@pytest.fixture
def coordinator():
    return ImportCoordinator(FakeSink(), settings=make_settings(max_upload_bytes=4096))


@pytest.fixture
def client(coordinator, db_engine):
    app = create_app(coordinator=coordinator, db_engine=db_engine)
    return TestClient(app)


def upload(client, content, filename="ideas.csv", content_type="text/csv"):
    return client.post(
        "/api/ideas/bulk-import",
        files={"file": (filename, content, content_type)},
    )


class TestBulkImport:
    def test_accepts_upload_and_returns_job_id(self, client, coordinator):
        response = upload(client, make_csv(idea_rows(3)))

        assert response.status_code == 202
        body = response.json()
        assert body["status"] in ("queued", "processing", "completed")
        coordinator.wait(body["jobId"], timeout=30)

        poll = client.get(f"/api/import-jobs/{body['jobId']}")
        assert poll.status_code == 200
        job = poll.json()
        assert job["status"] == "completed"
        assert job["totalRows"] == job["processedRows"] == job["successfulRows"] == 3
        assert job["failedRows"] == 0
        assert len(job["results"]) == 3
        assert job["sourceMeta"]["filename"] == "ideas.csv"

    def test_row_errors_are_reported_in_poll(self, client, coordinator):
        response = upload(client, make_csv([("Good", "d"), ("", "no title")]))
        job_id = response.json()["jobId"]
        coordinator.wait(job_id, timeout=30)

        job = client.get(f"/api/import-jobs/{job_id}").json()
        assert job["status"] == "completed"
        assert job["errors"] == [{"row": 2, "error": "missing required field: title"}]

    def test_unparsable_file_returns_400_with_job_id(self, client):
        response = upload(client, b"title,description\n")

        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["error"] == "Spreadsheet contains no data rows"

        job = client.get(f"/api/import-jobs/{detail['jobId']}").json()
        assert job["status"] == "failed"
        assert job["totalRows"] == 0

    def test_unsupported_file_type(self, client):
        response = upload(client, b"%PDF-1.4", filename="ideas.pdf", content_type="application/pdf")

        assert response.status_code == 400
        assert "CSV" in response.json()["detail"]["error"]

    def test_oversized_upload(self, client):
        response = upload(client, make_csv(idea_rows(500)))
        assert response.status_code == 413

    def test_missing_file_field(self, client):
        response = client.post("/api/ideas/bulk-import")
        assert response.status_code == 422


class TestJobEndpoints:
    def test_unknown_job_returns_404(self, client):
        assert client.get("/api/import-jobs/does-not-exist").status_code == 404
        assert client.post("/api/import-jobs/does-not-exist/cancel").status_code == 404

    def test_cancel_finished_job_is_a_no_op(self, client, coordinator):
        job_id = upload(client, make_csv(idea_rows(1))).json()["jobId"]
        coordinator.wait(job_id, timeout=30)

        response = client.post(f"/api/import-jobs/{job_id}/cancel")
        assert response.status_code == 202
        assert response.json()["status"] == "completed"
        assert response.json()["cancelRequested"] is False

    def test_list_jobs_by_status(self, client, coordinator):
        job_id = upload(client, make_csv(idea_rows(2))).json()["jobId"]
        coordinator.wait(job_id, timeout=30)
        upload(client, b"", filename="empty.csv")

        completed = client.get("/api/import-jobs", params={"status": "completed"}).json()
        failed = client.get("/api/import-jobs", params={"status": "failed"}).json()

        assert [job["id"] for job in completed] == [job_id]
        assert len(failed) == 1

    def test_list_rejects_unknown_status(self, client):
        assert client.get("/api/import-jobs", params={"status": "paused"}).status_code == 422


class TestHealth:
    def test_live(self, client):
        assert client.get("/health/live").json()["status"] == "ok"

    def test_ready_checks_database(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["checks"]["database"]["status"] == "healthy"
