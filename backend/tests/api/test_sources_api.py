"""HTTP tests for /api/v1/sources and /api/v1/trigger."""

from __future__ import annotations

import uuid

from grantwatch.models.enums import JobStatus, SourceStatus, SourceType

API = "/api/v1"


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class TestSourceCatalog:
    def test_create(self, client) -> None:
        response = client.post(f"{API}/sources", json={"url": "https://example.org/calls", "type": "FOUNDATION"})

        assert response.status_code == 201
        body = response.json()
        assert body["url"] == "https://example.org/calls"
        assert body["frequency"] == "WEEKLY"
        assert body["status"] == "ACTIVE"
        assert body["failCount"] == 0
        assert body["lastScrapedAt"] is None

    def test_create_duplicate(self, client, make_source) -> None:
        make_source(url="https://example.org/dup")

        response = client.post(f"{API}/sources", json={"url": "https://example.org/dup", "type": "GOV"})

        assert response.status_code == 409

    def test_create_rejects_unknown_type(self, client) -> None:
        response = client.post(f"{API}/sources", json={"url": "https://example.org/x", "type": "CHARITY"})
        assert response.status_code == 422

    def test_list_filters_and_paginates(self, client, make_source) -> None:
        for _ in range(3):
            make_source(type=SourceType.NGO)
        make_source(type=SourceType.GOV)

        response = client.get(f"{API}/sources", params={"type": "NGO", "limit": 2})

        assert response.status_code == 200
        body = response.json()
        assert len(body["sources"]) == 2
        assert all(source["type"] == "NGO" for source in body["sources"])
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "totalPages": 2}

    def test_get_with_metrics(self, client, make_source, make_job) -> None:
        source = make_source()
        make_job(source, status=JobStatus.SUCCESS, duration=1200, total_found=4)
        make_job(source, status=JobStatus.FAILED, duration=800, total_found=0)

        response = client.get(f"{API}/sources/{source.id}")

        assert response.status_code == 200
        metrics = response.json()["metrics"]
        assert metrics["totalJobs"] == 2
        assert metrics["successfulJobs"] == 1
        assert metrics["successRate"] == 50.0
        assert metrics["statusBreakdown"] == {"SUCCESS": 1, "FAILED": 1}
        assert len(metrics["recentPerformance"]) == 2

    def test_get_unknown(self, client) -> None:
        assert client.get(f"{API}/sources/{uuid.uuid4()}").status_code == 404

    def test_update(self, client, make_source) -> None:
        source = make_source()

        response = client.put(f"{API}/sources/{source.id}", json={"frequency": "DAILY", "region": "Midwest"})

        assert response.status_code == 200
        assert response.json()["frequency"] == "DAILY"
        assert response.json()["region"] == "Midwest"
        assert response.json()["url"] == source.url

    def test_update_unknown(self, client) -> None:
        assert client.put(f"{API}/sources/{uuid.uuid4()}", json={"notes": "x"}).status_code == 404

    def test_deactivate_and_reactivate(self, client, make_source) -> None:
        source = make_source(fail_count=2)

        response = client.delete(f"{API}/sources/{source.id}", params={"reason": "Portal retired"})
        assert response.status_code == 200
        assert response.json()["source"]["status"] == "INACTIVE"
        assert response.json()["source"]["lastError"] == "Portal retired"

        response = client.post(f"{API}/sources/{source.id}/reactivate")
        assert response.status_code == 200
        assert response.json()["status"] == "ACTIVE"
        assert response.json()["failCount"] == 0


# ---------------------------------------------------------------------------
# Manual trigger
# ---------------------------------------------------------------------------


class TestTrigger:
    def test_trigger_queues_job(self, client, make_source) -> None:
        source = make_source()

        response = client.post(f"{API}/sources/{source.id}/trigger", json={"priority": 3, "triggeredBy": "ops"})

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "PENDING"
        assert body["estimatedDuration"] == 60000
        assert body["metadata"]["trigger"] == "manual"
        assert body["metadata"]["priority"] == 3
        assert body["metadata"]["triggered_by"] == "ops"
        client.dispatch.assert_called_once_with(uuid.UUID(body["jobId"]))

    def test_trigger_without_body(self, client, make_source) -> None:
        response = client.post(f"{API}/sources/{make_source().id}/trigger")
        assert response.status_code == 202

    def test_second_trigger_conflicts(self, client, make_source) -> None:
        source = make_source()
        first = client.post(f"{API}/sources/{source.id}/trigger").json()

        response = client.post(f"{API}/sources/{source.id}/trigger")

        assert response.status_code == 409
        body = response.json()
        assert "detail" not in body
        assert body["code"] == "ALREADY_RUNNING"
        assert body["jobId"] == first["jobId"]
        assert body["status"] == "PENDING"
        client.dispatch.assert_called_once()

    def test_inactive_source_needs_force(self, client, make_source) -> None:
        source = make_source(status=SourceStatus.INACTIVE)

        assert client.post(f"{API}/sources/{source.id}/trigger").status_code == 400
        assert client.post(f"{API}/sources/{source.id}/trigger", json={"force": True}).status_code == 202

    def test_unknown_source(self, client) -> None:
        assert client.post(f"{API}/sources/{uuid.uuid4()}/trigger").status_code == 404

    def test_priority_out_of_range(self, client, make_source) -> None:
        response = client.post(f"{API}/sources/{make_source().id}/trigger", json={"priority": 11})
        assert response.status_code == 422

    def test_trigger_by_source_id_in_body(self, client, make_source) -> None:
        source = make_source()

        response = client.post(f"{API}/trigger", json={"sourceId": str(source.id), "priority": 5})

        assert response.status_code == 202
        assert response.json()["metadata"]["priority"] == 5

        conflict = client.post(f"{API}/trigger", json={"sourceId": str(source.id)})
        assert conflict.status_code == 409
        assert conflict.json()["jobId"] == response.json()["jobId"]
        assert conflict.json()["status"] == "PENDING"
