"""End-to-end API tests: real app, lifespan, SQLite and background pipelines."""

from __future__ import annotations

from dataclasses import replace

import pytest
from fastapi.testclient import TestClient

from ledgerpipe.config import get_config
from ledgerpipe.enrichment.classifier import RuleClassifier
from ledgerpipe.enrichment.services import build_services
from ledgerpipe.web.app import create_app


def _services(variant):
    services = build_services(get_config())
    if variant == "strict":
        return replace(services, classifier=RuleClassifier({}), variant="strict")
    return services


@pytest.fixture
def client():
    with TestClient(create_app(_services)) as test_client:
        yield test_client


def _wait(client: TestClient, session_id: int) -> dict:
    client.portal.call(client.app.state.pipeline.tasks.wait, session_id, 30)
    return client.get(f"/imports/{session_id}").json()


def test_import_then_reprocess(client, statement_csv):
    response = client.post(
        "/imports",
        json={"account_ref": "acct-1", "csv_data": statement_csv, "filename": "jan.csv"},
    )
    assert response.status_code == 201
    created = response.json()
    assert (created["imported"], created["skipped"], created["errors"]) == (8, 2, [])
    session_id = created["session_id"]

    session = _wait(client, session_id)
    assert session["status"] == "completed"
    assert session["tagged_by_rule"] == 4
    assert session["phase"] is None

    records = client.get(f"/imports/{session_id}/records").json()
    assert records["total"] == 8
    netflix = client.get(f"/imports/{session_id}/records", params={"search": "netflix"}).json()
    assert [r["normalized_name"] for r in netflix["records"]] == ["Netflix"]

    skipped = client.get(f"/imports/{session_id}/skipped").json()
    by_description = {r["description"]: r["id"] for r in records["records"]}
    assert [s["existing_record_id"] for s in skipped] == [
        by_description["NETFLIX.COM"],
        by_description["SQ *BLUE BOTTLE COFFEE"],
    ]

    response = client.post(f"/imports/{session_id}/reprocess", json={"model": "strict"})
    assert response.status_code == 202
    assert response.json()["run_number"] == 1

    assert _wait(client, session_id)["status"] == "completed"
    body = client.get(f"/imports/{session_id}/reprocess-comparison").json()
    comparison = body["comparison"]
    assert comparison["before"]["counters"]["tagged_by_rule"] == 4
    assert comparison["after"]["counters"]["tagged_fallback"] == 8
    assert comparison["deltas"]["tagged_fallback"] == 6
    assert body["run"]["model_variant"] == "strict"

    runs = client.get(f"/imports/{session_id}/reprocess-runs").json()["runs"]
    assert [(r["run_number"], r["status"], r["tag_changes"]) for r in runs] == [(1, "completed", 6)]


def test_reimport_skips_everything(client, statement_csv):
    first = client.post("/imports", json={"account_ref": "acct-1", "csv_data": statement_csv}).json()
    _wait(client, first["session_id"])

    second = client.post("/imports", json={"account_ref": "acct-1", "csv_data": statement_csv}).json()

    assert (second["imported"], second["skipped"]) == (0, 10)
    assert client.get(f"/imports/{second['session_id']}").json()["status"] == "completed"
    listed = client.get("/imports", params={"account_ref": "acct-1"}).json()
    assert listed["total"] == 2


def test_errors_map_to_status_codes(client):
    assert client.get("/imports/999").status_code == 404
    assert client.post("/imports/999/reprocess").status_code == 404

    response = client.post("/imports", json={"account_ref": "acct-1"})
    assert response.status_code == 400
    assert "csv_data or records" in response.json()["detail"]

    cancelled = client.post("/imports/999/cancel")
    assert cancelled.status_code == 404


def test_health(client):
    body = client.get("/health").json()

    assert body == {"status": "ok", "database": "connected", "active_pipelines": 0}
