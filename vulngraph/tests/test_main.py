from __future__ import annotations

import requests
from fastapi.testclient import TestClient
from neo4j.exceptions import ServiceUnavailable

import vulngraph.main as main_module
from vulngraph.api.routers import root as root_router
from vulngraph.llm import llm_client
from vulngraph.services.qa import pipeline
from vulngraph.services.qa import service as qa_service

client = TestClient(main_module.app)


def _fake_result(raw_results):
    return pipeline.PipelineResult(
        answer="Two critical findings.",
        reasoning=(pipeline.TraceEntry("Load Schema Guide", "ok"), pipeline.TraceEntry("Query Execution", "2 rows")),
        query="MATCH (f:Finding) RETURN f",
        raw_results=raw_results,
    )


def test_root_endpoint() -> None:
    response = client.get("/")

    assert response.status_code == 200
    assert "running" in response.json()["message"]


def test_ask_returns_pipeline_result_with_view(monkeypatch) -> None:
    # ─── Arrange：以固定結果取代問答流程 ───────────────────────────
    rows = [
        {"f": {"__kind__": "node", "identity": "4:db:1", "labels": ["Finding"], "properties": {"finding_id": "F-001", "severity": "CRITICAL"}}},
        {"f": {"__kind__": "node", "identity": "4:db:2", "labels": ["Finding"], "properties": {"finding_id": "F-002", "severity": "CRITICAL"}}},
    ]
    captured = {}

    def fake_run_pipeline(message, executor=None):
        captured["message"] = message
        return _fake_result(rows)

    monkeypatch.setattr(qa_service.pipeline, "run_pipeline", fake_run_pipeline)

    # ─── Act ───────────────────────────────────────────────────────
    response = client.post("/api/chat/ask", json={"message": "  list critical findings  "})

    # ─── Assert ────────────────────────────────────────────────────
    assert response.status_code == 200
    body = response.json()
    assert captured["message"] == "list critical findings"
    assert body["answer"] == "Two critical findings."
    assert body["query"] == "MATCH (f:Finding) RETURN f"
    assert body["reasoning"][1] == {"step": "Query Execution", "details": "2 rows"}
    assert len(body["rawResults"]) == 2
    assert body["view"]["kind"] == "graph"
    assert [node["id"] for node in body["view"]["graph"]["nodes"]] == ["F-001", "F-002"]
    assert body["view"]["table"]["rows"] == [{"f": "F-001"}, {"f": "F-002"}]


def test_ask_without_results_has_null_view(monkeypatch) -> None:
    monkeypatch.setattr(qa_service.pipeline, "run_pipeline", lambda message, executor=None: _fake_result(None))

    response = client.post("/api/chat/ask", json={"message": "delete all findings"})

    assert response.status_code == 200
    assert response.json()["rawResults"] is None
    assert response.json()["view"] is None


def test_ask_rejects_empty_message() -> None:
    response = client.post("/api/chat/ask", json={"message": "   "})

    assert response.status_code == 400


def test_ask_maps_llm_timeout_to_504(monkeypatch) -> None:
    def fake_run_pipeline(message, executor=None):
        raise llm_client.LLMTimeoutError("slow")

    monkeypatch.setattr(qa_service.pipeline, "run_pipeline", fake_run_pipeline)

    response = client.post("/api/chat/ask", json={"message": "list findings"})

    assert response.status_code == 504


def test_ask_maps_upstream_error_to_502(monkeypatch) -> None:
    def fake_run_pipeline(message, executor=None):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(qa_service.pipeline, "run_pipeline", fake_run_pipeline)

    response = client.post("/api/chat/ask", json={"message": "list findings"})

    assert response.status_code == 502


def test_ask_maps_graph_unavailable_to_503(monkeypatch) -> None:
    def fake_run_pipeline(message, executor=None):
        raise ServiceUnavailable("no route")

    monkeypatch.setattr(qa_service.pipeline, "run_pipeline", fake_run_pipeline)

    response = client.post("/api/chat/ask", json={"message": "list findings"})

    assert response.status_code == 503


def test_ask_hides_internal_error_details(monkeypatch) -> None:
    def fake_run_pipeline(message, executor=None):
        raise FileNotFoundError("/secret/path/guide.md")

    monkeypatch.setattr(qa_service.pipeline, "run_pipeline", fake_run_pipeline)

    response = client.post("/api/chat/ask", json={"message": "list findings"})

    assert response.status_code == 500
    assert "secret" not in response.json()["detail"]


def test_shape_endpoint_returns_table(monkeypatch) -> None:
    response = client.post("/api/results/shape", json={"rows": [{"severity": "HIGH", "count": 4}]})

    assert response.status_code == 200
    body = response.json()
    assert body["kind"] == "table"
    assert body["graph"] is None
    assert body["table"] == {"columns": ["severity", "count"], "rows": [{"severity": "HIGH", "count": 4}]}


def test_shape_endpoint_handles_empty_rows() -> None:
    response = client.post("/api/results/shape", json={"rows": []})

    assert response.status_code == 200
    assert response.json()["kind"] == "empty"
    assert response.json()["message"] == "No data returned from query"


def test_health_reports_both_upstreams(monkeypatch) -> None:
    monkeypatch.setattr(
        root_router.llm_client,
        "health_check",
        lambda timeout_seconds=3.0: {"upstream": "litellm", "status": "ok", "reachable": True},
    )
    monkeypatch.setattr(
        root_router.graph_store,
        "health_check",
        lambda: {"upstream": "neo4j", "status": "down", "reachable": False},
    )

    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "degraded"
    assert body["llm"]["reachable"] is True
    assert body["neo4j"]["status"] == "down"
