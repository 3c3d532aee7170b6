from __future__ import annotations

import json

import pytest

from vulngraph import cli


class RowsExecutor:
    def __init__(self, rows):
        self.rows = rows
        self.queries = []

    def run_query(self, query, params=None):
        self.queries.append(query)
        return self.rows


@pytest.fixture(autouse=True)
def _no_driver_close(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli.graph_store, "close_executor", lambda: None)


def test_shape_refuses_mutating_query(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
    executor = RowsExecutor([])
    monkeypatch.setattr(cli.graph_store, "get_executor", lambda: executor)

    code = cli.main(["shape", "MATCH (n) DETACH DELETE n"])

    assert code == 2
    assert executor.queries == []
    assert "DELETE" in capsys.readouterr().err


def test_shape_prints_view_and_column_kinds(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
    executor = RowsExecutor([{"severity": "HIGH", "total": 3}])
    monkeypatch.setattr(cli.graph_store, "get_executor", lambda: executor)

    code = cli.main(["shape", "MATCH (f:Finding) RETURN f.severity AS severity, count(f) AS total"])

    output = json.loads(capsys.readouterr().out)
    assert code == 0
    assert output["columns"] == {"severity": ["string"], "total": ["number"]}
    assert output["view"]["kind"] == "table"


def test_ask_prints_service_payload(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
    monkeypatch.setattr(
        cli.qa_service,
        "ask_question",
        lambda question: {"answer": f"echo: {question}", "reasoning": [], "query": None, "rawResults": None, "view": None},
    )

    code = cli.main(["ask", "which services are exposed?"])

    assert code == 0
    assert json.loads(capsys.readouterr().out)["answer"] == "echo: which services are exposed?"


def test_schema_prints_summary(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture) -> None:
    monkeypatch.setattr(cli.graph_store, "get_executor", lambda: RowsExecutor([]))

    code = cli.main(["schema"])

    summary = json.loads(capsys.readouterr().out)
    assert code == 0
    assert set(summary) == {
        "node_counts",
        "relationship_counts",
        "severity_distribution",
        "asset_types",
        "service_types",
        "scanner_types",
    }
