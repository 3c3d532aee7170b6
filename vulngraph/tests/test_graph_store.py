from __future__ import annotations

from typing import Any, Dict, List

import pytest

from vulngraph.graph import graph_store


class FakeNode:
    def __init__(self, element_id: str, labels: List[str], props: Dict[str, Any]):
        self.element_id = element_id
        self.labels = frozenset(labels)
        self._props = props

    def items(self):
        return self._props.items()


class FakeRelationship:
    def __init__(self, element_id: str, rel_type: str, start: FakeNode, end: FakeNode, props: Dict[str, Any] | None = None):
        self.element_id = element_id
        self.type = rel_type
        self.start_node = start
        self.end_node = end
        self._props = props or {}

    def items(self):
        return self._props.items()


class FakePath:
    def __init__(self, nodes: List[FakeNode], relationships: List[FakeRelationship]):
        self.nodes = tuple(nodes)
        self.relationships = tuple(relationships)


class FakeDateTime:
    def iso_format(self) -> str:
        return "2024-05-01T10:00:00+00:00"


class FakeRecord:
    def __init__(self, data: Dict[str, Any]):
        self._data = data

    def keys(self):
        return list(self._data.keys())

    def values(self):
        return list(self._data.values())


class FakeTx:
    def __init__(self, records: List[FakeRecord], calls: List[Any]):
        self._records = records
        self._calls = calls

    def run(self, query: str, params: Dict[str, Any]):
        self._calls.append((query, params))
        return iter(self._records)


class FakeSession:
    def __init__(self, driver: "FakeDriver"):
        self._driver = driver

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self._driver.closed_sessions += 1
        return False

    def execute_read(self, work):
        return work(FakeTx(self._driver.records, self._driver.calls))


class FakeDriver:
    def __init__(self, records: List[FakeRecord] | None = None):
        self.records = records or []
        self.calls: List[Any] = []
        self.databases: List[Any] = []
        self.closed_sessions = 0
        self.closed = False

    def session(self, database=None):
        self.databases.append(database)
        return FakeSession(self)

    def verify_connectivity(self) -> None:
        return None

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_graph_types(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(graph_store, "Node", FakeNode)
    monkeypatch.setattr(graph_store, "Relationship", FakeRelationship)
    monkeypatch.setattr(graph_store, "Path", FakePath)


def test_decode_value_tags_nodes_relationships_and_paths(fake_graph_types: None) -> None:
    f1 = FakeNode("4:db:1", ["Finding"], {"finding_id": "F-001", "timestamp": FakeDateTime()})
    f2 = FakeNode("4:db:2", ["Finding"], {"finding_id": "F-002"})
    rel = FakeRelationship("5:db:1", "EXPLOIT_CHAIN", f1, f2, {"chain_type": "privilege"})

    node_value = graph_store.decode_value(f1)
    rel_value = graph_store.decode_value(rel)
    path_value = graph_store.decode_value(FakePath([f1, f2], [rel]))

    assert node_value == {
        "__kind__": "node",
        "identity": "4:db:1",
        "labels": ["Finding"],
        "properties": {"finding_id": "F-001", "timestamp": "2024-05-01T10:00:00+00:00"},
    }
    assert rel_value["__kind__"] == "relationship"
    assert (rel_value["start"], rel_value["end"], rel_value["type"]) == ("4:db:1", "4:db:2", "EXPLOIT_CHAIN")
    assert rel_value["properties"] == {"chain_type": "privilege"}
    assert path_value["__kind__"] == "path"
    assert path_value["start"]["identity"] == "4:db:1"
    assert path_value["end"]["identity"] == "4:db:2"
    assert len(path_value["segments"]) == 1
    assert path_value["segments"][0]["relationship"]["identity"] == "5:db:1"


def test_decode_value_recurses_into_collections(fake_graph_types: None) -> None:
    node = FakeNode("4:db:3", ["Asset"], {"url": "/login"})

    decoded = graph_store.decode_value({"assets": [node], "meta": (1, "x")})

    assert decoded["assets"][0]["__kind__"] == "node"
    assert decoded["meta"] == [1, "x"]


def test_run_query_uses_read_transaction_and_preserves_column_order() -> None:
    driver = FakeDriver([FakeRecord({"severity": "HIGH", "count": 2}), FakeRecord({"severity": "LOW", "count": 1})])
    executor = graph_store.Neo4jQueryExecutor(driver, database="vulns")

    rows = executor.run_query("  MATCH (f:Finding) RETURN f.severity AS severity, count(f) AS count  ")

    assert rows == [{"severity": "HIGH", "count": 2}, {"severity": "LOW", "count": 1}]
    assert list(rows[0].keys()) == ["severity", "count"]
    assert driver.calls == [("MATCH (f:Finding) RETURN f.severity AS severity, count(f) AS count", {})]
    assert driver.databases == ["vulns"]
    assert driver.closed_sessions == 1


def test_run_query_rejects_empty_query() -> None:
    executor = graph_store.Neo4jQueryExecutor(FakeDriver())

    with pytest.raises(ValueError):
        executor.run_query("   ")


def test_run_query_releases_session_on_error(monkeypatch: pytest.MonkeyPatch) -> None:
    class FailingTx(FakeTx):
        def run(self, query: str, params: Dict[str, Any]):
            raise RuntimeError("syntax error")

    monkeypatch.setattr(FakeSession, "execute_read", lambda self, work: work(FailingTx([], [])))
    driver = FakeDriver()
    executor = graph_store.Neo4jQueryExecutor(driver)

    with pytest.raises(RuntimeError):
        executor.run_query("MATCH (n) RETURN n")

    assert driver.closed_sessions == 1


def test_get_executor_is_lazy_singleton_and_closes(monkeypatch: pytest.MonkeyPatch) -> None:
    created: List[FakeDriver] = []

    def fake_driver(uri, auth=None, **kwargs):
        driver = FakeDriver()
        created.append(driver)
        return driver

    monkeypatch.setattr(graph_store.GraphDatabase, "driver", fake_driver)
    monkeypatch.setattr(graph_store, "_executor", None)

    first = graph_store.get_executor()
    second = graph_store.get_executor()
    graph_store.close_executor()

    assert first is second
    assert len(created) == 1
    assert created[0].closed is True
    assert graph_store._executor is None
