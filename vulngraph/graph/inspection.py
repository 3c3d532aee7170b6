"""Graph inspection helpers used by the command-line tool."""

from __future__ import annotations

from typing import Any, Dict, List

_NODE_COUNTS_QUERY = """
MATCH (n)
RETURN labels(n) AS node_type, count(n) AS count
ORDER BY count DESC
"""

_RELATIONSHIP_COUNTS_QUERY = """
MATCH ()-[r]->()
RETURN type(r) AS relationship_type, count(r) AS count
ORDER BY count DESC
"""

# Property-grouped counts keyed by the summary section they fill.
_PROPERTY_COUNT_QUERIES = {
    "severity_distribution": "MATCH (f:Finding) RETURN f.severity AS value, count(f) AS count ORDER BY count DESC",
    "asset_types": "MATCH (a:Asset) RETURN a.type AS value, count(a) AS count ORDER BY count DESC",
    "service_types": "MATCH (s:Service) RETURN s.type AS value, count(s) AS count ORDER BY count DESC",
    "scanner_types": "MATCH (s:Scanner) RETURN s.type AS value, count(s) AS count ORDER BY count DESC",
}


def _count_map(rows: List[Dict[str, Any]], key: str) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for row in rows:
        raw = row.get(key)
        if isinstance(raw, list):
            name = ":".join(str(item) for item in raw) or "<unlabeled>"
        elif raw is None:
            name = "<none>"
        else:
            name = str(raw)
        counts[name] = counts.get(name, 0) + int(row.get("count") or 0)
    return counts


def summarize_graph(executor: Any) -> Dict[str, Dict[str, int]]:
    """彙整圖譜概況：各標籤節點數、各關係型別數量，以及 Finding 嚴重度與
    Asset/Service/Scanner 類型分布。所有查詢皆為唯讀計數查詢。
    """
    summary = {
        "node_counts": _count_map(executor.run_query(_NODE_COUNTS_QUERY), "node_type"),
        "relationship_counts": _count_map(executor.run_query(_RELATIONSHIP_COUNTS_QUERY), "relationship_type"),
    }
    for section, query in _PROPERTY_COUNT_QUERIES.items():
        summary[section] = _count_map(executor.run_query(query), "value")
    return summary


def _value_kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, dict):
        tag = value.get("__kind__")
        if tag in {"node", "relationship", "path"}:
            return str(tag)
        return "map"
    if isinstance(value, list):
        return "list"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    return "string"


def describe_result_columns(rows: List[Dict[str, Any]]) -> Dict[str, List[str]]:
    """列出每個欄位出現過的值種類，欄位依首次出現順序排列。"""
    kinds: Dict[str, List[str]] = {}
    for row in rows:
        for column, value in row.items():
            seen = kinds.setdefault(column, [])
            kind = _value_kind(value)
            if kind not in seen:
                seen.append(kind)
    return kinds
