"""Turn raw query rows into a deduplicated node/edge graph plus a flat table."""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple

_logger = logging.getLogger(__name__)

EMPTY_RESULT_MESSAGE = "No data returned from query"

# Ordered preference of domain properties used as a node's resolved id.
NODE_ID_PROPERTIES = ("finding_id", "name", "owasp_id", "cwe_id")

DISPLAY_NAME_PROPERTIES: Dict[str, Tuple[str, ...]] = {
    "Finding": ("title", "finding_id"),
    "Asset": ("url", "path", "image", "type"),
    "Service": ("name",),
    "Scanner": ("name",),
    "OWASP": ("name", "owasp_id"),
    "CWE": ("name", "cwe_id"),
}

SEVERITY_COLORS = {
    "CRITICAL": "#b71c1c",
    "HIGH": "#e65100",
    "MEDIUM": "#f9a825",
    "LOW": "#2e7d32",
    "INFO": "#1565c0",
}

TYPE_COLORS = {
    "Finding": "#c62828",
    "Asset": "#1e88e5",
    "Service": "#43a047",
    "Scanner": "#8e24aa",
    "OWASP": "#fb8c00",
    "CWE": "#6d4c41",
}

DEFAULT_NODE_COLOR = "#9e9e9e"

TYPE_SIZES = {
    "Finding": 6,
    "Asset": 5,
    "Service": 9,
    "Scanner": 5,
    "OWASP": 7,
    "CWE": 7,
}

SEVERITY_SIZE_BONUS = {
    "CRITICAL": 4,
    "HIGH": 3,
    "MEDIUM": 2,
    "LOW": 1,
    "INFO": 0,
}

DEFAULT_NODE_SIZE = 5


@dataclass
class GraphNode:
    id: str
    name: str
    type: str
    labels: List[str]
    properties: Dict[str, Any]
    severity: Optional[str] = None
    color: str = DEFAULT_NODE_COLOR
    size: int = DEFAULT_NODE_SIZE

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class GraphLink:
    source: str
    target: str
    type: str
    properties: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ShapedResult:
    kind: str
    nodes: List[GraphNode] = field(default_factory=list)
    links: List[GraphLink] = field(default_factory=list)
    columns: List[str] = field(default_factory=list)
    rows: List[Dict[str, Any]] = field(default_factory=list)
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        graph = None
        if self.kind == "graph":
            graph = {
                "nodes": [node.to_dict() for node in self.nodes],
                "links": [link.to_dict() for link in self.links],
            }
        return {
            "kind": self.kind,
            "graph": graph,
            "table": {"columns": list(self.columns), "rows": [dict(row) for row in self.rows]},
            "message": self.message,
        }


def normalize_internal_id(value: Any) -> Optional[str]:
    """將資料庫內部識別碼正規化為單一字串形式。

    - 整數（以及整數值的浮點數）轉為十進位字串。
    - `{low, high}` 64 位元拆分表示合併為 `(high << 32) + (low & 0xFFFFFFFF)`。
    - 字串（element id）原樣保留；`None` 或空字串回傳 `None`。
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, dict) and "low" in value and "high" in value:
        try:
            low = int(value["low"])
            high = int(value["high"])
        except (TypeError, ValueError):
            return None
        return str((high << 32) + (low & 0xFFFFFFFF))
    text = str(value).strip()
    return text or None


def _tag(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        tag = value.get("__kind__")
        if tag in {"node", "relationship", "path"}:
            return str(tag)
    return None


def is_node(value: Any) -> bool:
    tag = _tag(value)
    if tag is not None:
        return tag == "node"
    return (
        isinstance(value, dict)
        and "labels" in value
        and "properties" in value
        and ("identity" in value or "elementId" in value)
    )


def is_relationship(value: Any) -> bool:
    tag = _tag(value)
    if tag is not None:
        return tag == "relationship"
    if not isinstance(value, dict) or "type" not in value or "properties" not in value:
        return False
    return ("start" in value and "end" in value) or (
        "startNodeElementId" in value and "endNodeElementId" in value
    )


def is_path(value: Any) -> bool:
    tag = _tag(value)
    if tag is not None:
        return tag == "path"
    return isinstance(value, dict) and isinstance(value.get("segments"), list)


def _properties(value: Dict[str, Any]) -> Dict[str, Any]:
    props = value.get("properties")
    return dict(props) if isinstance(props, dict) else {}


def _labels(node: Dict[str, Any]) -> List[str]:
    labels = node.get("labels")
    if not isinstance(labels, (list, tuple)):
        return []
    return [str(label) for label in labels]


def _primary_label(labels: List[str]) -> str:
    for label in labels:
        if label in DISPLAY_NAME_PROPERTIES:
            return label
    return labels[0] if labels else "Node"


def _present(value: Any) -> bool:
    return value is not None and str(value).strip() != ""


def _internal_ids(value: Dict[str, Any]) -> List[str]:
    ids = []
    for key in ("identity", "elementId"):
        normalized = normalize_internal_id(value.get(key))
        if normalized and normalized not in ids:
            ids.append(normalized)
    return ids


def _content_hash(node: Dict[str, Any]) -> str:
    payload = json.dumps(
        {"labels": _labels(node), "properties": _properties(node)},
        sort_keys=True,
        default=str,
        ensure_ascii=False,
    )
    return "node_" + hashlib.sha1(payload.encode("utf-8")).hexdigest()[:12]


def resolve_node_id(node: Dict[str, Any]) -> str:
    """依 finding_id、name、owasp_id、cwe_id、內部識別碼的順序決定節點 id；
    都沒有時以標籤與屬性內容的雜湊產生可重現的 id。
    """
    props = _properties(node)
    for key in NODE_ID_PROPERTIES:
        if _present(props.get(key)):
            return str(props[key])
    internal = _internal_ids(node)
    if internal:
        return internal[0]
    return _content_hash(node)


def node_display_name(node: Dict[str, Any]) -> str:
    props = _properties(node)
    label = _primary_label(_labels(node))
    for key in DISPLAY_NAME_PROPERTIES.get(label, ()):
        if _present(props.get(key)):
            return str(props[key])
    return f"{label} {resolve_node_id(node)}"


def _node_color(node_type: str, severity: Optional[str]) -> str:
    if severity and severity.upper() in SEVERITY_COLORS:
        return SEVERITY_COLORS[severity.upper()]
    return TYPE_COLORS.get(node_type, DEFAULT_NODE_COLOR)


def _node_size(node_type: str, severity: Optional[str]) -> int:
    base = TYPE_SIZES.get(node_type, DEFAULT_NODE_SIZE)
    if severity:
        base += SEVERITY_SIZE_BONUS.get(severity.upper(), 0)
    return base


def to_graph_node(node: Dict[str, Any]) -> GraphNode:
    labels = _labels(node)
    node_type = _primary_label(labels)
    props = _properties(node)
    severity = None
    if node_type == "Finding" and _present(props.get("severity")):
        severity = str(props["severity"])
    return GraphNode(
        id=resolve_node_id(node),
        name=node_display_name(node),
        type=node_type,
        labels=labels,
        properties=props,
        severity=severity,
        color=_node_color(node_type, severity),
        size=_node_size(node_type, severity),
    )


def _same_entity(first: GraphNode, second: GraphNode) -> bool:
    if first.type != second.type:
        return False
    for key in NODE_ID_PROPERTIES:
        left = first.properties.get(key)
        right = second.properties.get(key)
        if _present(left) and _present(right) and str(left) != str(right):
            return False
    return True


def _candidate_ids(graph_node: GraphNode, node: Dict[str, Any]) -> List[str]:
    qualified = f"{graph_node.type}:{graph_node.id}"
    candidates = [graph_node.id, qualified]
    discriminators = [
        str(graph_node.properties[key])
        for key in NODE_ID_PROPERTIES
        if _present(graph_node.properties.get(key)) and str(graph_node.properties[key]) != graph_node.id
    ]
    discriminators.extend(_internal_ids(node))
    discriminators.append(_content_hash(node))
    for value in discriminators:
        candidate = f"{qualified}:{value}"
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


class _GraphCollector:
    """逐列蒐集節點與關係；關係在所有列掃描完後才解析端點。"""

    def __init__(self) -> None:
        self.nodes: Dict[str, GraphNode] = {}
        self.id_map: Dict[str, str] = {}
        self.relationships: List[Dict[str, Any]] = []

    def visit(self, value: Any) -> None:
        if is_node(value):
            self._add_node(value)
        elif is_relationship(value):
            self.relationships.append(value)
        elif is_path(value):
            self._add_path(value)
        elif isinstance(value, list):
            for item in value:
                self.visit(item)

    def _add_node(self, node: Dict[str, Any]) -> None:
        graph_node = to_graph_node(node)
        node_id = self._register(graph_node, node)
        for internal in _internal_ids(node):
            self.id_map.setdefault(internal, node_id)

    def _register(self, graph_node: GraphNode, node: Dict[str, Any]) -> str:
        """登錄節點並回傳最終 id；同一實體合併（先登錄者為準）。

        id 相同但型別不同，或任一共同的識別屬性不同時，視為不相關的紀錄，
        改用 `<type>:<id>`，仍衝突時再附加區別值。
        """
        for candidate in _candidate_ids(graph_node, node):
            existing = self.nodes.get(candidate)
            if existing is None:
                self.nodes[candidate] = replace(graph_node, id=candidate)
                return candidate
            if _same_entity(existing, graph_node):
                return candidate
        # Last candidate is the content hash; an identical record always merges there.
        return candidate

    def _add_path(self, path: Dict[str, Any]) -> None:
        for key in ("start", "end"):
            if is_node(path.get(key)):
                self._add_node(path[key])
        for segment in path.get("segments") or []:
            if not isinstance(segment, dict):
                continue
            for key in ("start", "end"):
                if is_node(segment.get(key)):
                    self._add_node(segment[key])
            if is_relationship(segment.get("relationship")):
                self.relationships.append(segment["relationship"])

    def _endpoint(self, rel: Dict[str, Any], *keys: str) -> Optional[str]:
        for key in keys:
            internal = normalize_internal_id(rel.get(key))
            if internal and internal in self.id_map:
                return self.id_map[internal]
        return None

    def build_links(self) -> List[GraphLink]:
        links: List[GraphLink] = []
        seen: set = set()
        for rel in self.relationships:
            source = self._endpoint(rel, "start", "startNodeElementId")
            target = self._endpoint(rel, "end", "endNodeElementId")
            rel_type = str(rel.get("type") or "RELATED")
            if source is None or target is None:
                _logger.debug(
                    "dropping relationship %s with unresolved endpoints start=%s end=%s",
                    rel_type,
                    rel.get("start", rel.get("startNodeElementId")),
                    rel.get("end", rel.get("endNodeElementId")),
                )
                continue
            internal = _internal_ids(rel)
            key = ("id", internal[0]) if internal else ("edge", source, target, rel_type)
            if key in seen:
                continue
            seen.add(key)
            links.append(GraphLink(source=source, target=target, type=rel_type, properties=_properties(rel)))
        return links


def _path_chain(path: Dict[str, Any]) -> str:
    segments = [seg for seg in path.get("segments") or [] if isinstance(seg, dict)]
    if not segments:
        start = path.get("start")
        return node_display_name(start) if is_node(start) else ""
    parts = [node_display_name(segments[0]["start"]) if is_node(segments[0].get("start")) else "?"]
    for segment in segments:
        rel = segment.get("relationship")
        rel_type = str(rel.get("type") or "RELATED") if isinstance(rel, dict) else "RELATED"
        end = segment.get("end")
        parts.append(f"-[{rel_type}]-> {node_display_name(end) if is_node(end) else '?'}")
    return " ".join(parts)


def to_display_value(value: Any) -> Any:
    """把單一欄位值轉成表格可直接顯示的純量。"""
    if is_node(value):
        return node_display_name(value)
    if is_relationship(value):
        return str(value.get("type") or "RELATED")
    if is_path(value):
        return _path_chain(value)
    if isinstance(value, list):
        return ", ".join(str(to_display_value(item)) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, default=str, ensure_ascii=False)
    return value


def transform_results(rows: Any) -> ShapedResult:
    """將查詢結果列轉為圖（節點、關係）與表格。

    參數:
        rows: 以欄位名稱對應值的 dict 清單；值可以是純量、節點、關係、
            路徑，或上述型別的清單。非 dict 的列視為 `{"value": row}`。

    回傳值:
        ShapedResult: `kind` 為 `graph`（至少解析出一個節點）、`table` 或 `empty`。
        表格一律產生；圖中不會留下端點不存在的關係。
    """
    if not isinstance(rows, list) or not rows:
        return ShapedResult(kind="empty", message=EMPTY_RESULT_MESSAGE)

    normalized = [row if isinstance(row, dict) else {"value": row} for row in rows]

    collector = _GraphCollector()
    for row in normalized:
        for value in row.values():
            collector.visit(value)
    links = collector.build_links()

    columns: List[str] = []
    table_rows: List[Dict[str, Any]] = []
    for row in normalized:
        table_row: Dict[str, Any] = {}
        for key, value in row.items():
            column = str(key)
            if column not in columns:
                columns.append(column)
            table_row[column] = to_display_value(value)
        table_rows.append(table_row)

    kind = "graph" if collector.nodes else "table"
    _logger.debug(
        "shaped %d rows into kind=%s nodes=%d links=%d",
        len(normalized),
        kind,
        len(collector.nodes),
        len(links),
    )
    return ShapedResult(
        kind=kind,
        nodes=list(collector.nodes.values()),
        links=links,
        columns=columns,
        rows=table_rows,
    )
