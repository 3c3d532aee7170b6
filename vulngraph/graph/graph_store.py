"""Read-only Neo4j query executor and result decoding.

Rows leave this module as plain dicts. Graph entities are converted into
tagged mappings (``__kind__`` = node / relationship / path) so downstream code
never touches driver types.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Optional

from neo4j import Driver, GraphDatabase
from neo4j.exceptions import DriverError, Neo4jError
from neo4j.graph import Node, Path, Relationship

from vulngraph.config.settings import Neo4jSettings, get_neo4j_settings

_logger = logging.getLogger(__name__)

_executor_lock = threading.Lock()
_executor: Optional["Neo4jQueryExecutor"] = None


def _decode_node(node: Node) -> Dict[str, Any]:
    return {
        "__kind__": "node",
        "identity": str(node.element_id),
        "labels": sorted(str(label) for label in node.labels),
        "properties": {str(key): decode_value(value) for key, value in node.items()},
    }


def _decode_relationship(rel: Relationship) -> Dict[str, Any]:
    start_node = rel.start_node
    end_node = rel.end_node
    return {
        "__kind__": "relationship",
        "identity": str(rel.element_id),
        "type": str(rel.type),
        "start": str(start_node.element_id) if start_node is not None else None,
        "end": str(end_node.element_id) if end_node is not None else None,
        "properties": {str(key): decode_value(value) for key, value in rel.items()},
    }


def _decode_path(path: Path) -> Dict[str, Any]:
    """路徑拆成逐段 `{start, relationship, end}`，段落方向為走訪方向。

    關係本身的 start/end 仍保留資料庫中的實際方向，兩者可能相反。
    """
    nodes = [_decode_node(node) for node in path.nodes]
    segments = []
    for idx, rel in enumerate(path.relationships):
        segments.append(
            {
                "start": nodes[idx],
                "relationship": _decode_relationship(rel),
                "end": nodes[idx + 1],
            }
        )
    return {
        "__kind__": "path",
        "start": nodes[0] if nodes else None,
        "end": nodes[-1] if nodes else None,
        "segments": segments,
    }


def decode_value(value: Any) -> Any:
    """把驅動程式回傳的值轉為 JSON 友善的 Python 結構。

    - Node / Relationship / Path 轉為帶 `__kind__` 標籤的 dict。
    - 時間型別（Date、DateTime、Duration 等）以 `iso_format()` 轉成字串。
    - list 與 dict 遞迴處理，其餘原樣回傳。
    """
    if isinstance(value, Node):
        return _decode_node(value)
    if isinstance(value, Relationship):
        return _decode_relationship(value)
    if isinstance(value, Path):
        return _decode_path(value)
    if isinstance(value, dict):
        return {str(key): decode_value(inner) for key, inner in value.items()}
    if isinstance(value, (list, tuple)):
        return [decode_value(inner) for inner in value]
    if hasattr(value, "iso_format"):
        return value.iso_format()
    return value


def decode_record(record: Any) -> Dict[str, Any]:
    """依欄位順序解碼單筆紀錄。"""
    return {str(key): decode_value(value) for key, value in zip(record.keys(), record.values())}


class Neo4jQueryExecutor:
    """以讀取交易執行查詢，每次查詢取用一個 session 並在結束時釋放。"""

    def __init__(self, driver: Driver, *, database: Optional[str] = None) -> None:
        self._driver = driver
        self._database = database

    @classmethod
    def from_settings(cls, settings: Optional[Neo4jSettings] = None) -> "Neo4jQueryExecutor":
        cfg = settings or get_neo4j_settings()
        driver = GraphDatabase.driver(
            cfg.uri,
            auth=(cfg.user, cfg.password),
            max_connection_pool_size=cfg.max_connection_pool_size,
            connection_acquisition_timeout=cfg.connection_acquisition_timeout,
        )
        _logger.info("neo4j driver created uri=%s database=%s", cfg.uri, cfg.database or "<default>")
        return cls(driver, database=cfg.database)

    def run_query(self, query: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """執行唯讀查詢並回傳解碼後的資料列。

        查詢在 `execute_read` 受管交易內執行，伺服器會拒絕任何寫入。
        空白查詢直接拋出 `ValueError`；其他錯誤（Neo4jError、連線錯誤）一律往上拋。
        """
        text = str(query or "").strip()
        if not text:
            raise ValueError("Query cannot be empty")

        def _work(tx: Any) -> List[Dict[str, Any]]:
            result = tx.run(text, params or {})
            return [decode_record(record) for record in result]

        with self._driver.session(database=self._database) as session:
            rows = session.execute_read(_work)
        _logger.debug("query returned %d rows", len(rows))
        return rows

    def verify_connectivity(self) -> None:
        self._driver.verify_connectivity()

    def close(self) -> None:
        self._driver.close()


def get_executor() -> Neo4jQueryExecutor:
    """回傳行程內共用的 executor，第一次呼叫時才建立 driver。"""
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = Neo4jQueryExecutor.from_settings()
        return _executor


def close_executor() -> None:
    global _executor
    with _executor_lock:
        if _executor is not None:
            _executor.close()
            _logger.info("neo4j driver closed")
        _executor = None


def health_check() -> Dict[str, Any]:
    """確認 Neo4j 是否可連線；失敗時回報 `down` 而非拋出例外。"""
    cfg = get_neo4j_settings()
    try:
        get_executor().verify_connectivity()
        status = "ok"
    except (DriverError, Neo4jError, OSError, ValueError) as exc:
        _logger.warning("neo4j health check failed: %s", exc)
        status = "down"
    return {"upstream": "neo4j", "uri": cfg.uri, "status": status, "reachable": status == "ok"}
