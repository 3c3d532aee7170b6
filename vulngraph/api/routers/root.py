"""Root and health routes."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter

from vulngraph.graph import graph_store
from vulngraph.llm import llm_client

router = APIRouter()


@router.get("/")
def root() -> Dict[str, str]:
    return {"message": "Vulnerability graph QA API is running"}


@router.get("/health")
def health() -> Dict[str, Any]:
    """回報 LiteLLM 代理與 Neo4j 的可連線狀態；任一服務不可用時 status 為 `degraded`。"""
    llm_status = llm_client.health_check(timeout_seconds=3.0)
    neo4j_status = graph_store.health_check()
    healthy = bool(llm_status.get("reachable")) and bool(neo4j_status.get("reachable"))
    return {
        "status": "ok" if healthy else "degraded",
        "llm": llm_status,
        "neo4j": neo4j_status,
    }
