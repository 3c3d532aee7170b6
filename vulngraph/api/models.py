"""Request/response models for API routers."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class AskRequest(BaseModel):
    message: str = Field(description="Natural-language security question")


class TraceEntryModel(BaseModel):
    step: str
    details: str


class GraphNodeModel(BaseModel):
    id: str
    name: str
    type: str
    labels: List[str]
    properties: Dict[str, Any]
    severity: Optional[str] = None
    color: str
    size: int


class GraphLinkModel(BaseModel):
    source: str
    target: str
    type: str
    properties: Dict[str, Any]


class GraphModel(BaseModel):
    nodes: List[GraphNodeModel]
    links: List[GraphLinkModel]


class TableModel(BaseModel):
    columns: List[str]
    rows: List[Dict[str, Any]]


class ShapedResultModel(BaseModel):
    kind: Literal["graph", "table", "empty"]
    graph: Optional[GraphModel] = None
    table: TableModel
    message: Optional[str] = None


class AskResponse(BaseModel):
    answer: str
    reasoning: List[TraceEntryModel]
    query: Optional[str] = None
    rawResults: Optional[List[Dict[str, Any]]] = None
    view: Optional[ShapedResultModel] = None


class ShapeRequest(BaseModel):
    rows: Optional[List[Any]] = None
