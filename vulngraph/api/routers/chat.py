"""Question answering and result shaping routes."""

from __future__ import annotations

from fastapi import APIRouter

from vulngraph.api.errors import raise_http_error
from vulngraph.api.models import AskRequest, AskResponse, ShapedResultModel, ShapeRequest
from vulngraph.services.qa import service as qa_service

router = APIRouter()


@router.post("/api/chat/ask", response_model=AskResponse)
def ask(req: AskRequest):
    """同步執行問答流程。

    端點以 `def` 宣告，由 FastAPI 的執行緒池執行阻塞的 LLM 與 Neo4j 呼叫。
    空白訊息回傳 400；上游錯誤依 `raise_http_error` 的對照轉換。
    """
    try:
        return qa_service.ask_question(req.message)
    except Exception as exc:
        raise_http_error(exc)


@router.post("/api/results/shape", response_model=ShapedResultModel)
def shape_results(req: ShapeRequest):
    try:
        return qa_service.shape_rows(req.rows)
    except Exception as exc:
        raise_http_error(exc)
