"""HTTP error translation utilities."""

from __future__ import annotations

import logging

import requests
from fastapi import HTTPException
from neo4j.exceptions import ServiceUnavailable

from vulngraph.llm.llm_client import LLMError, LLMTimeoutError

_logger = logging.getLogger(__name__)


def raise_http_error(exc: Exception) -> None:
    """把服務層例外轉成 `HTTPException`。

    - `ValueError` -> 400，沿用訊息。
    - LLM 逾時 -> 504；其他 LLM 或 HTTP 錯誤 -> 502。
    - Neo4j 無法連線 -> 503。
    - 其餘 -> 500，只回傳通用訊息，細節寫入 log。
    """
    if isinstance(exc, HTTPException):
        raise exc
    if isinstance(exc, ValueError):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, (LLMTimeoutError, requests.Timeout)):
        _logger.warning("upstream timeout: %s", exc)
        raise HTTPException(status_code=504, detail="Upstream service timeout")
    if isinstance(exc, (LLMError, requests.RequestException)):
        _logger.warning("upstream error: %s", exc)
        raise HTTPException(status_code=502, detail=f"Upstream service error: {exc}")
    if isinstance(exc, ServiceUnavailable):
        _logger.warning("graph database unavailable: %s", exc)
        raise HTTPException(status_code=503, detail="Graph database unavailable")
    _logger.exception("unhandled error while serving request", exc_info=exc)
    raise HTTPException(status_code=500, detail="Internal server error")
