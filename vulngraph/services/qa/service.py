"""QA service functions used by the API and the CLI."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from vulngraph.services.qa import pipeline
from vulngraph.services.shaping.graph_transform import transform_results

_logger = logging.getLogger(__name__)


def ask_question(message: str, executor: Any = None) -> Dict[str, Any]:
    """驗證問題後執行問答流程，並把原始結果整理成圖或表格。

    回傳值:
        Dict[str, Any]: `answer`、`reasoning`、`query`、`rawResults` 以及 `view`；
        `rawResults` 為 `None` 時 `view` 也是 `None`。

    例外:
        ValueError: 問題為空白。
    """
    question = str(message or "").strip()
    if not question:
        raise ValueError("Message cannot be empty")

    result = pipeline.run_pipeline(question, executor=executor)
    payload = result.to_dict()
    payload["view"] = shape_rows(result.raw_results) if result.raw_results is not None else None
    _logger.info("question answered steps=%d has_results=%s", len(result.reasoning), result.raw_results is not None)
    return payload


def shape_rows(rows: Optional[List[Any]]) -> Dict[str, Any]:
    return transform_results(rows).to_dict()
