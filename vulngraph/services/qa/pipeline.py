"""Natural-language question -> read-only Cypher -> narrated answer.

Stages run strictly in order with no retries, and each appends exactly one
trace entry. Recoverable outcomes (unparseable intent, unsafe query, failed
execution) end the run early with an apology answer. Infrastructure failures
(unreadable schema guide, completion service errors) propagate.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from vulngraph.config.settings import PipelineSettings, get_pipeline_settings
from vulngraph.graph import graph_store
from vulngraph.llm import llm_client
from vulngraph.services.qa.query_repair import repair_query
from vulngraph.services.qa.safety import find_forbidden_tokens
from vulngraph.services.qa.schema_guide import load_schema_guide

_logger = logging.getLogger(__name__)

STEP_LOAD_SCHEMA = "Load Schema Guide"
STEP_INTENT = "Intent Extraction"
STEP_GENERATION = "Cypher Generation"
STEP_REPAIR = "Query Repair"
STEP_VALIDATION = "Cypher Validation"
STEP_EXECUTION = "Query Execution"
STEP_ANSWER = "Answer Generation"

ANSWER_NOT_UNDERSTOOD = "Sorry, I could not understand your question."
ANSWER_UNSAFE_QUERY = "Sorry, the generated query was not safe to run."
ANSWER_EXECUTION_FAILED = "Sorry, there was an error running the query."

INTENT_SYSTEM_PROMPT = (
    "You are a security knowledge graph assistant. Given a user question, classify the intent "
    "(for example: list, aggregate, trace, map, compare) and extract the relevant entities "
    "(service, severity, vulnerability type, scanner, OWASP category, CWE, finding id). "
    'Respond with strict JSON only: {"intent": string, "entities": object}.'
)

CYPHER_SYSTEM_PROMPT_TEMPLATE = """You are an expert Cypher query generator for a Neo4j vulnerability knowledge graph.
Use ONLY the labels, relationships, properties and query patterns in the schema guide below.
Generate a single read-only Cypher query that answers the user's question.

Rules:
1. When the question concerns relationships, paths or chains, bind the relationship variables and
   RETURN them together with their endpoint nodes (for example `RETURN f, r, a`).
2. For multi-hop "chain" questions use variable-length path syntax and return the path
   (for example `MATCH path = (f1:Finding)-[:EXPLOIT_CHAIN*1..3]->(f2:Finding) RETURN path`).
3. For broad questions aggregate or group by severity or type, and always add a LIMIT.
4. Output only the Cypher code, nothing else.

SCHEMA GUIDE:
{schema_guide}"""

ANSWER_SYSTEM_PROMPT = (
    "You are a security analyst assistant. Given the user's question, the Cypher query and a "
    "preview of the query results, write a clear and concise answer for a security engineer in "
    "markdown with this structure:\n"
    "1. A direct answer to the question, highlighting important findings.\n"
    "2. A `## Reasoning` section explaining which graph relationships or paths were used.\n"
    "3. A `## Cypher Query` section containing the exact query in a code block.\n"
    "If the results are empty, say so and explain the likely reason."
)

_FENCED_BLOCK_PATTERN = re.compile(r"```(?:[a-zA-Z]*[ \t]*\n)?(.*?)```", flags=re.DOTALL)
_LEADING_FENCE_PATTERN = re.compile(r"^```(?:[a-zA-Z]*[ \t]*\n)?")
_TRAILING_FENCE_PATTERN = re.compile(r"```$")


@dataclass(frozen=True)
class TraceEntry:
    step: str
    details: str

    def to_dict(self) -> Dict[str, str]:
        return {"step": self.step, "details": self.details}


class PipelineTrace:
    """只能追加的步驟紀錄；每筆 `TraceEntry` 追加後即不可變。"""

    def __init__(self) -> None:
        self._entries: List[TraceEntry] = []

    def append(self, step: str, details: str) -> TraceEntry:
        entry = TraceEntry(step=step, details=details)
        self._entries.append(entry)
        return entry

    @property
    def entries(self) -> Tuple[TraceEntry, ...]:
        return tuple(self._entries)

    def steps(self) -> List[str]:
        return [entry.step for entry in self._entries]

    def to_list(self) -> List[Dict[str, str]]:
        return [entry.to_dict() for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)


@dataclass(frozen=True)
class PipelineResult:
    answer: str
    reasoning: Tuple[TraceEntry, ...]
    query: Optional[str]
    raw_results: Optional[List[Dict[str, Any]]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "answer": self.answer,
            "reasoning": [entry.to_dict() for entry in self.reasoning],
            "query": self.query,
            "rawResults": self.raw_results,
        }


def strip_markdown_fence(content: str) -> str:
    """取出模型回覆中的 Cypher。

    有完整的 fenced block 時取第一個區塊內容（前面可以有說明文字）；
    否則分別去掉開頭的 fence 行與結尾的 fence，處理被截斷的回覆。
    """
    text = str(content or "").strip()
    match = _FENCED_BLOCK_PATTERN.search(text)
    if match:
        return match.group(1).strip()
    text = _LEADING_FENCE_PATTERN.sub("", text)
    text = _TRAILING_FENCE_PATTERN.sub("", text)
    return text.strip()


def _finish(
    trace: PipelineTrace,
    answer: str,
    query: Optional[str],
    raw_results: Optional[List[Dict[str, Any]]],
) -> PipelineResult:
    return PipelineResult(answer=answer, reasoning=trace.entries, query=query, raw_results=raw_results)


def _extract_intent(user_message: str, cfg: PipelineSettings) -> Tuple[Optional[Dict[str, Any]], str]:
    """呼叫查詢模型取得意圖 JSON；解析失敗時回傳 `(None, 原始回覆)`。

    空白回覆與無法解析的回覆同樣視為解析失敗。
    """
    try:
        completion = llm_client.complete(
            [
                {"role": "system", "content": INTENT_SYSTEM_PROMPT},
                {"role": "user", "content": user_message},
            ],
            model=cfg.query_model,
            temperature=cfg.query_temperature,
        )
    except llm_client.LLMEmptyResponseError:
        return None, ""
    try:
        parsed = llm_client.parse_json_object(completion.text)
    except llm_client.LLMParseError:
        return None, completion.text
    entities = parsed.get("entities")
    return {
        "intent": str(parsed.get("intent") or ""),
        "entities": entities if isinstance(entities, dict) else {},
    }, completion.text


def _generate_cypher(user_message: str, intent: Dict[str, Any], schema_guide: str, cfg: PipelineSettings) -> str:
    completion = llm_client.complete(
        [
            {"role": "system", "content": CYPHER_SYSTEM_PROMPT_TEMPLATE.format(schema_guide=schema_guide)},
            {
                "role": "user",
                "content": (
                    f"User question: {user_message}\n"
                    f"Intent: {intent['intent']}\n"
                    f"Entities: {json.dumps(intent['entities'], ensure_ascii=False)}"
                ),
            },
        ],
        model=cfg.query_model,
        temperature=cfg.query_temperature,
    )
    return strip_markdown_fence(completion.text)


def _result_preview(rows: List[Dict[str, Any]], limit: int) -> str:
    return json.dumps(rows[:limit], indent=2, default=str, ensure_ascii=False)


def _narrate(user_message: str, query: str, rows: List[Dict[str, Any]], cfg: PipelineSettings) -> str:
    completion = llm_client.complete(
        [
            {"role": "system", "content": ANSWER_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"User question: {user_message}\n"
                    f"Cypher: {query}\n"
                    f"Results (first {min(len(rows), cfg.preview_rows)} of {len(rows)} rows):\n"
                    f"{_result_preview(rows, cfg.preview_rows)}"
                ),
            },
        ],
        model=cfg.answer_model,
        temperature=cfg.answer_temperature,
        max_tokens=cfg.answer_max_tokens,
    )
    return completion.text.strip()


def run_pipeline(user_message: str, executor: Any = None) -> PipelineResult:
    """執行完整問答流程並回傳 `PipelineResult`。

    參數:
        user_message: 使用者問題；空白檢查由服務層負責。
        executor: 具備 `run_query(query, params=None)` 的物件，預設為共用的 Neo4j executor。

    流程依序為：載入 schema guide、意圖擷取、Cypher 產生、查詢修補、
    安全檢查、執行查詢、產生回答。三種可恢復的失敗會提前結束並回傳致歉訊息，
    其餘錯誤（schema guide 無法讀取、LLM 服務錯誤）一律往上拋。
    """
    cfg = get_pipeline_settings()
    trace = PipelineTrace()

    schema_guide = load_schema_guide(cfg.schema_guide_path)
    trace.append(STEP_LOAD_SCHEMA, f"Loaded schema guide ({len(schema_guide)} characters).")

    intent, raw_intent = _extract_intent(user_message, cfg)
    if intent is None:
        _logger.warning("intent reply could not be parsed as JSON")
        trace.append(STEP_INTENT, f"Failed to parse LLM response: {raw_intent}")
        return _finish(trace, ANSWER_NOT_UNDERSTOOD, None, None)
    trace.append(
        STEP_INTENT,
        f"Intent: {intent['intent']}, Entities: {json.dumps(intent['entities'], ensure_ascii=False)}",
    )
    _logger.info("intent extracted intent=%s", intent["intent"])

    query = _generate_cypher(user_message, intent, schema_guide, cfg)
    trace.append(STEP_GENERATION, f"Generated Cypher:\n{query}")

    repair = repair_query(query)
    query = repair.query
    trace.append(STEP_REPAIR, repair.details if not repair.changed else f"{repair.details}\n{query}")

    forbidden = find_forbidden_tokens(query)
    if forbidden:
        _logger.warning("rejected generated query with forbidden tokens: %s", ", ".join(forbidden))
        trace.append(STEP_VALIDATION, f"Rejected unsafe Cypher (mutation detected: {', '.join(forbidden)}).")
        return _finish(trace, ANSWER_UNSAFE_QUERY, query, None)
    trace.append(STEP_VALIDATION, "Cypher query validated as read-only.")

    runner = executor if executor is not None else graph_store.get_executor()
    try:
        rows = runner.run_query(query)
    except Exception as exc:
        _logger.warning("query execution failed: %s", exc, exc_info=True)
        trace.append(STEP_EXECUTION, f"Cypher execution error: {exc}")
        return _finish(trace, ANSWER_EXECUTION_FAILED, query, None)
    trace.append(STEP_EXECUTION, f"Query executed. Rows returned: {len(rows)}")
    _logger.info("query executed rows=%d", len(rows))

    answer = _narrate(user_message, query, rows, cfg)
    trace.append(STEP_ANSWER, f"Answer generated by {cfg.answer_model} from {min(len(rows), cfg.preview_rows)} preview rows.")
    return _finish(trace, answer, query, rows)
