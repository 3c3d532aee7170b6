"""Centralized runtime settings for the API, pipeline and graph store."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .parsing import get_env_bool, get_env_first, get_env_float, get_env_int, get_env_str

DEFAULT_NEO4J_URI = "bolt://localhost:7687"
DEFAULT_LITELLM_BASE_URL = "http://localhost:4000"
DEFAULT_QUERY_MODEL = "gpt-4.1"
DEFAULT_ANSWER_MODEL = "gemini-2.5-flash"
DEFAULT_ERROR_DETAIL_MAX_CHARS = 4000
DEFAULT_PREVIEW_ROWS = 5
DEFAULT_SCHEMA_GUIDE_PATH = Path(__file__).resolve().parent.parent / "resources" / "DB_SCHEMA_AND_QUERY_GUIDE.md"


@dataclass(frozen=True)
class Neo4jSettings:
    uri: str
    user: str
    password: str
    database: Optional[str]
    max_connection_pool_size: int
    connection_acquisition_timeout: float


@dataclass(frozen=True)
class LLMRuntimeSettings:
    base_url: str
    api_key: str
    timeout_seconds: float
    temperature: float
    max_tokens: int
    error_detail_max_chars: int


@dataclass(frozen=True)
class PipelineSettings:
    query_model: str
    answer_model: str
    query_temperature: float
    answer_temperature: float
    answer_max_tokens: int
    preview_rows: int
    schema_guide_path: Path


@dataclass(frozen=True)
class LoggingSettings:
    level: str
    log_prompts: bool


def get_neo4j_settings() -> Neo4jSettings:
    """讀取 Neo4j 連線與連線池設定。

    `NEO4J_USERNAME` 為主要名稱，保留 `NEO4J_USER` 作為相容別名。
    `NEO4J_DATABASE` 留空時交由伺服器決定預設資料庫。
    """
    database = get_env_str("NEO4J_DATABASE", "").strip() or None
    return Neo4jSettings(
        uri=get_env_str("NEO4J_URI", DEFAULT_NEO4J_URI),
        user=get_env_first(("NEO4J_USERNAME", "NEO4J_USER"), "neo4j"),
        password=get_env_str("NEO4J_PASSWORD", "password"),
        database=database,
        max_connection_pool_size=get_env_int("NEO4J_MAX_POOL_SIZE", 50, minimum=1),
        connection_acquisition_timeout=get_env_float("NEO4J_ACQUISITION_TIMEOUT_SECONDS", 30.0, minimum=1.0),
    )


def get_llm_runtime_settings() -> LLMRuntimeSettings:
    """讀取 LiteLLM（OpenAI 相容）端點設定。"""
    return LLMRuntimeSettings(
        base_url=get_env_str("LITELLM_BASE_URL", DEFAULT_LITELLM_BASE_URL).strip().rstrip("/"),
        api_key=get_env_str("LITELLM_API_KEY", "").strip(),
        timeout_seconds=get_env_float("LLM_TIMEOUT_SECONDS", 120.0, minimum=1.0),
        temperature=get_env_float("LLM_TEMPERATURE", 0.2),
        max_tokens=get_env_int("LLM_MAX_TOKENS", 2048, minimum=1),
        error_detail_max_chars=get_env_int(
            "LLM_ERROR_DETAIL_MAX_CHARS",
            DEFAULT_ERROR_DETAIL_MAX_CHARS,
            minimum=0,
        ),
    )


def get_pipeline_settings() -> PipelineSettings:
    """讀取問答流程設定。

    查詢模型負責意圖 JSON 與 Cypher 產生，回答模型負責最後的敘述；
    兩者分開設定只是慣例，並非結構上的要求。
    """
    guide_override = get_env_str("SCHEMA_GUIDE_PATH", "").strip()
    return PipelineSettings(
        query_model=get_env_str("QUERY_MODEL", "").strip() or DEFAULT_QUERY_MODEL,
        answer_model=get_env_str("ANSWER_MODEL", "").strip() or DEFAULT_ANSWER_MODEL,
        query_temperature=get_env_float("QUERY_TEMPERATURE", 0.2),
        answer_temperature=get_env_float("ANSWER_TEMPERATURE", 0.2),
        answer_max_tokens=get_env_int("ANSWER_MAX_TOKENS", 2048, minimum=1),
        preview_rows=get_env_int("ANSWER_PREVIEW_ROWS", DEFAULT_PREVIEW_ROWS, minimum=1),
        schema_guide_path=Path(guide_override) if guide_override else DEFAULT_SCHEMA_GUIDE_PATH,
    )


def get_logging_settings() -> LoggingSettings:
    level = get_env_str("LOG_LEVEL", "INFO").strip().upper() or "INFO"
    return LoggingSettings(
        level=level,
        log_prompts=get_env_bool("LOG_PROMPTS", False),
    )
