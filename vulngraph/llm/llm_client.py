"""Completion client for the LiteLLM proxy (OpenAI-compatible chat completions)."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import requests

from vulngraph.config import settings as app_settings

THINK_TAG_PATTERN = re.compile(r"<think>.*?</think>", flags=re.DOTALL | re.IGNORECASE)
_CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", flags=re.DOTALL | re.IGNORECASE)
_VALID_ROLES = {"system", "user", "assistant"}

_logger = logging.getLogger(__name__)


class LLMError(requests.RequestException):
    """Base exception for completion service errors."""


class LLMTimeoutError(requests.Timeout, LLMError):
    """Timeout while calling the completion service."""


class LLMHTTPError(LLMError):
    """HTTP error returned by the completion service."""


class LLMResponseError(LLMError):
    """Unexpected response payload from the completion service."""


class LLMEmptyResponseError(LLMResponseError):
    """Completion succeeded but the model returned no text."""


class LLMParseError(LLMError):
    """Unable to parse JSON content returned by the model."""


@dataclass(frozen=True)
class Completion:
    text: str
    finish_reason: Optional[str]
    model: str


def _trim_error_detail(text: str) -> str:
    cleaned = str(text or "").strip()
    limit = app_settings.get_llm_runtime_settings().error_detail_max_chars
    if limit == 0 or len(cleaned) <= limit:
        return cleaned
    omitted = len(cleaned) - limit
    return f"{cleaned[:limit]}... [truncated {omitted} chars]"


def _auth_headers(api_key: str) -> Dict[str, str]:
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


def _validate_messages(messages: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """確認每則訊息都帶有合法角色與文字內容，並回傳乾淨的副本。"""
    cleaned: List[Dict[str, str]] = []
    for message in messages:
        role = str(message.get("role", "")).strip().lower()
        if role not in _VALID_ROLES:
            raise LLMResponseError(f"Unsupported message role: {role or '<empty>'}")
        cleaned.append({"role": role, "content": str(message.get("content", ""))})
    if not cleaned:
        raise LLMResponseError("Completion request has no messages")
    return cleaned


def _request_json(
    method: str,
    url: str,
    *,
    timeout: float,
    headers: Optional[Dict[str, str]] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """送出 HTTP 請求並把傳輸層錯誤轉成 `LLMError` 家族。

    - 逾時轉為 `LLMTimeoutError`（同時也是 `requests.Timeout`）。
    - 連線失敗與 4xx/5xx 轉為 `LLMHTTPError`，錯誤內容會依設定截斷。
    - 非 JSON 回應轉為 `LLMResponseError`。
    """
    try:
        if method.upper() == "GET":
            response = requests.get(url, headers=headers, timeout=timeout)
        else:
            response = requests.post(url, headers=headers, json=payload, timeout=timeout)
    except requests.Timeout as exc:
        raise LLMTimeoutError(f"LLM request timed out: {exc}") from exc
    except requests.RequestException as exc:
        raise LLMHTTPError(f"LLM request failed: {exc}") from exc

    if response.status_code >= 400:
        raise LLMHTTPError(
            f"LLM provider returned {response.status_code}: {_trim_error_detail(response.text)}"
        )

    try:
        return response.json()
    except ValueError as exc:
        raise LLMResponseError("LLM provider returned non-JSON payload") from exc


def _extract_choice(body: Dict[str, Any]) -> tuple[str, Optional[str]]:
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        raise LLMResponseError("Completion response missing choices")

    choice = choices[0] if isinstance(choices[0], dict) else {}
    message = choice.get("message") if isinstance(choice.get("message"), dict) else {}
    content = message.get("content", "")
    # Some proxies return content as a list of typed parts.
    if isinstance(content, list):
        content = "".join(
            str(part.get("text", "")) for part in content if isinstance(part, dict) and part.get("type") == "text"
        )

    text = str(content or "").strip()
    if not text:
        raise LLMEmptyResponseError("Completion response has empty content")
    finish_reason = choice.get("finish_reason")
    return text, str(finish_reason) if finish_reason is not None else None


def complete(
    messages: List[Dict[str, str]],
    *,
    model: str,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    timeout_seconds: Optional[float] = None,
) -> Completion:
    """呼叫 `/v1/chat/completions` 並回傳生成文字與結束原因。

    參數:
        messages: 依序排列的 `{role, content}` 訊息，role 僅限 system/user/assistant。
        model: LiteLLM 代理上設定的模型名稱。
        temperature, max_tokens, timeout_seconds: 未指定時沿用執行期設定。

    回傳值:
        Completion: 生成文字、`finish_reason` 與實際使用的模型名稱。

    例外:
        LLMError 家族；本函式不重試，也不吞掉任何錯誤。
    """
    cfg = app_settings.get_llm_runtime_settings()
    use_temp = cfg.temperature if temperature is None else float(temperature)
    use_max_tokens = cfg.max_tokens if max_tokens is None else max(1, int(max_tokens))
    use_timeout = cfg.timeout_seconds if timeout_seconds is None else max(1.0, float(timeout_seconds))

    payload = {
        "model": model,
        "messages": _validate_messages(messages),
        "temperature": use_temp,
        "max_tokens": use_max_tokens,
        "stream": False,
    }
    if app_settings.get_logging_settings().log_prompts:
        _logger.debug("completion request model=%s messages=%s", model, json.dumps(payload["messages"], ensure_ascii=False))

    body = _request_json(
        "POST",
        f"{cfg.base_url}/v1/chat/completions",
        headers=_auth_headers(cfg.api_key),
        payload=payload,
        timeout=use_timeout,
    )
    text, finish_reason = _extract_choice(body)
    if finish_reason == "length":
        _logger.warning("completion truncated by max_tokens model=%s max_tokens=%s", model, use_max_tokens)
    return Completion(text=text, finish_reason=finish_reason, model=str(body.get("model") or model))


def _strip_code_fence(raw: str) -> str:
    text = raw.strip()
    match = _CODE_FENCE_PATTERN.match(text)
    return (match.group(1) if match else text).strip()


def _extract_balanced_object(text: str, start_idx: int) -> Optional[str]:
    """從 `start_idx` 的 `{` 開始找出括號平衡的區段，字串內的括號不計。"""
    depth = 0
    in_string = False
    escaped = False
    for idx in range(start_idx, len(text)):
        ch = text[idx]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start_idx : idx + 1]
    return None


def parse_json_object(raw: str) -> Dict[str, Any]:
    """把模型回覆解析為 JSON 物件。

    依序嘗試：去除 markdown fence 後的全文、去除 `<think>` 區塊後的全文、
    以及文字中第一個括號平衡的 `{...}` 區段。結果必須是 object，
    否則拋出 `LLMParseError`。
    """
    text = _strip_code_fence(str(raw or ""))
    candidates: List[str] = [text]
    without_think = THINK_TAG_PATTERN.sub(" ", text).strip()
    if without_think and without_think != text:
        candidates.append(without_think)
    first_brace = without_think.find("{")
    if first_brace >= 0:
        block = _extract_balanced_object(without_think, first_brace)
        if block:
            candidates.append(block)

    last_error: Optional[Exception] = None
    for candidate in dict.fromkeys(c for c in candidates if c):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as exc:
            last_error = exc
            continue
        if isinstance(parsed, dict):
            return parsed
        last_error = ValueError(f"expected a JSON object, got {type(parsed).__name__}")

    raise LLMParseError(f"Invalid JSON from LLM: {last_error}")


def health_check(timeout_seconds: float = 3.0) -> Dict[str, Any]:
    """以 `GET /v1/models` 檢查 LiteLLM 代理是否可連線。"""
    cfg = app_settings.get_llm_runtime_settings()
    try:
        _request_json(
            "GET",
            f"{cfg.base_url}/v1/models",
            headers=_auth_headers(cfg.api_key),
            timeout=max(1.0, timeout_seconds),
        )
        status = "ok"
        reachable = True
    except LLMError as exc:
        _logger.warning("completion service health check failed: %s", exc)
        status = "down"
        reachable = False
    return {
        "upstream": "litellm",
        "base_url": cfg.base_url,
        "status": status,
        "reachable": reachable,
    }
