"""Deny-list filter for generated Cypher.

This is a best-effort textual check, not a parser. Queries are additionally
executed inside read transactions, so a write that slips past the deny-list is
still refused by the server.
"""

from __future__ import annotations

import re
from typing import List, Optional

_PROCEDURE_ALTERNATIVES = (
    r"CALL\s+db\.(?:ms|write|create)\w*"
    r"|CALL\s+dbms\.\w*"
    r"|CALL\s+apoc\.(?:create|merge|load|periodic|refactor|do)\w*"
    r"|CALL\s+apoc\.cypher\.(?:runWrite|doIt)\w*"
    r"|CALL\s+apoc\.nodes\.delete\w*"
)

FORBIDDEN_CYPHER_PATTERN = re.compile(
    r"\b(CREATE|MERGE|DELETE|SET|REMOVE|DROP|FOREACH|LOAD\s+CSV|" + _PROCEDURE_ALTERNATIVES + r")\b",
    flags=re.IGNORECASE,
)

# Procedure names may be written with backtick-quoted segments.
FORBIDDEN_PROCEDURE_PATTERN = re.compile(r"\b(" + _PROCEDURE_ALTERNATIVES + r")\b", flags=re.IGNORECASE)

_QUOTE_CHARS = {"'", '"', "`"}


def mask_literals(query: str, *, unwrap_identifiers: bool = False) -> Optional[str]:
    """把字串常值、反引號識別字與註解內容換成空白，保留原本長度。

    `unwrap_identifiers=True` 時反引號識別字改為去掉反引號、保留內容
    （此時不保證長度不變），供程序名稱檢查使用。
    遇到未結束的常值或區塊註解時回傳 `None`，呼叫端改掃描原文。
    """
    out: List[str] = []
    idx = 0
    length = len(query)
    while idx < length:
        ch = query[idx]
        nxt = query[idx + 1] if idx + 1 < length else ""

        if ch in _QUOTE_CHARS:
            end = idx + 1
            closed = False
            while end < length:
                cur = query[end]
                if cur == "\\" and ch != "`":
                    end += 2
                    continue
                if cur == ch:
                    # `` inside backticks and '' inside quotes are escaped delimiters.
                    if end + 1 < length and query[end + 1] == ch:
                        end += 2
                        continue
                    closed = True
                    break
                end += 1
            if not closed:
                return None
            if ch == "`" and unwrap_identifiers:
                out.append(query[idx + 1:end].replace("``", "`"))
            else:
                out.append(ch + " " * (end - idx - 1) + ch)
            idx = end + 1
            continue

        if ch == "/" and nxt == "/":
            end = query.find("\n", idx)
            end = length if end < 0 else end
            out.append(" " * (end - idx))
            idx = end
            continue

        if ch == "/" and nxt == "*":
            end = query.find("*/", idx + 2)
            if end < 0:
                return None
            out.append(" " * (end + 2 - idx))
            idx = end + 2
            continue

        out.append(ch)
        idx += 1
    return "".join(out)


def _scan_text(query: str, *, unwrap_identifiers: bool = False) -> str:
    masked = mask_literals(query, unwrap_identifiers=unwrap_identifiers)
    return query if masked is None else masked


def find_forbidden_tokens(query: str) -> List[str]:
    """回傳查詢中命中的禁用關鍵字（正規化為大寫、單一空白），依出現順序且不重複。

    關鍵字在遮蔽反引號識別字後比對；程序名稱另外在去掉反引號的版本上比對。
    """
    text = str(query or "")
    matches = list(FORBIDDEN_CYPHER_PATTERN.finditer(_scan_text(text)))
    matches.extend(FORBIDDEN_PROCEDURE_PATTERN.finditer(_scan_text(text, unwrap_identifiers=True)))
    found: List[str] = []
    for match in matches:
        token = re.sub(r"\s+", " ", match.group(1)).upper()
        if token not in found:
            found.append(token)
    return found


def is_read_only(query: str) -> bool:
    return not find_forbidden_tokens(query)
