"""Heuristic rewrite that makes generated Cypher project relationship data.

Language models often write ``MATCH (f)-[:AFFECTS]->(a) RETURN f, a`` for
relationship questions, which yields two disconnected nodes. When the query
has a simple shape the rewrite binds the relationship (or the whole
variable-length path) and appends it to ``RETURN``. Anything more complex is
left untouched; a missed rewrite is not an error.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from vulngraph.services.qa.safety import mask_literals

_logger = logging.getLogger(__name__)

_UNSUPPORTED_CLAUSES = re.compile(r"\b(UNION|WITH|CALL)\b", flags=re.IGNORECASE)
_RETURN_KEYWORD = re.compile(r"\bRETURN\b", flags=re.IGNORECASE)
_RETURN_TAIL = re.compile(r"\b(ORDER\s+BY|SKIP|LIMIT)\b", flags=re.IGNORECASE)
_AGGREGATE_CALL = re.compile(r"\b(count|collect|sum|avg|min|max|stDev|percentileCont|percentileDisc)\s*\(", flags=re.IGNORECASE)
_DISTINCT_PREFIX = re.compile(r"^\s*DISTINCT\b", flags=re.IGNORECASE)
_REL_OPEN = re.compile(r"-\s*\[")
_NODE = r"\(\s*(\w*)[^()]*\)"
_DIRECT_PATTERN = re.compile(_NODE + r"\s*<?-\s*\[\s*(\w*)([^\]*]*)\]\s*->?\s*" + _NODE)
_VARLEN_PATTERN = re.compile(_NODE + r"\s*<?-\s*\[[^\]]*\*[^\]]*\]\s*->?\s*" + _NODE)
_PATH_ASSIGNMENT_TAIL = re.compile(r"(\w+)\s*=\s*$")
_IDENTIFIER = re.compile(r"\b[A-Za-z_]\w*\b")


@dataclass(frozen=True)
class RepairOutcome:
    query: str
    changed: bool
    details: str


def _split_projection(body: str) -> List[str]:
    """以最外層逗號切開 RETURN 項目，括號內的逗號不切。"""
    items: List[str] = []
    depth = 0
    current: List[str] = []
    for ch in body:
        if ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
        if ch == "," and depth == 0:
            items.append("".join(current).strip())
            current = []
            continue
        current.append(ch)
    tail = "".join(current).strip()
    if tail:
        items.append(tail)
    return items


def _fresh_name(base: str, taken: set) -> str:
    if base not in taken:
        return base
    suffix = 1
    while f"{base}{suffix}" in taken:
        suffix += 1
    return f"{base}{suffix}"


def _locate_return(masked: str) -> Optional[Tuple[int, int, int]]:
    """回傳 (RETURN 關鍵字起點, 投影起點, 投影終點)；找不到或有多個 RETURN 時回傳 None。"""
    matches = list(_RETURN_KEYWORD.finditer(masked))
    if len(matches) != 1:
        return None
    start = matches[0].end()
    tail = _RETURN_TAIL.search(masked, start)
    end = tail.start() if tail else len(masked)
    body = masked[start:end]
    stripped = body.rstrip().rstrip(";").rstrip()
    return matches[0].start(), start, start + len(stripped)


def _skip(reason: str, query: str) -> RepairOutcome:
    return RepairOutcome(query=query, changed=False, details=f"No repair applied: {reason}.")


def repair_query(query: str) -> RepairOutcome:
    """補上關係或路徑的投影。

    支援兩種形狀：
    - 單一直接關係 `(a)-[:T]->(b)`，a、b 皆以裸變數回傳但關係未回傳：
      綁定（或沿用）關係變數並加入 RETURN。
    - 單一可變長度樣式 `(a)-[:T*1..3]->(b)` 且未指定路徑變數：
      改寫為 `path = (a)-[...]->(b)` 並回傳 `path`。
    含 UNION/WITH/CALL、彙總函式或多個關係樣式的查詢不改寫。
    """
    text = str(query or "")
    masked = mask_literals(text)
    if masked is None:
        return _skip("query contains an unterminated literal", text)
    if _UNSUPPORTED_CLAUSES.search(masked):
        return _skip("query uses UNION, WITH or CALL", text)

    located = _locate_return(masked)
    if located is None:
        return _skip("query does not have a single RETURN clause", text)
    return_kw, body_start, body_end = located

    body = masked[body_start:body_end]
    distinct = _DISTINCT_PREFIX.match(body)
    if distinct:
        body = body[distinct.end():]
    items = _split_projection(body)
    if not items or "*" in items:
        return _skip("RETURN projection is empty or uses *", text)
    if any(_AGGREGATE_CALL.search(item) for item in items):
        return _skip("RETURN aggregates", text)
    returned = {item for item in items if re.fullmatch(r"\w+", item)}

    pattern_text = masked[:return_kw]
    if len(_REL_OPEN.findall(pattern_text)) != 1:
        return _skip("query does not have exactly one relationship pattern", text)
    taken = set(_IDENTIFIER.findall(masked))

    varlen = _VARLEN_PATTERN.search(pattern_text)
    if varlen:
        start_var, end_var = varlen.group(1), varlen.group(2)
        if not (start_var in returned and end_var in returned):
            return _skip("path endpoints are not returned", text)
        bound = _PATH_ASSIGNMENT_TAIL.search(pattern_text[: varlen.start()])
        if bound:
            path_var = bound.group(1)
            if path_var in returned:
                return _skip("path is already returned", text)
            rewritten = text[:body_end] + f", {path_var}" + text[body_end:]
            _logger.info("query repair added bound path %s to RETURN", path_var)
            return RepairOutcome(
                query=rewritten,
                changed=True,
                details=f"Added path variable `{path_var}` to RETURN.",
            )
        path_var = _fresh_name("path", taken)
        rewritten = text[:body_end] + f", {path_var}" + text[body_end:]
        rewritten = rewritten[: varlen.start()] + f"{path_var} = " + rewritten[varlen.start():]
        _logger.info("query repair bound variable-length path as %s", path_var)
        return RepairOutcome(
            query=rewritten,
            changed=True,
            details=f"Bound variable-length pattern to `{path_var}` and added it to RETURN.",
        )

    direct = _DIRECT_PATTERN.search(pattern_text)
    if direct is None:
        return _skip("relationship pattern is not a simple direct hop", text)
    start_var, rel_var, end_var = direct.group(1), direct.group(2), direct.group(4)
    if not (start_var in returned and end_var in returned):
        return _skip("relationship endpoints are not returned", text)
    if rel_var and rel_var in returned:
        return _skip("relationship is already returned", text)

    rewritten = text[:body_end]
    if rel_var:
        name = rel_var
        rewritten = rewritten + f", {name}" + text[body_end:]
    else:
        name = _fresh_name("r", taken)
        bracket = direct.start(2)
        rewritten = rewritten + f", {name}" + text[body_end:]
        rewritten = rewritten[:bracket] + name + rewritten[bracket:]
    _logger.info("query repair projected relationship as %s", name)
    return RepairOutcome(
        query=rewritten,
        changed=True,
        details=f"Added relationship variable `{name}` to RETURN.",
    )
