"""Schema guide loader."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from vulngraph.config.settings import get_pipeline_settings


def load_schema_guide(path: Optional[Path] = None) -> str:
    """讀取 schema guide 全文；每次呼叫都重新讀檔，讀取失敗時直接拋出 `OSError`。"""
    guide_path = path or get_pipeline_settings().schema_guide_path
    return Path(guide_path).read_text(encoding="utf-8")
