"""Environment variable parsing helpers shared by the settings getters."""

from __future__ import annotations

import os
from typing import Optional

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(name, default)


def get_env_str(name: str, default: str = "") -> str:
    """讀取字串型環境變數；未設定時回傳 `default`，空字串視為有效值。"""
    value = os.getenv(name)
    if value is None:
        return default
    return str(value)


def get_env_first(names: tuple[str, ...], default: str = "") -> str:
    """依序嘗試多個變數名稱，回傳第一個非空值。

    用於相容不同命名慣例，例如 `NEO4J_USERNAME` 與舊的 `NEO4J_USER`。
    """
    for name in names:
        value = os.getenv(name)
        if value is not None and value.strip():
            return value
    return default


def get_env_int(name: str, default: int, *, minimum: Optional[int] = None) -> int:
    """讀取整數環境變數，格式錯誤時回到預設值，並可套用下限。"""
    raw = os.getenv(name)
    try:
        value = int(raw) if raw is not None else default
    except (TypeError, ValueError):
        value = default
    if minimum is not None:
        value = max(minimum, value)
    return value


def get_env_float(name: str, default: float, *, minimum: Optional[float] = None) -> float:
    """讀取浮點數環境變數，格式錯誤時回到預設值，並可套用下限。"""
    raw = os.getenv(name)
    try:
        value = float(raw) if raw is not None else default
    except (TypeError, ValueError):
        value = default
    if minimum is not None:
        value = max(minimum, value)
    return value


def get_env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    return default
