# -*- coding: utf-8 -*-
# commons/normalizers.py
from __future__ import annotations

"""
normalizers
-----------
通用“字段级转换 / 行级校验”函数库，供后端响应与推送消息解析复用。
转换函数：func(value) -> new_value；校验函数：func(row_dict) -> None（异常表示失败）。
"""

from typing import Any, Optional


def empty_to_none(x: Any) -> Any:
    """将空串（含全空白）转换为 None，其它值保持不变。"""
    return None if isinstance(x, str) and x.strip() == "" else x


def strip_or_none(x: Any) -> Optional[str]:
    """去掉首尾空白，空字符串返回 None；非字符串转为 str。"""
    if x is None:
        return None
    if not isinstance(x, str):
        return str(x)
    s = x.strip()
    return s if s != "" else None


def to_float_or_none(x: Any) -> Optional[float]:
    """将值转换为 float；空串/None/非法值返回 None。"""
    if isinstance(x, bool):
        return None
    try:
        return float(x) if x is not None and str(x).strip() != "" else None
    except Exception:
        return None


def to_int_or_none(x: Any) -> Optional[int]:
    """
    把值尽量强转为 int；空串/None/非法值返回 None：
    - "123" -> 123
    - 123.0 -> 123
    - "" / None / "abc" -> None
    """
    try:
        return int(float(x)) if x is not None and str(x).strip() != "" else None
    except Exception:
        return None


def to_bool_or_none(x: Any) -> Optional[bool]:
    """
    将值转换为 bool；推送消息里的值全是字符串，"true"/"1"/"yes" 等都要认。
    其它或空返回 None。
    """
    if x is None:
        return None
    if isinstance(x, bool):
        return x
    s = str(x).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return None


def ts_to_millis(x: Any) -> Optional[int]:
    """
    将“可能为秒/毫秒/字符串”的时间戳统一为毫秒级 int：
    - None/空串 -> None
    - 数值 < 1e11 视为秒，乘以 1000
    """
    if x is None or (isinstance(x, str) and x.strip() == ""):
        return None
    try:
        val = float(x)
    except Exception:
        return None
    if val < 100_000_000_000:
        val *= 1000.0
    return int(val)


def ensure_lat_lon_range(row: dict, lat_key: str = "lat", lon_key: str = "lon") -> None:
    """
    坐标范围校验：lat ∈ [-90, 90]，lon ∈ [-180, 180]。
    缺失不校验；越界抛 ValueError。
    """
    lat, lon = row.get(lat_key), row.get(lon_key)
    if isinstance(lat, (int, float)) and not -90.0 <= lat <= 90.0:
        raise ValueError(f"{lat_key}({lat}) out of range")
    if isinstance(lon, (int, float)) and not -180.0 <= lon <= 180.0:
        raise ValueError(f"{lon_key}({lon}) out of range")


def ensure_required(row: dict, keys) -> None:
    """必填字段校验：任一字段为 None / 空串即抛 ValueError。"""
    missing = [k for k in keys if row.get(k) in (None, "")]
    if missing:
        raise ValueError(f"missing required fields: {missing}")
