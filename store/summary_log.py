# -*- coding: utf-8 -*-
"""滚动摘要日志：最近 N 条展示过的提示，持久化在 cached_summary_list。"""
from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional

from commons.base_dataclasses import BaseDataClass
from commons.base_logger import BaseLogger
from commons.normalizers import ensure_required, strip_or_none, to_int_or_none
from mydataclass.signals import now_ms
from store.preference_store import PreferenceStore


@dataclass(slots=True)
class SummaryItem(BaseDataClass):
    type: str
    text: str
    emoji: Optional[str] = None
    timestamp: Optional[int] = None

    CONVERTERS: ClassVar[Dict[str, Any]] = {
        "type": strip_or_none,
        "text": strip_or_none,
        "emoji": strip_or_none,
        "timestamp": to_int_or_none,
    }

    VALIDATORS: ClassVar[List[Any]] = [lambda row: ensure_required(row, ("type", "text"))]


class SummaryLog:
    """
    摘要日志：
    - append() 追加一条并裁剪到 max_items（保留最新）
    - 每次写入整体落盘到 PreferenceStore
    - 读取时跳过损坏的条目
    """

    def __init__(self, store: PreferenceStore, max_items: int = 20, logger: Optional[BaseLogger] = None):
        self.store = store
        self.max_items = max_items
        self.logger = logger or BaseLogger(name="SummaryLog")
        self._lock = threading.Lock()

    def items(self) -> List[SummaryItem]:
        raw = self.store.get(PreferenceStore.KEY_SUMMARY_LIST) or []
        if not isinstance(raw, list):
            self.logger.log_warning(f"[Summary] cached list has type {type(raw).__name__}, reset")
            return []
        return SummaryItem.from_list(raw)

    def append(self, type_: str, emoji: Optional[str], text: str, timestamp: Optional[int] = None) -> SummaryItem:
        item = SummaryItem(type=type_, text=text, emoji=emoji, timestamp=timestamp or now_ms())
        with self._lock:
            current = self.items()
            current.append(item)
            trimmed = current[-self.max_items:]
            self.store.set(
                PreferenceStore.KEY_SUMMARY_LIST,
                [x.to_dict() for x in trimmed],
            )
        return item

    def clear(self) -> None:
        with self._lock:
            self.store.set(PreferenceStore.KEY_SUMMARY_LIST, [])
