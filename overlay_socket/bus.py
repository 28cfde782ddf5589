# overlay_socket/bus.py
from __future__ import annotations
import asyncio
from typing import Any, Optional


class SnapshotBus:
    """
    轻量广播总线：
      - 保存最近一次快照与递增序号；
      - publish() 唤醒所有等待者；
      - wait_update() 可超时返回 None（用于 SSE 心跳）。
    由 run 入口创建并注入（不使用模块级单例）。
    """
    def __init__(self) -> None:
        self._snapshot: Optional[Any] = None
        self._seq = 0
        self._event = asyncio.Event()
        self._lock = asyncio.Lock()

    async def publish(self, snapshot: Any) -> int:
        async with self._lock:
            self._seq += 1
            self._snapshot = snapshot
            self._event.set()
            self._event = asyncio.Event()
            return self._seq

    @property
    def seq(self) -> int:
        return self._seq

    def peek(self) -> Optional[Any]:
        return self._snapshot

    async def wait_update(self, timeout: float = 15.0) -> Optional[Any]:
        event = self._event
        try:
            await asyncio.wait_for(event.wait(), timeout=timeout)
            return self._snapshot
        except asyncio.TimeoutError:
            return None
