#  丢头队列封装 DropHeadQueue

from __future__ import annotations
import asyncio
import contextlib
from typing import Generic, TypeVar

T = TypeVar("T")


class DropHeadQueue(Generic[T]):
    """
    asyncio.Queue 的轻量封装：
    - 若队列已满：丢弃最旧元素（drop head），保证最新消息可进入。
    - put_nowait 永不阻塞，供同步上下文（回调 / 采样循环）直接投递。
    - 不负责“哨兵”保留策略（由 LocalNotifier 在停止阶段保证可达）。
    """

    def __init__(self, cap: int):
        self._q: asyncio.Queue[T] = asyncio.Queue(maxsize=cap)
        self.dropped = 0

    def _drop_head_if_full(self) -> None:
        if self._q.full():
            with contextlib.suppress(asyncio.QueueEmpty):
                self._q.get_nowait()
                self._q.task_done()
                self.dropped += 1

    def put_nowait(self, item: T) -> None:
        self._drop_head_if_full()
        self._q.put_nowait(item)

    async def put(self, item: T) -> None:
        self.put_nowait(item)

    async def get(self) -> T:
        return await self._q.get()

    def task_done(self) -> None:
        self._q.task_done()

    async def join(self) -> None:
        await self._q.join()

    def qsize(self) -> int:
        return self._q.qsize()
