#     本地通知器 LocalNotifier
from __future__ import annotations
import asyncio
from typing import Any, Dict, Iterable, List, Optional, Union

from commons.base_logger import BaseLogger
from mydataclass.trigger_result import TriggerResult
from pipeline.drop_head_queue import DropHeadQueue
from pipeline.handler_bus import Handler, HandlerBus
from pipeline.notifier_models import LocalMessage, MessageKind

# 停止哨兵
_SENTINEL = object()


class LocalNotifier:
    """
    本地通知器：
      - publish() 把 TriggerResult 包装成 LocalMessage 投递到 DropHeadQueue，立即返回（不阻塞调用方）
      - 队列满时丢弃最旧消息，保证最新提示可达
      - 多个 worker 并发消费；每个 worker：
          1) 从队列取出消息
          2) 通过 HandlerBus 广播给订阅了该类型的 handler
      - stop() 向队列投递哨兵使 worker 结束循环

    该类不关心展示细节，只负责“入队 → 分发”这一链路。
    """

    def __init__(self, queue_cap: int = 256, logger: Optional[BaseLogger] = None):
        self.log = logger or BaseLogger(name="LocalNotifier")
        self._queue: DropHeadQueue[Any] = DropHeadQueue(queue_cap)
        self._bus = HandlerBus(logger=self.log)
        self._workers: List[asyncio.Task] = []

    # === 对外接口 ===

    def on(self, handler: Handler, kinds: Optional[Iterable[MessageKind]] = None) -> None:
        """注册消息处理器；kinds 为空表示订阅全部类型。"""
        self._bus.add(handler, kinds)

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self, n_workers: int = 2) -> None:
        for i in range(n_workers):
            self._workers.append(asyncio.create_task(self._worker(), name=f"notifier-worker:{i}"))

    async def stop(self) -> None:
        """
        停止所有 worker：
          - 为每个 worker 投递一个哨兵
          - 等待所有 worker 任务结束
        """
        for _ in self._workers:
            self._queue.put_nowait(_SENTINEL)
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

    def publish(
        self,
        result: Optional[TriggerResult],
        kind: Union[MessageKind, str],
        data: Optional[Dict[str, Any]] = None,
    ) -> LocalMessage:
        """投递一条消息；非阻塞。"""
        msg = LocalMessage(kind=MessageKind(kind), result=result, data=dict(data or {}))
        self._queue.put_nowait(msg)
        self.log.log_debug(f"[Notifier] publish kind={msg.kind.value} qsize={self._queue.qsize()}")
        return msg

    async def drain(self) -> None:
        """等待当前队列中的消息全部分发完成（测试与优雅退出使用）。"""
        await self._queue.join()

    # === 内部 ===

    async def _worker(self) -> None:
        while True:
            m = await self._queue.get()
            try:
                if m is _SENTINEL:
                    return
                await self._bus.emit(m)
            finally:
                self._queue.task_done()
