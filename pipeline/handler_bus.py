# Handler 分发总线 HandlerBus

from __future__ import annotations
import asyncio
from typing import Awaitable, Callable, FrozenSet, Iterable, List, Optional, Tuple

from commons.base_logger import BaseLogger
from pipeline.notifier_models import LocalMessage, MessageKind

Handler = Callable[[LocalMessage], Awaitable[None]]


class HandlerBus:
    """
    负责管理与并发调用所有已注册的异步 handler。
    - 订阅时可指定关心的消息类型（None 表示全部）
    - 并发 fan-out
    - 吞异常但输出一条结构化错误日志，单个 handler 失败不影响其它 handler
    """

    def __init__(self, logger: Optional[BaseLogger] = None):
        self._handlers: List[Tuple[Handler, Optional[FrozenSet[MessageKind]]]] = []
        self.log = logger or BaseLogger(name="HandlerBus")

    def add(self, handler: Handler, kinds: Optional[Iterable[MessageKind]] = None) -> None:
        """注册 handler。约定：async def handler(msg: LocalMessage) -> None"""
        self._handlers.append((handler, frozenset(MessageKind(k) for k in kinds) if kinds else None))

    def __len__(self) -> int:
        return len(self._handlers)

    async def emit(self, msg: LocalMessage) -> None:
        """并发执行所有匹配的 handler；保底输出错误日志。"""
        targets = [h for h, kinds in self._handlers if kinds is None or msg.kind in kinds]
        if not targets:
            return
        results = await asyncio.gather(*(h(msg) for h in targets), return_exceptions=True)
        for h, r in zip(targets, results):
            if isinstance(r, Exception):
                self.log.log_event("handler_failed", kind=msg.kind.value,
                                   handler=getattr(h, "__qualname__", repr(h)), err=repr(r))
