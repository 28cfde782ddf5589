# push/registry.py
from __future__ import annotations
from typing import Awaitable, Callable, List, Mapping, Optional, Tuple

from commons.base_logger import BaseLogger

PushData = Mapping[str, str]
Predicate = Callable[[PushData], bool]
RouteHandler = Callable[[PushData], Awaitable[None]]


def non_empty(*keys: str) -> Predicate:
    """所有 key 都存在且非空白。"""
    def _check(data: PushData) -> bool:
        return all(str(data.get(k) or "").strip() for k in keys)
    return _check


class PushRouter:
    """
    推送消息路由：按注册顺序匹配，首个命中者处理，其余忽略。
    handler 异常只记录结构化错误日志，不向上抛。
    """

    def __init__(self, logger: Optional[BaseLogger] = None):
        self._routes: List[Tuple[str, Predicate, RouteHandler]] = []
        self.log = logger or BaseLogger(name="PushRouter")

    def on(self, name: str, predicate: Predicate):
        def deco(fn: RouteHandler):
            self._routes.append((name, predicate, fn))
            return fn
        return deco

    @property
    def route_names(self) -> List[str]:
        return [name for name, _, _ in self._routes]

    async def route(self, data: PushData) -> Optional[str]:
        """返回命中的路由名；未命中返回 None。"""
        data = {str(k): ("" if v is None else str(v)) for k, v in (data or {}).items()}
        for name, predicate, fn in self._routes:
            if not predicate(data):
                continue
            try:
                await fn(data)
            except Exception as e:
                self.log.log_event("push_route_failed", route=name, err=repr(e))
            return name
        self.log.log_debug(f"[Push] unmatched keys={sorted(data)}")
        return None
