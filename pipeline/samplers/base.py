# pipeline/samplers/base.py
from __future__ import annotations

import asyncio
from typing import Generic, Optional, TypeVar

from commons.base_logger import BaseLogger
from mydataclass.signals import SignalKind
from pipeline.errors import PermissionDenied

S = TypeVar("S")


class BaseSampler(Generic[S]):
    """
    采样器基类：
    - sample() 包装子类的 _read()
    - PermissionDenied 与其它瞬时错误记录日志后转为“无信号”（None）
    - 采样器永远不把异常抛给 controller
    - asample() 把阻塞读取放到线程中执行
    """

    kind: SignalKind

    def __init__(self, logger: Optional[BaseLogger] = None):
        self.logger = logger or BaseLogger(name=self.__class__.__name__)

    def _read(self) -> Optional[S]:
        raise NotImplementedError

    def sample(self) -> Optional[S]:
        try:
            return self._read()
        except PermissionDenied as e:
            self.logger.log_warning(f"[{self.kind.value}] permission denied: {e}")
        except Exception as e:
            self.logger.log_error(f"[{self.kind.value}] sample failed: {type(e).__name__}: {e}")
        return None

    async def asample(self) -> Optional[S]:
        return await asyncio.to_thread(self.sample)
