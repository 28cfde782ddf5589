# pipeline/samplers/foreground_app.py
from __future__ import annotations

from typing import Optional

from commons.base_logger import BaseLogger
from mydataclass.signals import ForegroundApp, SignalKind, now_ms
from pipeline.samplers.base import BaseSampler
from pipeline.samplers.protocols import UsageStatsProvider


class ForegroundAppSampler(BaseSampler[ForegroundApp]):
    """在 lookback 窗口内取 last_time_used 最大的应用作为前台应用。"""

    kind = SignalKind.FOREGROUND_APP

    def __init__(self, provider: UsageStatsProvider, *, lookback_sec: float = 10.0,
                 logger: Optional[BaseLogger] = None):
        super().__init__(logger)
        self.provider = provider
        self.lookback_ms = int(lookback_sec * 1000)

    def _read(self) -> Optional[ForegroundApp]:
        now = now_ms()
        records = list(self.provider.query_usage(now - self.lookback_ms, now))
        if not records:
            return None
        recent = max(records, key=lambda r: r.last_time_used)
        return ForegroundApp(package_name=recent.package_name, timestamp_ms=now,
                             app_name=self._label(recent.package_name))

    def _label(self, package_name: str) -> str:
        try:
            return self.provider.app_label(package_name) or package_name
        except Exception as e:
            self.logger.log_debug(f"[foreground_app] label lookup failed {package_name}: {e}")
            return package_name
