# pipeline/samplers/location.py
from __future__ import annotations

from typing import Optional

from commons.base_logger import BaseLogger
from mydataclass.signals import LocationFix, SignalKind, now_ms
from pipeline.samplers.base import BaseSampler
from pipeline.samplers.protocols import LocationProvider


class LocationSampler(BaseSampler[LocationFix]):
    """
    位置采样：
      1. 最近一次定位足够新（< max_fix_age_sec）直接使用；
      2. 否则请求一次单次定位，超时（fix_timeout_sec）视为无信号。
    """

    kind = SignalKind.LOCATION

    def __init__(
        self,
        provider: LocationProvider,
        *,
        max_fix_age_sec: float = 300.0,
        fix_timeout_sec: float = 30.0,
        logger: Optional[BaseLogger] = None,
    ):
        super().__init__(logger)
        self.provider = provider
        self.max_fix_age_ms = int(max_fix_age_sec * 1000)
        self.fix_timeout_sec = fix_timeout_sec

    def _read(self) -> Optional[LocationFix]:
        last = self.provider.last_known()
        if last is not None and now_ms() - last.timestamp_ms < self.max_fix_age_ms:
            return last

        fix = self.provider.request_single_update(self.fix_timeout_sec)
        if fix is None:
            self.logger.log_info(f"[location] no fix within {self.fix_timeout_sec}s")
        return fix
