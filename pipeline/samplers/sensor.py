# pipeline/samplers/sensor.py
from __future__ import annotations

import math
import threading
from typing import Optional, Tuple, Union

from commons.base_logger import BaseLogger
from mydataclass.signals import SensorSnapshot, SignalKind, now_ms
from pipeline.samplers.base import BaseSampler
from pipeline.samplers.protocols import ConnectivityProvider

GRAVITY_EARTH = 9.80665

# 电池状态（与 Android BatteryManager 取值一致）
BATTERY_STATUS_CHARGING = 2
BATTERY_STATUS_FULL = 5


class SensorSampler(BaseSampler[SensorSnapshot]):
    """
    事件驱动的传感器聚合：
    - on_* 回调只保留每个传感器的最新值
    - flush() 生成一份快照，并重置“移动中”标记
    - |‖a‖ − g| 超过阈值即置位“移动中”，直到下一次 flush
    """

    kind = SignalKind.SENSOR_CONTEXT

    def __init__(
        self,
        connectivity: Optional[ConnectivityProvider] = None,
        *,
        accel_threshold: float = 2.2,
        logger: Optional[BaseLogger] = None,
    ):
        super().__init__(logger)
        self.connectivity = connectivity
        self.accel_threshold = accel_threshold
        self._lock = threading.Lock()

        self._light: Optional[float] = None
        self._proximity: Optional[float] = None
        self._proximity_max: Optional[float] = None
        self._accel: Optional[Tuple[float, float, float]] = None
        self._moving = False
        self._battery: Optional[int] = None
        self._charging: Optional[bool] = None
        self._screen: Optional[str] = None

    # ---------------- 传感器回调 ----------------

    def on_light(self, lux: float) -> None:
        with self._lock:
            self._light = float(lux)

    def on_proximity(self, value: float, max_range: float = 1.0) -> None:
        with self._lock:
            self._proximity = float(value)
            self._proximity_max = float(max_range)

    def on_accelerometer(self, x: float, y: float, z: float) -> None:
        magnitude = math.sqrt(x * x + y * y + z * z)
        with self._lock:
            self._accel = (float(x), float(y), float(z))
            if abs(magnitude - GRAVITY_EARTH) > self.accel_threshold:
                self._moving = True

    def on_battery(self, level: int, scale: int, status: Union[int, str, None] = None) -> None:
        with self._lock:
            self._battery = (level * 100) // scale if level >= 0 and scale > 0 else None
            if isinstance(status, str):
                self._charging = status.strip().lower() in ("charging", "full")
            else:
                self._charging = status in (BATTERY_STATUS_CHARGING, BATTERY_STATUS_FULL)
        self.logger.log_debug(f"Battery updated: {self._battery}% charging={self._charging}")

    def on_screen(self, on: bool) -> None:
        with self._lock:
            self._screen = "on" if on else "off"

    # ---------------- 快照 ----------------

    def _connectivity(self) -> Tuple[Optional[bool], Optional[bool]]:
        if self.connectivity is None:
            return None, None
        wifi = bt = None
        try:
            wifi = bool(self.connectivity.wifi_connected())
        except Exception as e:
            self.logger.log_warning(f"wifi check failed: {e}")
        try:
            bt = bool(self.connectivity.bluetooth_connected())
        except Exception as e:
            self.logger.log_warning(f"bluetooth check failed: {e}")
        return wifi, bt

    def flush(self) -> SensorSnapshot:
        wifi, bt = self._connectivity()
        with self._lock:
            proximity = None
            if self._proximity is not None:
                max_range = self._proximity_max if self._proximity_max is not None else 1.0
                proximity = "near" if self._proximity < max_range else "far"
            motion = None
            if self._accel is not None:
                motion = "moving" if self._moving else "stationary"
            snap = SensorSnapshot(
                light=self._light,
                proximity=proximity,
                proximity_raw=self._proximity,
                motion_state=motion,
                battery=self._battery,
                charging=self._charging,
                wifi_connected=wifi,
                bluetooth_connected=bt,
                screen=self._screen,
                accel=self._accel,
                timestamp_ms=now_ms(),
            )
            self._moving = False
        return snap

    def _read(self) -> Optional[SensorSnapshot]:
        return self.flush()
