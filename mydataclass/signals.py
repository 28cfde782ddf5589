# mydataclass/signals.py
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple, Union


def now_ms() -> int:
    """当前墙钟时间（毫秒）。"""
    return int(time.time() * 1000)


class SignalKind(str, Enum):
    LOCATION = "location"
    FOREGROUND_APP = "foreground_app"
    SENSOR_CONTEXT = "sensor_context"
    WAKEWORD = "wakeword"


@dataclass(frozen=True, slots=True)
class LocationFix:
    lat: float
    lon: float
    timestamp_ms: int = field(default_factory=now_ms)

    kind = SignalKind.LOCATION

    @property
    def coords(self) -> Tuple[float, float]:
        return (self.lat, self.lon)


@dataclass(frozen=True, slots=True)
class ForegroundApp:
    package_name: str
    timestamp_ms: int = field(default_factory=now_ms)
    app_name: Optional[str] = None   # 人类可读名称；取不到时回落为包名

    kind = SignalKind.FOREGROUND_APP

    @property
    def label(self) -> str:
        return self.app_name or self.package_name


@dataclass(frozen=True, slots=True)
class SensorSnapshot:
    """
    传感器快照：缺失的传感器以 None 体现（字段始终存在）。
    - proximity: "near" / "far" / None
    - motion_state: "moving" / "stationary" / None（尚无加速度数据）
    - accel: (x, y, z) 最后一次读数
    """
    light: Optional[float] = None
    proximity: Optional[str] = None
    proximity_raw: Optional[float] = None
    motion_state: Optional[str] = None
    battery: Optional[int] = None
    charging: Optional[bool] = None
    wifi_connected: Optional[bool] = None
    bluetooth_connected: Optional[bool] = None
    screen: Optional[str] = None
    accel: Optional[Tuple[float, float, float]] = None
    timestamp_ms: int = field(default_factory=now_ms)

    kind = SignalKind.SENSOR_CONTEXT


@dataclass(frozen=True, slots=True)
class WakewordScore:
    confidence: float
    timestamp_ms: int = field(default_factory=now_ms)

    kind = SignalKind.WAKEWORD


Signal = Union[LocationFix, ForegroundApp, SensorSnapshot, WakewordScore]
