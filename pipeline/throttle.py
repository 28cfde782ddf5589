# ──────────────────────────────────────────────────────────────────────────────
# 模块用途：节流 / 去重策略
# 说明：
#   - should_emit 为纯函数：只读状态，不产生副作用；
#   - evaluate 在通过时先提交状态再交给 dispatcher（乐观更新，发送失败不回滚）；
#   - 位置类型的状态写回偏好存储，旅行窗口在重启后仍然有效。
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from commons.base_logger import BaseLogger
from mydataclass.signals import ForegroundApp, LocationFix, Signal, SignalKind, now_ms
from store.preference_store import PreferenceStore

EARTH_RADIUS_KM = 6371.0

_log = BaseLogger(name="ThrottlePolicy")

DEFAULT_EXCLUDED_PREFIXES: Tuple[str, ...] = (
    "com.android.launcher",
    "com.google.android.googlequicksearchbox",
    "com.miui.home",
    "com.samsung.android",
)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """两点球面距离（公里）。"""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


@dataclass
class KindState:
    value: Any = None
    timestamp_ms: int = 0


class ThrottleState:
    """
    每种信号一条记录：最后一次发出的值 + 时间戳（毫秒）。
    - commit 拒绝比当前更旧的时间戳（单调）
    - 位置默认值为 (0.0, 0.0) / 0，即“从未发送”
    """

    def __init__(self, store: Optional[PreferenceStore] = None, logger: Optional[BaseLogger] = None):
        self.store = store
        self.log = logger or BaseLogger(name="ThrottleState")
        self._lock = threading.Lock()
        self._entries: Dict[SignalKind, KindState] = {k: KindState() for k in SignalKind}
        self._entries[SignalKind.LOCATION] = self._load_location()

    def _load_location(self) -> KindState:
        if self.store is None:
            return KindState(value=(0.0, 0.0), timestamp_ms=0)
        lat = self.store.get_float(PreferenceStore.KEY_LAST_LAT, 0.0)
        lon = self.store.get_float(PreferenceStore.KEY_LAST_LON, 0.0)
        ts = self.store.get_int(PreferenceStore.KEY_LAST_TRAVEL_TS, 0)
        return KindState(value=(lat, lon), timestamp_ms=ts)

    def get(self, kind: SignalKind) -> KindState:
        with self._lock:
            e = self._entries[SignalKind(kind)]
            return KindState(e.value, e.timestamp_ms)

    def commit(self, kind: SignalKind, value: Any, timestamp_ms: int) -> bool:
        """写入新值；时间戳早于当前记录时拒绝并返回 False。"""
        kind = SignalKind(kind)
        with self._lock:
            current = self._entries[kind]
            if timestamp_ms < current.timestamp_ms:
                self.log.log_warning(
                    f"[Throttle] stale commit rejected kind={kind.value} ts={timestamp_ms} < {current.timestamp_ms}"
                )
                return False
            self._entries[kind] = KindState(value, timestamp_ms)
        if kind is SignalKind.LOCATION and self.store is not None:
            lat, lon = value
            self.store.update({
                PreferenceStore.KEY_LAST_LAT: float(lat),
                PreferenceStore.KEY_LAST_LON: float(lon),
                PreferenceStore.KEY_LAST_TRAVEL_TS: int(timestamp_ms),
            })
        return True


@dataclass(frozen=True)
class ThrottlePolicy:
    """节流参数；默认值与线上配置一致。"""
    travel_distance_km: float = 100.0
    travel_throttle_ms: int = 6 * 3600 * 1000
    excluded_prefixes: Tuple[str, ...] = field(default=DEFAULT_EXCLUDED_PREFIXES)

    def is_excluded(self, package_name: str) -> bool:
        return any(package_name.startswith(p) for p in self.excluded_prefixes)

    def should_emit(self, signal: Signal, state: ThrottleState, now: int) -> bool:
        if isinstance(signal, LocationFix):
            last = state.get(SignalKind.LOCATION)
            last_lat, last_lon = last.value or (0.0, 0.0)
            distance = haversine_km(last_lat, last_lon, signal.lat, signal.lon)
            elapsed = now - last.timestamp_ms
            return distance > self.travel_distance_km and elapsed > self.travel_throttle_ms
        if isinstance(signal, ForegroundApp):
            if self.is_excluded(signal.package_name):
                return False
            return signal.package_name != state.get(SignalKind.FOREGROUND_APP).value
        # 传感器快照与唤醒词：总是发出（唤醒词冷却由采样器负责）
        return True

    def evaluate(self, signal: Signal, state: ThrottleState, now: Optional[int] = None) -> bool:
        """通过则先提交状态（乐观更新），返回是否需要发送。"""
        now = now_ms() if now is None else now
        if not self.should_emit(signal, state, now):
            _log.log_debug(f"[Throttle] suppressed kind={signal.kind.value}")
            return False
        if isinstance(signal, LocationFix):
            value: Any = signal.coords
        elif isinstance(signal, ForegroundApp):
            value = signal.package_name
        else:
            value = signal
        return state.commit(signal.kind, value, now)


_DEFAULT_POLICY = ThrottlePolicy()


def should_emit(signal: Signal, state: ThrottleState, now: int, policy: ThrottlePolicy = _DEFAULT_POLICY) -> bool:
    """纯函数入口：按默认（或指定）策略判断是否发出。"""
    return policy.should_emit(signal, state, now)
