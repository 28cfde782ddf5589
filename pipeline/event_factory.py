# 事件工厂 EventFactory

from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict

from mydataclass.identity import DeviceIdentity
from mydataclass.outbound_event import EventType, OutboundEvent
from mydataclass.signals import ForegroundApp, LocationFix, SensorSnapshot, Signal, WakewordScore


class EventFactory:
    """
    将采样得到的 Signal 转换为标准 OutboundEvent。
    - 位置 → travel_check（lat/lon）
    - 前台应用 → foreground_app（app_name/package_name）
    - 传感器 → sensor_context（所有键都存在，缺失为 None）
    - 唤醒词 → wakeword（confidence）
    """

    def __init__(self, device_os: str = "android"):
        self.device_os = device_os

    def build(self, signal: Signal, identity: DeviceIdentity) -> OutboundEvent:
        if isinstance(signal, LocationFix):
            return OutboundEvent(identity.device_id, EventType.TRAVEL_CHECK,
                                 {"lat": signal.lat, "lon": signal.lon})
        if isinstance(signal, ForegroundApp):
            return OutboundEvent(identity.device_id, EventType.FOREGROUND_APP,
                                 {"app_name": signal.label, "package_name": signal.package_name})
        if isinstance(signal, SensorSnapshot):
            return OutboundEvent(identity.device_id, EventType.SENSOR_CONTEXT, self.sensor_metadata(signal))
        if isinstance(signal, WakewordScore):
            return OutboundEvent(identity.device_id, EventType.WAKEWORD,
                                 {"confidence": signal.confidence, "timestamp_ms": signal.timestamp_ms})
        raise TypeError(f"unsupported signal type: {type(signal).__name__}")

    def sensor_metadata(self, s: SensorSnapshot) -> Dict[str, Any]:
        accel = None
        if s.accel is not None:
            x, y, z = s.accel
            accel = {"x": x, "y": y, "z": z}
        return {
            "battery": s.battery,
            "charging": s.charging,
            "light": s.light,
            "proximity": s.proximity,
            "proximity_raw": s.proximity_raw,
            "motion": s.motion_state,
            "accel": accel,
            "screen": s.screen,
            "bluetooth_connected": s.bluetooth_connected,
            "wifi_connected": s.wifi_connected,
            "time": datetime.fromtimestamp(s.timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "device_os": self.device_os,
        }
