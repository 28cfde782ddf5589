# mydataclass/identity.py
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class DeviceIdentity:
    """设备身份：流水线启动时从偏好存储读取一次，运行期间不变。"""
    device_id: str
    auth_token: str

    def __repr__(self) -> str:  # token 不进日志
        return f"DeviceIdentity(device_id={self.device_id!r}, auth_token=***)"
