# ──────────────────────────────────────────────────────────────────────────────
# 模块用途：声明“平台读取接口（协议）”，用于静态检查与解耦实现。
# 说明：
#   - 宿主（移动端壳 / 桌面桥接 / 测试）实现这些协议，采样器只依赖协议；
#   - 权限缺失时实现方抛 PermissionDenied，采样器负责降级为“无信号”。
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

import numpy as np

from mydataclass.signals import LocationFix


@dataclass(frozen=True)
class UsageRecord:
    """一条应用使用记录。"""
    package_name: str
    last_time_used: int   # 毫秒


class LocationProvider(Protocol):
    """定位接口。"""
    def last_known(self) -> Optional[LocationFix]: ...
    def request_single_update(self, timeout_sec: float) -> Optional[LocationFix]: ...  # 超时返回 None


class UsageStatsProvider(Protocol):
    """应用使用情况接口。"""
    def query_usage(self, start_ms: int, end_ms: int) -> Iterable[UsageRecord]: ...
    def app_label(self, package_name: str) -> Optional[str]: ...


class ConnectivityProvider(Protocol):
    """网络 / 蓝牙连接状态。"""
    def wifi_connected(self) -> bool: ...
    def bluetooth_connected(self) -> bool: ...


class AudioSource(Protocol):
    """麦克风采集：read_frame 阻塞直到读满 n_samples（int16 单声道）；限时等待的实现超时返回 None。"""
    def read_frame(self, n_samples: int) -> Optional[np.ndarray]: ...
    def close(self) -> None: ...


class WakewordClassifier(Protocol):
    """唤醒词分类器：load 失败抛 ModelUnavailable；score 返回 [0, 1]。"""
    def load(self) -> None: ...
    def score(self, frame: np.ndarray) -> float: ...
