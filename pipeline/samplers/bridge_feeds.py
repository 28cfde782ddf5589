# ──────────────────────────────────────────────────────────────────────────────
# 模块用途：桥接数据源（桌面宿主经 HTTP 推入原始读数，采样器按协议读取）
# 说明：
#   - 推入方在事件循环里调用 push/update/record，读取方在工作线程里阻塞等待；
#   - 读取一律限时，超时返回 None（“无信号”），close() 唤醒所有等待者；
#   - 音频缓冲有上限，超出时丢弃最旧的采样点。
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional

import numpy as np

from commons.base_logger import BaseLogger
from mydataclass.signals import LocationFix, now_ms
from pipeline.samplers.protocols import UsageRecord


class BridgeAudioSource:
    """PCM16 小端单声道字节流 → int16 帧。"""

    def __init__(
        self,
        sample_rate: int = 16000,
        *,
        max_buffer_sec: float = 5.0,
        read_timeout_sec: float = 1.0,
        logger: Optional[BaseLogger] = None,
    ):
        self.sample_rate = sample_rate
        # 至少容得下一整帧（1 秒）
        self.max_samples = max(int(sample_rate * max_buffer_sec), sample_rate)
        self.read_timeout_sec = read_timeout_sec
        self.logger = logger or BaseLogger(name="BridgeAudioSource")
        self.dropped = 0
        self._buf = np.zeros(0, dtype=np.int16)
        self._cond = threading.Condition()
        self._closed = False

    @property
    def buffered(self) -> int:
        with self._cond:
            return len(self._buf)

    def push(self, pcm: bytes) -> int:
        """追加一段 PCM；返回当前缓冲采样数。字节数为奇数抛 ValueError。"""
        if len(pcm) % 2:
            raise ValueError("pcm16 payload must have an even number of bytes")
        samples = np.frombuffer(pcm, dtype="<i2").astype(np.int16)
        with self._cond:
            if self._closed:
                return 0
            buf = np.concatenate((self._buf, samples))
            overflow = len(buf) - self.max_samples
            if overflow > 0:
                buf = buf[overflow:]
                self.dropped += overflow
                self.logger.log_debug(f"[audio] buffer full; dropped {overflow} samples")
            self._buf = buf
            self._cond.notify_all()
            return len(buf)

    def read_frame(self, n_samples: int) -> Optional[np.ndarray]:
        with self._cond:
            self._cond.wait_for(lambda: self._closed or len(self._buf) >= n_samples, timeout=self.read_timeout_sec)
            if self._closed or len(self._buf) < n_samples:
                return None
            frame = self._buf[:n_samples].copy()
            self._buf = self._buf[n_samples:]
            return frame

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._buf = np.zeros(0, dtype=np.int16)
            self._cond.notify_all()


class BridgeLocationProvider:
    """最近一次宿主上报的定位；单次定位请求等待下一次上报。"""

    def __init__(self):
        self._cond = threading.Condition()
        self._last: Optional[LocationFix] = None
        self._seq = 0
        self._closed = False

    def update(self, fix: LocationFix) -> None:
        with self._cond:
            self._last = fix
            self._seq += 1
            self._cond.notify_all()

    def last_known(self) -> Optional[LocationFix]:
        with self._cond:
            return self._last

    def request_single_update(self, timeout_sec: float) -> Optional[LocationFix]:
        with self._cond:
            seq = self._seq
            self._cond.wait_for(lambda: self._closed or self._seq != seq, timeout=timeout_sec)
            return self._last if self._seq != seq else None

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()


class BridgeUsageStatsProvider:
    """宿主上报的前台应用记录（保留最近 max_records 条）与应用名。"""

    def __init__(self, max_records: int = 64):
        self._lock = threading.Lock()
        self._records: Deque[UsageRecord] = deque(maxlen=max_records)
        self._labels: Dict[str, str] = {}

    def record(self, package_name: str, last_time_used: Optional[int] = None, app_name: Optional[str] = None) -> None:
        with self._lock:
            self._records.append(UsageRecord(package_name, int(last_time_used or now_ms())))
            if app_name:
                self._labels[package_name] = app_name

    def query_usage(self, start_ms: int, end_ms: int) -> List[UsageRecord]:
        with self._lock:
            return [r for r in self._records if start_ms <= r.last_time_used <= end_ms]

    def app_label(self, package_name: str) -> Optional[str]:
        with self._lock:
            return self._labels.get(package_name)


@dataclass
class HostFeeds:
    """桥接服务持有的三路数据源；缺省的那一路对应接口返回 409。"""
    audio: Optional[BridgeAudioSource] = None
    location: Optional[BridgeLocationProvider] = None
    usage: Optional[BridgeUsageStatsProvider] = None

    def close(self) -> None:
        if self.audio is not None:
            self.audio.close()
        if self.location is not None:
            self.location.close()
