# pipeline/context.py
from __future__ import annotations

import threading
from typing import Optional

from commons.base_logger import BaseLogger
from mydataclass.identity import DeviceIdentity
from store.preference_store import PreferenceStore


class PipelineContext:
    """
    流水线共享上下文，由 controller 持有并显式传递：
    - identity：启动时从偏好存储读取一次，运行期间不变
    - muted：提示静音开关（原先的进程级全局变量）
    - prefs：偏好存储（开关项每次读取，保证 UI 修改即时生效）
    """

    def __init__(self, prefs: PreferenceStore, logger: Optional[BaseLogger] = None):
        self.prefs = prefs
        self.log = logger or BaseLogger(name="PipelineContext")
        self._muted = threading.Event()
        self.identity: Optional[DeviceIdentity] = None

    def load_identity(self) -> Optional[DeviceIdentity]:
        self.identity = self.prefs.identity()
        if self.identity is None:
            self.log.log_warning("[Context] device_id or auth_token missing; backend calls will be skipped")
        else:
            self.log.log_info(f"[Context] identity loaded device_id={self.identity.device_id}")
        return self.identity

    @property
    def muted(self) -> bool:
        return self._muted.is_set()

    def set_muted(self, flag: bool) -> None:
        if flag:
            self._muted.set()
        else:
            self._muted.clear()
        self.log.log_info("🔇 Nudges muted" if flag else "🔔 Nudges unmuted")

    @property
    def preferred_lang(self) -> str:
        return self.prefs.preferred_lang

    @property
    def voice_enabled(self) -> bool:
        """语音播报：偏好开启且未静音。"""
        return self.prefs.voice_nudges_enabled and not self.muted
