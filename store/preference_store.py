# -*- coding: utf-8 -*-
"""
PreferenceStore
---------------
进程级键值存储，持久化到 YAML 文件：
1) 读：启动时整体加载到内存，之后只读内存副本；
2) 写：先写临时文件再 os.replace，保证文件不会出现半写状态；
3) 线程安全：采样线程（asyncio.to_thread）与事件循环可能同时读写，统一加锁；
4) 文件不存在视为空存储；YAML 损坏则记录错误并以空存储启动（不覆盖原文件，直到下一次写入）。
"""
from __future__ import annotations

import contextlib
import copy
import os
import tempfile
import threading
from typing import Any, Dict, Iterable, Mapping, Optional

import yaml

from commons.base_logger import BaseLogger
from commons.normalizers import strip_or_none, to_bool_or_none, to_float_or_none, to_int_or_none
from mydataclass.identity import DeviceIdentity
from tools.config_loader import PROJECT_ROOT


class PreferenceStore:
    """YAML 持久化的键值存储。"""

    # 已知键及默认值
    KEY_DEVICE_ID = "device_id"
    KEY_AUTH_TOKEN = "auth_token"
    KEY_ONBOARDING = "onboarding_completed"
    KEY_ACTIVE_MODE = "active_mode"
    KEY_SMART_TRACKING = "smart_tracking_enabled"
    KEY_VOICE_NUDGES = "voice_nudges_enabled"
    KEY_PREFERRED_LANG = "preferred_lang"
    KEY_VOICE = "voice"
    KEY_LAST_LAT = "last_lat"
    KEY_LAST_LON = "last_lon"
    KEY_LAST_TRAVEL_TS = "last_travel_check_ts"
    KEY_SUMMARY_LIST = "cached_summary_list"

    def __init__(self, path: str, *, logger: Optional[BaseLogger] = None):
        self.logger = logger or BaseLogger(name="PreferenceStore")
        if not os.path.isabs(path):
            path = os.path.join(PROJECT_ROOT, path)
        self.path = path
        self._lock = threading.RLock()
        self._data: Dict[str, Any] = self._load()

    # ------------------------------
    # 读写
    # ------------------------------
    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            self.logger.log_error(f"[Prefs] load failed path={self.path}: {e}")
            return {}
        if not isinstance(data, dict):
            self.logger.log_warning(f"[Prefs] unexpected root type {type(data).__name__}, ignored")
            return {}
        return data

    def _flush(self) -> None:
        """原子写：临时文件 + os.replace。调用方需持有锁。"""
        directory = os.path.dirname(self.path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".prefs-", suffix=".yaml", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(self._data, f, allow_unicode=True, sort_keys=True)
            os.replace(tmp, self.path)
        except Exception:
            with contextlib.suppress(FileNotFoundError):
                os.remove(tmp)
            raise

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            v = self._data.get(key, default)
            return copy.deepcopy(v)

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def update(self, values: Mapping[str, Any]) -> None:
        """批量写入后只落盘一次。"""
        with self._lock:
            self._data.update(values)
            self._flush()

    def delete(self, keys: Iterable[str]) -> None:
        with self._lock:
            for k in keys:
                self._data.pop(k, None)
            self._flush()

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._data)

    # ------------------------------
    # 类型化访问器
    # ------------------------------
    def get_bool(self, key: str, default: bool = False) -> bool:
        v = to_bool_or_none(self.get(key))
        return default if v is None else v

    def get_float(self, key: str, default: float = 0.0) -> float:
        v = to_float_or_none(self.get(key))
        return default if v is None else v

    def get_int(self, key: str, default: int = 0) -> int:
        v = to_int_or_none(self.get(key))
        return default if v is None else v

    def get_str(self, key: str, default: Optional[str] = None) -> Optional[str]:
        v = strip_or_none(self.get(key))
        return default if v is None else v

    # ------------------------------
    # 业务便捷方法
    # ------------------------------
    def identity(self) -> Optional[DeviceIdentity]:
        """device_id 与 auth_token 均存在才返回身份，否则 None。"""
        device_id = self.get_str(self.KEY_DEVICE_ID)
        token = self.get_str(self.KEY_AUTH_TOKEN)
        if not device_id or not token:
            return None
        return DeviceIdentity(device_id=device_id, auth_token=token)

    @property
    def preferred_lang(self) -> str:
        return self.get_str(self.KEY_PREFERRED_LANG, "en") or "en"

    @property
    def onboarding_completed(self) -> bool:
        return self.get_bool(self.KEY_ONBOARDING, False)

    @property
    def active_mode(self) -> Optional[str]:
        return self.get_str(self.KEY_ACTIVE_MODE)

    @property
    def smart_tracking_enabled(self) -> bool:
        return self.get_bool(self.KEY_SMART_TRACKING, False)

    @property
    def voice_nudges_enabled(self) -> bool:
        return self.get_bool(self.KEY_VOICE_NUDGES, True)
