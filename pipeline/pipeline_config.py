# ──────────────────────────────────────────────────────────────────────────────
# 模块用途：集中管理流水线运行配置（YAML → 环境变量覆盖 → 不可变 dataclass）
# 说明：
#   - YAML 默认值在 config/pipeline.yaml；
#   - 环境变量 NEURA_<SECTION>_<KEY>（全大写）覆盖同名项，便于部署与测试；
#   - 上层只依赖 PipelineConfig，不直接感知 YAML 结构或环境变量键名。
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from tools.config_loader import load_config


def _env_override(section: str, key: str, value: Any) -> Any:
    """按原值类型解析 NEURA_<SECTION>_<KEY>；未设置则返回原值。"""
    raw = os.getenv(f"NEURA_{section}_{key}".upper())
    if raw is None:
        return value
    if isinstance(value, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(value, int):
        return int(raw)
    if isinstance(value, float):
        return float(raw)
    if isinstance(value, (list, tuple)):
        return tuple(p.strip() for p in raw.split(",") if p.strip())
    return raw


@dataclass(frozen=True)
class PipelineConfig:
    """流水线运行配置（不可变 dataclass）"""
    # backend
    base_url: str = "https://byshiladityamallick-neura-smart-assistant.hf.space"
    connect_timeout_sec: float = 15.0
    read_timeout_sec: float = 15.0
    # location
    location_interval_sec: float = 900.0
    location_max_fix_age_sec: float = 300.0
    location_fix_timeout_sec: float = 30.0
    travel_distance_km: float = 100.0
    travel_throttle_hours: float = 6.0
    # foreground app
    foreground_interval_sec: float = 10.0
    foreground_lookback_sec: float = 10.0
    excluded_prefixes: Tuple[str, ...] = (
        "com.android.launcher",
        "com.google.android.googlequicksearchbox",
        "com.miui.home",
        "com.samsung.android",
    )
    # sensor
    sensor_flush_interval_sec: float = 90.0
    accel_threshold: float = 2.2
    # wakeword
    wakeword_model_path: str = "models/wakeword_model.tflite"
    wakeword_threshold: float = 0.8
    wakeword_cooldown_sec: float = 4.0
    wakeword_sample_rate: int = 16000
    wakeword_inference_delay_sec: float = 0.1
    wake_phrase: str = "Hi, I'm listening"
    # notifier
    queue_cap: int = 256
    notifier_workers: int = 2
    # overlay
    summary_max_items: int = 20
    sos_countdown_sec: float = 5.0
    # store
    prefs_path: str = "data/prefs.yaml"

    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    # YAML (section, key) -> dataclass 字段名
    _FIELD_MAP = {
        ("backend", "base_url"): "base_url",
        ("backend", "connect_timeout_sec"): "connect_timeout_sec",
        ("backend", "read_timeout_sec"): "read_timeout_sec",
        ("location", "interval_sec"): "location_interval_sec",
        ("location", "max_fix_age_sec"): "location_max_fix_age_sec",
        ("location", "fix_timeout_sec"): "location_fix_timeout_sec",
        ("location", "travel_distance_km"): "travel_distance_km",
        ("location", "travel_throttle_hours"): "travel_throttle_hours",
        ("foreground_app", "interval_sec"): "foreground_interval_sec",
        ("foreground_app", "lookback_sec"): "foreground_lookback_sec",
        ("foreground_app", "excluded_prefixes"): "excluded_prefixes",
        ("sensor", "flush_interval_sec"): "sensor_flush_interval_sec",
        ("sensor", "accel_threshold"): "accel_threshold",
        ("wakeword", "model_path"): "wakeword_model_path",
        ("wakeword", "threshold"): "wakeword_threshold",
        ("wakeword", "cooldown_sec"): "wakeword_cooldown_sec",
        ("wakeword", "sample_rate"): "wakeword_sample_rate",
        ("wakeword", "inference_delay_sec"): "wakeword_inference_delay_sec",
        ("wakeword", "wake_phrase"): "wake_phrase",
        ("notifier", "queue_cap"): "queue_cap",
        ("notifier", "workers"): "notifier_workers",
        ("overlay", "summary_max_items"): "summary_max_items",
        ("overlay", "sos_countdown_sec"): "sos_countdown_sec",
        ("store", "prefs_path"): "prefs_path",
    }

    @property
    def http_timeout(self) -> Tuple[float, float]:
        return (self.connect_timeout_sec, self.read_timeout_sec)

    @property
    def travel_throttle_ms(self) -> int:
        return int(self.travel_throttle_hours * 3600 * 1000)

    @staticmethod
    def from_mapping(raw: Dict[str, Any]) -> "PipelineConfig":
        """从已解析的 YAML dict 构造，并应用环境变量覆盖；未知项放进 extra。"""
        defaults = PipelineConfig()
        values: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for section, body in (raw or {}).items():
            if not isinstance(body, dict):
                extra[section] = body
                continue
            for key, val in body.items():
                name = PipelineConfig._FIELD_MAP.get((section, key))
                if name is None:
                    extra[f"{section}.{key}"] = val
                    continue
                default = getattr(defaults, name)
                if isinstance(default, tuple) and isinstance(val, list):
                    val = tuple(val)
                elif isinstance(default, float) and isinstance(val, int):
                    val = float(val)
                values[name] = val

        for (section, key), name in PipelineConfig._FIELD_MAP.items():
            current = values.get(name, getattr(defaults, name))
            values[name] = _env_override(section, key, current)
        return PipelineConfig(extra=extra, **values)

    @staticmethod
    def load(file_path: Optional[str] = None) -> "PipelineConfig":
        """读取 YAML（NEURA_CONFIG_FILE 可覆盖路径）并构造配置。"""
        return PipelineConfig.from_mapping(load_config(file_path=file_path))
