from __future__ import annotations

import time
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from commons.normalizers import ensure_lat_lon_range, strip_or_none, to_float_or_none, ts_to_millis
from mydataclass.signals import ForegroundApp, LocationFix, Signal, SignalKind, WakewordScore, now_ms
from mydataclass.trigger_result import TriggerResult
from pipeline.notifier_models import LocalMessage, MessageKind
from store.summary_log import SummaryItem

SCHEMA_VERSION = "1.0"

JsonScalar = Union[str, int, float, bool, None]
JsonValue = Union[JsonScalar, Dict[str, "JsonValue"], List["JsonValue"]]

# 本地消息类型 → 摘要日志里的 type
SUMMARY_TYPE = {
    MessageKind.NUDGE: "nudge",
    MessageKind.HOURLY_NUDGE: "hourly",
    MessageKind.FOREGROUND_REPLY: "foreground",
    MessageKind.TRAVEL_TIP: "travel",
}

# ElevenLabs 语音 id（偏好 voice = male / female）
VOICE_IDS = {
    "male": "EXAVITQu4vr4xnSDxMaL",
    "female": "onwK4e9ZLuTAKqWW03F9",
}


def _json_sanitize(v: Any) -> JsonValue:
    if isinstance(v, Enum):
        return v.value
    if is_dataclass(v):
        return _json_sanitize(asdict(v))
    if isinstance(v, (str, int, float, bool)) or v is None:
        return v
    if isinstance(v, dict):
        return {str(k): _json_sanitize(val) for k, val in v.items()}
    if isinstance(v, (list, tuple, set)):
        return [_json_sanitize(i) for i in v]
    return str(v)


def voice_instruction(
    result: TriggerResult,
    *,
    lang: Optional[str] = None,
    voice: str = "male",
    prefer_url: bool = False,
) -> Optional[Dict[str, Any]]:
    """语音播报指令：prefer_url 且有 audio_url 时直接播放音频，否则 TTS。"""
    if prefer_url and result.audio_url:
        return {"mode": "url", "url": result.audio_url, "fallback_text": result.text}
    if not result.text:
        return None
    return {
        "mode": "tts",
        "text": result.text,
        "lang": lang or result.lang or "en",
        "voice_id": VOICE_IDS.get(voice, VOICE_IDS["male"]),
    }


def message_to_payload(
    msg: LocalMessage,
    *,
    voice: Optional[Dict[str, Any]] = None,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """LocalMessage → 展示层快照。"""
    r = msg.result
    bubble = None
    if r is not None:
        bubble = {"emoji": r.emoji, "text": r.text, "lang": r.lang, "city": r.city, "audio_url": r.audio_url}
    return {
        "type": f"overlay/{msg.kind.value}",
        "schema_version": SCHEMA_VERSION,
        "ts": msg.ts,
        "kind": msg.kind.value,
        "bubble": _json_sanitize(bubble),
        "voice": _json_sanitize(voice),
        "data": _json_sanitize({**msg.data, **(extra or {})}),
    }


def summaries_payload(items: Iterable[SummaryItem]) -> Dict[str, Any]:
    return {
        "type": "overlay/summaries",
        "schema_version": SCHEMA_VERSION,
        "ts": int(time.time() * 1000),
        "items": [i.to_dict() for i in items],
    }


def error_payload(message: str, code: str = "INTERNAL") -> Dict[str, Any]:
    return {
        "type": "error",
        "schema_version": SCHEMA_VERSION,
        "ts": int(time.time() * 1000),
        "error": {"code": code, "message": message},
    }


# =========================
# 入站：桥接请求体 → Signal
# =========================

def signal_from_payload(d: Dict[str, Any]) -> Signal:
    """
    {"kind": "location", "lat": .., "lon": ..}
    {"kind": "foreground_app", "package_name": .., "app_name": ..}
    {"kind": "wakeword", "confidence": ..}
    字段缺失或越界抛 ValueError。
    """
    kind = SignalKind(str(d.get("kind") or ""))
    ts = ts_to_millis(d.get("timestamp_ms")) or now_ms()
    if kind is SignalKind.LOCATION:
        lat, lon = to_float_or_none(d.get("lat")), to_float_or_none(d.get("lon"))
        if lat is None or lon is None:
            raise ValueError("lat/lon required")
        ensure_lat_lon_range({"lat": lat, "lon": lon})
        return LocationFix(lat=lat, lon=lon, timestamp_ms=ts)
    if kind is SignalKind.FOREGROUND_APP:
        pkg = strip_or_none(d.get("package_name"))
        if not pkg:
            raise ValueError("package_name required")
        return ForegroundApp(package_name=pkg, timestamp_ms=ts, app_name=strip_or_none(d.get("app_name")))
    if kind is SignalKind.WAKEWORD:
        conf = to_float_or_none(d.get("confidence"))
        if conf is None:
            raise ValueError("confidence required")
        return WakewordScore(confidence=conf, timestamp_ms=ts)
    raise ValueError("sensor snapshots are submitted through /api/sensors")
