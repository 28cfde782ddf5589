# mydataclass/trigger_result.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Mapping, Optional

from commons.base_dataclasses import BaseDataClass
from commons.normalizers import strip_or_none


@dataclass(slots=True)
class TriggerResult(BaseDataClass):
    """
    本地展示指令：来自后端响应或推送消息。
    text 为空即视为“无触发”，由调用方决定是否丢弃。
    """
    text: Optional[str] = None
    emoji: Optional[str] = None
    lang: Optional[str] = None
    audio_url: Optional[str] = None
    city: Optional[str] = None
    tips: Optional[str] = None

    FIELD_MAPPING: ClassVar[Dict[str, str]] = {
        "prompt": "text",
        "nudge_text": "text",
        "city_name": "city",
        "tips_audio_url": "audio_url",
    }

    CONVERTERS: ClassVar[Dict[str, Any]] = {
        "text": strip_or_none,
        "emoji": strip_or_none,
        "lang": strip_or_none,
        "audio_url": strip_or_none,
        "city": strip_or_none,
        "tips": strip_or_none,
    }

    @property
    def is_empty(self) -> bool:
        return not self.text

    # ---------------- 工厂方法 ----------------

    @classmethod
    def foreground_reply(cls, prompt: Optional[str], lang: str = "en") -> Optional["TriggerResult"]:
        r = cls.from_dict({"text": prompt, "emoji": "📱", "lang": lang})
        return None if r.is_empty else r

    @classmethod
    def from_event_trigger(cls, data: Mapping[str, Any], lang: str = "en") -> Optional["TriggerResult"]:
        """push-mobile 响应里的 event_trigger：text/prompt 必填；emoji、lang 缺省时取 📱 与偏好语言。"""
        r = cls.from_dict(data)
        if r.is_empty:
            return None
        r.emoji = r.emoji or "📱"
        r.lang = r.lang or lang
        return r

    @classmethod
    def travel_tip(
        cls, city: Optional[str], tips: Optional[str], audio_url: Optional[str] = None
    ) -> Optional["TriggerResult"]:
        r = cls.from_dict({"city": city, "tips": tips, "text": tips, "audio_url": audio_url})
        if r.is_empty:
            return None
        r.city = r.city or "Unknown"
        r.emoji = f"📍 {r.city}"
        return r

    @classmethod
    def nudge(cls, text: Optional[str], emoji: Optional[str] = None, lang: Optional[str] = None) -> Optional["TriggerResult"]:
        r = cls.from_dict({"text": text, "emoji": emoji, "lang": lang})
        if r.is_empty:
            return None
        r.emoji = r.emoji or "💡"
        r.lang = r.lang or "en"
        return r

    @classmethod
    def hourly(cls, text: Optional[str], emoji: Optional[str] = None, lang: Optional[str] = None) -> Optional["TriggerResult"]:
        r = cls.from_dict({"text": text, "emoji": emoji, "lang": lang})
        if r.is_empty:
            return None
        r.emoji = r.emoji or "⏰"
        r.lang = r.lang or "en"
        return r
