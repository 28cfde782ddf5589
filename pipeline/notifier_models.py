# 本地通知消息模型
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from mydataclass.signals import now_ms
from mydataclass.trigger_result import TriggerResult


class MessageKind(str, Enum):
    WAKEWORD = "wakeword"
    NUDGE = "nudge"
    HOURLY_NUDGE = "hourly_nudge"
    TRAVEL_TIP = "travel_tip"
    FOREGROUND_REPLY = "foreground_reply"
    SOS = "sos"


@dataclass(frozen=True)
class LocalMessage:
    """
    进程内广播消息（替代系统广播）：
    kind 为判别字段；result 为展示内容；data 携带少量附加参数（如 SOS 位置）。
    """
    kind: MessageKind
    result: Optional[TriggerResult] = None
    ts: int = field(default_factory=now_ms)
    data: Dict[str, Any] = field(default_factory=dict)
