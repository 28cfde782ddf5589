# mydataclass/outbound_event.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping


class EventType(str, Enum):
    FOREGROUND_APP = "foreground_app"
    SENSOR_CONTEXT = "sensor_context"
    TRAVEL_CHECK = "travel_check"
    WAKEWORD = "wakeword"


def _freeze(metadata: Mapping[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(dict(metadata))


@dataclass(frozen=True)
class OutboundEvent:
    """发往后端的事件；构造后不可变（metadata 为只读视图）。"""
    device_id: str
    event_type: EventType
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "event_type", EventType(self.event_type))
        object.__setattr__(self, "metadata", _freeze(self.metadata))

    def to_payload(self) -> Dict[str, Any]:
        """/event/push-mobile 请求体。"""
        return {
            "device_id": self.device_id,
            "event_type": self.event_type.value,
            "metadata": _plain(self.metadata),
        }


def _plain(v: Any) -> Any:
    if isinstance(v, Mapping):
        return {str(k): _plain(x) for k, x in v.items()}
    if isinstance(v, (list, tuple)):
        return [_plain(x) for x in v]
    return v
