# ────────────────────────────────────────────────────────────────
# 模块用途：展示层消费者（本地通知 → 摘要日志 + SSE 快照）
# 说明：
#   - nudge / hourly / foreground / travel：写入摘要日志并推送快照；
#     语音偏好开启且未静音时附带 voice 指令（travel 优先 audio_url）；
#   - wakeword：总是附带 voice 指令与 start_mic 标记；
#   - sos：启动 SOS 倒计时并推送快照。
# ────────────────────────────────────────────────────────────────
from __future__ import annotations

from typing import Any, Dict, Optional

from commons.base_logger import BaseLogger
from overlay_socket.adapters.overlay_payload import SUMMARY_TYPE, message_to_payload, voice_instruction
from overlay_socket.bus import SnapshotBus
from pipeline.context import PipelineContext
from pipeline.notifier import LocalNotifier
from pipeline.notifier_models import LocalMessage, MessageKind
from pipeline.sos import SosEscalation
from store.preference_store import PreferenceStore
from store.summary_log import SummaryLog


class OverlayPresenter:
    def __init__(
        self,
        bus: SnapshotBus,
        ctx: PipelineContext,
        summary_log: SummaryLog,
        *,
        sos: Optional[SosEscalation] = None,
        logger: Optional[BaseLogger] = None,
    ):
        self.bus = bus
        self.ctx = ctx
        self.summary_log = summary_log
        self.sos = sos
        self.log = logger or BaseLogger(name="OverlayPresenter")

    def attach(self, notifier: LocalNotifier) -> None:
        """订阅全部消息类型。"""
        notifier.on(self.handle)

    @property
    def _voice_pref(self) -> str:
        return self.ctx.prefs.get_str(PreferenceStore.KEY_VOICE, "male") or "male"

    async def handle(self, msg: LocalMessage) -> None:
        if msg.kind is MessageKind.WAKEWORD:
            await self._on_wakeword(msg)
        elif msg.kind is MessageKind.SOS:
            await self._on_sos(msg)
        else:
            await self._on_nudge(msg)

    async def _on_nudge(self, msg: LocalMessage) -> None:
        r = msg.result
        if r is None or not r.text:
            return
        is_travel = msg.kind is MessageKind.TRAVEL_TIP
        emoji = r.emoji or "💡"
        self.summary_log.append(SUMMARY_TYPE[msg.kind], emoji, r.text, msg.ts)

        voice = None
        if self.ctx.voice_enabled:
            voice = voice_instruction(
                r,
                lang="en" if is_travel else r.lang,
                voice=self._voice_pref,
                prefer_url=is_travel,
            )
        await self.bus.publish(message_to_payload(msg, voice=voice))

    async def _on_wakeword(self, msg: LocalMessage) -> None:
        r = msg.result
        voice = voice_instruction(r, voice=self._voice_pref) if r is not None else None
        await self.bus.publish(message_to_payload(msg, voice=voice, extra={"start_mic": True}))

    async def _on_sos(self, msg: LocalMessage) -> None:
        extra: Dict[str, Any] = {"countdown_sec": None, "escalating": False}
        if self.sos is not None:
            started = self.sos.start(location=msg.data.get("location"))
            extra = {"countdown_sec": self.sos.countdown_sec, "escalating": started or self.sos.active}
        else:
            self.log.log_warning("[Overlay] SOS received but escalation is not configured")
        await self.bus.publish(message_to_payload(msg, extra=extra))
