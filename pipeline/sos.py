# pipeline/sos.py
from __future__ import annotations

import asyncio
from typing import List, Optional, Protocol

from commons.base_logger import BaseLogger
from pipeline.context import PipelineContext
from pipeline.dispatcher import EventDispatcher

SOS_MESSAGE_TEMPLATE = "🚨 Possible danger detected. Please help me. Location: {location}"


class SmsSender(Protocol):
    """短信发送接口（宿主实现：预填短信 / 网关等）。"""
    def send(self, phone: str, message: str) -> None: ...


class SosEscalation:
    """
    SOS 升级流程：
      1. 倒计时（默认 5 秒），期间可取消；
      2. 到期后拉取紧急联系人；
      3. 对每个联系人调用 SmsSender.send(phone, message)。
    同一时间只允许一个升级流程。
    """

    def __init__(
        self,
        dispatcher: EventDispatcher,
        ctx: PipelineContext,
        sms_sender: SmsSender,
        *,
        countdown_sec: float = 5.0,
        logger: Optional[BaseLogger] = None,
    ):
        self.dispatcher = dispatcher
        self.ctx = ctx
        self.sms_sender = sms_sender
        self.countdown_sec = countdown_sec
        self.log = logger or BaseLogger(name="SosEscalation")
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @staticmethod
    def build_message(location: Optional[str]) -> str:
        return SOS_MESSAGE_TEMPLATE.format(location=location or "Unknown")

    def start(self, location: Optional[str] = None, message: Optional[str] = None) -> bool:
        """开始倒计时；已有流程在进行时返回 False。"""
        if self.active:
            self.log.log_info("[SOS] escalation already running")
            return False
        text = message or self.build_message(location)
        self._task = asyncio.create_task(self._run(text), name="sos-escalation")
        self.log.log_warning(f"[SOS] countdown started ({self.countdown_sec}s)")
        return True

    def cancel(self) -> bool:
        if not self.active:
            return False
        self._task.cancel()
        self.log.log_info("✅ SOS cancelled")
        return True

    async def wait(self) -> List[str]:
        """等待当前流程结束；返回已通知的号码（被取消则为空）。"""
        if self._task is None:
            return []
        try:
            return await self._task
        except asyncio.CancelledError:
            return []

    async def _run(self, message: str) -> List[str]:
        await asyncio.sleep(self.countdown_sec)
        phones = await asyncio.to_thread(self.dispatcher.list_sos_contacts, self.ctx.identity)
        if not phones:
            self.log.log_warning("[SOS] no contacts to notify")
            return []
        notified: List[str] = []
        for phone in phones:
            try:
                await asyncio.to_thread(self.sms_sender.send, phone, message)
                notified.append(phone)
            except Exception as e:
                self.log.log_error(f"[SOS] sms to {phone} failed: {e}")
        self.log.log_warning(f"[SOS] notified {len(notified)}/{len(phones)} contacts")
        return notified


class LoggingSmsSender:
    """默认短信发送器：只写日志（无短信网关的部署环境使用）。"""

    def __init__(self, logger: Optional[BaseLogger] = None):
        self.log = logger or BaseLogger(name="LoggingSmsSender")

    def send(self, phone: str, message: str) -> None:
        self.log.log_warning(f"[SMS] to={phone} body={message}")
