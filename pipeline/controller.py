# ──────────────────────────────────────────────────────────────────────────────
# 模块用途：事件流水线控制器（采样 → 节流 → 发送 → 本地通知）
# 说明：
#   - 每种定时信号一个 asyncio 任务，互不共享锁；
#   - 每种信号一把 asyncio.Lock，保证同一类型同时最多一个事件在途；
#     按需触发时若该类型正忙，直接丢弃；
#   - 状态机：idle → sampling → evaluating → dispatching → idle，
#     发送失败直接回到 idle，不回滚节流状态；
#   - 阻塞的 HTTP / 平台读取统一放到 asyncio.to_thread。
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Coroutine, Dict, Mapping, Optional, Set

from commons.base_logger import BaseLogger
from mydataclass.signals import Signal, SignalKind
from mydataclass.trigger_result import TriggerResult
from pipeline.context import PipelineContext
from pipeline.dispatcher import DispatchResult, EventDispatcher
from pipeline.errors import ModelUnavailable
from pipeline.event_factory import EventFactory
from pipeline.notifier import LocalNotifier
from pipeline.notifier_models import MessageKind
from pipeline.pipeline_config import PipelineConfig
from pipeline.push.handlers import build_push_router
from pipeline.samplers.base import BaseSampler
from pipeline.samplers.foreground_app import ForegroundAppSampler
from pipeline.samplers.location import LocationSampler
from pipeline.samplers.sensor import SensorSampler
from pipeline.samplers.wakeword import WakewordSampler
from pipeline.sos import SosEscalation
from pipeline.throttle import ThrottlePolicy, ThrottleState


class CycleState(str, Enum):
    IDLE = "idle"
    SAMPLING = "sampling"
    EVALUATING = "evaluating"
    DISPATCHING = "dispatching"


# 后端触发 → 本地消息类型
_REPLY_KIND = {
    SignalKind.LOCATION: MessageKind.TRAVEL_TIP,
    SignalKind.FOREGROUND_APP: MessageKind.FOREGROUND_REPLY,
    SignalKind.SENSOR_CONTEXT: MessageKind.FOREGROUND_REPLY,
}


class PipelineController:
    """流水线控制器：生命周期由外部 start()/stop() 驱动。"""

    def __init__(
        self,
        cfg: PipelineConfig,
        ctx: PipelineContext,
        notifier: LocalNotifier,
        dispatcher: EventDispatcher,
        *,
        location: Optional[LocationSampler] = None,
        foreground: Optional[ForegroundAppSampler] = None,
        sensor: Optional[SensorSampler] = None,
        wakeword: Optional[WakewordSampler] = None,
        sos: Optional[SosEscalation] = None,
        throttle_state: Optional[ThrottleState] = None,
        factory: Optional[EventFactory] = None,
        logger: Optional[BaseLogger] = None,
    ):
        self.cfg = cfg
        self.ctx = ctx
        self.notifier = notifier
        self.dispatcher = dispatcher
        self.sos = sos
        self.log = logger or BaseLogger(name="PipelineController")

        self.samplers: Dict[SignalKind, BaseSampler] = {}
        for sampler in (location, foreground, sensor, wakeword):
            if sampler is not None:
                self.samplers[sampler.kind] = sampler

        self.policy = ThrottlePolicy(
            travel_distance_km=cfg.travel_distance_km,
            travel_throttle_ms=cfg.travel_throttle_ms,
            excluded_prefixes=tuple(cfg.excluded_prefixes),
        )
        self.throttle = throttle_state or ThrottleState(store=ctx.prefs)
        self.factory = factory or EventFactory()
        self.router = build_push_router(notifier, self.check_nudge_fallback, logger=self.log)

        self.states: Dict[SignalKind, CycleState] = {k: CycleState.IDLE for k in SignalKind}
        self.disabled: Set[SignalKind] = set()
        self._locks: Dict[SignalKind, asyncio.Lock] = {k: asyncio.Lock() for k in SignalKind}
        self._loops: Dict[SignalKind, asyncio.Task] = {}
        self._inflight: Set[asyncio.Task] = set()
        self._wakeword_task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()

    # ─────────────────────────────────────────────
    # 生命周期
    # ─────────────────────────────────────────────
    @property
    def running(self) -> bool:
        return bool(self._loops) or self._wakeword_task is not None

    async def start(self) -> None:
        """
        启动顺序：
          1. 未完成引导 → 保持空闲；
          2. ambient 模式 → 激活唤醒词 + 位置循环；
          3. 主动拉取一次 nudge；
          4. 智能追踪开启 → 前台应用循环 + 传感器循环。
        """
        self._stop.clear()
        self.ctx.load_identity()
        prefs = self.ctx.prefs
        if not prefs.onboarding_completed:
            self.log.log_info("[Controller] onboarding not completed; staying idle")
            return

        if prefs.active_mode == "ambient":
            self.activate_wakeword()
            self._spawn_loop(SignalKind.LOCATION, self._location_loop())

        await self.check_nudge_fallback()

        if prefs.smart_tracking_enabled:
            self._spawn_loop(SignalKind.FOREGROUND_APP, self._foreground_loop())
            self._spawn_loop(SignalKind.SENSOR_CONTEXT, self._sensor_loop())
        self.log.log_info(f"[Controller] started loops={[k.value for k in self._loops]}")

    async def stop(self) -> None:
        """取消所有循环、在途发送与唤醒词检测。"""
        self._stop.set()
        tasks = list(self._loops.values()) + list(self._inflight)
        if self._wakeword_task is not None:
            tasks.append(self._wakeword_task)
        if self.sos is not None:
            self.sos.cancel()
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loops.clear()
        self._inflight.clear()
        self._wakeword_task = None
        self.log.log_info("[Controller] stopped")

    def _spawn_loop(self, kind: SignalKind, coro: Coroutine[Any, Any, None]) -> None:
        if kind not in self.samplers or kind in self._loops:
            coro.close()
            return
        self._loops[kind] = asyncio.create_task(coro, name=f"loop:{kind.value}")

    def _track(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _sleep(self, seconds: float) -> bool:
        """可被 stop 打断的等待；返回 False 表示已停止。"""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=seconds)
            return False
        except asyncio.TimeoutError:
            return True

    # ─────────────────────────────────────────────
    # 定时循环
    # ─────────────────────────────────────────────
    async def _location_loop(self) -> None:
        while not self._stop.is_set():
            await self.run_cycle(SignalKind.LOCATION)
            if not await self._sleep(self.cfg.location_interval_sec):
                return

    async def _foreground_loop(self) -> None:
        while not self._stop.is_set():
            # 开关每个周期重新读取，UI 关闭后立即停止上报
            if self.ctx.prefs.smart_tracking_enabled:
                await self.run_cycle(SignalKind.FOREGROUND_APP)
            else:
                self.log.log_debug("[Controller] smart tracking disabled; skip foreground cycle")
            if not await self._sleep(self.cfg.foreground_interval_sec):
                return

    async def _sensor_loop(self) -> None:
        while not self._stop.is_set():
            self._track(self.run_cycle(SignalKind.SENSOR_CONTEXT))
            if not await self._sleep(self.cfg.sensor_flush_interval_sec):
                return

    # ─────────────────────────────────────────────
    # 单个周期
    # ─────────────────────────────────────────────
    async def run_cycle(self, kind: SignalKind, signal: Optional[Signal] = None) -> Optional[DispatchResult]:
        """
        执行一次 采样 → 评估 → 发送。
        该类型已有周期在途时直接丢弃并返回 None。
        """
        kind = SignalKind(kind)
        if kind in self.disabled:
            return None
        lock = self._locks[kind]
        if lock.locked():
            self.log.log_debug(f"[Controller] {kind.value} busy; request dropped")
            return None

        async with lock:
            try:
                self.states[kind] = CycleState.SAMPLING
                if signal is None:
                    sampler = self.samplers.get(kind)
                    if sampler is None:
                        return None
                    signal = await sampler.asample()
                if signal is None:
                    return None

                self.states[kind] = CycleState.EVALUATING
                if kind is SignalKind.WAKEWORD:
                    if self.policy.evaluate(signal, self.throttle):
                        self._publish_wakeword()
                    return None

                identity = self.ctx.identity
                if identity is None:
                    self.log.log_warning(f"[Controller] {kind.value}: missing credentials; skip cycle")
                    return None
                # 位置提交会写偏好文件，放到工作线程
                if not await asyncio.to_thread(self.policy.evaluate, signal, self.throttle):
                    return None

                self.states[kind] = CycleState.DISPATCHING
                event = self.factory.build(signal, identity)
                result = await asyncio.to_thread(
                    self.dispatcher.send, event, identity, self.ctx.preferred_lang
                )
                if result.error is not None:
                    self.log.log_warning(
                        f"[Controller] {kind.value} dispatch failed: {result.error.value} status={result.status}"
                    )
                elif result.trigger is not None:
                    self.notifier.publish(result.trigger, _REPLY_KIND[kind])
                return result
            finally:
                self.states[kind] = CycleState.IDLE

    # ─────────────────────────────────────────────
    # 按需入口
    # ─────────────────────────────────────────────
    async def request_location_check(self) -> Optional[DispatchResult]:
        return await self.run_cycle(SignalKind.LOCATION)

    async def submit(self, signal: Signal) -> Optional[DispatchResult]:
        """宿主直接提交一条已采样的信号。"""
        return await self.run_cycle(signal.kind, signal=signal)

    def activate_wakeword(self) -> bool:
        """启动一次唤醒词检测（one-shot）；已在运行、被禁用或模型不可用时返回 False。"""
        sampler = self.samplers.get(SignalKind.WAKEWORD)
        if sampler is None or SignalKind.WAKEWORD in self.disabled:
            return False
        if self._wakeword_task is not None and not self._wakeword_task.done():
            return False
        try:
            sampler.activate()
        except ModelUnavailable as e:
            self.disabled.add(SignalKind.WAKEWORD)
            self.log.log_error(f"[Controller] wakeword disabled: {e}", exc_info=False)
            return False
        self._wakeword_task = asyncio.create_task(self._wakeword_run(sampler), name="wakeword")
        return True

    async def _wakeword_run(self, sampler: WakewordSampler) -> None:
        try:
            hit = await sampler.run_once(self._stop)
        except ModelUnavailable as e:
            self.disabled.add(SignalKind.WAKEWORD)
            self.log.log_error(f"[Controller] wakeword disabled: {e}", exc_info=False)
            return
        if hit is not None:
            await self.run_cycle(SignalKind.WAKEWORD, signal=hit)

    def _publish_wakeword(self) -> None:
        trigger = TriggerResult(text=self.cfg.wake_phrase, emoji="🎙️", lang=self.ctx.preferred_lang)
        self.notifier.publish(trigger, MessageKind.WAKEWORD, {"start_mic": True})

    async def check_nudge_fallback(self) -> Optional[DispatchResult]:
        identity = self.ctx.identity
        if identity is None:
            return None
        result = await asyncio.to_thread(self.dispatcher.check_nudge, identity)
        if result.trigger is not None:
            self.notifier.publish(result.trigger, MessageKind.NUDGE)
        return result

    async def handle_push(self, data: Mapping[str, Any]) -> Optional[str]:
        """推送消息入口；返回命中的路由名。"""
        return await self.router.route(data)

    async def on_new_token(self, token: str) -> bool:
        identity = self.ctx.identity or self.ctx.prefs.identity()
        if identity is None:
            self.log.log_warning("[Controller] FCM token refresh skipped: missing credentials")
            return False
        return await asyncio.to_thread(self.dispatcher.update_fcm_token, identity, token)

    def trigger_sos(self, message: Optional[str] = None, location: Optional[str] = None) -> None:
        """发布 SOS 消息；展示层收到后开始倒计时。"""
        trigger = TriggerResult(text=message or "Possible danger detected", emoji="🚨")
        self.notifier.publish(trigger, MessageKind.SOS, {"location": location or "Unknown"})

    def cancel_sos(self) -> bool:
        return self.sos.cancel() if self.sos is not None else False

    def set_muted(self, flag: bool) -> None:
        self.ctx.set_muted(flag)
