# ──────────────────────────────────────────────────────────────────────────────
# 模块用途：推送消息的默认路由表（优先级即注册顺序）
#   1. screen == "nudge"          → 主动拉取一次 nudge
#   2. city_name + tips           → travel_tip
#   3. nudge_text                 → nudge
#   4. hourly_text                → hourly_nudge
# ──────────────────────────────────────────────────────────────────────────────
from __future__ import annotations

from typing import Awaitable, Callable, Optional

from commons.base_logger import BaseLogger
from mydataclass.trigger_result import TriggerResult
from pipeline.notifier import LocalNotifier
from pipeline.notifier_models import MessageKind
from pipeline.push.registry import PushData, PushRouter, non_empty


def build_push_router(
    notifier: LocalNotifier,
    check_nudge: Callable[[], Awaitable[object]],
    logger: Optional[BaseLogger] = None,
) -> PushRouter:
    router = PushRouter(logger=logger)

    @router.on("nudge_screen", lambda d: d.get("screen") == "nudge")
    async def _nudge_screen(data: PushData) -> None:
        await check_nudge()

    @router.on("travel_tip", non_empty("city_name", "tips"))
    async def _travel_tip(data: PushData) -> None:
        notifier.publish(
            TriggerResult.travel_tip(data.get("city_name"), data.get("tips"), data.get("tips_audio_url")),
            MessageKind.TRAVEL_TIP,
        )

    @router.on("nudge", non_empty("nudge_text"))
    async def _nudge(data: PushData) -> None:
        notifier.publish(
            TriggerResult.nudge(data.get("nudge_text"), data.get("emoji"), data.get("lang")),
            MessageKind.NUDGE,
        )

    @router.on("hourly_nudge", non_empty("hourly_text"))
    async def _hourly(data: PushData) -> None:
        notifier.publish(
            TriggerResult.hourly(data.get("hourly_text"), data.get("hourly_emoji"), data.get("hourly_lang")),
            MessageKind.HOURLY_NUDGE,
        )

    return router
