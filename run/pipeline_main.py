# run/pipeline_main.py
"""
=========================================
主程序入口
=========================================

功能说明：
  - 读取配置（config/pipeline.yaml + NEURA_* 环境变量）
  - 组装偏好存储、上下文、通知器、发送器、采样器与控制器
  - 启动本地桥接服务（SSE + HTTP 接口），宿主通过它上报读数（麦克风、定位、
    前台应用、传感器）与接收展示快照
  - 支持 Ctrl+C / SIGTERM 优雅退出
"""

from __future__ import annotations
import asyncio
import contextlib
import signal
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI

from commons.base_logger import BaseLogger
from overlay_socket.bus import SnapshotBus
from overlay_socket.presenter import OverlayPresenter
from overlay_socket.sse_runner import build_app, start_sse_background, stop_sse_background
from pipeline.context import PipelineContext
from pipeline.controller import PipelineController
from pipeline.dispatcher import EventDispatcher
from pipeline.notifier import LocalNotifier
from pipeline.pipeline_config import PipelineConfig
from pipeline.samplers.bridge_feeds import (
    BridgeAudioSource,
    BridgeLocationProvider,
    BridgeUsageStatsProvider,
    HostFeeds,
)
from pipeline.samplers.foreground_app import ForegroundAppSampler
from pipeline.samplers.location import LocationSampler
from pipeline.samplers.sensor import SensorSampler
from pipeline.samplers.wakeword import TfliteWakewordClassifier, WakewordSampler
from pipeline.setting import BRIDGE_HOST, BRIDGE_PORT, LOG_TO_FILE
from pipeline.sos import LoggingSmsSender, SosEscalation
from store.preference_store import PreferenceStore
from store.summary_log import SummaryLog


@dataclass
class Runtime:
    """组装好的组件；main 负责启动与关闭。"""
    cfg: PipelineConfig
    prefs: PreferenceStore
    notifier: LocalNotifier
    dispatcher: EventDispatcher
    controller: PipelineController
    feeds: HostFeeds
    wakeword: WakewordSampler
    app: FastAPI


def build_runtime(cfg: PipelineConfig) -> Runtime:
    """按配置组装全部组件（不启动任何任务）。"""
    prefs = PreferenceStore(cfg.prefs_path)
    ctx = PipelineContext(prefs)
    notifier = LocalNotifier(queue_cap=cfg.queue_cap)
    dispatcher = EventDispatcher(cfg.base_url, timeout=cfg.http_timeout)
    sos = SosEscalation(dispatcher, ctx, LoggingSmsSender(), countdown_sec=cfg.sos_countdown_sec)

    # 桌面宿主：麦克风、定位、前台应用、传感器读数都经桥接接口推入
    feeds = HostFeeds(
        audio=BridgeAudioSource(cfg.wakeword_sample_rate),
        location=BridgeLocationProvider(),
        usage=BridgeUsageStatsProvider(),
    )
    location = LocationSampler(
        feeds.location,
        max_fix_age_sec=cfg.location_max_fix_age_sec,
        fix_timeout_sec=cfg.location_fix_timeout_sec,
    )
    foreground = ForegroundAppSampler(feeds.usage, lookback_sec=cfg.foreground_lookback_sec)
    sensor = SensorSampler(accel_threshold=cfg.accel_threshold)
    wakeword = WakewordSampler(
        feeds.audio,
        TfliteWakewordClassifier(cfg.wakeword_model_path),
        threshold=cfg.wakeword_threshold,
        cooldown_sec=cfg.wakeword_cooldown_sec,
        sample_rate=cfg.wakeword_sample_rate,
        inference_delay_sec=cfg.wakeword_inference_delay_sec,
    )
    controller = PipelineController(
        cfg, ctx, notifier, dispatcher,
        location=location, foreground=foreground, sensor=sensor, wakeword=wakeword, sos=sos,
    )

    bus = SnapshotBus()
    summary_log = SummaryLog(prefs, max_items=cfg.summary_max_items)
    OverlayPresenter(bus, ctx, summary_log, sos=sos).attach(notifier)
    app = build_app(bus, controller, summary_log, sensor, feeds=feeds)
    return Runtime(cfg, prefs, notifier, dispatcher, controller, feeds, wakeword, app)


async def main(config_file: Optional[str] = None, host: str = BRIDGE_HOST, port: int = BRIDGE_PORT) -> None:
    """
    主入口：
      1. 设置退出信号 (SIGINT / SIGTERM)
      2. 组装组件并启动通知器 worker
      3. 启动桥接服务与控制器
      4. 等待退出信号，逆序关闭
    """
    log = BaseLogger(name="pipeline_main", to_file=LOG_TO_FILE)
    stop_evt = asyncio.Event()
    loop = asyncio.get_running_loop()

    def _stop(*_):
        stop_evt.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):  # Windows 下可能不支持
            loop.add_signal_handler(sig, _stop)

    rt = build_runtime(PipelineConfig.load(config_file))
    await rt.notifier.start(n_workers=rt.cfg.notifier_workers)
    sse_handle = await start_sse_background(rt.app, host=host, port=port)
    try:
        await rt.controller.start()
        await stop_evt.wait()
    finally:
        # 先唤醒阻塞在数据源上的读取线程
        rt.feeds.close()
        await rt.controller.stop()
        await stop_sse_background(sse_handle)
        await rt.notifier.stop()
        rt.dispatcher.close()
        log.log_info("bye")


def cli() -> None:
    """同步入口点：配置路径用 NEURA_CONFIG_FILE，监听地址用 NEURA_BRIDGE_HOST / NEURA_BRIDGE_PORT。"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
