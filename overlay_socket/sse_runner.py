# ────────────────────────────────────────────────────────────────
# 模块用途：本地桥接服务（FastAPI + uvicorn，后台运行）
# 说明：
#   - SSE：推送展示层快照（presenter 每次 publish 后唤醒）；
#   - 宿主通过 HTTP 接口上报推送消息、FCM token、信号、传感器读数，
#     麦克风 PCM、定位与前台应用记录，以及触发 SOS / 唤醒词 / 静音；
#   - 自动心跳保持连接；
#   - 异常统一返回 error JSON。
# ────────────────────────────────────────────────────────────────

from __future__ import annotations
import asyncio
import json
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse

from commons.base_dataclasses import json_default
from commons.base_logger import BaseLogger
from commons.normalizers import to_bool_or_none, to_float_or_none, to_int_or_none
from overlay_socket.adapters.overlay_payload import error_payload, signal_from_payload, summaries_payload
from overlay_socket.bus import SnapshotBus
from pipeline.controller import PipelineController
from pipeline.samplers.bridge_feeds import HostFeeds
from pipeline.samplers.sensor import SensorSampler
from pipeline.setting import SSE_INTERVAL_MS
from store.summary_log import SummaryLog

_log = BaseLogger(name="sse_runner")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Content-Encoding": "identity",
}


def _sse_frame(event: str, data: Any) -> bytes:
    return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False, default=json_default)}\n\n".encode("utf-8")


async def _json_body(request: Request) -> Dict[str, Any]:
    """解析请求体为 dict；失败抛 ValueError。"""
    try:
        body = await request.json()
    except Exception as e:
        raise ValueError(f"invalid json body: {e}") from e
    if not isinstance(body, dict):
        raise ValueError("json body must be an object")
    return body


def _bad_request(e: Exception) -> JSONResponse:
    return JSONResponse(error_payload(str(e), code="BAD_REQUEST"), status_code=400)


def _dispatch_json(result) -> Optional[Dict[str, Any]]:
    if result is None:
        return None
    return {
        "status": result.status,
        "error": result.error.value if result.error else None,
        "trigger": result.trigger.to_dict(drop_none=True) if result.trigger else None,
    }


# ────────────────────────────────────────────────────────────────
# 构建 FastAPI 实例
# ────────────────────────────────────────────────────────────────
def build_app(
    bus: SnapshotBus,
    controller: PipelineController,
    summary_log: SummaryLog,
    sensor: Optional[SensorSampler] = None,
    feeds: Optional[HostFeeds] = None,
) -> FastAPI:
    feeds = feeds or HostFeeds()
    app = FastAPI(title="Neura Overlay Bridge", version="1.0.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/healthz")
    async def _h():
        """健康检查：用于存活探测"""
        return {
            "ok": True,
            "running": controller.running,
            "muted": controller.ctx.muted,
            "disabled": sorted(k.value for k in controller.disabled),
            "states": {k.value: s.value for k, s in controller.states.items()},
        }

    @app.get("/api/snapshot")
    async def _snapshot():
        snap = bus.peek()
        if snap is None:
            return JSONResponse(error_payload("no snapshot yet", code="EMPTY"), status_code=503)
        return JSONResponse(snap)

    @app.get("/api/summaries")
    async def _summaries():
        return JSONResponse(summaries_payload(summary_log.items()))

    @app.post("/api/push")
    async def _push(request: Request):
        try:
            data = await _json_body(request)
        except ValueError as e:
            return _bad_request(e)
        route = await controller.handle_push(data)
        return {"route": route}

    @app.post("/api/fcm-token")
    async def _fcm(request: Request):
        try:
            token = str((await _json_body(request)).get("token") or "").strip()
            if not token:
                raise ValueError("token required")
        except ValueError as e:
            return _bad_request(e)
        return {"ok": await controller.on_new_token(token)}

    @app.post("/api/signals")
    async def _signals(request: Request):
        try:
            signal = signal_from_payload(await _json_body(request))
        except ValueError as e:
            return _bad_request(e)
        result = await controller.submit(signal)
        return {"kind": signal.kind.value, "result": _dispatch_json(result)}

    @app.post("/api/location/check")
    async def _location_check():
        return {"result": _dispatch_json(await controller.request_location_check())}

    @app.post("/api/sensors")
    async def _sensors(request: Request):
        """
        传感器读数：
          {"sensor": "light", "value": 120}
          {"sensor": "proximity", "value": 0, "max_range": 5}
          {"sensor": "accelerometer", "x": .., "y": .., "z": ..}
          {"sensor": "battery", "level": 50, "scale": 100, "status": "charging"}
          {"sensor": "screen", "on": true}
        """
        if sensor is None:
            return JSONResponse(error_payload("sensor sampler disabled", code="DISABLED"), status_code=409)
        try:
            d = await _json_body(request)
            name = str(d.get("sensor") or "")
            if name == "light":
                sensor.on_light(_required_float(d, "value"))
            elif name == "proximity":
                sensor.on_proximity(_required_float(d, "value"), to_float_or_none(d.get("max_range")) or 1.0)
            elif name == "accelerometer":
                sensor.on_accelerometer(_required_float(d, "x"), _required_float(d, "y"), _required_float(d, "z"))
            elif name == "battery":
                level, scale = to_int_or_none(d.get("level")), to_int_or_none(d.get("scale"))
                if level is None or scale is None:
                    raise ValueError("level/scale required")
                status = d.get("status")
                sensor.on_battery(level, scale, status if isinstance(status, str) else to_int_or_none(status))
            elif name == "screen":
                on = to_bool_or_none(d.get("on"))
                if on is None:
                    raise ValueError("on required")
                sensor.on_screen(on)
            else:
                raise ValueError(f"unknown sensor: {name!r}")
        except ValueError as e:
            return _bad_request(e)
        return {"ok": True}

    @app.post("/api/audio")
    async def _audio(request: Request):
        """麦克风数据：请求体为 PCM16 小端单声道原始字节。"""
        if feeds.audio is None:
            return JSONResponse(error_payload("audio feed disabled", code="DISABLED"), status_code=409)
        try:
            buffered = feeds.audio.push(await request.body())
        except ValueError as e:
            return _bad_request(e)
        return {"buffered": buffered, "dropped": feeds.audio.dropped}

    @app.post("/api/location")
    async def _location(request: Request):
        if feeds.location is None:
            return JSONResponse(error_payload("location feed disabled", code="DISABLED"), status_code=409)
        try:
            fix = signal_from_payload({**(await _json_body(request)), "kind": "location"})
        except ValueError as e:
            return _bad_request(e)
        feeds.location.update(fix)
        return {"ok": True}

    @app.post("/api/usage")
    async def _usage(request: Request):
        """前台应用记录：{"package_name": .., "app_name": .., "timestamp_ms": ..}"""
        if feeds.usage is None:
            return JSONResponse(error_payload("usage feed disabled", code="DISABLED"), status_code=409)
        try:
            app_rec = signal_from_payload({**(await _json_body(request)), "kind": "foreground_app"})
        except ValueError as e:
            return _bad_request(e)
        feeds.usage.record(app_rec.package_name, app_rec.timestamp_ms, app_rec.app_name)
        return {"ok": True}

    @app.post("/api/sos")
    async def _sos(request: Request):
        try:
            d = await _json_body(request)
        except ValueError as e:
            return _bad_request(e)
        controller.trigger_sos(message=d.get("message"), location=d.get("location"))
        return {"ok": True}

    @app.post("/api/sos/cancel")
    async def _sos_cancel():
        return {"cancelled": controller.cancel_sos()}

    @app.post("/api/wakeword/activate")
    async def _wakeword():
        return {"activated": controller.activate_wakeword()}

    @app.post("/api/nudge/check")
    async def _nudge_check():
        return {"result": _dispatch_json(await controller.check_nudge_fallback())}

    @app.post("/api/mute")
    async def _mute(request: Request):
        try:
            muted = to_bool_or_none((await _json_body(request)).get("muted"))
            if muted is None:
                raise ValueError("muted must be a boolean")
        except ValueError as e:
            return _bad_request(e)
        controller.set_muted(muted)
        return {"muted": controller.ctx.muted}

    @app.get("/sse/overlay")
    async def _sse(request: Request):
        try:
            q = request.query_params
            try:
                interval_ms = int(q.get("interval_ms", SSE_INTERVAL_MS))
            except ValueError:
                interval_ms = SSE_INTERVAL_MS
            interval_sec = max(50, interval_ms) / 1000.0

            async def gen():
                snap = bus.peek()
                if snap is not None:
                    yield _sse_frame("overlay", snap)

                while True:
                    if await request.is_disconnected():
                        break
                    snap = await bus.wait_update(timeout=interval_sec)
                    if snap is None:
                        yield b": keep-alive\n\n"
                        continue
                    yield _sse_frame("overlay", snap)

            return StreamingResponse(gen(), media_type="text/event-stream", headers=SSE_HEADERS)

        except Exception as e:
            _log.log_error(f"[SSE] setup error: {e}")

            def one_error():
                yield _sse_frame("error", error_payload(f"setup error: {e}"))

            return StreamingResponse(one_error(), media_type="text/event-stream", headers=SSE_HEADERS)

    return app


def _required_float(d: Dict[str, Any], key: str) -> float:
    v = to_float_or_none(d.get(key))
    if v is None:
        raise ValueError(f"{key} required")
    return v


# ────────────────────────────────────────────────────────────────
# 启动与停止：供 run/pipeline_main 调用
# ────────────────────────────────────────────────────────────────
@dataclass
class SseServerHandle:
    server: uvicorn.Server
    task: asyncio.Task


async def start_sse_background(app: FastAPI, host: str = "127.0.0.1", port: int = 8765) -> SseServerHandle:
    """
    后台启动桥接服务。
    - 不阻塞主流程；
    - 端口占用时记录错误（uvicorn 以 SystemExit 退出）；
    - 返回句柄，供主程序 stop。
    """
    config = uvicorn.Config(app=app, host=host, port=port, loop="asyncio", log_level="info")
    server = uvicorn.Server(config)

    async def _serve():
        try:
            await server.serve()
        except SystemExit:
            _log.log_error(f"[SSE] Port {port} already in use, please change or stop other process.", exc_info=False)

    task = asyncio.create_task(_serve(), name=f"overlay-sse:{port}")
    await asyncio.sleep(0.1)
    ip = "127.0.0.1" if host in ("0.0.0.0", "localhost") else host
    _log.log_info(f"[SSE] bridge started: http://{ip}:{port}/sse/overlay")
    return SseServerHandle(server, task)


async def stop_sse_background(handle: Optional[SseServerHandle]) -> None:
    """关闭桥接服务"""
    if not handle:
        return
    handle.server.should_exit = True
    handle.task.cancel()
    with suppress(asyncio.CancelledError):
        await handle.task
