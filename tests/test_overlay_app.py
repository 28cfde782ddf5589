import asyncio

import pytest
from fastapi.testclient import TestClient

from fakes import FakeDispatcher
from mydataclass.trigger_result import TriggerResult
from overlay_socket.adapters.overlay_payload import signal_from_payload
from overlay_socket.bus import SnapshotBus
from overlay_socket.presenter import OverlayPresenter
from overlay_socket.sse_runner import build_app
from pipeline.context import PipelineContext
from pipeline.controller import PipelineController
from pipeline.dispatcher import DispatchResult
from pipeline.notifier import LocalNotifier
from pipeline.notifier_models import LocalMessage, MessageKind
from pipeline.pipeline_config import PipelineConfig
from pipeline.samplers.sensor import SensorSampler
from pipeline.sos import SosEscalation
from store.summary_log import SummaryLog


class RecordingSms:
    def __init__(self):
        self.sent = []

    def send(self, phone, message):
        self.sent.append((phone, message))


def _presenter(prefs, sos=None):
    ctx = PipelineContext(prefs)
    ctx.load_identity()
    bus = SnapshotBus()
    log = SummaryLog(prefs)
    return OverlayPresenter(bus, ctx, log, sos=sos), bus, log


# ---------------- presenter ----------------

def test_nudge_is_logged_and_spoken(prefs):
    async def _run():
        presenter, bus, log = _presenter(prefs)
        await presenter.handle(LocalMessage(MessageKind.HOURLY_NUDGE, TriggerResult.hourly("Stretch", lang="hi")))
        return bus.peek(), log.items()

    snap, items = asyncio.run(_run())
    assert snap["kind"] == "hourly_nudge"
    assert snap["bubble"]["text"] == "Stretch"
    assert snap["voice"]["mode"] == "tts" and snap["voice"]["lang"] == "hi"
    assert [(i.type, i.emoji, i.text) for i in items] == [("hourly", "⏰", "Stretch")]


def test_muted_nudge_has_no_voice(prefs):
    async def _run():
        presenter, bus, log = _presenter(prefs)
        presenter.ctx.set_muted(True)
        await presenter.handle(LocalMessage(MessageKind.NUDGE, TriggerResult.nudge("Drink water")))
        return bus.peek(), len(log.items())

    snap, n = asyncio.run(_run())
    assert snap["voice"] is None
    assert n == 1


def test_travel_tip_prefers_audio_url(prefs):
    async def _run():
        presenter, bus, log = _presenter(prefs)
        tip = TriggerResult.travel_tip("Paris", "Try the metro", "https://cdn/tip.mp3")
        await presenter.handle(LocalMessage(MessageKind.TRAVEL_TIP, tip))
        return bus.peek(), log.items()

    snap, items = asyncio.run(_run())
    assert snap["voice"] == {"mode": "url", "url": "https://cdn/tip.mp3", "fallback_text": "Try the metro"}
    assert items[0].type == "travel" and items[0].emoji == "📍 Paris"


def test_wakeword_requests_microphone(prefs):
    async def _run():
        presenter, bus, log = _presenter(prefs)
        presenter.ctx.set_muted(True)
        msg = LocalMessage(MessageKind.WAKEWORD, TriggerResult(text="Hi, I'm listening", emoji="🎙️", lang="en"),
                           data={"start_mic": True})
        await presenter.handle(msg)
        return bus.peek(), log.items()

    snap, items = asyncio.run(_run())
    assert snap["data"]["start_mic"] is True
    assert snap["voice"]["text"] == "Hi, I'm listening"
    assert items == []        # 唤醒词不进摘要


def test_sos_message_starts_escalation(prefs):
    async def _run():
        ctx = PipelineContext(prefs)
        ctx.load_identity()
        sms = RecordingSms()
        sos = SosEscalation(FakeDispatcher(phones=["+911"]), ctx, sms, countdown_sec=0.01)
        presenter, bus, _ = _presenter(prefs, sos=sos)
        msg = LocalMessage(MessageKind.SOS, TriggerResult(text="Possible danger detected", emoji="🚨"),
                           data={"location": "Pune"})
        await presenter.handle(msg)
        snap = bus.peek()
        await sos.wait()
        return snap, sms.sent

    snap, sent = asyncio.run(_run())
    assert snap["data"]["escalating"] is True
    assert snap["data"]["location"] == "Pune"
    assert sent == [("+911", "🚨 Possible danger detected. Please help me. Location: Pune")]


def test_presenter_receives_messages_through_notifier(prefs):
    async def _run():
        presenter, bus, _ = _presenter(prefs)
        notifier = LocalNotifier(queue_cap=8)
        presenter.attach(notifier)
        await notifier.start(1)
        notifier.publish(TriggerResult.foreground_reply("Reply to Mom?"), MessageKind.FOREGROUND_REPLY)
        await notifier.drain()
        await notifier.stop()
        return bus.seq, bus.peek()

    seq, snap = asyncio.run(_run())
    assert seq == 1
    assert snap["bubble"]["emoji"] == "📱"


# ---------------- 入站解析 ----------------

def test_signal_from_payload_rejects_bad_input():
    with pytest.raises(ValueError):
        signal_from_payload({"kind": "location", "lat": 91, "lon": 0})
    with pytest.raises(ValueError):
        signal_from_payload({"kind": "foreground_app", "package_name": "  "})
    with pytest.raises(ValueError):
        signal_from_payload({"kind": "sensor_context"})
    with pytest.raises(ValueError):
        signal_from_payload({"kind": "bogus"})


# ---------------- HTTP 桥接 ----------------

@pytest.fixture
def bridge(prefs):
    ctx = PipelineContext(prefs)
    ctx.load_identity()
    reply = DispatchResult(trigger=TriggerResult.foreground_reply("Reply?"), status=200)
    dispatcher = FakeDispatcher(result=reply)
    notifier = LocalNotifier()
    sensor = SensorSampler()
    controller = PipelineController(PipelineConfig(), ctx, notifier, dispatcher, sensor=sensor)
    log = SummaryLog(prefs)
    log.append("nudge", "💡", "Drink water", 1000)
    app = build_app(SnapshotBus(), controller, log, sensor=sensor)
    with TestClient(app) as client:
        yield client, dispatcher, controller, sensor


def test_health_and_summaries(bridge):
    client, _, _, _ = bridge
    health = client.get("/healthz").json()
    assert health["ok"] is True and health["muted"] is False
    assert health["states"]["location"] == "idle"

    summaries = client.get("/api/summaries").json()
    assert summaries["items"] == [{"type": "nudge", "text": "Drink water", "emoji": "💡", "timestamp": 1000}]

    assert client.get("/api/snapshot").status_code == 503


def test_submit_signal(bridge):
    client, dispatcher, _, _ = bridge
    r = client.post("/api/signals", json={"kind": "foreground_app", "package_name": "com.whatsapp"})
    assert r.status_code == 200
    body = r.json()
    assert body["kind"] == "foreground_app"
    assert body["result"]["trigger"]["text"] == "Reply?"
    assert dispatcher.sent[0].metadata["package_name"] == "com.whatsapp"

    dup = client.post("/api/signals", json={"kind": "foreground_app", "package_name": "com.whatsapp"})
    assert dup.json()["result"] is None

    bad = client.post("/api/signals", json={"kind": "location", "lat": "x"})
    assert bad.status_code == 400
    assert bad.json()["error"]["code"] == "BAD_REQUEST"


def test_push_token_and_mute(bridge):
    client, dispatcher, controller, _ = bridge
    assert client.post("/api/push", json={"hourly_text": "Stand up"}).json() == {"route": "hourly_nudge"}
    assert client.post("/api/push", json={"foo": "bar"}).json() == {"route": None}
    assert client.post("/api/push", content=b"[1, 2]").status_code == 400

    assert client.post("/api/fcm-token", json={"token": "abc"}).json() == {"ok": True}
    assert dispatcher.tokens == [("dev-1", "abc")]
    assert client.post("/api/fcm-token", json={}).status_code == 400

    assert client.post("/api/mute", json={"muted": True}).json() == {"muted": True}
    assert controller.ctx.muted is True
    assert client.post("/api/mute", json={"muted": "maybe"}).status_code == 400


def test_sensor_readings_feed_sampler(bridge):
    client, _, _, sensor = bridge
    assert client.post("/api/sensors", json={"sensor": "light", "value": 120}).json() == {"ok": True}
    assert client.post("/api/sensors", json={"sensor": "battery", "level": 40, "scale": 80,
                                             "status": "charging"}).status_code == 200
    assert client.post("/api/sensors", json={"sensor": "gyro"}).status_code == 400

    snap = sensor.flush()
    assert snap.light == 120.0
    assert (snap.battery, snap.charging) == (50, True)


def test_sos_cancel_and_wakeword_without_samplers(bridge):
    client, _, _, _ = bridge
    assert client.post("/api/sos/cancel").json() == {"cancelled": False}
    assert client.post("/api/wakeword/activate").json() == {"activated": False}
    assert client.post("/api/location/check").json() == {"result": None}


def test_feed_endpoints_without_feeds(bridge):
    client, _, _, _ = bridge
    assert client.post("/api/audio", content=b"\x00\x00").status_code == 409
    assert client.post("/api/location", json={"lat": 1, "lon": 2}).json()["error"]["code"] == "DISABLED"
    assert client.post("/api/usage", json={"package_name": "com.whatsapp"}).status_code == 409
