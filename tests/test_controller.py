import asyncio
import dataclasses
import threading

import numpy as np

from fakes import FakeDispatcher, RecordingNotifier
from mydataclass.outbound_event import EventType
from mydataclass.signals import ForegroundApp, LocationFix, SignalKind
from mydataclass.trigger_result import TriggerResult
from pipeline.context import PipelineContext
from pipeline.controller import CycleState, PipelineController
from pipeline.dispatcher import DispatchResult
from pipeline.errors import DispatchError, ModelUnavailable
from pipeline.notifier_models import MessageKind
from pipeline.pipeline_config import PipelineConfig
from pipeline.samplers.foreground_app import ForegroundAppSampler
from pipeline.samplers.protocols import UsageRecord
from pipeline.samplers.sensor import SensorSampler
from pipeline.samplers.wakeword import WakewordSampler
from store.preference_store import PreferenceStore

FAST = dataclasses.replace(
    PipelineConfig(),
    foreground_interval_sec=0.01,
    sensor_flush_interval_sec=0.01,
    location_interval_sec=0.01,
)


def _controller(prefs, dispatcher=None, cfg=FAST, **samplers):
    ctx = PipelineContext(prefs)
    notifier = RecordingNotifier()
    dispatcher = dispatcher or FakeDispatcher()
    ctrl = PipelineController(cfg, ctx, notifier, dispatcher, **samplers)
    return ctrl, notifier, dispatcher


def test_excluded_and_duplicate_foreground_events(prefs):
    async def _run():
        ctrl, _, dispatcher = _controller(prefs)
        ctrl.ctx.load_identity()
        for pkg in ("com.whatsapp", "com.whatsapp", "com.miui.home", "com.spotify.music"):
            await ctrl.submit(ForegroundApp(pkg))
        return dispatcher.sent

    sent = asyncio.run(_run())
    assert [e.metadata["package_name"] for e in sent] == ["com.whatsapp", "com.spotify.music"]
    assert all(e.event_type is EventType.FOREGROUND_APP for e in sent)


def test_trigger_is_published_as_foreground_reply(prefs):
    async def _run():
        result = DispatchResult(trigger=TriggerResult.foreground_reply("Reply?"), status=200)
        ctrl, notifier, _ = _controller(prefs, FakeDispatcher(result=result))
        ctrl.ctx.load_identity()
        await ctrl.submit(ForegroundApp("com.whatsapp"))
        return notifier.published, ctrl.states

    published, states = asyncio.run(_run())
    kind, result, _ = published[0]
    assert kind is MessageKind.FOREGROUND_REPLY and result.text == "Reply?"
    assert all(s is CycleState.IDLE for s in states.values())


def test_failed_dispatch_does_not_roll_back_throttle(prefs):
    async def _run():
        failing = FakeDispatcher(result=DispatchResult(error=DispatchError.NETWORK_FAILURE))
        ctrl, notifier, dispatcher = _controller(prefs, failing)
        ctrl.ctx.load_identity()
        await ctrl.submit(ForegroundApp("com.whatsapp"))
        await ctrl.submit(ForegroundApp("com.whatsapp"))
        return dispatcher.sent, notifier.published, ctrl.throttle.get(SignalKind.FOREGROUND_APP).value

    sent, published, last = asyncio.run(_run())
    assert len(sent) == 1
    assert published == []
    assert last == "com.whatsapp"


def test_missing_credentials_skip_without_burning_throttle(tmp_path):
    store = PreferenceStore(str(tmp_path / "p.yaml"))

    async def _run():
        ctrl, _, dispatcher = _controller(store)
        ctrl.ctx.load_identity()
        await ctrl.submit(LocationFix(48.8, 2.3))
        return dispatcher.sent, ctrl.throttle.get(SignalKind.LOCATION).timestamp_ms

    sent, ts = asyncio.run(_run())
    assert sent == []
    assert ts == 0


class ThreadRecordingStore(PreferenceStore):
    def __init__(self, path):
        super().__init__(path)
        self.write_threads = []

    def update(self, values):
        self.write_threads.append(threading.get_ident())
        super().update(values)


def test_location_commit_writes_prefs_off_event_loop(tmp_path):
    store = ThreadRecordingStore(str(tmp_path / "p.yaml"))
    store.update({"device_id": "dev-1", "auth_token": "tok-1"})
    store.write_threads.clear()

    async def _run():
        ctrl, _, dispatcher = _controller(store)
        ctrl.ctx.load_identity()
        await ctrl.submit(LocationFix(48.8, 2.3))
        return len(dispatcher.sent), threading.get_ident()

    n_sent, loop_thread = asyncio.run(_run())
    assert n_sent == 1
    assert len(store.write_threads) == 1
    assert store.write_threads[0] != loop_thread
    assert store.get_float(PreferenceStore.KEY_LAST_LAT) == 48.8


def test_busy_kind_drops_on_demand_request(prefs):
    async def _run():
        dispatcher = FakeDispatcher()
        dispatcher.gate = threading.Event()
        ctrl, _, _ = _controller(prefs, dispatcher)
        ctrl.ctx.load_identity()
        first = asyncio.create_task(ctrl.submit(LocationFix(48.8, 2.3)))
        while ctrl.states[SignalKind.LOCATION] is not CycleState.DISPATCHING:
            await asyncio.sleep(0.001)
        dropped = await ctrl.request_location_check()
        dispatcher.gate.set()
        await first
        return dropped, len(dispatcher.sent)

    dropped, n_sent = asyncio.run(_run())
    assert dropped is None
    assert n_sent == 1


def test_start_stays_idle_before_onboarding(prefs):
    prefs.set("onboarding_completed", False)

    async def _run():
        ctrl, _, dispatcher = _controller(prefs, sensor=SensorSampler())
        await ctrl.start()
        running = ctrl.running
        await ctrl.stop()
        return running, dispatcher.nudge_checks

    assert asyncio.run(_run()) == (False, 0)


def test_start_runs_tracking_loops_and_nudge_check(prefs):
    prefs.update({"smart_tracking_enabled": True})

    class Usage:
        def query_usage(self, start_ms, end_ms):
            return [UsageRecord("com.whatsapp", end_ms)]

        def app_label(self, package_name):
            return "WhatsApp"

    async def _run():
        nudge = DispatchResult(trigger=TriggerResult.nudge("Hydrate"), status=200)
        ctrl, notifier, dispatcher = _controller(
            prefs, FakeDispatcher(nudge=nudge),
            sensor=SensorSampler(), foreground=ForegroundAppSampler(Usage()),
        )
        await ctrl.start()
        await asyncio.sleep(0.1)
        await ctrl.stop()
        return dispatcher, notifier.published, ctrl.running

    dispatcher, published, running = asyncio.run(_run())
    types = [e.event_type for e in dispatcher.sent]
    assert types.count(EventType.FOREGROUND_APP) == 1          # 同一应用只上报一次
    assert types.count(EventType.SENSOR_CONTEXT) >= 2          # 每个周期一份快照
    assert dispatcher.nudge_checks == 1
    assert published[0][0] is MessageKind.NUDGE
    assert running is False


def test_foreground_loop_rechecks_toggle(prefs):
    prefs.update({"smart_tracking_enabled": True})

    class Usage:
        def __init__(self):
            self.n = 0

        def query_usage(self, start_ms, end_ms):
            self.n += 1
            return [UsageRecord(f"com.app{self.n}", end_ms)]

        def app_label(self, package_name):
            return None

    async def _run():
        ctrl, _, dispatcher = _controller(prefs, foreground=ForegroundAppSampler(Usage()))
        await ctrl.start()
        await asyncio.sleep(0.05)
        prefs.set("smart_tracking_enabled", False)
        await asyncio.sleep(0.03)
        before = len(dispatcher.sent)
        await asyncio.sleep(0.1)
        after = len(dispatcher.sent)
        await ctrl.stop()
        return before, after

    before, after = asyncio.run(_run())
    assert before >= 1
    assert after == before


class ScriptedClassifier:
    def __init__(self, scores, fail=False):
        self.scores, self.fail = list(scores), fail

    def load(self):
        if self.fail:
            raise ModelUnavailable("no model")

    def score(self, frame):
        return self.scores.pop(0) if self.scores else 0.0


class Audio:
    def read_frame(self, n):
        return np.zeros(n, dtype=np.int16)

    def close(self):
        pass


def test_wakeword_publishes_local_trigger(prefs):
    prefs.update({"preferred_lang": "hi"})

    async def _run():
        ww = WakewordSampler(Audio(), ScriptedClassifier([0.2, 0.95]), inference_delay_sec=0)
        ctrl, notifier, dispatcher = _controller(prefs, wakeword=ww)
        ctrl.ctx.load_identity()
        assert ctrl.activate_wakeword() is True
        await ctrl._wakeword_task
        return notifier.published, dispatcher.sent

    published, sent = asyncio.run(_run())
    kind, result, data = published[0]
    assert kind is MessageKind.WAKEWORD
    assert (result.text, result.lang) == ("Hi, I'm listening", "hi")
    assert data == {"start_mic": True}
    assert sent == []      # 唤醒词没有后端端点


def test_wakeword_disabled_when_model_missing(prefs):
    async def _run():
        ww = WakewordSampler(Audio(), ScriptedClassifier([], fail=True))
        ctrl, _, _ = _controller(prefs, wakeword=ww)
        first = ctrl.activate_wakeword()
        second = ctrl.activate_wakeword()
        return first, second, ctrl.disabled

    first, second, disabled = asyncio.run(_run())
    assert (first, second) == (False, False)
    assert SignalKind.WAKEWORD in disabled


def test_push_token_mute_and_sos_entry_points(prefs):
    async def _run():
        ctrl, notifier, dispatcher = _controller(prefs)
        ctrl.ctx.load_identity()
        route = await ctrl.handle_push({"nudge_text": "Walk"})
        ok = await ctrl.on_new_token("fcm-1")
        ctrl.set_muted(True)
        ctrl.trigger_sos(location="home")
        return route, ok, dispatcher.tokens, ctrl.ctx.muted, notifier.published, ctrl.cancel_sos()

    route, ok, tokens, muted, published, cancelled = asyncio.run(_run())
    assert route == "nudge"
    assert ok is True and tokens == [("dev-1", "fcm-1")]
    assert muted is True
    assert [p[0] for p in published] == [MessageKind.NUDGE, MessageKind.SOS]
    assert published[1][2] == {"location": "home"}
    assert cancelled is False
