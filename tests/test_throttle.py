import pytest

from mydataclass.signals import ForegroundApp, LocationFix, SensorSnapshot, SignalKind, WakewordScore
from pipeline.throttle import ThrottlePolicy, ThrottleState, haversine_km, should_emit
from store.preference_store import PreferenceStore

HOUR_MS = 3600 * 1000


def test_haversine_one_degree_diagonal():
    # (0,0) → (1,1) 约 157 km
    assert haversine_km(0.0, 0.0, 1.0, 1.0) == pytest.approx(157.2, abs=0.5)
    assert haversine_km(10.0, 10.0, 10.0, 10.0) == 0.0


@pytest.mark.parametrize("elapsed_hours,expected", [(7, True), (2, False)])
def test_location_from_origin(elapsed_hours, expected):
    state = ThrottleState()
    # 上次发送于 (0,0)，时间戳 1000
    state.commit(SignalKind.LOCATION, (0.0, 0.0), 1000)
    sig = LocationFix(1.0, 1.0, timestamp_ms=1000 + elapsed_hours * HOUR_MS)
    assert should_emit(sig, state, 1000 + elapsed_hours * HOUR_MS) is expected


def test_location_within_distance_never_emits():
    state = ThrottleState()
    state.commit(SignalKind.LOCATION, (10.0, 10.0), 0)
    sig = LocationFix(10.5, 10.5)  # ~78 km
    for hours in (1, 7, 100, 10_000):
        assert should_emit(sig, state, hours * HOUR_MS) is False


def test_first_location_uses_origin_default():
    state = ThrottleState()
    policy = ThrottlePolicy()
    # 从未发送：默认 (0,0)、时间戳 0
    assert policy.evaluate(LocationFix(48.85, 2.35), state, now=10 * HOUR_MS) is True
    entry = state.get(SignalKind.LOCATION)
    assert entry.value == (48.85, 2.35)
    assert entry.timestamp_ms == 10 * HOUR_MS


def test_emitted_locations_are_six_hours_apart():
    state = ThrottleState()
    policy = ThrottlePolicy()
    emitted = []
    lat = 0.0
    for step in range(0, 48):
        lat += 2.0  # 每步 ~222 km
        now = step * HOUR_MS + 1
        if policy.evaluate(LocationFix(lat % 80, 0.0), state, now=now):
            emitted.append(now)
    assert len(emitted) >= 2
    assert all(b - a > 6 * HOUR_MS for a, b in zip(emitted, emitted[1:]))


@pytest.mark.parametrize("pkg", [
    "com.android.launcher3",
    "com.google.android.googlequicksearchbox",
    "com.miui.home",
    "com.samsung.android.app.spage",
])
def test_excluded_packages_never_emit(pkg):
    state = ThrottleState()
    assert ThrottlePolicy().evaluate(ForegroundApp(pkg), state, now=1) is False
    # 被排除的包不更新“上次发送”
    assert state.get(SignalKind.FOREGROUND_APP).value is None


def test_identical_foreground_signals_emit_once():
    state = ThrottleState()
    policy = ThrottlePolicy()
    results = [policy.evaluate(ForegroundApp("com.whatsapp"), state, now=t) for t in (1, 2)]
    assert results == [True, False]
    assert policy.evaluate(ForegroundApp("com.spotify.music"), state, now=3) is True


def test_sensor_and_wakeword_always_emit():
    state = ThrottleState()
    policy = ThrottlePolicy()
    for t in (1, 2, 3):
        assert policy.evaluate(SensorSnapshot(timestamp_ms=t), state, now=t) is True
        assert policy.evaluate(WakewordScore(0.9, timestamp_ms=t), state, now=t) is True


def test_commit_rejects_older_timestamp():
    state = ThrottleState()
    assert state.commit(SignalKind.FOREGROUND_APP, "a", 100) is True
    assert state.commit(SignalKind.FOREGROUND_APP, "b", 50) is False
    assert state.get(SignalKind.FOREGROUND_APP).value == "a"


def test_location_state_persists_across_restarts(tmp_path):
    path = str(tmp_path / "prefs.yaml")
    state = ThrottleState(store=PreferenceStore(path))
    assert ThrottlePolicy().evaluate(LocationFix(40.0, -74.0), state, now=7 * HOUR_MS)

    reloaded = ThrottleState(store=PreferenceStore(path))
    entry = reloaded.get(SignalKind.LOCATION)
    assert entry.value == (40.0, -74.0)
    assert entry.timestamp_ms == 7 * HOUR_MS
    # 窗口在重启后仍然生效
    assert should_emit(LocationFix(50.0, -74.0), reloaded, 8 * HOUR_MS) is False
