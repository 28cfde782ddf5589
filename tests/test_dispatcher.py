import pytest
import requests

from mydataclass.identity import DeviceIdentity
from mydataclass.outbound_event import EventType, OutboundEvent
from pipeline.dispatcher import EventDispatcher
from pipeline.errors import DispatchError, MalformedResponse, NetworkFailure, StaleCredentials
from fakes import FakeSession, make_response

BASE = "https://backend.test"
IDENT = DeviceIdentity("dev-1", "tok-1")


def _dispatcher(*responses):
    session = FakeSession(*responses)
    return EventDispatcher(BASE, session=session), session


def _fg_event():
    return OutboundEvent("dev-1", EventType.FOREGROUND_APP, {"app_name": "WhatsApp", "package_name": "com.whatsapp"})


def test_push_mobile_request_shape_and_event_trigger():
    d, s = _dispatcher(make_response(200, {"event_trigger": {"prompt": "Reply to Mom?"}}))
    result = d.send(_fg_event(), IDENT, lang="hi")

    call = s.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == f"{BASE}/event/push-mobile"
    assert call["headers"]["Authorization"] == "Bearer tok-1"
    assert call["json"] == {
        "device_id": "dev-1",
        "event_type": "foreground_app",
        "metadata": {"app_name": "WhatsApp", "package_name": "com.whatsapp"},
    }
    assert call["timeout"] == (15.0, 15.0)
    assert result.ok and result.status == 200
    assert result.trigger.text == "Reply to Mom?"
    assert result.trigger.emoji == "📱"
    assert result.trigger.lang == "hi"


def test_push_mobile_nested_trigger_fields():
    body = {"event_trigger": {"text": "Call Mom?", "emoji": "📞", "lang": "hi"}}
    d, s = _dispatcher(make_response(200, body))
    ev = OutboundEvent("dev-1", EventType.SENSOR_CONTEXT, {"light": 3.0, "is_moving": False})
    result = d.send(ev, IDENT, lang="en")

    assert s.calls[0]["url"] == f"{BASE}/event/push-mobile"
    assert (result.trigger.text, result.trigger.emoji, result.trigger.lang) == ("Call Mom?", "📞", "hi")


def test_push_mobile_empty_nested_trigger_falls_back_to_top_level():
    d, _ = _dispatcher(make_response(200, {"event_trigger": {"emoji": "📞"}, "text": "Stretch"}))
    trigger = d.send(_fg_event(), IDENT, lang="hi").trigger
    assert (trigger.text, trigger.emoji, trigger.lang) == ("Stretch", "📱", "hi")


def test_push_mobile_top_level_prompt_fallback():
    d, _ = _dispatcher(make_response(200, {"prompt": "Take a break"}))
    assert d.send(_fg_event(), IDENT).trigger.text == "Take a break"


def test_push_mobile_without_prompt_has_no_trigger():
    d, _ = _dispatcher(make_response(200, {"status": "ok"}))
    result = d.send(_fg_event(), IDENT)
    assert result.ok and result.trigger is None


@pytest.mark.parametrize("status", [400, 401, 404, 500, 503])
def test_bad_status_no_trigger_no_raise(status):
    d, _ = _dispatcher(make_response(status, {"event_trigger": {"prompt": "ignored"}}))
    result = d.send(_fg_event(), IDENT)
    assert result.trigger is None
    assert result.error is DispatchError.BAD_STATUS
    assert result.status == status


def test_malformed_body():
    d, _ = _dispatcher(make_response(200, raw=b"<html>oops</html>"))
    result = d.send(_fg_event(), IDENT)
    assert result.trigger is None
    assert result.error is DispatchError.MALFORMED_RESPONSE
    assert isinstance(result.exception, MalformedResponse)


def test_transport_failure_is_not_retried():
    d, s = _dispatcher(requests.ConnectionError("refused"), make_response(200, {"prompt": "x"}))
    result = d.send(_fg_event(), IDENT)
    assert result.error is DispatchError.NETWORK_FAILURE
    assert isinstance(result.exception, NetworkFailure)
    assert len(s.calls) == 1


def test_missing_identity_skips_http():
    d, s = _dispatcher()
    result = d.send(_fg_event(), None)
    assert result.error is DispatchError.STALE_CREDENTIALS
    assert isinstance(result.exception, StaleCredentials)
    assert s.calls == []


def test_travel_mode_trigger():
    body = {"is_travel_mode": True, "city_name": "Goa", "tips": "Try the beaches", "tips_audio_url": "https://a/x.mp3"}
    d, s = _dispatcher(make_response(200, body))
    ev = OutboundEvent("dev-1", EventType.TRAVEL_CHECK, {"lat": 15.3, "lon": 74.1})
    result = d.send(ev, IDENT)

    assert s.calls[0]["url"] == f"{BASE}/event/check-travel"
    assert s.calls[0]["json"] == {"lat": 15.3, "lon": 74.1, "device_id": "dev-1"}
    t = result.trigger
    assert (t.city, t.tips, t.text, t.audio_url) == ("Goa", "Try the beaches", "Try the beaches", "https://a/x.mp3")
    assert t.emoji == "📍 Goa"


def test_travel_mode_defaults_city_and_requires_tips():
    d, _ = _dispatcher(
        make_response(200, {"is_travel_mode": True, "tips": "Carry water"}),
        make_response(200, {"is_travel_mode": True, "city_name": "Pune", "tips": ""}),
        make_response(200, {"is_travel_mode": False, "city_name": "Pune", "tips": "x"}),
    )
    assert d.check_travel(1.0, 2.0, IDENT).trigger.emoji == "📍 Unknown"
    assert d.check_travel(1.0, 2.0, IDENT).trigger is None
    assert d.check_travel(1.0, 2.0, IDENT).trigger is None


def test_check_nudge():
    d, s = _dispatcher(make_response(200, {"text": "Drink water"}), make_response(200, {"text": ""}))
    t = d.check_nudge(IDENT).trigger
    assert s.calls[0]["method"] == "GET"
    assert s.calls[0]["params"] == {"device_id": "dev-1"}
    assert (t.text, t.emoji, t.lang) == ("Drink water", "💡", "en")
    assert d.check_nudge(IDENT).trigger is None


def test_wakeword_event_has_no_endpoint():
    d, s = _dispatcher()
    result = d.send(OutboundEvent("dev-1", EventType.WAKEWORD, {"confidence": 0.9}), IDENT)
    assert result.ok and result.trigger is None
    assert s.calls == []


def test_list_sos_contacts():
    d, s = _dispatcher(
        make_response(200, {"contacts": [{"phone": "+911"}, {"name": "no phone"}, {"phone": " +912 "}]}),
        make_response(500),
    )
    assert d.list_sos_contacts(IDENT) == ["+911", "+912"]
    assert s.calls[0]["json"] == {"device_id": "dev-1"}
    assert d.list_sos_contacts(IDENT) == []


def test_update_fcm_token():
    d, s = _dispatcher(make_response(200, {"ok": True}), make_response(200), make_response(401))
    assert d.update_fcm_token(IDENT, "fcm-xyz") is True
    assert s.calls[0]["url"] == f"{BASE}/user/update-fcm-token"
    assert s.calls[0]["json"] == {"device_id": "dev-1", "fcm_token": "fcm-xyz"}
    assert d.update_fcm_token(IDENT, "fcm-xyz") is True     # 2xx 空响应体
    assert d.update_fcm_token(IDENT, "fcm-xyz") is False
    assert d.update_fcm_token(None, "fcm-xyz") is False


class VerbRecordingDispatcher(EventDispatcher):
    def __init__(self, *responses):
        super().__init__(BASE, session=FakeSession(*responses))
        self.verbs = []

    def get(self, path, *, params=None, headers=None):
        self.verbs.append(("get", path))
        return super().get(path, params=params, headers=headers)

    def post_json(self, path, payload, *, headers=None):
        self.verbs.append(("post_json", path))
        return super().post_json(path, payload, headers=headers)


def test_endpoints_go_through_client_verbs():
    d = VerbRecordingDispatcher(make_response(200, {"text": "Drink water"}), make_response(200, {}))
    d.check_nudge(IDENT)
    d.send(_fg_event(), IDENT)
    assert d.verbs == [("get", "/event/check-nudge"), ("post_json", "/event/push-mobile")]
    assert d.session.calls[1]["headers"]["Authorization"] == "Bearer tok-1"
