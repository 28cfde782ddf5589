import json
import logging

from commons.base_logger import BaseLogger, mask_secrets


class _Capture(logging.Handler):
    def __init__(self):
        super().__init__()
        self.lines = []

    def emit(self, record):
        self.lines.append(record.getMessage())


def test_mask_secrets():
    assert mask_secrets("Authorization: Bearer abc.def") == "Authorization: Bearer ***"
    assert mask_secrets("{'auth_token': 'tok-1', 'x': 1}") == "{'auth_token': '***', 'x': 1}"
    assert mask_secrets("device_id=dev-1") == "device_id=dev-1"


def test_logger_namespace_and_structured_event():
    log = BaseLogger(name="EventTest", level="DEBUG")
    assert log.logger.name == "neura.EventTest"
    cap = _Capture()
    log.logger.addHandler(cap)
    try:
        log.log_event("handler_failed", kind="nudge", err=ValueError("boom"))
    finally:
        log.logger.removeHandler(cap)
    assert json.loads(cap.lines[0]) == {
        "level": "error", "event": "handler_failed", "kind": "nudge", "err": "boom",
    }


def test_default_name_is_caller_class():
    class LocationWatcher:
        def __init__(self):
            self.log = BaseLogger()

    assert LocationWatcher().log.logger.name == "neura.LocationWatcher"
