# pipeline/dispatcher.py
"""
EventDispatcher
---------------
后端事件发送器（同步，requests 实现；异步调用方通过 asyncio.to_thread 包装）：
- 不自动重试：失败即丢弃，由下一个采样周期兜底
- 非 2xx 不抛异常，结果中无触发
- 响应体无法解析 → MALFORMED_RESPONSE，结果中无触发
- 传输层异常 → NETWORK_FAILURE
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

import requests
from requests import Response

from commons.base_client import BaseClient
from commons.base_logger import BaseLogger
from commons.normalizers import strip_or_none, to_bool_or_none
from mydataclass.identity import DeviceIdentity
from mydataclass.outbound_event import EventType, OutboundEvent
from mydataclass.trigger_result import TriggerResult
from pipeline.errors import (
    DispatchError,
    MalformedResponse,
    NetworkFailure,
    PipelineError,
    StaleCredentials,
)
from tools.request_utils import normalized_params

PUSH_MOBILE_PATH = "/event/push-mobile"
CHECK_TRAVEL_PATH = "/event/check-travel"
CHECK_NUDGE_PATH = "/event/check-nudge"
LIST_SOS_CONTACTS_PATH = "/safety/list-sos-contacts"
UPDATE_FCM_TOKEN_PATH = "/user/update-fcm-token"


@dataclass(frozen=True)
class DispatchResult:
    trigger: Optional[TriggerResult] = None
    error: Optional[DispatchError] = None
    status: Optional[int] = None
    exception: Optional[PipelineError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class EventDispatcher(BaseClient):
    """把 OutboundEvent 发往后端并解析出可选的 TriggerResult。"""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: Tuple[float, float] = (15.0, 15.0),
        logger: Optional[BaseLogger] = None,
        session: Optional[requests.Session] = None,
    ):
        super().__init__(
            base_url,
            timeout=timeout,
            max_retries=0,
            logger=logger or BaseLogger(name="EventDispatcher"),
            session=session,
        )

    # ---------------- 内部工具 ----------------

    def _call(
        self,
        method: str,
        path: str,
        identity: Optional[DeviceIdentity],
        *,
        params: Optional[Mapping[str, Any]] = None,
        payload: Optional[Any] = None,
    ) -> Tuple[Optional[Any], DispatchResult]:
        """
        统一调用：返回 (json_body, result)。
        json_body 仅在 2xx 且解析成功时非 None；result 记录错误与状态码。
        """
        if identity is None:
            exc = StaleCredentials("device_id or auth_token missing")
            self.logger.log_warning(f"[Dispatch] skip {path}: {exc}")
            return None, DispatchResult(error=DispatchError.STALE_CREDENTIALS, exception=exc)

        try:
            headers = self.bearer(identity.auth_token)
            if method == "GET":
                resp: Response = self.get(path, params=params, headers=headers)
            else:
                resp = self.post_json(path, payload, headers=headers)
        except requests.RequestException as e:
            return None, DispatchResult(
                error=DispatchError.NETWORK_FAILURE,
                exception=NetworkFailure(f"{method} {path}: {type(e).__name__}: {e}"),
            )

        if not resp.ok:
            return None, DispatchResult(error=DispatchError.BAD_STATUS, status=resp.status_code)

        try:
            body = resp.json()
        except ValueError as e:
            self.logger.log_warning(f"[Dispatch] malformed body {path} status={resp.status_code}: {e}")
            return None, DispatchResult(
                error=DispatchError.MALFORMED_RESPONSE,
                status=resp.status_code,
                exception=MalformedResponse(str(e)),
            )
        return body, DispatchResult(status=resp.status_code)

    @staticmethod
    def _malformed(result: DispatchResult, reason: str) -> DispatchResult:
        return DispatchResult(
            error=DispatchError.MALFORMED_RESPONSE,
            status=result.status,
            exception=MalformedResponse(reason),
        )

    # ---------------- 事件发送 ----------------

    def send(self, event: OutboundEvent, identity: Optional[DeviceIdentity], lang: str = "en") -> DispatchResult:
        """按事件类型路由到对应端点；wakeword 没有后端端点，直接返回空结果。"""
        if event.event_type is EventType.TRAVEL_CHECK:
            return self.check_travel(event.metadata["lat"], event.metadata["lon"], identity)
        if event.event_type is EventType.WAKEWORD:
            return DispatchResult()
        return self.push_mobile(event, identity, lang=lang)

    def push_mobile(self, event: OutboundEvent, identity: Optional[DeviceIdentity], lang: str = "en") -> DispatchResult:
        body, result = self._call("POST", PUSH_MOBILE_PATH, identity, payload=event.to_payload())
        if body is None:
            return result
        if not isinstance(body, dict):
            return self._malformed(result, f"expected object, got {type(body).__name__}")

        # 优先嵌套的 event_trigger {text|prompt, emoji, lang}，其次顶层 prompt/text
        trigger = None
        event_trigger = body.get("event_trigger")
        if isinstance(event_trigger, dict):
            trigger = TriggerResult.from_event_trigger(event_trigger, lang=lang or "en")
        if trigger is None:
            fallback = {"prompt": body.get("prompt"), "text": body.get("text")}
            trigger = TriggerResult.from_event_trigger(fallback, lang=lang or "en")
        if trigger:
            self.logger.log_info(f"[Dispatch] {event.event_type.value} -> trigger")
        return DispatchResult(trigger=trigger, status=result.status)

    def check_travel(self, lat: float, lon: float, identity: Optional[DeviceIdentity]) -> DispatchResult:
        payload = {"lat": lat, "lon": lon, "device_id": identity.device_id if identity else None}
        body, result = self._call("POST", CHECK_TRAVEL_PATH, identity, payload=payload)
        if body is None:
            return result
        if not isinstance(body, dict):
            return self._malformed(result, f"expected object, got {type(body).__name__}")
        if not to_bool_or_none(body.get("is_travel_mode")):
            return result
        trigger = TriggerResult.travel_tip(body.get("city_name"), body.get("tips"), body.get("tips_audio_url"))
        if trigger:
            self.logger.log_info(f"[Dispatch] travel mode city={trigger.city}")
        return DispatchResult(trigger=trigger, status=result.status)

    def check_nudge(self, identity: Optional[DeviceIdentity]) -> DispatchResult:
        params = normalized_params({"device_id": identity.device_id if identity else None})
        body, result = self._call("GET", CHECK_NUDGE_PATH, identity, params=params)
        if body is None:
            return result
        if not isinstance(body, dict):
            return self._malformed(result, f"expected object, got {type(body).__name__}")
        trigger = TriggerResult.nudge(body.get("text"), body.get("emoji"), body.get("lang"))
        return DispatchResult(trigger=trigger, status=result.status)

    # ---------------- 其它端点 ----------------

    def list_sos_contacts(self, identity: Optional[DeviceIdentity]) -> List[str]:
        """返回紧急联系人电话列表；任何失败返回空列表。"""
        payload = {"device_id": identity.device_id} if identity else None
        body, result = self._call("POST", LIST_SOS_CONTACTS_PATH, identity, payload=payload)
        if body is None:
            self.logger.log_warning(f"[SOS] contacts fetch failed: {result.error}")
            return []
        contacts = body.get("contacts") if isinstance(body, dict) else body
        if not isinstance(contacts, list):
            self.logger.log_warning("[SOS] contacts missing in response")
            return []
        phones: List[str] = []
        for c in contacts:
            phone = strip_or_none(c.get("phone")) if isinstance(c, dict) else strip_or_none(c)
            if phone:
                phones.append(phone)
        return phones

    def update_fcm_token(self, identity: Optional[DeviceIdentity], token: str) -> bool:
        payload: Dict[str, Any] = {"device_id": identity.device_id if identity else None, "fcm_token": token}
        _, result = self._call("POST", UPDATE_FCM_TOKEN_PATH, identity, payload=payload)
        if result.error is DispatchError.MALFORMED_RESPONSE:
            # 2xx 但响应体为空也算成功
            return True
        if not result.ok:
            self.logger.log_warning(f"[FCM] token update failed: {result.error} status={result.status}")
            return False
        self.logger.log_info("[FCM] token updated")
        return True
