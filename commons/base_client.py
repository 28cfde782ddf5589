# commons/base_client.py
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

import requests
from requests import Response, Session
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from commons.base_logger import BaseLogger
from tools.request_utils import join_url


class BaseClient:
    """
    后端 HTTP 客户端基类：
    - 统一 _request，get/post_json 是薄封装
    - Bearer 鉴权头按请求注入，不污染 session 全局 headers
    - 超时统一 (connect, read)；重试次数可配（默认 0：失败即丢弃，由下个周期兜底）
    - 非 2xx 不抛异常，原样返回 Response 交给子类判断
    - 传输层异常（超时/DNS/拒绝连接）经 on_error 记录后向上抛出 requests.RequestException
    """

    RETRY_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
    RETRY_STATUS = (408, 429, 500, 502, 503, 504)

    def __init__(
        self,
        base_url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        timeout: float | tuple[float, float] = (15.0, 15.0),
        max_retries: int = 0,
        backoff_factor: float = 0.5,
        logger: Optional[BaseLogger] = None,
        session: Optional[Session] = None,
    ):
        self.logger = logger or BaseLogger(name=self.__class__.__name__)
        self.base_url = base_url
        self._base_headers: Dict[str, str] = {"Accept": "application/json", **dict(headers or {})}
        self.timeout = timeout
        self.max_retries = int(max_retries)
        self.backoff_factor = float(backoff_factor)
        self.session: Session = session if session is not None else self._create_session()

    # --------------------- Session / Retry ---------------------

    def _create_session(self) -> Session:
        """创建 Session；max_retries=0 时 adapter 不做任何重试。"""
        s = requests.Session()
        retry = Retry(
            total=self.max_retries,
            connect=self.max_retries,
            read=self.max_retries,
            status=self.max_retries,
            backoff_factor=self.backoff_factor,
            status_forcelist=self.RETRY_STATUS,
            allowed_methods=self.RETRY_METHODS,
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry, pool_connections=10, pool_maxsize=10)
        s.mount("http://", adapter)
        s.mount("https://", adapter)
        return s

    # --------------------- 钩子（子类可覆写） ---------------------

    def on_error(self, exc: Exception, url: str, method: str) -> None:
        """子类可覆写：传输层错误处理。"""
        self.logger.log_warning(f"{method} {url} failed: {type(exc).__name__}: {exc}")

    # --------------------- 统一请求入口 ---------------------

    @staticmethod
    def bearer(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Mapping[str, str]] = None,
        timeout: Optional[float | tuple[float, float]] = None,
    ) -> Response:
        url = join_url(self.base_url, path)
        req_headers: Dict[str, str] = dict(self._base_headers)
        if headers:
            req_headers.update(headers)

        # 不打印 Authorization，避免 token 进日志
        self.logger.log_debug(
            f"REQUEST {method.upper()} {url} | params={params} json={'set' if json is not None else 'none'}"
        )

        try:
            resp = self.session.request(
                method=method.upper(),
                url=url,
                params=params,
                json=json,
                headers=req_headers,
                timeout=timeout or self.timeout,
            )
        except requests.RequestException as e:
            self.on_error(e, url, method.upper())
            raise

        if not resp.ok:
            self.logger.log_warning(f"BAD_STATUS {method.upper()} {url} -> {resp.status_code}")
        return resp

    # --------------------- 对外方法 ---------------------

    def get(
        self,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Response:
        return self._request("GET", path, params=params, headers=headers)

    def post_json(
        self,
        path: str,
        payload: Any,
        *,
        headers: Optional[Mapping[str, str]] = None,
    ) -> Response:
        return self._request("POST", path, json=payload, headers=headers)

    # --------------------- 资源管理 ---------------------

    def close(self) -> None:
        """显式关闭底层 Session 连接池。"""
        try:
            self.session.close()
        except Exception as e:
            self.logger.log_debug(f"session close error: {e}")
