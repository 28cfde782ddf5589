# pipeline/errors.py
"""流水线异常体系：任何失败都降级为“跳过本周期”，不会让进程退出。"""
from __future__ import annotations

from enum import Enum


class PipelineError(Exception):
    """所有流水线异常的基类。"""


class PermissionDenied(PipelineError):
    """平台权限缺失（定位、使用情况访问、麦克风等）。采样器将其视为“无信号”。"""


class StaleCredentials(PipelineError):
    """device_id 或 auth_token 缺失；本周期不调用后端。"""


class NetworkFailure(PipelineError):
    """传输层失败（超时 / DNS / 连接被拒）。不重试，由下个周期兜底。"""


class MalformedResponse(PipelineError):
    """后端响应体无法解析为预期 JSON。"""


class ModelUnavailable(PipelineError):
    """唤醒词模型文件或推理运行时不可用；该信号类型在重启前保持禁用。"""


class DispatchError(str, Enum):
    """DispatchResult.error 的取值。"""
    STALE_CREDENTIALS = "stale_credentials"
    NETWORK_FAILURE = "network_failure"
    MALFORMED_RESPONSE = "malformed_response"
    BAD_STATUS = "bad_status"
