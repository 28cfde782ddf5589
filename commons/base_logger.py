import inspect
import json
import logging
import os
import re
from logging.handlers import TimedRotatingFileHandler
from typing import Any

# 全局默认级别/目录，可通过环境变量覆盖
DEFAULT_LEVEL = os.getenv("NEURA_LOG_LEVEL", "INFO").upper()
DEFAULT_LOG_DIR = os.getenv("NEURA_LOG_DIR", "")

# Bearer token / auth_token 字段在日志中一律打码
_SECRET_RE = re.compile(r"(Bearer\s+|auth_token['\"]?\s*[:=]\s*['\"]?)([^\s'\",}]+)", re.IGNORECASE)


def mask_secrets(message: str) -> str:
    return _SECRET_RE.sub(lambda m: f"{m.group(1)}***", message)


class _MaskingFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return mask_secrets(super().format(record))


class BaseLogger:
    """
    流水线日志封装：
    - logger 统一挂在 neura.* 命名空间下，名称默认取调用者类名
    - 控制台输出；可选按天轮转的文件输出（默认只写 ERROR）
    - 格式含时间、文件名、函数、线程；token 自动打码
    - log_event() 输出单行 JSON，供 handler / 推送路由失败等结构化事件使用
    """

    NAMESPACE = "neura"
    FORMAT = (
        "%(asctime)s | %(name)s | %(levelname)s | "
        "[%(filename)s:%(lineno)d %(funcName)s] | %(threadName)s | %(message)s"
    )

    def __init__(
        self,
        name: str | None = None,
        level: int | str | None = None,
        to_file: bool = False,
        file_path: str | None = None,
        file_level: int = logging.ERROR,
    ):
        """
        :param name: logger 名称（默认取调用者类名）
        :param level: 控制台日志级别（默认读 NEURA_LOG_LEVEL，缺省 INFO）
        :param to_file: 是否启用文件日志（NEURA_LOG_DIR 或 <项目根>/logs）
        :param file_level: 文件日志的最低级别
        """
        name = name or self._get_caller_class_name() or self.__class__.__name__
        level = level if level is not None else DEFAULT_LEVEL

        self.logger = logging.getLogger(f"{self.NAMESPACE}.{name}")
        self.logger.setLevel(level)
        self.logger.propagate = False

        if self.logger.handlers:
            return
        formatter = _MaskingFormatter(self.FORMAT)

        ch = logging.StreamHandler()
        ch.setLevel(level)
        ch.setFormatter(formatter)
        self.logger.addHandler(ch)

        if to_file:
            fh = TimedRotatingFileHandler(
                filename=file_path or self._default_file(name),
                when="midnight",
                backupCount=7,
                encoding="utf-8",
            )
            fh.setLevel(file_level)
            fh.setFormatter(formatter)
            self.logger.addHandler(fh)

    @staticmethod
    def _default_file(name: str) -> str:
        log_dir = DEFAULT_LOG_DIR or os.path.join(
            os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "logs"
        )
        os.makedirs(log_dir, exist_ok=True)
        return os.path.join(log_dir, f"{name}.log")

    def _get_caller_class_name(self) -> str | None:
        """取调用栈上第一个非 BaseLogger 的 self 的类名，如 LocationSampler。"""
        for frame_record in inspect.stack():
            instance = frame_record.frame.f_locals.get("self")
            if instance and instance.__class__ != self.__class__:
                return instance.__class__.__name__
        return None

    # ------------------ 对外日志接口 ------------------

    def log_info(self, message: str, exc_info: bool = False):
        self.logger.info(message, exc_info=exc_info)

    def log_warning(self, message: str, exc_info: bool = False):
        self.logger.warning(message, exc_info=exc_info)

    def log_error(self, message: str, exc_info: bool = True):
        """记录 ERROR 日志（默认包含异常堆栈）"""
        self.logger.error(message, exc_info=exc_info)

    def log_debug(self, message: str, exc_info: bool = False):
        self.logger.debug(message, exc_info=exc_info)

    def log_event(self, event: str, level: int = logging.ERROR, **fields: Any) -> None:
        """结构化事件：{"level": .., "event": .., **fields}，非 JSON 值转字符串。"""
        payload = {"level": logging.getLevelName(level).lower(), "event": event, **fields}
        self.logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
