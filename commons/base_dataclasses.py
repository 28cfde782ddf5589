# -*- coding: utf-8 -*-
"""
BaseDataClass
-------------
为 dataclass 子类提供统一的构造/清洗/校验与序列化能力，
用于解析后端 JSON 响应与推送消息（扁平字符串 map）。
流程：字段映射 -> 默认值合并 -> 字段转换 -> 行级校验 -> 构造实例 -> 序列化。

使用建议：
- 子类必须使用 @dataclass 装饰。
- DEFAULTS 中的可变对象请使用 lambda 返回，或依赖本类的 deepcopy 保护。
- CONVERTERS 建议为纯函数。
- VALIDATORS 只抛错不改值。
"""
from __future__ import annotations

import copy
import json
import logging
import dataclasses
from enum import Enum
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    Iterable,
    List,
    Mapping,
    Type,
    TypeVar,
)
from collections.abc import Iterable as _IterableABC

from commons.base_logger import BaseLogger

_DEFAULT_LOGGER = BaseLogger(name="BaseDataClass").logger

T = TypeVar("T", bound="BaseDataClass")
Converter = Callable[[Any], Any]
RowValidator = Callable[[Dict[str, Any]], None]


def json_default(o: Any) -> Any:
    """json.dumps 兜底：Enum 取 value，其它转字符串。"""
    if isinstance(o, Enum):
        return o.value
    return str(o)


class BaseDataClass:
    """dataclass 子类的通用基类：构造、清洗、校验、序列化。

    子类可配置以下类变量：
    - DEFAULTS: 字段默认值；值为 callable 时在每次构造时调用。
    - FIELD_MAPPING: 外部字段名 -> 内部字段名（如 "tips_audio_url" -> "audio_url"）。
    - CONVERTERS: 字段级转换器；在默认值合并后、校验前执行。
    - VALIDATORS: 行级校验器；抛出异常即视为校验失败。
    - LOGGER: 日志器。

    典型用法：
        @dataclasses.dataclass
        class Nudge(BaseDataClass):
            text: str
            emoji: str | None = None

        Nudge.FIELD_MAPPING = {"nudge_text": "text"}
        n = Nudge.from_dict({"nudge_text": "Drink water", "emoji": "💧"})
    """

    DEFAULTS: ClassVar[Dict[str, Any]] = {}
    FIELD_MAPPING: ClassVar[Dict[str, str]] = {}
    CONVERTERS: ClassVar[Dict[str, Converter]] = {}
    VALIDATORS: ClassVar[List[RowValidator]] = []
    LOGGER: ClassVar[logging.Logger] = _DEFAULT_LOGGER

    @classmethod
    def _logger(cls) -> logging.Logger:
        return getattr(cls, "LOGGER", _DEFAULT_LOGGER) or _DEFAULT_LOGGER

    # ---------------- 构造（单行） ----------------
    @classmethod
    def from_dict(
        cls: Type[T],
        data: Mapping[str, Any],
        *,
        strict: bool = False,
        log_errors: bool = True,
    ) -> T:
        """从单个字典构造实例：映射 -> 默认 -> 转换 -> 校验 -> 构造。

        参数：
            data: 外部输入（Mapping）。若非 Mapping：
                  - strict=True 则 TypeError；
                  - 否则降级为空 dict，并记录警告。
            strict: True 则转换异常直接抛出；False 则记录日志并保留原值。
        校验器与构造失败始终向上抛出，由调用方决定如何降级。
        """
        logger = cls._logger()

        if not isinstance(data, Mapping):
            msg = f"from_dict expects Mapping, got {type(data).__name__}"
            if strict:
                raise TypeError(msg)
            if log_errors:
                logger.warning(msg)
            data = {}

        try:
            dc_names = {f.name for f in dataclasses.fields(cls)}
        except TypeError:
            raise TypeError(f"{cls.__name__} must be a dataclass")

        # 1) 字段映射；同一内部字段被多个外键命中时，先出现者优先
        mapped: Dict[str, Any] = {}
        for ext_key, val in data.items():
            internal = cls.FIELD_MAPPING.get(ext_key, ext_key)
            if internal not in dc_names:
                continue
            if internal in mapped and mapped[internal] not in (None, ""):
                continue
            mapped[internal] = val

        # 2) 默认值展开
        defaults_expanded: Dict[str, Any] = {}
        for k, v in cls.DEFAULTS.items():
            defaults_expanded[k] = v() if callable(v) else copy.deepcopy(v)

        combined: Dict[str, Any] = {**defaults_expanded, **mapped}

        # 3) 字段级转换
        for key, fn in cls.CONVERTERS.items():
            if key in combined:
                try:
                    combined[key] = fn(combined[key])
                except Exception as e:
                    if strict:
                        raise
                    if log_errors:
                        logger.warning(
                            "field convert failed %s (%s): %s; value=%r",
                            key, type(e).__name__, e, str(combined.get(key))[:120],
                        )

        # 转换后为 None 的字段回落到默认值
        for k, v in defaults_expanded.items():
            if combined.get(k) is None:
                combined[k] = v

        # 4) 行级校验
        for validate in cls.VALIDATORS:
            try:
                validate(combined)
            except Exception as e:
                if log_errors:
                    vname = getattr(validate, "__name__", repr(validate))
                    logger.warning("row validation failed (%s): %s; row=%r", vname, e, str(combined)[:200])
                raise

        # 5) 构造 dataclass 实例
        slim = {k: v for k, v in combined.items() if k in dc_names}
        try:
            return cls(**slim)  # type: ignore[arg-type]
        except TypeError as e:
            if log_errors:
                missing = [f.name for f in dataclasses.fields(cls) if f.name not in slim]
                logger.warning("construct %s failed: %s; missing=%r", cls.__name__, e, missing)
            raise

    # ---------------- 批量构造 ----------------
    @classmethod
    def from_list(
        cls: Type[T],
        data_list: Iterable[Mapping[str, Any]],
        *,
        strict: bool = False,
        log_errors: bool = True,
    ) -> List[T]:
        """批量构造；非严格模式下单条失败将被跳过并记录日志。"""
        logger = cls._logger()

        if not isinstance(data_list, _IterableABC) or isinstance(data_list, (str, bytes)):
            raise TypeError("from_list expects Iterable[Mapping], not str/bytes")

        out: List[T] = []
        for idx, item in enumerate(data_list, start=1):
            if not isinstance(item, Mapping):
                if strict:
                    raise TypeError(f"item must be Mapping, got {type(item).__name__}")
                if log_errors:
                    logger.warning("skip non-mapping item #%d: %r", idx, item)
                continue
            try:
                out.append(cls.from_dict(item, strict=strict, log_errors=log_errors))
            except Exception as e:
                if strict:
                    raise
                if log_errors:
                    logger.warning("from_list skip item #%d: %s", idx, e)
        return out

    # ---------------- 序列化 ----------------
    def to_dict(self, *, drop_none: bool = False) -> Dict[str, Any]:
        """导出为 dict；drop_none=True 递归剔除 None。"""
        if not dataclasses.is_dataclass(self):
            raise TypeError(f"{type(self).__name__} is not a dataclass")
        d = dataclasses.asdict(self)
        if not drop_none:
            return d

        def _strip_none(obj: Any) -> Any:
            if isinstance(obj, dict):
                return {k: _strip_none(v) for k, v in obj.items() if v is not None}
            if isinstance(obj, list):
                return [_strip_none(x) for x in obj if x is not None]
            return obj

        return _strip_none(d)

    def to_json(self, *, ensure_ascii: bool = False, drop_none: bool = False) -> str:
        return json.dumps(
            self.to_dict(drop_none=drop_none),
            ensure_ascii=ensure_ascii,
            default=json_default,
        )
