# pipeline/samplers/wakeword.py
"""
唤醒词检测：
- 每帧 1 秒（16 kHz 下 16000 个采样点），逐帧送入分类器
- 分数 > 阈值 且 距上次触发超过冷却时间 → 触发
- 一次激活只触发一次（one-shot），之后需重新 activate
- 模型文件或推理运行时缺失 → ModelUnavailable，该信号类型在重启前禁用
"""
from __future__ import annotations

import asyncio
import math
import os
import time
from typing import Any, Callable, Optional

import numpy as np

from commons.base_logger import BaseLogger
from mydataclass.signals import SignalKind, WakewordScore, now_ms
from pipeline.errors import ModelUnavailable, PermissionDenied
from pipeline.samplers.base import BaseSampler
from pipeline.samplers.protocols import AudioSource, WakewordClassifier
from tools.config_loader import PROJECT_ROOT


class TfliteWakewordClassifier:
    """TensorFlow Lite 解释器封装；tensorflow 延迟导入，未安装时 load() 抛 ModelUnavailable。"""

    def __init__(self, model_path: str, logger: Optional[BaseLogger] = None):
        if not os.path.isabs(model_path):
            model_path = os.path.join(PROJECT_ROOT, model_path)
        self.model_path = model_path
        self.logger = logger or BaseLogger(name="TfliteWakewordClassifier")
        self._interpreter: Any = None
        self._input: Optional[dict] = None
        self._output: Optional[dict] = None

    @property
    def loaded(self) -> bool:
        return self._interpreter is not None

    def load(self) -> None:
        if self.loaded:
            return
        if not os.path.exists(self.model_path):
            raise ModelUnavailable(f"wakeword model not found: {self.model_path}")
        try:
            import tensorflow as tf  # type: ignore
        except ImportError as e:
            raise ModelUnavailable("tensorflow is not installed (pip install .[wakeword])") from e

        interpreter = tf.lite.Interpreter(model_path=self.model_path)
        interpreter.allocate_tensors()
        self._input = interpreter.get_input_details()[0]
        self._output = interpreter.get_output_details()[0]
        self._interpreter = interpreter
        self.logger.log_info(f"wakeword model loaded: {self.model_path} input={self._input['shape']}")

    def _prepare(self, frame: np.ndarray) -> np.ndarray:
        assert self._input is not None
        dtype = self._input["dtype"]
        x = np.asarray(frame)
        if np.issubdtype(dtype, np.floating) and x.dtype == np.int16:
            x = x.astype(np.float32) / 32768.0
        x = x.astype(dtype, copy=False)
        return x.reshape(self._input["shape"])

    def score(self, frame: np.ndarray) -> float:
        if not self.loaded:
            raise ModelUnavailable("wakeword model not loaded")
        self._interpreter.set_tensor(self._input["index"], self._prepare(frame))
        self._interpreter.invoke()
        out = self._interpreter.get_tensor(self._output["index"])
        return float(np.asarray(out).reshape(-1)[0])


class WakewordSampler(BaseSampler[WakewordScore]):
    """麦克风帧 → 分类器分数 → 阈值 + 冷却判断。"""

    kind = SignalKind.WAKEWORD

    def __init__(
        self,
        audio: AudioSource,
        classifier: WakewordClassifier,
        *,
        threshold: float = 0.8,
        cooldown_sec: float = 4.0,
        sample_rate: int = 16000,
        inference_delay_sec: float = 0.1,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[BaseLogger] = None,
    ):
        super().__init__(logger)
        self.audio = audio
        self.classifier = classifier
        self.threshold = threshold
        self.cooldown_sec = cooldown_sec
        self.frame_size = sample_rate       # 1 秒一帧
        self.inference_delay_sec = inference_delay_sec
        self.clock = clock
        self._last_emit = -math.inf

    def activate(self) -> None:
        """加载模型；失败抛 ModelUnavailable（由 controller 禁用该类型）。"""
        self.classifier.load()

    def feed(self, frame: np.ndarray, now: Optional[float] = None) -> Optional[WakewordScore]:
        """送入一帧；满足阈值与冷却条件时返回 WakewordScore。"""
        score = self.classifier.score(frame)
        now = self.clock() if now is None else now
        if score > self.threshold and now - self._last_emit > self.cooldown_sec:
            self._last_emit = now
            self.logger.log_info(f"Wakeword detected: score={score:.3f}")
            return WakewordScore(confidence=score, timestamp_ms=now_ms())
        return None

    def _read(self) -> Optional[WakewordScore]:
        """读一帧并推理（工作线程内执行）；音源暂无数据时返回 None。"""
        frame = self.audio.read_frame(self.frame_size)
        if frame is None:
            return None
        return self.feed(frame)

    async def run_once(self, stop: Optional[asyncio.Event] = None) -> Optional[WakewordScore]:
        """
        持续推理直到第一次触发（one-shot）。
        stop 被置位或麦克风权限缺失时返回 None。
        """
        while stop is None or not stop.is_set():
            try:
                hit = await asyncio.to_thread(self._read)
            except PermissionDenied as e:
                self.logger.log_warning(f"[wakeword] microphone unavailable: {e}")
                return None
            except ModelUnavailable:
                raise
            except Exception as e:
                self.logger.log_error(f"[wakeword] inference failed: {type(e).__name__}: {e}")
                hit = None
            if hit is not None:
                return hit
            await asyncio.sleep(self.inference_delay_sec)
        return None
