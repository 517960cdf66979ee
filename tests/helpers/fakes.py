# tests/helpers/fakes.py
"""测试用的平台运行时与本地推理后端替身。"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

from enrich_hub.platform import (
    DETECTOR_MODEL_ID,
    SUMMARIZER_MODEL_ID,
    Available,
    DownloadCallback,
    Downloadable,
    PlatformCapability,
    SummarizerOptions,
    Unavailable,
    translator_model_id,
)
from enrich_hub.worker import ProgressHandler, WorkerProgress


class FakeTranslator:
    def __init__(self, translate_fn: Callable[[str], str]):
        self.translate_fn = translate_fn
        self.calls: list[str] = []
        self.destroyed = False

    async def translate(self, text: str) -> str:
        self.calls.append(text)
        return self.translate_fn(text)

    def destroy(self) -> None:
        self.destroyed = True


class FakeSummarizer:
    def __init__(self, summary: str):
        self.summary = summary
        self.calls: list[str] = []
        self.destroyed = False

    async def summarize(self, text: str) -> str:
        self.calls.append(text)
        return self.summary

    def destroy(self) -> None:
        self.destroyed = True


class FakeDetector:
    def __init__(self, results: list[tuple[str, float]]):
        self.results = results

    async def detect(self, text: str) -> list[tuple[str, float]]:
        return self.results


class FakePlatformRuntime:
    """一个可编程的设备端运行时。"""

    def __init__(
        self,
        *,
        translator: PlatformCapability | None = None,
        summarizer: PlatformCapability | None = None,
        detector: PlatformCapability | None = None,
        detections: list[tuple[str, float]] | None = None,
        translate_fn: Callable[[str], str] | None = None,
        summary: str = "Resumen breve del artículo.",
        download_steps: tuple[float, ...] = (),
        honor_evict: bool = True,
        create_error: Exception | None = None,
    ):
        self.translator_state = translator if translator is not None else Available()
        self.summarizer_state = summarizer if summarizer is not None else Available()
        self.detector_state = (
            detector if detector is not None else Unavailable(reason="no detector")
        )
        self.detections = detections or []
        self.translate_fn = translate_fn or (lambda text: f"ES[{text}]")
        self.summary = summary
        self.download_steps = download_steps
        self.honor_evict = honor_evict
        self.create_error = create_error
        self.translators: list[FakeTranslator] = []
        self.summarizers: list[FakeSummarizer] = []
        self.summarizer_options: list[SummarizerOptions] = []
        self.evicted: list[str] = []

    def _state(self, model_id: str, state: PlatformCapability) -> PlatformCapability:
        if self.honor_evict and model_id in self.evicted:
            return Downloadable()
        return state

    async def translator_availability(
        self, source_lang: str, target_lang: str
    ) -> PlatformCapability:
        return self._state(
            translator_model_id(source_lang, target_lang), self.translator_state
        )

    async def create_translator(
        self,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None = None,
    ) -> FakeTranslator:
        if self.create_error is not None:
            raise self.create_error
        for pct in self.download_steps:
            if on_download is not None:
                on_download(pct)
        translator = FakeTranslator(self.translate_fn)
        self.translators.append(translator)
        return translator

    async def detector_availability(self) -> PlatformCapability:
        return self._state(DETECTOR_MODEL_ID, self.detector_state)

    async def create_detector(self) -> FakeDetector:
        return FakeDetector(self.detections)

    async def summarizer_availability(
        self, options: SummarizerOptions
    ) -> PlatformCapability:
        return self._state(SUMMARIZER_MODEL_ID, self.summarizer_state)

    async def create_summarizer(
        self,
        options: SummarizerOptions,
        on_download: DownloadCallback | None = None,
    ) -> FakeSummarizer:
        if self.create_error is not None:
            raise self.create_error
        self.summarizer_options.append(options)
        for pct in self.download_steps:
            if on_download is not None:
                on_download(pct)
        summarizer = FakeSummarizer(self.summary)
        self.summarizers.append(summarizer)
        return summarizer

    async def evict(self, model_id: str) -> None:
        self.evicted.append(model_id)


class FakeBackend:
    """在工作线程中同步运行的假推理后端。"""

    def __init__(
        self,
        *,
        delay: float = 0.0,
        fail_with: Exception | None = None,
        output: Callable[[str, str], str] | None = None,
    ):
        self.delay = delay
        self.fail_with = fail_with
        self.output = output or (lambda task, text: f"{task}:{text}")
        self.loaded: list[str] = []
        self.unloaded = 0
        self.runs: list[tuple[str, str, dict[str, Any]]] = []
        self.run_started = threading.Event()

    def load(self, model_id: str, task: str, on_progress: ProgressHandler) -> None:
        on_progress(WorkerProgress(status="progress", name=model_id, progress=50.0))
        on_progress(WorkerProgress(status="done", name=model_id, progress=100.0))
        self.loaded.append(model_id)

    def unload(self) -> None:
        self.unloaded += 1

    def run(self, task: str, text: str, **params: Any) -> str:
        self.run_started.set()
        if self.delay:
            time.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with
        self.runs.append((task, text, params))
        return self.output(task, text)
