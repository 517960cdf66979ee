# enrich_hub/platform.py
"""
设备端平台能力的抽象层。

宿主环境（浏览器扩展、桌面壳等）通过实现 `PlatformRuntime` 协议，把自身的
设备端翻译器、语言检测器和摘要器暴露给 Enrich-Hub。能力探测统一返回
`PlatformCapability` 这一可辨识联合类型，而不是零散的字符串比较。
"""

from __future__ import annotations

import errno
from collections.abc import Callable
from typing import Annotated, Literal, Protocol, Union

from pydantic import BaseModel, ConfigDict, Field

DownloadCallback = Callable[[float], None]
"""下载进度回调，参数为 0-100 的百分比。"""


class _CapabilityBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    @property
    def is_usable(self) -> bool:
        """可用、可下载或正在下载的能力都可以被调用（必要时先下载模型）。"""
        return False


class Available(_CapabilityBase):
    state: Literal["available"] = "available"

    @property
    def is_usable(self) -> bool:
        return True


class Downloadable(_CapabilityBase):
    state: Literal["downloadable"] = "downloadable"

    @property
    def is_usable(self) -> bool:
        return True


class Downloading(_CapabilityBase):
    state: Literal["downloading"] = "downloading"
    progress_pct: float | None = Field(default=None, ge=0.0, le=100.0)

    @property
    def is_usable(self) -> bool:
        return True


class Unavailable(_CapabilityBase):
    state: Literal["unavailable"] = "unavailable"
    reason: str = ""


class InsufficientStorage(_CapabilityBase):
    """本地存储空间不足，用户释放空间后可恢复。"""

    state: Literal["insufficient-storage"] = "insufficient-storage"
    detail: str = ""


PlatformCapability = Annotated[
    Union[Available, Downloadable, Downloading, Unavailable, InsufficientStorage],
    Field(discriminator="state"),
]


class SummarizerOptions(BaseModel):
    """设备端摘要器的创建参数。"""

    model_config = ConfigDict(frozen=True)

    type: Literal["tldr", "key-points", "teaser", "headline"] = "key-points"
    length: Literal["short", "medium", "long"] = "medium"
    format: Literal["plain-text", "markdown"] = "plain-text"
    output_language: str = "es"

    @property
    def cache_key(self) -> str:
        return f"{self.type}-{self.length}-{self.format}-{self.output_language}"


class PlatformTranslator(Protocol):
    async def translate(self, text: str) -> str: ...

    def destroy(self) -> None: ...


class PlatformDetector(Protocol):
    async def detect(self, text: str) -> list[tuple[str, float]]:
        """返回按置信度降序排列的 (语言代码, 置信度) 列表。"""
        ...


class PlatformSummarizer(Protocol):
    async def summarize(self, text: str) -> str: ...

    def destroy(self) -> None: ...


class PlatformRuntime(Protocol):
    """宿主提供的设备端 AI 能力集合。"""

    async def translator_availability(
        self, source_lang: str, target_lang: str
    ) -> PlatformCapability: ...

    async def create_translator(
        self,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None = None,
    ) -> PlatformTranslator: ...

    async def detector_availability(self) -> PlatformCapability: ...

    async def create_detector(self) -> PlatformDetector: ...

    async def summarizer_availability(
        self, options: SummarizerOptions
    ) -> PlatformCapability: ...

    async def create_summarizer(
        self,
        options: SummarizerOptions,
        on_download: DownloadCallback | None = None,
    ) -> PlatformSummarizer: ...

    async def evict(self, model_id: str) -> None:
        """请求平台释放某个模型。平台可以忽略该请求。"""
        ...


def translator_model_id(source_lang: str, target_lang: str) -> str:
    return f"platform:translator:{source_lang}-{target_lang}"


DETECTOR_MODEL_ID = "platform:detector"
SUMMARIZER_MODEL_ID = "platform:summarizer"


def is_storage_error(exc: BaseException) -> bool:
    """判断平台抛出的异常是否代表存储空间不足。"""
    if isinstance(exc, OSError) and exc.errno == errno.ENOSPC:
        return True
    return "space" in str(exc).lower()


class UnsupportedPlatformRuntime:
    """没有任何设备端能力的运行时，纯 Python 进程中的默认实现。"""

    REASON = "当前运行环境不提供设备端 AI 能力"

    async def translator_availability(
        self, source_lang: str, target_lang: str
    ) -> PlatformCapability:
        return Unavailable(reason=self.REASON)

    async def create_translator(
        self,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None = None,
    ) -> PlatformTranslator:
        raise RuntimeError(self.REASON)

    async def detector_availability(self) -> PlatformCapability:
        return Unavailable(reason=self.REASON)

    async def create_detector(self) -> PlatformDetector:
        raise RuntimeError(self.REASON)

    async def summarizer_availability(
        self, options: SummarizerOptions
    ) -> PlatformCapability:
        return Unavailable(reason=self.REASON)

    async def create_summarizer(
        self,
        options: SummarizerOptions,
        on_download: DownloadCallback | None = None,
    ) -> PlatformSummarizer:
        raise RuntimeError(self.REASON)

    async def evict(self, model_id: str) -> None:
        return None
