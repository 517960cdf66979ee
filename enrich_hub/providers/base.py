# enrich_hub/providers/base.py
"""
本模块定义了所有适配器插件必须继承的抽象基类。

基类负责能力声明、速率限制、并发控制以及异常归一化：子类只需实现
`_translate` / `_summarize`。`InputRejected` 原样向上传递，其余非 `ProviderError`
异常都会被包装为 `TransformFailure`，从而保证编排器只需处理统一的错误分类。
"""

import asyncio
from abc import ABC
from collections.abc import Awaitable, Callable
from typing import ClassVar, Generic, TypeVar

import structlog
from pydantic import BaseModel, Field

from enrich_hub.chunker import DEFAULT_MAX_CHUNK_CHARS
from enrich_hub.core.exceptions import (
    InputRejected,
    ProviderError,
    ProviderUnavailable,
    TransformFailure,
)
from enrich_hub.core.types import (
    CostClass,
    JobKind,
    ProviderDescriptor,
    ProviderOutput,
    ProviderTag,
    SummaryLength,
)
from enrich_hub.platform import DownloadCallback
from enrich_hub.rate_limiter import RateLimiter

logger = structlog.get_logger(__name__)

_ConfigType = TypeVar("_ConfigType", bound="BaseProviderConfig")


class BaseProviderConfig(BaseModel):
    """所有适配器配置模型的基类，提供了通用的速率、并发与输入大小选项。"""

    rpm: int | None = Field(
        default=None, description="每分钟最大请求数 (Requests Per Minute)", gt=0
    )
    rps: int | None = Field(
        default=None, description="每秒最大请求数 (Requests Per Second)", gt=0
    )
    max_concurrency: int | None = Field(
        default=None, description="最大并发请求数", gt=0
    )
    max_chunk_chars: int = Field(default=DEFAULT_MAX_CHUNK_CHARS, gt=0)
    max_input_chars: int = Field(
        default=15000, description="单次摘要调用接受的最大字符数", gt=0
    )


class BaseProvider(ABC, Generic[_ConfigType]):
    """适配器的纯异步抽象基类，内置速率限制和并发控制。"""

    TAG: ClassVar[ProviderTag]
    COST_CLASS: ClassVar[CostClass]
    CAPABILITIES: ClassVar[frozenset[JobKind]] = frozenset()
    CONFIG_MODEL: type[_ConfigType]
    VERSION: str = "1.0.0"

    def __init__(self, config: _ConfigType):
        self.config = config
        self._rate_limiter: RateLimiter | None = None
        self._concurrency_semaphore: asyncio.Semaphore | None = None
        self.initialized: bool = False

        if config.rpm:
            self._rate_limiter = RateLimiter(
                refill_rate=config.rpm / 60, capacity=config.rpm
            )
        elif config.rps:
            self._rate_limiter = RateLimiter(
                refill_rate=config.rps, capacity=config.rps
            )

        if config.max_concurrency:
            self._concurrency_semaphore = asyncio.Semaphore(config.max_concurrency)

    @property
    def tag(self) -> ProviderTag:
        return self.TAG

    @property
    def max_chunk_chars(self) -> int:
        return self.config.max_chunk_chars

    @property
    def max_input_chars(self) -> int:
        return self.config.max_input_chars

    @classmethod
    def descriptor(cls) -> ProviderDescriptor:
        return ProviderDescriptor(
            tag=cls.TAG,
            cost_class=cls.COST_CLASS,
            capabilities=cls.CAPABILITIES,
            version=cls.VERSION,
        )

    def supports(self, kind: JobKind) -> bool:
        return kind in self.CAPABILITIES

    async def initialize(self) -> None:
        """适配器的异步初始化钩子，用于设置连接池等。"""
        self.initialized = True

    async def close(self) -> None:
        """适配器的异步关闭钩子，用于安全释放资源。"""
        self.initialized = False

    async def check_availability(
        self,
        kind: JobKind,
        source_lang: str | None = None,
        target_lang: str | None = None,
    ) -> bool:
        """判断适配器当前能否处理该类作业。从不抛出异常。"""
        if not self.supports(kind):
            return False
        try:
            return await self._check_availability(kind, source_lang, target_lang)
        except Exception as e:
            logger.warning(
                "能力探测失败，视为不可用", provider=self.TAG.value, error=str(e)
            )
            return False

    async def _check_availability(
        self, kind: JobKind, source_lang: str | None, target_lang: str | None
    ) -> bool:
        """[子类可覆盖] 真正的能力探测逻辑。"""
        return True

    def summary_language(self, source_lang: str, target_lang: str) -> str:
        """该适配器输出摘要所使用的语言；默认直接输出目标语言。"""
        return target_lang

    async def translate(
        self,
        text: str,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None = None,
    ) -> ProviderOutput:
        """[模板方法] 翻译一个文本片段。"""
        if not self.supports(JobKind.TRANSLATE):
            raise ProviderUnavailable("该适配器不支持翻译", provider=self.TAG.value)
        return await self._run(
            lambda: self._translate(text, source_lang, target_lang, on_download)
        )

    async def summarize(
        self,
        text: str,
        length: SummaryLength,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None = None,
    ) -> ProviderOutput:
        """[模板方法] 为一段纯文本生成摘要。"""
        if not self.supports(JobKind.SUMMARIZE):
            raise ProviderUnavailable("该适配器不支持摘要", provider=self.TAG.value)
        return await self._run(
            lambda: self._summarize(text, length, source_lang, target_lang, on_download)
        )

    async def _translate(
        self,
        text: str,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None,
    ) -> ProviderOutput:
        raise NotImplementedError

    async def _summarize(
        self,
        text: str,
        length: SummaryLength,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None,
    ) -> ProviderOutput:
        raise NotImplementedError

    async def _run(
        self, operation: Callable[[], Awaitable[ProviderOutput]]
    ) -> ProviderOutput:
        """应用速率限制与并发控制，并把意外异常归一化为 `TransformFailure`。"""
        if self._rate_limiter:
            await self._rate_limiter.acquire()
        try:
            if self._concurrency_semaphore:
                async with self._concurrency_semaphore:
                    output = await operation()
            else:
                output = await operation()
        except InputRejected:
            raise
        except ProviderError as e:
            if e.provider is None:
                e.provider = self.TAG.value
            raise
        except Exception as e:
            raise TransformFailure(
                f"适配器执行异常: {e.__class__.__name__}: {e}",
                provider=self.TAG.value,
            ) from e

        if not output.text.strip():
            raise TransformFailure("适配器返回了空内容", provider=self.TAG.value)
        return output
