# enrich_hub/providers/platform.py
"""
设备端平台适配器。

翻译器按 (源语言, 目标语言) 缓存，摘要器按创建参数缓存，均归本适配器私有；
模型缓存管理器通过 `release` 让适配器释放实例后再请求平台驱逐模型。
"""

import structlog
from pydantic_settings import BaseSettings, SettingsConfigDict

from enrich_hub.core.exceptions import (
    InsufficientStorageError,
    ProviderUnavailable,
    TransformFailure,
)
from enrich_hub.core.types import (
    CostClass,
    JobKind,
    ProviderOutput,
    ProviderTag,
    SummaryLength,
)
from enrich_hub.platform import (
    SUMMARIZER_MODEL_ID,
    DownloadCallback,
    InsufficientStorage,
    PlatformCapability,
    PlatformRuntime,
    PlatformSummarizer,
    PlatformTranslator,
    SummarizerOptions,
    UnsupportedPlatformRuntime,
    is_storage_error,
    translator_model_id,
)
from enrich_hub.providers.base import BaseProvider, BaseProviderConfig

logger = structlog.get_logger(__name__)

# 平台摘要器只有三档长度
_PLATFORM_LENGTHS = {
    SummaryLength.SHORT: "short",
    SummaryLength.MEDIUM: "medium",
    SummaryLength.LONG: "long",
    SummaryLength.EXTENDED: "long",
}


class PlatformProviderConfig(BaseSettings, BaseProviderConfig):
    model_config = SettingsConfigDict(env_prefix="EH_PLATFORM_", extra="ignore")

    summary_type: str = "key-points"
    summary_format: str = "plain-text"


class PlatformProvider(BaseProvider[PlatformProviderConfig]):
    """包装宿主 `PlatformRuntime` 的设备端适配器。"""

    TAG = ProviderTag.PLATFORM
    COST_CLASS = CostClass.FREE
    CAPABILITIES = frozenset({JobKind.TRANSLATE, JobKind.SUMMARIZE})
    CONFIG_MODEL = PlatformProviderConfig
    VERSION = "1.0.0"

    def __init__(
        self,
        config: PlatformProviderConfig,
        runtime: PlatformRuntime | None = None,
        target_lang: str = "es",
    ):
        super().__init__(config)
        self.runtime: PlatformRuntime = runtime or UnsupportedPlatformRuntime()
        self.target_lang = target_lang
        self._translators: dict[tuple[str, str], PlatformTranslator] = {}
        self._summarizers: dict[str, PlatformSummarizer] = {}

    def summarizer_options(
        self, length: SummaryLength, output_language: str | None = None
    ) -> SummarizerOptions:
        return SummarizerOptions(
            type=self.config.summary_type,  # type: ignore[arg-type]
            length=_PLATFORM_LENGTHS[length],  # type: ignore[arg-type]
            format=self.config.summary_format,  # type: ignore[arg-type]
            output_language=output_language or self.target_lang,
        )

    async def _check_availability(
        self, kind: JobKind, source_lang: str | None, target_lang: str | None
    ) -> bool:
        if kind is JobKind.TRANSLATE:
            capability = await self.runtime.translator_availability(
                source_lang or "en", target_lang or self.target_lang
            )
        else:
            capability = await self.runtime.summarizer_availability(
                self.summarizer_options(SummaryLength.MEDIUM, target_lang)
            )
        return capability.is_usable

    def _raise_for_capability(self, capability: PlatformCapability, what: str) -> None:
        if isinstance(capability, InsufficientStorage):
            raise InsufficientStorageError(
                f"存储空间不足，无法下载{what}模型: {capability.detail}",
                provider=self.TAG.value,
            )
        if not capability.is_usable:
            raise ProviderUnavailable(f"设备端{what}不可用", provider=self.TAG.value)

    async def _get_translator(
        self, source_lang: str, target_lang: str, on_download: DownloadCallback | None
    ) -> PlatformTranslator:
        key = (source_lang, target_lang)
        if key in self._translators:
            return self._translators[key]

        capability = await self.runtime.translator_availability(source_lang, target_lang)
        self._raise_for_capability(capability, "翻译器")
        try:
            translator = await self.runtime.create_translator(
                source_lang, target_lang, on_download
            )
        except Exception as e:
            if is_storage_error(e):
                raise InsufficientStorageError(
                    f"存储空间不足，无法下载翻译模型: {e}", provider=self.TAG.value
                ) from e
            raise ProviderUnavailable(
                f"创建设备端翻译器失败: {e}", provider=self.TAG.value
            ) from e

        self._translators[key] = translator
        logger.debug("设备端翻译器已创建", source=source_lang, target=target_lang)
        return translator

    async def _get_summarizer(
        self, options: SummarizerOptions, on_download: DownloadCallback | None
    ) -> PlatformSummarizer:
        key = options.cache_key
        if key in self._summarizers:
            return self._summarizers[key]

        capability = await self.runtime.summarizer_availability(options)
        self._raise_for_capability(capability, "摘要器")
        try:
            summarizer = await self.runtime.create_summarizer(options, on_download)
        except Exception as e:
            if is_storage_error(e):
                raise InsufficientStorageError(
                    f"存储空间不足，无法下载摘要模型: {e}", provider=self.TAG.value
                ) from e
            raise ProviderUnavailable(
                f"创建设备端摘要器失败: {e}", provider=self.TAG.value
            ) from e

        self._summarizers[key] = summarizer
        return summarizer

    async def _translate(
        self,
        text: str,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None,
    ) -> ProviderOutput:
        translator = await self._get_translator(source_lang, target_lang, on_download)
        result = await translator.translate(text)
        return ProviderOutput(
            text=result, model=translator_model_id(source_lang, target_lang)
        )

    async def _summarize(
        self,
        text: str,
        length: SummaryLength,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None,
    ) -> ProviderOutput:
        options = self.summarizer_options(length, target_lang)
        summarizer = await self._get_summarizer(options, on_download)
        result = await summarizer.summarize(text)
        if not result or not result.strip():
            raise TransformFailure("设备端摘要器返回了空内容", provider=self.TAG.value)
        return ProviderOutput(text=result.strip(), model=SUMMARIZER_MODEL_ID)

    def release(self, model_id: str) -> bool:
        """释放与模型 ID 对应的缓存实例，返回是否确实释放了实例。"""
        released = False
        if model_id == SUMMARIZER_MODEL_ID:
            for summarizer in self._summarizers.values():
                summarizer.destroy()
            released = bool(self._summarizers)
            self._summarizers.clear()
            return released

        for key in list(self._translators):
            if translator_model_id(*key) == model_id:
                self._translators.pop(key).destroy()
                released = True
        return released

    async def close(self) -> None:
        for translator in self._translators.values():
            translator.destroy()
        for summarizer in self._summarizers.values():
            summarizer.destroy()
        self._translators.clear()
        self._summarizers.clear()
        await super().close()
