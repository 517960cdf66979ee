# enrich_hub/providers/debug.py
"""提供一个用于开发和测试的调试适配器。"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from enrich_hub.core.exceptions import (
    ContentRejected,
    ProviderError,
    ProviderUnavailable,
    QuotaExceeded,
    TransformFailure,
)
from enrich_hub.core.types import (
    CostClass,
    JobKind,
    ProviderOutput,
    ProviderTag,
    SummaryLength,
)
from enrich_hub.platform import DownloadCallback
from enrich_hub.providers.base import BaseProvider, BaseProviderConfig

_ERROR_KINDS: dict[str, type[ProviderError]] = {
    "unavailable": ProviderUnavailable,
    "quota_exceeded": QuotaExceeded,
    "content_rejected": ContentRejected,
    "transform_failure": TransformFailure,
}


class DebugProviderConfig(BaseSettings, BaseProviderConfig):
    """Debug 适配器的配置模型。"""

    model_config = SettingsConfigDict(env_prefix="EH_DEBUG_", extra="ignore")

    mode: str = Field(default="SUCCESS", description="SUCCESS 或 FAIL")
    available: bool = True
    fail_on_text: Optional[str] = Field(default=None)
    error_kind: str = Field(default="transform_failure")
    translation_map: dict[str, str] = Field(default_factory=dict)
    summary_language: Optional[str] = Field(
        default=None, description="模拟以其他语言输出摘要的适配器"
    )


class DebugProvider(BaseProvider[DebugProviderConfig]):
    """一个简单的调试适配器实现，翻译与摘要都返回可预测的文本。"""

    TAG = ProviderTag.DEBUG
    COST_CLASS = CostClass.FREE
    CAPABILITIES = frozenset({JobKind.TRANSLATE, JobKind.SUMMARIZE})
    CONFIG_MODEL = DebugProviderConfig
    VERSION = "1.0.0"

    async def _check_availability(
        self, kind: JobKind, source_lang: str | None, target_lang: str | None
    ) -> bool:
        return self.config.available

    def summary_language(self, source_lang: str, target_lang: str) -> str:
        return self.config.summary_language or target_lang

    def _maybe_fail(self, text: str) -> None:
        if self.config.mode == "FAIL":
            raise self._error("DebugProvider 处于 FAIL 模式。")
        if self.config.fail_on_text and self.config.fail_on_text in text:
            raise self._error(f"模拟失败：检测到配置的文本 '{self.config.fail_on_text}'")

    def _error(self, message: str) -> ProviderError:
        error_cls = _ERROR_KINDS.get(self.config.error_kind, TransformFailure)
        return error_cls(message, provider=self.TAG.value)

    async def _translate(
        self,
        text: str,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None,
    ) -> ProviderOutput:
        self._maybe_fail(text)
        translated = self.config.translation_map.get(
            text, f"Translated({text}) to {target_lang}"
        )
        return ProviderOutput(text=translated, model="debug")

    async def _summarize(
        self,
        text: str,
        length: SummaryLength,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None,
    ) -> ProviderOutput:
        self._maybe_fail(text)
        language = self.summary_language(source_lang, target_lang)
        words = text.split()[:12]
        return ProviderOutput(
            text=f"Summary[{length.value}/{language}]: {' '.join(words)}",
            model="debug",
            usage={"input_chars": len(text)},
        )
