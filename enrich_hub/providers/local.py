# enrich_hub/providers/local.py
"""本地推理适配器：把翻译与摘要请求转发给 `InferenceWorker` 工作线程。"""

import importlib.util
from pathlib import Path

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from enrich_hub.core.exceptions import ConfigurationError
from enrich_hub.core.types import (
    LENGTH_PROFILES,
    CostClass,
    JobKind,
    ProviderOutput,
    ProviderTag,
    SummaryLength,
)
from enrich_hub.platform import DownloadCallback
from enrich_hub.providers.base import BaseProvider, BaseProviderConfig
from enrich_hub.worker import (
    DEFAULT_LOCAL_MODEL,
    DEFAULT_REQUEST_TIMEOUT,
    LOCAL_MODEL_CATALOG,
    InferenceWorker,
    ProgressHandler,
    TransformersBackend,
    WorkerProgress,
    translation_model_for,
)

logger = structlog.get_logger(__name__)

DEFAULT_HF_CACHE = Path.home() / ".cache" / "huggingface" / "hub"


class LocalInferenceConfig(BaseSettings, BaseProviderConfig):
    """本地推理适配器的配置模型。"""

    model_config = SettingsConfigDict(env_prefix="EH_LOCAL_", extra="ignore")

    model: str = Field(default=DEFAULT_LOCAL_MODEL, description="摘要模型目录键")
    cache_dir: Path = Field(default=DEFAULT_HF_CACHE)
    request_timeout: float = Field(default=DEFAULT_REQUEST_TIMEOUT, gt=0)
    max_chunk_chars: int = Field(default=400, gt=0)
    # 约 1024 个 token
    max_input_chars: int = Field(default=3500, gt=0)


class LocalInferenceProvider(BaseProvider[LocalInferenceConfig]):
    """在本地工作线程中运行 transformers 模型的适配器。"""

    TAG = ProviderTag.LOCAL
    COST_CLASS = CostClass.LOCAL_COMPUTE
    CAPABILITIES = frozenset({JobKind.TRANSLATE, JobKind.SUMMARIZE})
    CONFIG_MODEL = LocalInferenceConfig
    VERSION = "1.0.0"

    def __init__(
        self, config: LocalInferenceConfig, worker: InferenceWorker | None = None
    ):
        super().__init__(config)
        if config.model not in LOCAL_MODEL_CATALOG:
            raise ConfigurationError(
                f"未知的本地模型 '{config.model}'，可选: {sorted(LOCAL_MODEL_CATALOG)}"
            )
        self.worker = worker or InferenceWorker(
            TransformersBackend(config.cache_dir), timeout=config.request_timeout
        )

    @property
    def summarization_model_id(self) -> str:
        return LOCAL_MODEL_CATALOG[self.config.model].id

    async def _check_availability(
        self, kind: JobKind, source_lang: str | None, target_lang: str | None
    ) -> bool:
        if isinstance(self.worker.backend, TransformersBackend):
            return importlib.util.find_spec("transformers") is not None
        return True

    def summary_language(self, source_lang: str, target_lang: str) -> str:
        # CNN 摘要模型只会复述输入语言
        return source_lang

    def _progress_bridge(
        self, on_download: DownloadCallback | None
    ) -> ProgressHandler | None:
        if on_download is None:
            return None
        callback = on_download

        def _forward(progress: WorkerProgress) -> None:
            if progress.progress is not None:
                callback(progress.progress)

        return _forward

    async def _translate(
        self,
        text: str,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None,
    ) -> ProviderOutput:
        model_id = translation_model_for(source_lang, target_lang)
        result = await self.worker.translate(
            text, model_id, self._progress_bridge(on_download)
        )
        return ProviderOutput(text=result.strip(), model=model_id)

    async def _summarize(
        self,
        text: str,
        length: SummaryLength,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None,
    ) -> ProviderOutput:
        profile = LENGTH_PROFILES[length]
        model_id = self.summarization_model_id
        result = await self.worker.summarize(
            text,
            model_id,
            min_length=profile.min_tokens,
            max_length=profile.max_tokens,
            on_progress=self._progress_bridge(on_download),
        )
        return ProviderOutput(text=result.strip(), model=model_id)

    async def unload(self) -> None:
        if self.worker.resident_model is not None:
            await self.worker.unload_model()

    async def close(self) -> None:
        self.worker.shutdown()
        await super().close()
