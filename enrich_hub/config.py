# enrich_hub/config.py
"""
本模块使用 pydantic-settings 定义 Enrich-Hub 的全局配置。

所有字段都可以通过带 `EH_` 前缀的环境变量或 `.env` 文件覆盖，
嵌套字段使用双下划线分隔，例如 `EH_CHUNKING__MAX_CHUNK_CHARS=400`。
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from enrich_hub.chunker import DEFAULT_MAX_CHUNK_CHARS
from enrich_hub.core.types import DEFAULT_PROVIDER_ORDER, ProviderTag
from enrich_hub.language import (
    DEFAULT_SAMPLE_CHARS,
    HEURISTIC_THRESHOLD,
    PLATFORM_THRESHOLD,
    TIE_MARGIN,
)
from enrich_hub.result_cache import MEMORY_URL, CacheConfig
from enrich_hub.utils import primary_language, validate_lang_codes


class LoggingConfig(BaseModel):
    level: str = "INFO"
    format: Literal["json", "console"] = "console"


class LanguageConfig(BaseModel):
    """语言识别参数。"""

    max_sample_chars: int = Field(default=DEFAULT_SAMPLE_CHARS, gt=0)
    heuristic_threshold: float = Field(default=HEURISTIC_THRESHOLD, ge=0.0, le=1.0)
    platform_threshold: float = Field(default=PLATFORM_THRESHOLD, ge=0.0, le=1.0)
    tie_margin: float = Field(default=TIE_MARGIN, ge=0.0, le=1.0)


class ChunkingConfig(BaseModel):
    max_chunk_chars: int = Field(default=DEFAULT_MAX_CHUNK_CHARS, gt=0)


class InputLimitsConfig(BaseModel):
    """作业输入的最小长度（按纯文本字符计）。"""

    min_translate_chars: int = Field(default=10, ge=1)
    min_summarize_chars: int = Field(default=50, ge=1)


class EnrichHubConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="EH_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    target_lang: str = "es"
    default_source_lang: str = "en"
    provider_order: list[ProviderTag] = Field(
        default_factory=lambda: list(DEFAULT_PROVIDER_ORDER)
    )
    result_store_url: str = MEMORY_URL
    credentials_path: Path = Field(
        default_factory=lambda: Path.home() / ".enrich_hub" / "settings.json"
    )
    translate_summaries: bool = Field(
        default=True, description="摘要语言与目标语言不同时，是否再翻译一次摘要"
    )

    language: LanguageConfig = Field(default_factory=LanguageConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    input: InputLimitsConfig = Field(default_factory=InputLimitsConfig)
    result_cache: CacheConfig = Field(default_factory=CacheConfig)
    provider_configs: dict[str, Any] = Field(default_factory=dict)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("target_lang", "default_source_lang")
    @classmethod
    def validate_lang_code(cls, v: str) -> str:
        validate_lang_codes([v])
        return primary_language(v)

    @model_validator(mode="after")
    def check_provider_order(self) -> "EnrichHubConfig":
        if len(set(self.provider_order)) != len(self.provider_order):
            raise ValueError("provider_order 中不能包含重复的适配器")
        return self
