# enrich_hub/core/types.py
"""
本模块定义了 Enrich-Hub 系统的核心数据类型。

所有跨模块传递的值对象都是 Pydantic 模型；作业与结果一经创建即不可变。
"""

from __future__ import annotations

import time
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from enrich_hub.utils import primary_language, validate_lang_codes

UNKNOWN_LANGUAGE = "unknown"


class JobKind(str, Enum):
    """作业类型：翻译或摘要。"""

    TRANSLATE = "translate"
    SUMMARIZE = "summarize"


class SummaryLength(str, Enum):
    """摘要长度等级。"""

    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"
    EXTENDED = "extended"


class ProviderTag(str, Enum):
    """适配器标识。"""

    PLATFORM = "platform"
    SHARED = "shared"
    KEYED = "keyed"
    LOCAL = "local"
    DEBUG = "debug"


DEFAULT_PROVIDER_ORDER: tuple[ProviderTag, ...] = (
    ProviderTag.PLATFORM,
    ProviderTag.SHARED,
    ProviderTag.KEYED,
    ProviderTag.LOCAL,
)


class CostClass(str, Enum):
    """适配器的成本类别，仅用于展示与观测。"""

    FREE = "free"
    RATE_LIMITED = "rate-limited"
    METERED = "metered"
    LOCAL_COMPUTE = "local-compute"


class DetectionMethod(str, Enum):
    PLATFORM = "platform"
    HEURISTIC = "heuristic"


class JobStatus(str, Enum):
    """作业进度状态机中的状态。"""

    IDLE = "idle"
    DETECTING = "detecting"
    DOWNLOADING = "downloading"
    TRANSLATING = "translating"
    SUMMARIZING = "summarizing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.ERROR)


class LengthProfile(BaseModel):
    """一个摘要长度等级对应的目标词数、句数区间以及本地模型的 token 上下限。"""

    model_config = ConfigDict(frozen=True)

    words: int
    sentences: str
    min_words: int
    max_words: int
    min_tokens: int
    max_tokens: int


LENGTH_PROFILES: dict[SummaryLength, LengthProfile] = {
    SummaryLength.SHORT: LengthProfile(
        words=50, sentences="2-3", min_words=20, max_words=100,
        min_tokens=20, max_tokens=75,
    ),
    SummaryLength.MEDIUM: LengthProfile(
        words=100, sentences="4-5", min_words=40, max_words=180,
        min_tokens=40, max_tokens=150,
    ),
    SummaryLength.LONG: LengthProfile(
        words=200, sentences="6-8", min_words=80, max_words=320,
        min_tokens=80, max_tokens=250,
    ),
    SummaryLength.EXTENDED: LengthProfile(
        words=300, sentences="8-12", min_words=120, max_words=450,
        min_tokens=120, max_tokens=350,
    ),
}


class EnrichmentJob(BaseModel):
    """一次翻译或摘要请求。创建后不可变，一个作业只产生一个结果或一个失败。"""

    model_config = ConfigDict(frozen=True)

    content_id: str = Field(min_length=1)
    kind: JobKind
    source_text: str
    source_language_hint: str | None = None
    target_length: SummaryLength | None = Field(default=None, validate_default=True)
    preferred_provider: ProviderTag | None = None

    @field_validator("source_language_hint")
    @classmethod
    def _validate_hint(cls, v: str | None) -> str | None:
        if v is not None:
            validate_lang_codes([v])
            return primary_language(v)
        return v

    @field_validator("target_length")
    @classmethod
    def _default_length(
        cls, v: SummaryLength | None, info: ValidationInfo
    ) -> SummaryLength | None:
        if v is None and info.data.get("kind") is JobKind.SUMMARIZE:
            return SummaryLength.MEDIUM
        return v

    @property
    def key(self) -> tuple[str, JobKind]:
        """结果缓存与并发去重使用的键。"""
        return (self.content_id, self.kind)


class LanguageVerdict(BaseModel):
    """语言识别结论。低于阈值的结论会降级为 `unknown`。"""

    model_config = ConfigDict(frozen=True)

    language_code: str
    confidence: float = Field(ge=0.0, le=1.0)
    method: DetectionMethod

    @property
    def is_unknown(self) -> bool:
        return self.language_code == UNKNOWN_LANGUAGE


class Chunk(BaseModel):
    """按句子边界切分出的一个有序文本片段。"""

    model_config = ConfigDict(frozen=True)

    index: int = Field(ge=0)
    text: str

    @property
    def char_length(self) -> int:
        return len(self.text)


class ProviderDescriptor(BaseModel):
    """适配器的静态描述，查询它不会产生任何副作用。"""

    model_config = ConfigDict(frozen=True)

    tag: ProviderTag
    cost_class: CostClass
    capabilities: frozenset[JobKind]
    version: str


class ProviderOutput(BaseModel):
    """适配器单次成功调用的输出。"""

    text: str
    model: str | None = None
    usage: dict[str, Any] | None = None


class ProviderAttempt(BaseModel):
    """聚合失败中的一行：哪个适配器、为什么失败。"""

    provider: ProviderTag
    error_kind: str
    message: str
    retry_at: datetime | None = None


class EnrichmentResult(BaseModel):
    """一次成功的富化结果，按 (content_id, kind) 写入结果缓存，重新生成时覆盖。"""

    content_id: str
    kind: JobKind
    output_text: str
    provider_used: ProviderTag
    source_language: str
    target_language: str
    timestamp_ms: int = Field(default_factory=lambda: int(time.time() * 1000))
    model: str | None = None
    usage: dict[str, Any] | None = None
    summary_length: SummaryLength | None = None
    from_cache: bool = False


class ProgressEvent(BaseModel):
    """进度事件，由状态机同步发出。"""

    model_config = ConfigDict(frozen=True)

    status: JobStatus
    progress_pct: float = Field(ge=0.0, le=100.0)
    message: str = ""
    provider: ProviderTag | None = None
    artifact: str | None = None
