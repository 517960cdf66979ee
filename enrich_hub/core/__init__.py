"""
本核心包定义了 Enrich-Hub 系统中最基础、最稳定的构建块。

这里包含了系统的核心数据类型、接口协议和自定义异常，它们共同构成了
整个应用的“契约”。其他模块都依赖于此核心包。
"""

from .exceptions import (
    ConfigurationError,
    ContentRejected,
    CredentialMissing,
    DatabaseError,
    EnrichHubError,
    EnrichmentFailed,
    InputRejected,
    InsufficientStorageError,
    ProgressStateError,
    ProviderError,
    ProviderNotFoundError,
    ProviderUnavailable,
    QuotaExceeded,
    TimeoutExceeded,
    TransformFailure,
)
from .interfaces import ResultStore
from .types import (
    DEFAULT_PROVIDER_ORDER,
    LENGTH_PROFILES,
    UNKNOWN_LANGUAGE,
    Chunk,
    CostClass,
    DetectionMethod,
    EnrichmentJob,
    EnrichmentResult,
    JobKind,
    JobStatus,
    LanguageVerdict,
    LengthProfile,
    ProgressEvent,
    ProviderAttempt,
    ProviderDescriptor,
    ProviderOutput,
    ProviderTag,
    SummaryLength,
)

__all__ = [
    # from exceptions.py
    "EnrichHubError",
    "ConfigurationError",
    "ProviderNotFoundError",
    "DatabaseError",
    "ProgressStateError",
    "InputRejected",
    "ProviderError",
    "ProviderUnavailable",
    "CredentialMissing",
    "InsufficientStorageError",
    "QuotaExceeded",
    "ContentRejected",
    "TransformFailure",
    "TimeoutExceeded",
    "EnrichmentFailed",
    # from interfaces.py
    "ResultStore",
    # from types.py
    "DEFAULT_PROVIDER_ORDER",
    "LENGTH_PROFILES",
    "UNKNOWN_LANGUAGE",
    "Chunk",
    "CostClass",
    "DetectionMethod",
    "EnrichmentJob",
    "EnrichmentResult",
    "JobKind",
    "JobStatus",
    "LanguageVerdict",
    "LengthProfile",
    "ProgressEvent",
    "ProviderAttempt",
    "ProviderDescriptor",
    "ProviderOutput",
    "ProviderTag",
    "SummaryLength",
]
