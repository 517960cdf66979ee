# enrich_hub/__init__.py
"""Enrich-Hub: 为订阅阅读器的文章生成西班牙语译文与摘要的富化编排器。

它在设备端引擎、共享远程端点、用户密钥型大模型和本地推理之间按优先级回退，
并以异步事件报告多阶段进度。
"""

__version__ = "1.0.0"

from .config import EnrichHubConfig
from .core import EnrichmentJob, EnrichmentResult, JobKind, ProviderTag, SummaryLength
from .orchestrator import FallbackOrchestrator, JobHandle
from .registry import AdapterRegistry
from .result_cache import create_result_store

__all__ = [
    "__version__",
    "AdapterRegistry",
    "EnrichHubConfig",
    "EnrichmentJob",
    "EnrichmentResult",
    "FallbackOrchestrator",
    "JobHandle",
    "JobKind",
    "ProviderTag",
    "SummaryLength",
    "create_result_store",
]
