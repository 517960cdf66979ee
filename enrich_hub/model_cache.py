# enrich_hub/model_cache.py
"""
模型缓存管理器。

列出各适配器在本机存储的模型产物，并支持删除。两类存储的删除语义不同：
- 设备端平台模型由平台自行管理，删除只是建议性的：释放实例、请求驱逐，
  再重新查询可用性，仍可用则报告 ADVISORY；
- 本地推理模型存放在 Hugging Face 风格的缓存目录中，删除是权威的：
  先卸载驻留模型，再移除所有匹配的目录。
"""

from __future__ import annotations

import asyncio
import shutil
from enum import Enum
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from enrich_hub.core.types import JobKind, ProviderTag
from enrich_hub.platform import (
    DETECTOR_MODEL_ID,
    SUMMARIZER_MODEL_ID,
    Available,
    PlatformCapability,
    SummarizerOptions,
    translator_model_id,
)
from enrich_hub.registry import AdapterRegistry
from enrich_hub.worker import LOCAL_MODEL_CATALOG

logger = structlog.get_logger(__name__)

PLATFORM_SOURCE_LANGS: tuple[str, ...] = ("en", "fr", "de", "pt", "it")
HF_MODEL_PREFIX = "models--"
OTHER_CACHE_PREFIX = "Cache: "
_TRANSLATOR_PREFIX = "platform:translator:"
_SUMMARIZATION_IDS = {spec.id for spec in LOCAL_MODEL_CATALOG.values()}


class DeletionOutcome(str, Enum):
    CONFIRMED = "confirmed"
    ADVISORY = "advisory"
    NOT_FOUND = "not_found"


class CachedModel(BaseModel):
    """一个已缓存的模型；它的所有文件片段都归在同一个 ID 下。"""

    model_id: str
    provider: ProviderTag
    capability: str | None = None
    size_bytes: int | None = Field(default=None, description="平台模型的大小未知")
    file_count: int = 0


class CacheReport(BaseModel):
    models: list[CachedModel] = Field(default_factory=list)

    @property
    def total_bytes(self) -> int:
        return sum(m.size_bytes or 0 for m in self.models)

    @property
    def bytes_by_capability(self) -> dict[str, int]:
        totals: dict[str, int] = {}
        for model in self.models:
            key = model.capability or "other"
            totals[key] = totals.get(key, 0) + (model.size_bytes or 0)
        return totals

    @property
    def bytes_by_model(self) -> dict[str, int]:
        return {m.model_id: m.size_bytes or 0 for m in self.models}


def hf_dir_to_model_id(name: str) -> str:
    """`models--owner--name` → `owner/name`；其他目录 → `Cache: <name>`。"""
    if name.startswith(HF_MODEL_PREFIX):
        return "/".join(name[len(HF_MODEL_PREFIX) :].split("--"))
    return f"{OTHER_CACHE_PREFIX}{name}"


def model_id_to_hf_dir(model_id: str) -> str | None:
    """模型 ID → 缓存目录名；无法映射为单层目录名的 ID 返回 None。"""
    if model_id.startswith(OTHER_CACHE_PREFIX):
        name = model_id[len(OTHER_CACHE_PREFIX) :]
    else:
        name = HF_MODEL_PREFIX + model_id.replace("/", "--")
    if not name.strip() or name in (".", "..") or "/" in name or "\\" in name:
        return None
    return name


def _local_capability(model_id: str) -> str | None:
    if model_id in _SUMMARIZATION_IDS:
        return JobKind.SUMMARIZE.value
    if model_id.startswith("Helsinki-NLP/opus-mt-"):
        return JobKind.TRANSLATE.value
    return None


def _dir_usage(path: Path) -> tuple[int, int]:
    """返回 (字节数, 文件数)。符号链接不计入，避免快照与 blob 重复计算。"""
    size = 0
    count = 0
    for item in path.rglob("*"):
        if item.is_file() and not item.is_symlink():
            size += item.stat().st_size
            count += 1
    return size, count


class ModelCacheManager:
    """枚举并删除各适配器缓存的模型产物。"""

    def __init__(self, registry: AdapterRegistry, cache_dir: Path | None = None):
        self.registry = registry
        self.target_lang = registry.config.target_lang
        if cache_dir is None:
            cache_dir = registry.provider_config(ProviderTag.LOCAL).cache_dir
        self.cache_dir = Path(cache_dir)

    # ---- 平台 ----

    async def _platform_capability(self, model_id: str) -> PlatformCapability | None:
        runtime = self.registry.platform
        if model_id == DETECTOR_MODEL_ID:
            return await runtime.detector_availability()
        if model_id == SUMMARIZER_MODEL_ID:
            return await runtime.summarizer_availability(
                SummarizerOptions(output_language=self.target_lang)
            )
        if model_id.startswith(_TRANSLATOR_PREFIX):
            source, _, target = model_id[len(_TRANSLATOR_PREFIX) :].partition("-")
            return await runtime.translator_availability(source, target)
        return None

    def _platform_model_ids(self) -> list[str]:
        ids = [
            translator_model_id(src, self.target_lang)
            for src in PLATFORM_SOURCE_LANGS
            if src != self.target_lang
        ]
        return ids + [DETECTOR_MODEL_ID, SUMMARIZER_MODEL_ID]

    async def _platform_models(self) -> list[CachedModel]:
        models: list[CachedModel] = []
        for model_id in self._platform_model_ids():
            try:
                capability = await self._platform_capability(model_id)
            except Exception as e:
                logger.warning("查询平台模型状态失败", model_id=model_id, error=str(e))
                continue
            if not isinstance(capability, Available):
                continue
            if model_id == DETECTOR_MODEL_ID:
                kind = "detect"
            elif model_id == SUMMARIZER_MODEL_ID:
                kind = JobKind.SUMMARIZE.value
            else:
                kind = JobKind.TRANSLATE.value
            models.append(
                CachedModel(
                    model_id=model_id, provider=ProviderTag.PLATFORM, capability=kind
                )
            )
        return models

    # ---- 本地 ----

    def _scan_local(self) -> list[CachedModel]:
        if not self.cache_dir.is_dir():
            return []
        models: list[CachedModel] = []
        for entry in sorted(self.cache_dir.iterdir()):
            if not entry.is_dir():
                continue
            model_id = hf_dir_to_model_id(entry.name)
            size, count = _dir_usage(entry)
            models.append(
                CachedModel(
                    model_id=model_id,
                    provider=ProviderTag.LOCAL,
                    capability=_local_capability(model_id),
                    size_bytes=size,
                    file_count=count,
                )
            )
        return models

    async def list_models(self) -> CacheReport:
        platform_models = await self._platform_models()
        local_models = await asyncio.to_thread(self._scan_local)
        report = CacheReport(models=platform_models + local_models)
        logger.debug(
            "模型缓存统计完成", models=len(report.models), total_bytes=report.total_bytes
        )
        return report

    async def _unload_if_resident(self, model_id: str | None = None) -> None:
        worker = self.registry.worker
        resident = worker.resident_model
        if resident is not None and (model_id is None or resident == model_id):
            await worker.unload_model()

    async def delete_model(self, model_id: str) -> DeletionOutcome:
        if model_id.startswith("platform:"):
            return await self._delete_platform(model_id)
        return await self._delete_local(model_id)

    async def _delete_platform(self, model_id: str) -> DeletionOutcome:
        if model_id not in self._platform_model_ids():
            return DeletionOutcome.NOT_FOUND
        capability = await self._platform_capability(model_id)
        if not isinstance(capability, Available):
            return DeletionOutcome.NOT_FOUND

        provider = self.registry.peek(ProviderTag.PLATFORM)
        release = getattr(provider, "release", None)
        if release is not None:
            release(model_id)
        await self.registry.platform.evict(model_id)

        after = await self._platform_capability(model_id)
        if isinstance(after, Available):
            logger.info("平台模型驱逐仅为建议性，模型仍可用", model_id=model_id)
            return DeletionOutcome.ADVISORY
        logger.info("平台模型已驱逐", model_id=model_id)
        return DeletionOutcome.CONFIRMED

    async def _delete_local(self, model_id: str) -> DeletionOutcome:
        name = model_id_to_hf_dir(model_id)
        if name is None:
            logger.warning("拒绝删除无效的模型 ID", model_id=model_id)
            return DeletionOutcome.NOT_FOUND
        path = self.cache_dir / name
        # 只允许删除缓存根目录的直接子目录
        if not path.is_dir() or path.resolve().parent != self.cache_dir.resolve():
            return DeletionOutcome.NOT_FOUND
        await self._unload_if_resident(model_id)
        await asyncio.to_thread(shutil.rmtree, path)
        logger.info("本地模型已删除", model_id=model_id, path=str(path))
        return DeletionOutcome.CONFIRMED

    async def clear_local(self) -> int:
        """删除所有本地模型产物，返回删除的条目数。"""
        if not self.cache_dir.is_dir():
            return 0
        await self._unload_if_resident()
        entries = [e for e in self.cache_dir.iterdir() if e.is_dir()]
        for entry in entries:
            await asyncio.to_thread(shutil.rmtree, entry)
        logger.info("本地模型缓存已清空", removed=len(entries))
        return len(entries)
