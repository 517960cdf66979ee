# enrich_hub/result_cache.py
"""
本模块提供结果缓存的内存实现以及按 URL 创建结果缓存的工厂函数。

结果以 (content_id, kind) 为键；写入总是覆盖旧值。
"""

import asyncio
from enum import Enum
from typing import Union

import structlog
from cachetools import LRUCache, TTLCache
from pydantic import BaseModel, Field

from enrich_hub.core.exceptions import ConfigurationError
from enrich_hub.core.interfaces import ResultStore
from enrich_hub.core.types import EnrichmentResult, JobKind

logger = structlog.get_logger(__name__)

MEMORY_URL = "memory://"


class CacheType(str, Enum):
    """定义了支持的内存缓存类型。"""

    TTL = "ttl"
    LRU = "lru"


class CacheConfig(BaseModel):
    """内存结果缓存的配置模型。"""

    maxsize: int = Field(default=1000, gt=0)
    ttl: int = Field(default=24 * 3600, gt=0)
    cache_type: CacheType = CacheType.LRU
    lock_pool_size: int = Field(
        default=256, gt=0, description="用于并发写入的锁池大小"
    )


def result_key(content_id: str, kind: JobKind) -> str:
    return f"{kind.value}|{content_id}"


class MemoryResultStore:
    """一个异步安全的内存结果缓存，基于 cachetools 与分段锁。"""

    def __init__(self, config: CacheConfig | None = None):
        self.config = config or CacheConfig()
        self.cache: Union[
            LRUCache[str, EnrichmentResult], TTLCache[str, EnrichmentResult]
        ]
        self._lock_pool_size = self.config.lock_pool_size
        self._key_locks: list[asyncio.Lock] = [
            asyncio.Lock() for _ in range(self._lock_pool_size)
        ]
        self._global_lock = asyncio.Lock()
        self._initialize_cache()

    def _initialize_cache(self) -> None:
        if self.config.cache_type is CacheType.TTL:
            self.cache = TTLCache(maxsize=self.config.maxsize, ttl=self.config.ttl)
        else:
            self.cache = LRUCache(maxsize=self.config.maxsize)

    def _lock_for(self, key: str) -> asyncio.Lock:
        return self._key_locks[hash(key) % self._lock_pool_size]

    async def connect(self) -> None:
        logger.debug("内存结果缓存已就绪", maxsize=self.config.maxsize)

    async def close(self) -> None:
        return None

    async def get(self, content_id: str, kind: JobKind) -> EnrichmentResult | None:
        key = result_key(content_id, kind)
        async with self._lock_for(key):
            return self.cache.get(key)

    async def put(self, result: EnrichmentResult) -> None:
        key = result_key(result.content_id, result.kind)
        async with self._lock_for(key):
            self.cache[key] = result.model_copy(update={"from_cache": False})

    async def delete(self, content_id: str, kind: JobKind) -> bool:
        key = result_key(content_id, kind)
        async with self._lock_for(key):
            return self.cache.pop(key, None) is not None

    async def clear(self) -> None:
        """异步、安全地清空整个缓存。"""
        async with self._global_lock:
            self._key_locks = [asyncio.Lock() for _ in range(self._lock_pool_size)]
            self._initialize_cache()


def create_result_store(url: str, cache_config: CacheConfig | None = None) -> ResultStore:
    """
    根据 URL 创建结果缓存实例。这是实例化结果缓存的唯一入口。

    支持 `memory://` 与 `sqlite+aiosqlite:///path/to/file.db`。
    """
    if url == MEMORY_URL:
        return MemoryResultStore(cache_config)

    if url.startswith("sqlite"):
        from enrich_hub.persistence.sqlite import SQLiteResultStore

        return SQLiteResultStore.from_url(url)

    raise ConfigurationError(f"不支持的结果缓存类型或驱动: '{url}'")
