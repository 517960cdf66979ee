# enrich_hub/core/interfaces.py
"""定义编排器与外部结果缓存之间的窄接口协议。"""

from __future__ import annotations

from typing import Protocol

from enrich_hub.core.types import EnrichmentResult, JobKind


class ResultStore(Protocol):
    """
    结果缓存的纯异步接口协议。

    以 (content_id, kind) 为键保存最近一次成功的富化结果；
    `put` 总是覆盖旧值，从不追加。
    """

    async def connect(self) -> None:
        """建立与底层存储的连接。"""
        ...

    async def close(self) -> None:
        """关闭与底层存储的连接。"""
        ...

    async def get(self, content_id: str, kind: JobKind) -> EnrichmentResult | None:
        """读取缓存的结果；不存在时返回 None。"""
        ...

    async def put(self, result: EnrichmentResult) -> None:
        """写入（覆盖）一条结果。"""
        ...

    async def delete(self, content_id: str, kind: JobKind) -> bool:
        """删除一条结果，返回是否确实存在。"""
        ...
