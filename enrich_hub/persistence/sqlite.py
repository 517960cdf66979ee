# enrich_hub/persistence/sqlite.py
"""`ResultStore` 协议的 SQLite 实现，基于 SQLAlchemy 异步引擎与 aiosqlite 驱动。"""

from __future__ import annotations

import structlog
from sqlalchemy import delete, select, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from enrich_hub.core.exceptions import DatabaseError
from enrich_hub.core.types import (
    EnrichmentResult,
    JobKind,
    ProviderTag,
    SummaryLength,
)
from enrich_hub.persistence.schema import Base, EhResult

logger = structlog.get_logger(__name__)


def _to_result(row: EhResult) -> EnrichmentResult:
    return EnrichmentResult(
        content_id=row.content_id,
        kind=JobKind(row.job_kind),
        output_text=row.output_text,
        provider_used=ProviderTag(row.provider_used),
        source_language=row.source_language,
        target_language=row.target_language,
        timestamp_ms=row.timestamp_ms,
        model=row.model,
        usage=row.usage_json,
        summary_length=SummaryLength(row.summary_length) if row.summary_length else None,
    )


class SQLiteResultStore:
    """把富化结果持久化到 SQLite 文件中，跨进程重启保留。"""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], db_url: str):
        self._sessionmaker = sessionmaker
        self.db_url = db_url

    @classmethod
    def from_url(cls, db_url: str) -> SQLiteResultStore:
        engine = create_async_engine(db_url)
        return cls(async_sessionmaker(engine, expire_on_commit=False), db_url)

    @property
    def _engine(self):  # type: ignore[no-untyped-def]
        return self._sessionmaker.kw["bind"]

    async def connect(self) -> None:
        """建立连接、创建表结构并设置 WAL 模式。"""
        try:
            async with self._engine.begin() as conn:
                if ":memory:" not in self.db_url:
                    await conn.execute(text("PRAGMA journal_mode=WAL;"))
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise DatabaseError(f"SQLite 结果缓存初始化失败: {e}") from e
        logger.info("SQLite 结果缓存已连接", db_url=self.db_url)

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("SQLite 结果缓存引擎已关闭。")

    async def get(self, content_id: str, kind: JobKind) -> EnrichmentResult | None:
        try:
            async with self._sessionmaker() as session:
                stmt = select(EhResult).where(
                    EhResult.content_id == content_id,
                    EhResult.job_kind == kind.value,
                )
                row = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise DatabaseError(f"读取缓存结果失败: {e}") from e
        return _to_result(row) if row is not None else None

    async def put(self, result: EnrichmentResult) -> None:
        values = {
            "content_id": result.content_id,
            "job_kind": result.kind.value,
            "output_text": result.output_text,
            "provider_used": result.provider_used.value,
            "source_language": result.source_language,
            "target_language": result.target_language,
            "timestamp_ms": result.timestamp_ms,
            "model": result.model,
            "usage_json": result.usage,
            "summary_length": result.summary_length.value
            if result.summary_length
            else None,
        }
        stmt = sqlite_insert(EhResult).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[EhResult.content_id, EhResult.job_kind],
            set_={
                k: stmt.excluded[k]
                for k in values
                if k not in ("content_id", "job_kind")
            },
        )
        try:
            async with self._sessionmaker.begin() as session:
                await session.execute(stmt)
        except SQLAlchemyError as e:
            raise DatabaseError(f"写入缓存结果失败: {e}") from e

    async def delete(self, content_id: str, kind: JobKind) -> bool:
        try:
            async with self._sessionmaker.begin() as session:
                res = await session.execute(
                    delete(EhResult).where(
                        EhResult.content_id == content_id,
                        EhResult.job_kind == kind.value,
                    )
                )
                return bool(res.rowcount)
        except SQLAlchemyError as e:
            raise DatabaseError(f"删除缓存结果失败: {e}") from e
