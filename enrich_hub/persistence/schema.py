# enrich_hub/persistence/schema.py
"""结果缓存的 ORM 模型。每个 (content_id, job_kind) 只保留一行。"""

from __future__ import annotations

from typing import Any

from sqlalchemy import JSON, BigInteger, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """声明式基类。"""


class EhResult(Base):
    """最近一次成功的富化结果。"""

    __tablename__ = "eh_results"

    content_id: Mapped[str] = mapped_column(String, primary_key=True)
    job_kind: Mapped[str] = mapped_column(String(16), primary_key=True)
    output_text: Mapped[str] = mapped_column(Text, nullable=False)
    provider_used: Mapped[str] = mapped_column(String(32), nullable=False)
    source_language: Mapped[str] = mapped_column(String(16), nullable=False)
    target_language: Mapped[str] = mapped_column(String(16), nullable=False)
    timestamp_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    model: Mapped[str | None] = mapped_column(String)
    usage_json: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    summary_length: Mapped[str | None] = mapped_column(String(16))
