# enrich_hub/persistence/__init__.py
"""本模块作为结果缓存持久化层的公共入口。"""

from .schema import Base, EhResult
from .sqlite import SQLiteResultStore

__all__ = ["Base", "EhResult", "SQLiteResultStore"]
