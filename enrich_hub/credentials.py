# enrich_hub/credentials.py
"""
用户凭证存储。

凭证以 base64 编码后写入本地 JSON 设置文件。这只是混淆而不是加密，
与原阅读器的设置存储保持一致。
"""

import base64
import binascii
import json
from pathlib import Path

import structlog
from pydantic import SecretStr

from enrich_hub.core.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

KEYED_API_KEY = "keyed-api-key"


class CredentialStore:
    """基于 JSON 文件的简单键值凭证存储。"""

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("无法读取凭证文件，视为空", path=str(self.path), error=str(e))
            return {}
        if not isinstance(data, dict):
            logger.warning("凭证文件格式无效，视为空", path=str(self.path))
            return {}
        return {k: v for k, v in data.items() if isinstance(v, str)}

    def _save(self, data: dict[str, str]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps(data, indent=2), encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(f"无法写入凭证文件 '{self.path}': {e}") from e

    def store(self, name: str, value: str) -> None:
        if not value.strip():
            raise ValueError("凭证不能为空")
        data = self._load()
        data[name] = base64.b64encode(value.strip().encode("utf-8")).decode("ascii")
        self._save(data)
        logger.info("凭证已保存", name=name)

    def get(self, name: str) -> SecretStr | None:
        encoded = self._load().get(name)
        if not encoded:
            return None
        try:
            decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            logger.error("凭证解码失败，视为不存在", name=name, error=str(e))
            return None
        return SecretStr(decoded)

    def has(self, name: str) -> bool:
        return self.get(name) is not None

    def clear(self, name: str) -> bool:
        data = self._load()
        if name not in data:
            return False
        del data[name]
        self._save(data)
        logger.info("凭证已清除", name=name)
        return True
