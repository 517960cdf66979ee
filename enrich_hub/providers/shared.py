# enrich_hub/providers/shared.py
"""
共享远程摘要端点适配器。

端点按客户端 IP 限制每小时请求数，并通过 `X-RateLimit-*` 响应头公布剩余配额。
本适配器在客户端用令牌桶镜像这一配额，并记住服务端报告的耗尽状态，
从而在配额用尽时无需发起网络请求即可快速失败。
"""

from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field, HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

from enrich_hub.core.exceptions import (
    ContentRejected,
    InputRejected,
    ProviderUnavailable,
    QuotaExceeded,
    TransformFailure,
)
from enrich_hub.core.types import (
    CostClass,
    JobKind,
    ProviderOutput,
    ProviderTag,
    SummaryLength,
)
from enrich_hub.platform import DownloadCallback
from enrich_hub.providers.base import BaseProvider, BaseProviderConfig
from enrich_hub.rate_limiter import RateLimiter

logger = structlog.get_logger(__name__)

MIN_INPUT_CHARS = 50
MAX_INPUT_CHARS = 50000


class QuotaInfo(BaseModel):
    """从响应头解析出的配额状态。"""

    limit: int
    remaining: int
    reset_at: datetime | None = None

    @property
    def exhausted(self) -> bool:
        if self.remaining > 0:
            return False
        return self.reset_at is None or self.reset_at > datetime.now(timezone.utc)


def parse_quota_headers(headers: httpx.Headers) -> QuotaInfo | None:
    limit = headers.get("X-RateLimit-Limit")
    remaining = headers.get("X-RateLimit-Remaining")
    if limit is None or remaining is None:
        return None
    try:
        reset_raw = headers.get("X-RateLimit-Reset")
        reset_at = (
            datetime.fromtimestamp(int(reset_raw) / 1000, tz=timezone.utc)
            if reset_raw
            else None
        )
        return QuotaInfo(limit=int(limit), remaining=int(remaining), reset_at=reset_at)
    except ValueError:
        logger.warning("无法解析配额响应头", limit=limit, remaining=remaining)
        return None


class SharedEndpointConfig(BaseSettings, BaseProviderConfig):
    """共享端点适配器的配置模型。"""

    model_config = SettingsConfigDict(env_prefix="EH_SHARED_", extra="ignore")

    endpoint: HttpUrl | None = Field(default=None, description="摘要端点的完整 URL")
    requests_per_hour: int = Field(default=5, gt=0)
    max_input_chars: int = Field(default=MAX_INPUT_CHARS, gt=0)
    timeout_total: float = 60.0
    timeout_connect: float = 5.0


class SharedEndpointProvider(BaseProvider[SharedEndpointConfig]):
    """调用共享摘要端点的适配器（仅支持摘要）。"""

    TAG = ProviderTag.SHARED
    COST_CLASS = CostClass.RATE_LIMITED
    CAPABILITIES = frozenset({JobKind.SUMMARIZE})
    CONFIG_MODEL = SharedEndpointConfig
    VERSION = "1.0.0"

    def __init__(
        self,
        config: SharedEndpointConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(config)
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._quota_limiter = RateLimiter.per_hour(config.requests_per_hour)
        self.quota: QuotaInfo | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self.config.timeout_total, connect=self.config.timeout_connect
                ),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        await super().close()

    async def _check_availability(
        self, kind: JobKind, source_lang: str | None, target_lang: str | None
    ) -> bool:
        # 配额耗尽不算不可用：编排器需要看到 QuotaExceeded 才能报告重置时间
        return self.config.endpoint is not None

    def _quota_error(self, message: str, reset_at: datetime | None) -> QuotaExceeded:
        return QuotaExceeded(message, provider=self.TAG.value, reset_at=reset_at)

    async def _fail_fast(self) -> None:
        if self.quota is not None and self.quota.exhausted:
            raise self._quota_error("共享端点配额已用尽", self.quota.reset_at)
        wait = await self._quota_limiter.try_acquire()
        if wait > 0:
            raise self._quota_error(
                "已达到共享端点的每小时请求上限",
                datetime.now(timezone.utc) + timedelta(seconds=wait),
            )

    def _reset_from_429(
        self, response: httpx.Response, body: dict[str, Any]
    ) -> datetime | None:
        now = datetime.now(timezone.utc)
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return now + timedelta(seconds=int(retry_after))
        if isinstance(body.get("retryAfter"), (int, float)):
            return now + timedelta(seconds=float(body["retryAfter"]))
        if self.quota is not None:
            return self.quota.reset_at
        return None

    async def _summarize(
        self,
        text: str,
        length: SummaryLength,
        source_lang: str,
        target_lang: str,
        on_download: DownloadCallback | None,
    ) -> ProviderOutput:
        if self.config.endpoint is None:
            raise ProviderUnavailable("未配置共享端点 URL", provider=self.TAG.value)
        if len(text) < MIN_INPUT_CHARS:
            raise InputRejected(f"文本过短，共享端点至少需要 {MIN_INPUT_CHARS} 个字符")
        text = text[:MAX_INPUT_CHARS]

        await self._fail_fast()

        try:
            response = await self.client.post(
                str(self.config.endpoint), json={"text": text, "length": length.value}
            )
        except httpx.HTTPError as e:
            raise ProviderUnavailable(
                f"无法连接共享端点: {e.__class__.__name__}: {e}", provider=self.TAG.value
            ) from e

        quota = parse_quota_headers(response.headers)
        if quota is not None:
            self.quota = quota

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.status_code == 429:
            message = body.get("message") or "共享端点配额已用尽"
            raise self._quota_error(message, self._reset_from_429(response, body))
        if response.status_code == 400:
            raise ContentRejected(
                f"共享端点拒绝了请求: {body.get('error', response.text)}",
                provider=self.TAG.value,
            )
        if response.status_code >= 300:
            raise ProviderUnavailable(
                f"共享端点返回 HTTP {response.status_code}: {body.get('error', '')}",
                provider=self.TAG.value,
            )

        summary = body.get("summary")
        if not isinstance(summary, str) or not summary.strip():
            raise TransformFailure("共享端点返回了空摘要", provider=self.TAG.value)

        usage = None
        if body.get("tokensUsed") is not None:
            usage = {"total_tokens": body["tokensUsed"]}
        logger.debug(
            "共享端点摘要完成",
            remaining=self.quota.remaining if self.quota else None,
        )
        return ProviderOutput(text=summary.strip(), model=body.get("model"), usage=usage)
