# enrich_hub/core/exceptions.py
"""
本模块定义了 Enrich-Hub 项目中所有自定义的、语义化的异常类型。

适配器层的错误统一继承自 `ProviderError`，由回退编排器捕获并分类；
只有 `InputRejected` 与聚合后的 `EnrichmentFailed` 会暴露给最终调用者。
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from enrich_hub.core.types import ProviderAttempt


class EnrichHubError(Exception):
    """
    所有 Enrich-Hub 自定义异常的通用基类。
    捕获此异常可以处理所有源自本项目的预期错误。
    """

    pass


class ConfigurationError(EnrichHubError):
    """表示在加载、解析或验证配置时发生的错误。"""

    pass


class ProviderNotFoundError(EnrichHubError, KeyError):
    """
    表示尝试访问一个未注册的适配器时引发的错误。
    继承自 KeyError 是为了保持与字典查找行为的一致性。
    """

    pass


class DatabaseError(EnrichHubError):
    """表示结果缓存持久化层（如 SQLite）操作失败，通常包装底层驱动异常。"""

    pass


class ProgressStateError(EnrichHubError):
    """表示进度状态机收到了非法的状态迁移，属于调用方的编程错误。"""

    pass


class InputRejected(EnrichHubError):
    """输入文本为空、过短或已是目标语言。这是终止性错误，不会尝试任何适配器。"""

    pass


class ProviderError(EnrichHubError):
    """所有适配器执行失败的基类。"""

    error_kind: str = "provider_error"
    retryable: bool = True

    def __init__(self, message: str, *, provider: str | None = None):
        super().__init__(message)
        self.message = message
        self.provider = provider


class ProviderUnavailable(ProviderError):
    """能力探测失败或服务暂时不可达，编排器会静默跳到下一个适配器。"""

    error_kind = "unavailable"


class CredentialMissing(ProviderUnavailable):
    """用户密钥型适配器没有可用的凭证，处理方式与 ProviderUnavailable 相同。"""

    error_kind = "credential_missing"


class InsufficientStorageError(ProviderUnavailable):
    """
    设备端模型因本地存储空间不足而无法下载。
    与硬性不可用不同，用户释放空间后即可恢复，因此需要单独呈现。
    """

    error_kind = "insufficient_storage"


class QuotaExceeded(ProviderError):
    """远程配额耗尽。携带配额重置时间，以便告知调用方精确的重试时间。"""

    error_kind = "quota_exceeded"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        reset_at: datetime | None = None,
    ):
        super().__init__(message, provider=provider)
        self.reset_at = reset_at

    @property
    def retry_after_seconds(self) -> int | None:
        """距离配额重置的剩余秒数（向上取整，最小为 0）。"""
        if self.reset_at is None:
            return None
        delta = (self.reset_at - datetime.now(timezone.utc)).total_seconds()
        return max(0, int(delta + 0.999))


class ContentRejected(ProviderError):
    """适配器拒绝处理该内容（例如安全过滤或服务端校验失败），回退到下一个适配器。"""

    error_kind = "content_rejected"
    retryable = False


class TransformFailure(ProviderError):
    """适配器已执行，但返回了空的或格式错误的输出。"""

    error_kind = "transform_failure"


class TimeoutExceeded(ProviderError):
    """本地推理请求超过了截止时间，对应的挂起请求已被清除。"""

    error_kind = "timeout"


class EnrichmentFailed(EnrichHubError):
    """
    所有适配器均失败后的聚合错误。
    它列出了每个被尝试的适配器及其失败原因，使错误可操作而不是含糊不清。
    """

    def __init__(self, message: str, attempts: list[ProviderAttempt]):
        self.attempts = attempts
        details = "; ".join(
            f"{a.provider.value}: [{a.error_kind}] {a.message}" for a in attempts
        )
        super().__init__(f"{message} ({details})" if details else message)

    @property
    def quota_reset_at(self) -> datetime | None:
        """若有适配器因配额失败，返回最早的配额重置时间。"""
        resets = [a.retry_at for a in self.attempts if a.retry_at is not None]
        return min(resets) if resets else None
