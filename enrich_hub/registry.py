# enrich_hub/registry.py
"""
本模块负责动态发现 `enrich_hub.providers` 包下的适配器，并管理它们的实例。

适配器实例、平台运行时、凭证存储和本地推理工作线程都是注册表的私有状态，
调用方只能通过注册表访问它们，从而避免模块级的可变单例。
"""

import importlib
import pkgutil
from collections.abc import Sequence
from typing import Any

import structlog

from enrich_hub.config import EnrichHubConfig
from enrich_hub.core.exceptions import ConfigurationError, ProviderNotFoundError
from enrich_hub.core.types import JobKind, ProviderDescriptor, ProviderTag
from enrich_hub.credentials import CredentialStore
from enrich_hub.platform import PlatformRuntime, UnsupportedPlatformRuntime
from enrich_hub.providers.base import BaseProvider
from enrich_hub.worker import InferenceWorker, TransformersBackend

log = structlog.get_logger(__name__)
PROVIDER_CLASSES: dict[ProviderTag, type[BaseProvider[Any]]] = {}


def discover_providers() -> None:
    """
    动态发现 `enrich_hub.providers` 包下的所有适配器并注册。

    此函数是幂等的，只在首次调用时执行发现操作。缺少可选依赖的模块会被跳过。
    """
    if PROVIDER_CLASSES:
        return

    import enrich_hub.providers

    registered: list[str] = []
    skipped: list[dict[str, str]] = []

    for module_info in pkgutil.iter_modules(enrich_hub.providers.__path__):
        module_name = module_info.name
        if module_name == "base" or module_name.startswith("_"):
            continue

        try:
            module = importlib.import_module(f"enrich_hub.providers.{module_name}")
        except ImportError as e:
            skipped.append({"module": module_name, "missing_dependency": str(e.name)})
            continue

        for attr in vars(module).values():
            if (
                isinstance(attr, type)
                and issubclass(attr, BaseProvider)
                and attr is not BaseProvider
                and attr.__module__ == module.__name__
                and hasattr(attr, "TAG")
            ):
                PROVIDER_CLASSES[attr.TAG] = attr
                registered.append(attr.TAG.value)

    log_payload: dict[str, Any] = {"registered": sorted(registered)}
    if skipped:
        log_payload["skipped"] = skipped
    log.info("适配器发现完成。", **log_payload)


class AdapterRegistry:
    """拥有并惰性创建适配器实例的注册表。"""

    def __init__(
        self,
        config: EnrichHubConfig,
        *,
        platform: PlatformRuntime | None = None,
        credentials: CredentialStore | None = None,
        worker: InferenceWorker | None = None,
    ):
        discover_providers()
        self.config = config
        self._platform: PlatformRuntime = platform or UnsupportedPlatformRuntime()
        self._credentials = credentials or CredentialStore(config.credentials_path)
        self._worker = worker
        self._instances: dict[ProviderTag, BaseProvider[Any]] = {}

    @property
    def platform(self) -> PlatformRuntime:
        return self._platform

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    @property
    def worker(self) -> InferenceWorker:
        if self._worker is None:
            local_config = self.provider_config(ProviderTag.LOCAL)
            self._worker = InferenceWorker(
                TransformersBackend(local_config.cache_dir),
                timeout=local_config.request_timeout,
            )
        return self._worker

    def registered(self) -> list[ProviderTag]:
        return [tag for tag in ProviderTag if tag in PROVIDER_CLASSES]

    def is_registered(self, tag: ProviderTag) -> bool:
        return tag in PROVIDER_CLASSES

    def _provider_class(self, tag: ProviderTag) -> type[BaseProvider[Any]]:
        try:
            return PROVIDER_CLASSES[tag]
        except KeyError:
            raise ProviderNotFoundError(f"适配器 '{tag.value}' 未注册") from None

    def provider_config(self, tag: ProviderTag) -> Any:
        provider_class = self._provider_class(tag)
        overrides = self.config.provider_configs.get(tag.value) or {}
        try:
            return provider_class.CONFIG_MODEL(**overrides)
        except ValueError as e:
            raise ConfigurationError(f"适配器 '{tag.value}' 的配置无效: {e}") from e

    def _create(self, tag: ProviderTag) -> BaseProvider[Any]:
        provider_class = self._provider_class(tag)
        provider_config = self.provider_config(tag)
        if tag is ProviderTag.PLATFORM:
            return provider_class(  # type: ignore[call-arg]
                provider_config, runtime=self._platform, target_lang=self.config.target_lang
            )
        if tag is ProviderTag.KEYED:
            return provider_class(provider_config, credentials=self._credentials)  # type: ignore[call-arg]
        if tag is ProviderTag.LOCAL:
            return provider_class(provider_config, worker=self.worker)  # type: ignore[call-arg]
        return provider_class(provider_config)

    def get(self, tag: ProviderTag) -> BaseProvider[Any]:
        """获取适配器实例，首次访问时创建。"""
        if tag not in self._instances:
            self._instances[tag] = self._create(tag)
            log.debug("适配器实例已创建", provider=tag.value)
        return self._instances[tag]

    def peek(self, tag: ProviderTag) -> BaseProvider[Any] | None:
        """返回已创建的实例；不会触发创建。"""
        return self._instances.get(tag)

    def descriptors(self) -> list[ProviderDescriptor]:
        return [PROVIDER_CLASSES[tag].descriptor() for tag in self.registered()]

    def resolve_order(
        self,
        kind: JobKind,
        order: Sequence[ProviderTag] | None = None,
        preferred: ProviderTag | None = None,
    ) -> list[ProviderTag]:
        """
        计算一次作业要尝试的适配器顺序。

        显式顺序优先；否则使用配置的优先级，并把首选适配器移到最前面。
        能力与可用性过滤由编排器负责，以便记录被跳过的原因。
        """
        if order:
            return list(dict.fromkeys(order))
        resolved = list(self.config.provider_order)
        if preferred is not None:
            resolved = [preferred] + [t for t in resolved if t is not preferred]
        return resolved

    async def close(self) -> None:
        for tag, instance in list(self._instances.items()):
            try:
                await instance.close()
            except Exception:
                log.error("关闭适配器时出错", provider=tag.value, exc_info=True)
        self._instances.clear()
        if self._worker is not None:
            self._worker.shutdown()
