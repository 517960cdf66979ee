# tests/unit/test_registry.py
"""针对适配器发现与注册表的单元测试。"""

from collections.abc import Callable

import pytest

from enrich_hub.config import EnrichHubConfig
from enrich_hub.core.exceptions import ConfigurationError
from enrich_hub.core.types import CostClass, JobKind, ProviderTag
from enrich_hub.providers.debug import DebugProvider
from enrich_hub.providers.keyed import KeyedModelProvider
from enrich_hub.providers.local import LocalInferenceProvider
from enrich_hub.providers.platform import PlatformProvider
from enrich_hub.registry import PROVIDER_CLASSES, AdapterRegistry, discover_providers
from enrich_hub.worker import InferenceWorker
from tests.helpers.fakes import FakeBackend, FakePlatformRuntime

ConfigFactory = Callable[..., EnrichHubConfig]


def test_discovery_registers_every_builtin_provider() -> None:
    discover_providers()
    assert set(PROVIDER_CLASSES) == set(ProviderTag)
    assert PROVIDER_CLASSES[ProviderTag.DEBUG] is DebugProvider


def test_descriptors_follow_enum_order(make_config: ConfigFactory) -> None:
    registry = AdapterRegistry(make_config())
    descriptors = registry.descriptors()

    assert [d.tag for d in descriptors] == list(ProviderTag)
    shared = next(d for d in descriptors if d.tag is ProviderTag.SHARED)
    assert shared.cost_class is CostClass.RATE_LIMITED
    assert shared.capabilities == frozenset({JobKind.SUMMARIZE})


@pytest.mark.asyncio
async def test_instances_are_created_lazily_with_their_dependencies(
    make_config: ConfigFactory,
) -> None:
    runtime = FakePlatformRuntime()
    worker = InferenceWorker(FakeBackend())
    registry = AdapterRegistry(make_config(target_lang="fr"), platform=runtime, worker=worker)

    assert registry.peek(ProviderTag.PLATFORM) is None
    platform = registry.get(ProviderTag.PLATFORM)
    assert isinstance(platform, PlatformProvider)
    assert platform.runtime is runtime
    assert platform.target_lang == "fr"
    assert registry.get(ProviderTag.PLATFORM) is platform

    keyed = registry.get(ProviderTag.KEYED)
    assert isinstance(keyed, KeyedModelProvider)
    assert keyed._credentials is registry.credentials

    local = registry.get(ProviderTag.LOCAL)
    assert isinstance(local, LocalInferenceProvider)
    assert local.worker is worker

    await registry.close()
    assert registry.peek(ProviderTag.PLATFORM) is None


def test_provider_configs_override_defaults(make_config: ConfigFactory) -> None:
    registry = AdapterRegistry(
        make_config(provider_configs={"debug": {"mode": "FAIL", "rpm": 30}})
    )
    provider = registry.get(ProviderTag.DEBUG)
    assert provider.config.mode == "FAIL"
    assert provider.config.rpm == 30


def test_invalid_provider_config_is_a_configuration_error(
    make_config: ConfigFactory,
) -> None:
    registry = AdapterRegistry(make_config(provider_configs={"shared": {"endpoint": "not a url"}}))
    with pytest.raises(ConfigurationError, match="shared"):
        registry.get(ProviderTag.SHARED)


def test_resolve_order(make_config: ConfigFactory) -> None:
    registry = AdapterRegistry(
        make_config(provider_order=["platform", "shared", "keyed", "local"])
    )

    assert registry.resolve_order(JobKind.SUMMARIZE) == [
        ProviderTag.PLATFORM,
        ProviderTag.SHARED,
        ProviderTag.KEYED,
        ProviderTag.LOCAL,
    ]
    assert registry.resolve_order(JobKind.SUMMARIZE, preferred=ProviderTag.LOCAL)[0] is (
        ProviderTag.LOCAL
    )
    assert registry.resolve_order(
        JobKind.TRANSLATE, order=[ProviderTag.KEYED, ProviderTag.DEBUG, ProviderTag.KEYED]
    ) == [ProviderTag.KEYED, ProviderTag.DEBUG]
