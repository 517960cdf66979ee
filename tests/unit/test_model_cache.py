# tests/unit/test_model_cache.py
"""针对模型缓存管理器（枚举、平台建议性删除、本地权威删除）的单元测试。"""

from collections.abc import AsyncGenerator, Callable
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from enrich_hub.config import EnrichHubConfig
from enrich_hub.core.types import ProviderTag
from enrich_hub.model_cache import (
    DeletionOutcome,
    ModelCacheManager,
    hf_dir_to_model_id,
    model_id_to_hf_dir,
)
from enrich_hub.platform import DETECTOR_MODEL_ID, SUMMARIZER_MODEL_ID, translator_model_id
from enrich_hub.registry import AdapterRegistry
from enrich_hub.worker import InferenceWorker
from tests.helpers.fakes import FakeBackend, FakePlatformRuntime


def write_file(path: Path, size: int) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"x" * size)


@pytest.fixture
def hub(tmp_path: Path) -> Path:
    """构造一个 Hugging Face 风格的缓存目录。"""
    root = tmp_path / "hub"
    summarizer = root / "models--sshleifer--distilbart-cnn-6-6"
    write_file(summarizer / "blobs" / "aaa", 60)
    write_file(summarizer / "blobs" / "bbb", 40)
    snapshot = summarizer / "snapshots" / "rev1" / "model.bin"
    snapshot.parent.mkdir(parents=True)
    snapshot.symlink_to(summarizer / "blobs" / "aaa")

    write_file(root / "models--Helsinki-NLP--opus-mt-en-es" / "blobs" / "ccc", 50)
    write_file(root / "xet" / "chunk", 10)
    write_file(root / "version.txt", 1)
    return root


@pytest_asyncio.fixture
async def setup(
    make_config: Callable[..., EnrichHubConfig], hub: Path
) -> AsyncGenerator[dict[str, Any], None]:
    runtime = FakePlatformRuntime()
    backend = FakeBackend()
    registry = AdapterRegistry(
        make_config(),
        platform=runtime,
        worker=InferenceWorker(backend, timeout=5),
    )
    manager = ModelCacheManager(registry, cache_dir=hub)
    yield {"runtime": runtime, "backend": backend, "registry": registry, "manager": manager}
    await registry.close()


def test_hf_directory_name_mapping() -> None:
    assert hf_dir_to_model_id("models--facebook--bart-large-cnn") == "facebook/bart-large-cnn"
    assert hf_dir_to_model_id("xet") == "Cache: xet"
    assert model_id_to_hf_dir("facebook/bart-large-cnn") == "models--facebook--bart-large-cnn"
    assert model_id_to_hf_dir("Cache: xet") == "xet"


@pytest.mark.parametrize(
    "model_id", ["Cache: ", "Cache: .", "Cache: ..", "Cache: ../x", "Cache: a\\b"]
)
def test_ids_that_escape_a_single_directory_do_not_map(model_id: str) -> None:
    assert model_id_to_hf_dir(model_id) is None


@pytest.mark.asyncio
@pytest.mark.parametrize("model_id", ["Cache: ../important", "Cache: ", "Cache: .."])
async def test_local_delete_never_leaves_the_cache_root(
    setup: dict[str, Any], hub: Path, model_id: str
) -> None:
    sibling = hub.parent / "important"
    write_file(sibling / "keep.txt", 5)

    outcome = await setup["manager"].delete_model(model_id)

    assert outcome is DeletionOutcome.NOT_FOUND
    assert (sibling / "keep.txt").exists()
    assert (hub / "xet" / "chunk").exists()
    assert (hub / "models--Helsinki-NLP--opus-mt-en-es").is_dir()


@pytest.mark.asyncio
async def test_list_models_groups_fragments_and_totals(setup: dict[str, Any]) -> None:
    report = await setup["manager"].list_models()
    by_id = {m.model_id: m for m in report.models}

    summarizer = by_id["sshleifer/distilbart-cnn-6-6"]
    assert summarizer.size_bytes == 100
    assert summarizer.file_count == 2
    assert summarizer.capability == "summarize"
    assert by_id["Helsinki-NLP/opus-mt-en-es"].capability == "translate"
    assert by_id["Cache: xet"].capability is None

    local = [m for m in report.models if m.provider is ProviderTag.LOCAL]
    assert len(local) == 3
    assert report.total_bytes == 160
    assert report.bytes_by_capability == {"summarize": 100, "translate": 50, "other": 10}


@pytest.mark.asyncio
async def test_list_models_includes_only_resident_platform_models(
    setup: dict[str, Any],
) -> None:
    report = await setup["manager"].list_models()
    platform_ids = {m.model_id for m in report.models if m.provider is ProviderTag.PLATFORM}

    assert translator_model_id("en", "es") in platform_ids
    assert SUMMARIZER_MODEL_ID in platform_ids
    assert DETECTOR_MODEL_ID not in platform_ids
    assert translator_model_id("es", "es") not in platform_ids


@pytest.mark.asyncio
async def test_platform_delete_is_confirmed_when_eviction_is_honored(
    setup: dict[str, Any],
) -> None:
    registry: AdapterRegistry = setup["registry"]
    runtime: FakePlatformRuntime = setup["runtime"]
    await registry.get(ProviderTag.PLATFORM).translate("Hello", "en", "es")
    model_id = translator_model_id("en", "es")

    outcome = await setup["manager"].delete_model(model_id)

    assert outcome is DeletionOutcome.CONFIRMED
    assert runtime.evicted == [model_id]
    assert runtime.translators[0].destroyed


@pytest.mark.asyncio
async def test_platform_delete_is_advisory_when_model_stays_resident(
    setup: dict[str, Any],
) -> None:
    setup["runtime"].honor_evict = False

    outcome = await setup["manager"].delete_model(SUMMARIZER_MODEL_ID)

    assert outcome is DeletionOutcome.ADVISORY


@pytest.mark.asyncio
async def test_platform_delete_of_absent_model_is_not_found(setup: dict[str, Any]) -> None:
    manager: ModelCacheManager = setup["manager"]
    assert await manager.delete_model(DETECTOR_MODEL_ID) is DeletionOutcome.NOT_FOUND
    assert await manager.delete_model("platform:unknown") is DeletionOutcome.NOT_FOUND
    assert setup["runtime"].evicted == []


@pytest.mark.asyncio
async def test_local_delete_unloads_resident_model_first(
    setup: dict[str, Any], hub: Path
) -> None:
    registry: AdapterRegistry = setup["registry"]
    backend: FakeBackend = setup["backend"]
    await registry.worker.translate("Hello", "Helsinki-NLP/opus-mt-en-es")

    outcome = await setup["manager"].delete_model("Helsinki-NLP/opus-mt-en-es")

    assert outcome is DeletionOutcome.CONFIRMED
    assert backend.unloaded == 1
    assert registry.worker.resident_model is None
    assert not (hub / "models--Helsinki-NLP--opus-mt-en-es").exists()


@pytest.mark.asyncio
async def test_local_delete_of_unrelated_model_keeps_resident_one(
    setup: dict[str, Any], hub: Path
) -> None:
    registry: AdapterRegistry = setup["registry"]
    await registry.worker.translate("Hello", "Helsinki-NLP/opus-mt-en-es")

    outcome = await setup["manager"].delete_model("sshleifer/distilbart-cnn-6-6")

    assert outcome is DeletionOutcome.CONFIRMED
    assert registry.worker.resident_model == "Helsinki-NLP/opus-mt-en-es"
    assert await setup["manager"].delete_model("nobody/nothing") is DeletionOutcome.NOT_FOUND


@pytest.mark.asyncio
async def test_clear_local_removes_every_directory(
    setup: dict[str, Any], hub: Path
) -> None:
    removed = await setup["manager"].clear_local()

    assert removed == 3
    assert [p.name for p in hub.iterdir()] == ["version.txt"]
