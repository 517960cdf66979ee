# tests/unit/test_rate_limiter.py
"""
针对 `enrich_hub.rate_limiter` 模块的单元测试。

覆盖令牌的消耗与补充、令牌不足时的异步等待，以及共享端点使用的
“立即判定”接口 `try_acquire`。
"""

import time
from unittest.mock import AsyncMock

import pytest
from pytest_mock import MockerFixture

from enrich_hub.rate_limiter import RateLimiter


@pytest.mark.parametrize(
    "rate, capacity",
    [
        (0, 10),
        (-1, 10),
        (10, 0),
        (10, -1),
    ],
)
def test_rate_limiter_init_with_invalid_args(rate: float, capacity: float) -> None:
    """初始化时拒绝无效的速率或容量参数。"""
    with pytest.raises(ValueError, match="速率和容量必须为正数"):
        RateLimiter(refill_rate=rate, capacity=capacity)


def test_per_hour_builds_bucket_with_hourly_capacity() -> None:
    limiter = RateLimiter.per_hour(5)
    assert limiter.capacity == 5
    assert limiter.tokens == 5
    assert limiter.refill_rate == pytest.approx(5 / 3600)


@pytest.mark.asyncio
async def test_acquire_waits_when_tokens_are_insufficient(
    mocker: MockerFixture,
) -> None:
    """令牌不足时 acquire 会异步等待，并且等待时间计算正确。"""
    limiter = RateLimiter(refill_rate=10, capacity=10)
    mock_sleep = mocker.patch("asyncio.sleep", new_callable=AsyncMock)

    start_time = time.monotonic()
    time_sequence = [start_time, start_time, start_time + 0.5]

    def monotonic_side_effect() -> float:
        return time_sequence.pop(0) if time_sequence else start_time + 0.5

    mocker.patch("time.monotonic", side_effect=monotonic_side_effect)

    await limiter.acquire(10)
    await limiter.acquire(5)

    mock_sleep.assert_called_once()
    assert pytest.approx(mock_sleep.call_args[0][0]) == 0.5
    assert limiter.tokens == 0


@pytest.mark.asyncio
async def test_refill_does_not_exceed_capacity(mocker: MockerFixture) -> None:
    limiter = RateLimiter(refill_rate=10, capacity=10)
    limiter.tokens = 2
    mocker.patch("time.monotonic", return_value=limiter.last_refill_time + 2)

    await limiter.acquire(1)

    assert limiter.tokens == 9


@pytest.mark.asyncio
async def test_try_acquire_reports_wait_without_consuming(
    mocker: MockerFixture,
) -> None:
    """配额耗尽后 try_acquire 立即返回需要等待的秒数，且不扣减令牌。"""
    limiter = RateLimiter.per_hour(5)
    mocker.patch("time.monotonic", return_value=limiter.last_refill_time)

    for _ in range(5):
        assert await limiter.try_acquire() == 0.0

    wait = await limiter.try_acquire()
    assert wait == pytest.approx(720.0)
    assert limiter.tokens == pytest.approx(0.0)

    # 第二次判定仍然报告相同的等待时间，说明没有产生“欠债”
    assert await limiter.try_acquire() == pytest.approx(720.0)


@pytest.mark.asyncio
async def test_acquire_more_than_capacity_raises_error() -> None:
    limiter = RateLimiter(refill_rate=10, capacity=10)
    with pytest.raises(ValueError, match="请求的令牌数不能超过桶的容量"):
        await limiter.acquire(11)
    with pytest.raises(ValueError, match="请求的令牌数不能超过桶的容量"):
        await limiter.try_acquire(11)
