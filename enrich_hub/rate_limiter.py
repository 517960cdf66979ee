# enrich_hub/rate_limiter.py
"""本模块提供一个基于令牌桶算法的异步速率限制器，既可等待令牌，也可立即判定配额。"""

import asyncio
import time


class RateLimiter:
    """一个异步安全的令牌桶（Token Bucket）速率限制器。"""

    def __init__(self, refill_rate: float, capacity: float):
        if refill_rate <= 0 or capacity <= 0:
            raise ValueError("速率和容量必须为正数")
        self.refill_rate = refill_rate
        self.capacity = capacity
        self.tokens = capacity
        self.last_refill_time = time.monotonic()
        self._lock = asyncio.Lock()

    @classmethod
    def per_hour(cls, requests: int) -> "RateLimiter":
        """按“每小时 N 次请求”构造限制器，桶容量即为 N。"""
        return cls(refill_rate=requests / 3600, capacity=requests)

    def _refill(self) -> None:
        now = time.monotonic()
        elapsed = now - self.last_refill_time
        if elapsed > 0:
            self.tokens = min(self.capacity, self.tokens + elapsed * self.refill_rate)
            self.last_refill_time = now

    def _check_request(self, tokens_needed: float) -> None:
        if tokens_needed > self.capacity:
            raise ValueError("请求的令牌数不能超过桶的容量")

    async def acquire(self, tokens_needed: int = 1) -> None:
        """异步获取指定数量的令牌，如果令牌不足则等待。"""
        self._check_request(tokens_needed)
        while True:
            async with self._lock:
                self._refill()
                if self.tokens >= tokens_needed:
                    self.tokens -= tokens_needed
                    return
                wait_time = (tokens_needed - self.tokens) / self.refill_rate

            # 在锁外等待，允许其他协程并发地进入等待状态
            await asyncio.sleep(wait_time)

    async def try_acquire(self, tokens_needed: int = 1) -> float:
        """
        尝试立即获取令牌而不等待。

        Returns:
            0.0 表示成功获取；否则返回令牌补足所需的秒数，此时不消耗任何令牌。
        """
        self._check_request(tokens_needed)
        async with self._lock:
            self._refill()
            if self.tokens >= tokens_needed:
                self.tokens -= tokens_needed
                return 0.0
            return (tokens_needed - self.tokens) / self.refill_rate
