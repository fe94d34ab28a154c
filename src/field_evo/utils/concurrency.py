"""并发工具 / Concurrency helpers"""

import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")

logger = logging.getLogger(__name__)


class Stagger:
    """保证相邻调用的启动间隔不小于 interval 秒
    Keeps consecutive call starts at least `interval` seconds apart"""

    def __init__(self, interval: float):
        self.interval = interval
        self._lock = asyncio.Lock()
        self._next_start = 0.0

    async def wait(self) -> None:
        if self.interval <= 0:
            return
        async with self._lock:
            loop = asyncio.get_running_loop()
            now = loop.time()
            delay = self._next_start - now
            if delay > 0:
                await asyncio.sleep(delay)
                now = loop.time()
            self._next_start = now + self.interval


async def process_with_concurrency(
    items: Sequence[T],
    limit: int,
    fn: Callable[[T], Awaitable[R]],
    stagger: float = 0.0,
) -> list[R]:
    """
    以有限并发处理所有元素，结果保持输入顺序
    Process items with bounded concurrency, keeping input order

    Args:
        items: 待处理元素 / Items to process
        limit: 最大并发数 / Maximum concurrent calls
        fn: 异步处理函数，应自行处理异常 / Async worker; expected to handle its own errors
        stagger: 相邻调用的最小启动间隔（秒）/ Minimum spacing between call starts
    """
    semaphore = asyncio.Semaphore(max(1, limit))
    spacing = Stagger(stagger)

    async def run_with_semaphore(item: T) -> R:
        async with semaphore:
            await spacing.wait()
            return await fn(item)

    return list(await asyncio.gather(*[run_with_semaphore(item) for item in items]))


async def retry_with_backoff(
    fn: Callable[[], Awaitable[R]],
    retries: int = 1,
    delay: float = 0.5,
) -> R:
    """
    失败后按指数退避重试 / Retry with exponential backoff

    取消不会被重试 / Cancellation is never retried
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except Exception as e:
            if attempt >= retries:
                raise
            wait = delay * (2 ** attempt)
            logger.warning("Attempt %d failed (%s), retrying in %.2fs", attempt + 1, e, wait)
            attempt += 1
            if wait > 0:
                await asyncio.sleep(wait)
