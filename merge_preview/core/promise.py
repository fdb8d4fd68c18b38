from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


async def run_with_floor(operation: Callable[[], Awaitable[T]], min_millis: int) -> T:
    """执行异步操作，并保证至少耗时 min_millis 毫秒后才返回结果。

    下限计时与操作同时开始；操作失败时立即抛出，不等待下限时间。
    """
    floor = asyncio.ensure_future(asyncio.sleep(max(min_millis, 0) / 1000))
    try:
        result = await operation()
    except BaseException:
        floor.cancel()
        raise
    await floor
    return result
