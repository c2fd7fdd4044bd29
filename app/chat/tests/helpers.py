"""Helpers shared by the async chat tests."""

import asyncio


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> None:
    """
    Poll predicate until it returns a truthy value.

    Raises:
        AssertionError: If timeout elapses first
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError(f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)


async def settle(seconds: float = 0.05) -> None:
    """Give pending realtime deliveries a chance to arrive."""
    await asyncio.sleep(seconds)
