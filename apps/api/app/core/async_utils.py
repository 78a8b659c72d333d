"""Bridge from sync code (FastAPI sync endpoints, the CLI) into async services.

Outbound HTTP (Anthropic, knowledge URLs) is async, while routes are plain
``def`` endpoints running in AnyIO's worker threads.
"""

from __future__ import annotations

import asyncio
from typing import Coroutine, TypeVar

import anyio

T = TypeVar("T")


def run_async(coro: Coroutine[object, object, T], *, timeout: float | None = None) -> T:
    """
    Run ``coro`` to completion and return its result.

    From an AnyIO worker thread the coroutine runs on the server's event loop.
    With no loop at all (CLI, cron) a fresh loop is started. Calling this from
    inside a running loop is a bug and raises ``RuntimeError``.
    """

    async def _runner() -> T:
        if timeout is None:
            return await coro
        with anyio.fail_after(timeout):
            return await coro

    try:
        return anyio.from_thread.run(_runner)
    except RuntimeError:
        pass

    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return anyio.run(_runner)
    coro.close()
    raise RuntimeError("run_async called from async context; use await instead")
