"""Run blocking chain calls off the event loop.

Transactions from one signer share a nonce sequence, so each signer address
gets its own single-thread executor: submissions for that signer run one at a
time, in arrival order, while different signers (and all reads) proceed in
parallel. Every call is bounded by a timeout; a queued call whose caller gave
up is cancelled before it starts.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any, TypeVar

from provelt.errors import ChainUnavailable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SignerDispatcher:
    """Per-signer serial dispatch queue for transaction submission."""

    def __init__(self) -> None:
        self._executors: dict[str, ThreadPoolExecutor] = {}

    def _executor_for(self, signer: str) -> ThreadPoolExecutor:
        key = signer.lower()
        executor = self._executors.get(key)
        if executor is None:
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"signer-{key[:10]}")
            self._executors[key] = executor
        return executor

    async def submit(
        self,
        signer: str,
        fn: Callable[..., T],
        *args: Any,
        timeout: float,
    ) -> T:
        """Queue ``fn(*args)`` behind earlier submissions from the same signer."""
        loop = asyncio.get_running_loop()
        future = loop.run_in_executor(self._executor_for(signer), functools.partial(fn, *args))
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError as exc:
            name = _call_name(fn)
            logger.warning("Chain call %s for signer %s timed out after %.1fs", name, signer, timeout)
            raise ChainUnavailable(f"{name} timed out after {timeout:.0f}s", signer=signer) from exc

    def shutdown(self) -> None:
        for executor in self._executors.values():
            executor.shutdown(wait=False, cancel_futures=True)
        self._executors.clear()


async def call_in_thread(fn: Callable[..., T], *args: Any, timeout: float) -> T:
    """Run a read-only chain call in the default pool with a bounded wait."""
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise ChainUnavailable(f"{_call_name(fn)} timed out after {timeout:.0f}s") from exc


def _call_name(fn: Callable[..., Any]) -> str:
    return getattr(fn, "__name__", type(fn).__name__)


dispatcher = SignerDispatcher()
