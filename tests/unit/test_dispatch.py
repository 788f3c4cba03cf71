"""Unit tests for per-signer dispatch of blocking chain calls."""

from __future__ import annotations

import asyncio
import threading
import time

import pytest

from provelt.chain.dispatch import SignerDispatcher, call_in_thread
from provelt.errors import ChainUnavailable

pytestmark = pytest.mark.asyncio


class Recorder:
    """Blocking call that records how many invocations overlap."""

    def __init__(self, delay: float = 0.05) -> None:
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.order: list[int] = []
        self._lock = threading.Lock()

    def __call__(self, n: int) -> int:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
            self.order.append(n)
        return n * 2


class TestSignerDispatcher:
    async def test_same_signer_runs_serially_in_order(self, queue: SignerDispatcher):
        recorder = Recorder()
        results = await asyncio.gather(*(queue.submit("0xSigner", recorder, n, timeout=5) for n in range(5)))
        assert results == [0, 2, 4, 6, 8]
        assert recorder.max_active == 1
        assert recorder.order == [0, 1, 2, 3, 4]

    async def test_signer_key_is_case_insensitive(self, queue: SignerDispatcher):
        recorder = Recorder()
        await asyncio.gather(
            queue.submit("0xABCDEF", recorder, 1, timeout=5),
            queue.submit("0xabcdef", recorder, 2, timeout=5),
        )
        assert recorder.max_active == 1

    async def test_different_signers_run_in_parallel(self, queue: SignerDispatcher):
        recorder = Recorder(delay=0.2)
        await asyncio.gather(
            queue.submit("0xaaa", recorder, 1, timeout=5),
            queue.submit("0xbbb", recorder, 2, timeout=5),
        )
        assert recorder.max_active == 2

    async def test_timeout_raises_chain_unavailable(self, queue: SignerDispatcher):
        recorder = Recorder(delay=0.5)
        with pytest.raises(ChainUnavailable, match="timed out"):
            await queue.submit("0xslow", recorder, 1, timeout=0.05)

    async def test_errors_propagate(self, queue: SignerDispatcher):
        def boom() -> None:
            raise ChainUnavailable("rpc down")

        with pytest.raises(ChainUnavailable, match="rpc down"):
            await queue.submit("0xsigner", boom, timeout=5)


class TestCallInThread:
    async def test_returns_result(self):
        assert await call_in_thread(lambda a, b: a + b, 2, 3, timeout=5) == 5

    async def test_timeout(self):
        with pytest.raises(ChainUnavailable):
            await call_in_thread(time.sleep, 0.5, timeout=0.05)
