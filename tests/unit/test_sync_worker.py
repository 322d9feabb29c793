from __future__ import annotations

import asyncio

import pytest

from chat_sync.application.liveness import Liveness
from chat_sync.workers.sync_worker import run_sync_worker


@pytest.mark.asyncio
async def test_worker_survives_failures_and_stops_with_liveness():
    liveness = Liveness()
    calls = []

    async def sync() -> None:
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("transient")
        if len(calls) == 3:
            liveness.cancel()

    await asyncio.wait_for(run_sync_worker(sync, liveness, interval=0.001), timeout=1)

    assert calls == [0, 1, 2]
