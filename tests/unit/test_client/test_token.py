"""Tests for the per-controller cancellation token."""

from __future__ import annotations

import asyncio

import pytest

from watchbudget.client.token import CancellationToken, OperationCancelled


class TestCancellationToken:
    @pytest.mark.asyncio
    async def test_run_returns_result(self) -> None:
        async def _value() -> int:
            return 42

        token = CancellationToken("t")
        assert await token.run(_value()) == 42
        assert token.pending == 0

    @pytest.mark.asyncio
    async def test_run_after_cancel_raises(self) -> None:
        async def _value() -> int:
            return 1

        token = CancellationToken("t")
        token.cancel()
        with pytest.raises(OperationCancelled):
            await token.run(_value())

    @pytest.mark.asyncio
    async def test_cancel_aborts_in_flight(self) -> None:
        started = asyncio.Event()

        async def _slow() -> int:
            started.set()
            await asyncio.sleep(10)
            return 1

        token = CancellationToken("t")
        task = asyncio.ensure_future(token.run(_slow()))
        await started.wait()
        token.cancel()

        with pytest.raises(OperationCancelled):
            await task
        assert token.pending == 0

    @pytest.mark.asyncio
    async def test_errors_propagate(self) -> None:
        async def _boom() -> None:
            raise RuntimeError("boom")

        token = CancellationToken("t")
        with pytest.raises(RuntimeError):
            await token.run(_boom())

    def test_cancel_is_idempotent(self) -> None:
        token = CancellationToken("t")
        token.cancel()
        token.cancel()
        assert token.cancelled is True
