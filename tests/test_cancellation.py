"""Tests for cancellation tokens, the per-user registry and the race helper."""

import asyncio

import pytest

from wafr_engine.core.cancellation import CancellationRegistry, CancellationToken, RunKind, race


class TestCancellationRegistry:
    def test_cancel_without_run_is_noop(self):
        registry = CancellationRegistry()

        assert registry.cancel("user-1", RunKind.ANALYSIS) is False

    def test_cancel_fires_current_token(self):
        registry = CancellationRegistry()
        token = registry.begin("user-1", RunKind.ANALYSIS)

        assert registry.cancel("user-1", RunKind.ANALYSIS) is True
        assert token.is_cancelled is True

    def test_kinds_and_users_are_independent(self):
        registry = CancellationRegistry()
        analysis = registry.begin("user-1", RunKind.ANALYSIS)
        generation = registry.begin("user-1", RunKind.GENERATION)
        other_user = registry.begin("user-2", RunKind.ANALYSIS)

        registry.cancel("user-1", RunKind.GENERATION)

        assert generation.is_cancelled is True
        assert analysis.is_cancelled is False
        assert other_user.is_cancelled is False

    def test_new_run_gets_fresh_token(self):
        registry = CancellationRegistry()
        first = registry.begin("user-1", RunKind.GENERATION)
        registry.cancel("user-1", RunKind.GENERATION)

        second = registry.begin("user-1", RunKind.GENERATION)

        assert first.is_cancelled is True
        assert second.is_cancelled is False

    def test_end_keeps_newer_token(self):
        registry = CancellationRegistry()
        first = registry.begin("user-1", RunKind.ANALYSIS)
        second = registry.begin("user-1", RunKind.ANALYSIS)

        registry.end("user-1", RunKind.ANALYSIS, first)

        assert registry.cancel("user-1", RunKind.ANALYSIS) is True
        assert second.is_cancelled is True

        registry.end("user-1", RunKind.ANALYSIS, second)
        assert registry.cancel("user-1", RunKind.ANALYSIS) is False


class TestRace:
    @pytest.mark.asyncio
    async def test_call_finishes_first(self):
        async def call():
            return "done"

        assert await race(CancellationToken(), call()) == ("done", False)

    @pytest.mark.asyncio
    async def test_already_cancelled_skips_call(self):
        started = []

        async def call():
            started.append(True)
            return "done"

        token = CancellationToken()
        token.cancel()

        assert await race(token, call()) == (None, True)
        assert started == []

    @pytest.mark.asyncio
    async def test_cancel_abandons_pending_call(self):
        finished = []

        async def slow_call():
            await asyncio.sleep(10)
            finished.append(True)

        token = CancellationToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)

        assert await race(token, slow_call()) == (None, True)
        assert finished == []

    @pytest.mark.asyncio
    async def test_call_error_propagates(self):
        async def failing_call():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await race(CancellationToken(), failing_call())
