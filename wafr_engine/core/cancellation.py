"""Cooperative cancellation for long-running review and generation runs.

A run receives a ``CancellationToken`` and checks it at fixed checkpoints (the
start of each analysed question) or races it against an in-flight call (each
generation turn). Cancellation never interrupts a question mid-way; it only
prevents the next unit of work or abandons the pending network call.
"""

import asyncio
from collections.abc import Awaitable
from enum import Enum
from typing import TypeVar

from wafr_engine.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class RunKind(str, Enum):
    """Independent cancellation channels."""
    ANALYSIS = "analysis"
    GENERATION = "generation"


class CancellationToken:
    """One-shot cancellation flag; once fired it stays fired."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        """Non-blocking poll."""
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


class CancellationRegistry:
    """Tokens of the current run per (user, kind).

    ``begin`` hands out a fresh token, so a cancellation fired for a previous run
    never leaks into the next one.
    """

    def __init__(self) -> None:
        self._tokens: dict[tuple[str, RunKind], CancellationToken] = {}

    def begin(self, user_id: str, kind: RunKind) -> CancellationToken:
        token = CancellationToken()
        self._tokens[(user_id, kind)] = token
        return token

    def cancel(self, user_id: str, kind: RunKind) -> bool:
        """
        Fire the current token of a user's run.

        Returns:
            True if a token was fired, False if the user has no run of that kind
        """
        token = self._tokens.get((user_id, kind))
        if token is None:
            logger.info(f"No {kind.value} run to cancel for user {user_id}")
            return False
        token.cancel()
        logger.info(f"Cancellation requested for {kind.value} run of user {user_id}")
        return True

    def end(self, user_id: str, kind: RunKind, token: CancellationToken) -> None:
        """Forget a finished run's token unless a newer run replaced it."""
        if self._tokens.get((user_id, kind)) is token:
            del self._tokens[(user_id, kind)]


async def race(token: CancellationToken, call: Awaitable[T]) -> tuple[T | None, bool]:
    """
    Await ``call`` unless the token fires first.

    Returns:
        (result, False) when the call finished first, (None, True) when cancelled

    Raises:
        Whatever ``call`` raises if it finishes first with an error
    """
    if token.is_cancelled:
        if asyncio.iscoroutine(call):
            call.close()
        return None, True

    call_task = asyncio.ensure_future(call)
    cancel_task = asyncio.ensure_future(token.wait())
    try:
        done, _ = await asyncio.wait(
            {call_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        for task in (call_task, cancel_task):
            if not task.done():
                task.cancel()

    if call_task in done:
        return call_task.result(), False
    return None, True
