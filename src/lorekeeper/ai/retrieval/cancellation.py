"""Cooperative cancellation for retrieval sessions."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, TypeVar, Union

from .errors import RetrievalCancelled

__all__ = ["CancellationSignal", "SignalLike", "as_signal", "await_cancellable"]

T = TypeVar("T")


class CancellationSignal:
    """One-shot flag a caller sets to stop a running session.

    The signal wraps an :class:`asyncio.Event` so the controller can both poll
    it between steps and race it against an in-flight request.
    """

    __slots__ = ("_event",)

    def __init__(self, event: asyncio.Event | None = None) -> None:
        self._event = event if event is not None else asyncio.Event()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RetrievalCancelled("Retrieval cancelled")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"CancellationSignal(cancelled={self.is_cancelled})"


SignalLike = Union[CancellationSignal, asyncio.Event]


def as_signal(signal: SignalLike | None) -> CancellationSignal | None:
    """Normalize a caller-supplied signal or bare event."""

    if signal is None or isinstance(signal, CancellationSignal):
        return signal
    if isinstance(signal, asyncio.Event):
        return CancellationSignal(signal)
    raise TypeError(f"Unsupported cancellation signal: {type(signal).__name__}")


async def await_cancellable(awaitable: Awaitable[T], signal: CancellationSignal | None) -> T:
    """Await ``awaitable`` unless ``signal`` fires first.

    When the signal wins the pending task is cancelled and
    :class:`RetrievalCancelled` is raised. Cancellation of the calling task
    itself is propagated after cleaning up both tasks.
    """

    if signal is None:
        return await awaitable
    if signal.is_cancelled:
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise RetrievalCancelled("Retrieval cancelled")

    work: asyncio.Future[Any] = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        work.cancel()
        waiter.cancel()
        raise

    if work in done:
        waiter.cancel()
        return work.result()

    work.cancel()
    try:
        await work
    except asyncio.CancelledError:
        pass
    except Exception:  # pragma: no cover - late failures are irrelevant once cancelled
        pass
    raise RetrievalCancelled("Retrieval cancelled while awaiting")
