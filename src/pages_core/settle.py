"""Settle-all fan-out for batch sweeps."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

K = TypeVar("K")
T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class Settled(Generic[K, T]):
    """Tagged outcome of one unit of work: a value or a captured error."""

    key: K
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def reason(self) -> str | None:
        if self.error is None:
            return None
        return str(self.error) or type(self.error).__name__


async def settle_all(units: Iterable[tuple[K, Awaitable[T]]]) -> list[Settled[K, T]]:
    """Run every unit concurrently and wait for all of them to settle.

    Results keep the input order. Ordinary exceptions are captured on the
    outcome; cancellation and other ``BaseException`` escape.
    """

    pairs = list(units)
    results = await asyncio.gather(*(awaitable for _, awaitable in pairs), return_exceptions=True)
    settled: list[Settled[K, T]] = []
    for (key, _), result in zip(pairs, results, strict=True):
        if isinstance(result, Exception):
            settled.append(Settled(key=key, error=result))
        elif isinstance(result, BaseException):
            raise result
        else:
            settled.append(Settled(key=key, value=result))
    return settled
