"""Per-consumer cancellation tokens for ticket fetches.

Each consumer owns one ``FetchContext``. Issuing a token for a new fetch
cancels the token of the fetch that came before it, so at most one fetch per
consumer can ever deliver results.
"""

from __future__ import annotations

import itertools

from ticketsync.services.tickets.errors import Cancelled

_sequence = itertools.count(1)


class CancellationToken:
    __slots__ = ("_cancelled", "sequence")

    def __init__(self) -> None:
        self._cancelled = False
        self.sequence = next(_sequence)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise Cancelled(f"fetch {self.sequence} superseded")

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "live"
        return f"<CancellationToken {self.sequence} {state}>"


class FetchContext:
    """Issues tokens for one consumer; a new token supersedes the previous one."""

    def __init__(self, name: str = "default") -> None:
        self.name = name
        self._current: CancellationToken | None = None

    @property
    def current(self) -> CancellationToken | None:
        return self._current

    def issue(self) -> CancellationToken:
        if self._current is not None:
            self._current.cancel()
        self._current = CancellationToken()
        return self._current

    def is_current(self, token: CancellationToken) -> bool:
        return token is self._current and not token.cancelled

    def cancel(self) -> None:
        if self._current is not None:
            self._current.cancel()
            self._current = None
