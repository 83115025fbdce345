"""Cooperative cancellation token.

A token is a flag plus a reason. The tracker flips it; long-running work
observes it, either by polling `cancelled` between steps or by awaiting
`wait()` alongside its own I/O. Nothing is interrupted preemptively: work
that never looks at its token runs to completion.
"""

from __future__ import annotations

__all__ = ["CancellationToken"]

import asyncio

from mcp_relay.exceptions import OperationCancelledError


class CancellationToken:
    """Flag-plus-reason cancellation handle shared by reference.

    Cancelling is idempotent: the first call wins and keeps its reason.
    """

    __slots__ = ("_cancelled", "_reason", "_event", "operation_id")

    def __init__(self, operation_id: str | int | None = None) -> None:
        self.operation_id = operation_id
        self._cancelled = False
        self._reason: str | None = None
        self._event: asyncio.Event | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> bool:
        """Mark the token cancelled.

        Args:
            reason: Why the operation was cancelled.

        Returns:
            True if this call cancelled the token, False if it already was.
        """
        if self._cancelled:
            return False
        self._cancelled = True
        self._reason = reason
        if self._event is not None:
            self._event.set()
        return True

    async def wait(self) -> str | None:
        """Block until the token is cancelled.

        Returns:
            The cancellation reason.
        """
        if not self._cancelled:
            # Created lazily so tokens can be built outside a running loop
            if self._event is None:
                self._event = asyncio.Event()
            await self._event.wait()
        return self._reason

    def raise_if_cancelled(self) -> None:
        """Raise OperationCancelledError if the token has been cancelled."""
        if self._cancelled:
            raise OperationCancelledError(self.operation_id, self._reason)

    def __repr__(self) -> str:
        state = f"cancelled, reason={self._reason!r}" if self._cancelled else "active"
        return f"CancellationToken({self.operation_id!r}, {state})"
