"""Abstract interface for streaming price sources."""

from __future__ import annotations

from abc import ABC, abstractmethod


class StreamingSource(ABC):
    """Contract for long-running sources that push observations into a buffer.

    Implementations write into a shared RealTimeBuffer on their own schedule;
    the FlushScheduler reads from the buffer, never from the source.

    Lifecycle:
        source = create_korean_source(buffer, settings, approval_keys)
        await source.start(["005930", "000660", ...])
        # ... app runs ...
        await source.subscribe("035720")
        await source.restart()   # re-open the session after a transport failure
        # ... app shutting down ...
        await source.stop()
    """

    @abstractmethod
    async def start(self, codes: list[str]) -> None:
        """Remember the codes and open a session if the market is open.

        Returns once the session task is launched (or immediately when the
        market is closed).
        """

    @abstractmethod
    async def stop(self) -> None:
        """Close the session. Safe to call multiple times."""

    @abstractmethod
    async def restart(self) -> bool:
        """Close any session and open a new one for all known codes.

        Returns True if a session was started (False when the market is closed).
        """

    @abstractmethod
    async def subscribe(self, code: str) -> bool:
        """Add a code. Sent over the live session if there is one.

        Returns False if the code was rejected, or if there was no live
        session and the market is closed so none could be opened. A rejected
        code is not remembered; a code accepted while closed is.
        """

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """True while a session is delivering data."""

    @abstractmethod
    def get_codes(self) -> list[str]:
        """Return the codes this source follows."""
