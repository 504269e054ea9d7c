"""Abstract interface for the crawler collaborator."""

from __future__ import annotations

from abc import ABC, abstractmethod


class Crawler(ABC):
    """Turns a URL into captured text.

    Implementations never write into the cache themselves: they return the
    full text only once the capture has completed, and raise FetchFailure
    otherwise.
    """

    name = "crawler"

    @abstractmethod
    async def capture(self, url: str) -> str:
        """Capture url and return its text content.

        Raises:
            FetchFailure: If the page could not be captured
        """
        raise NotImplementedError
