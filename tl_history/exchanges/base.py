from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, List, Mapping, Optional, Sequence


class HistoricalTradesClient(ABC):
    """Venue contract consumed by the synchronizer.

    Implementations raise the ``tl_core.errors`` exchange errors:
    EmptyServerResponse for the transient empty body, RateLimited, AuthError
    and TransportError for everything else.
    """

    name: str
    page_size: int = 500

    @abstractmethod
    def list_symbols(self) -> Sequence[str]:
        """Every ticker the venue currently lists."""

    @abstractmethod
    def get_historical_trades(
        self,
        symbol: str,
        from_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Mapping[str, Any]]:
        """One page of raw trade rows.

        Without from_id the most recent page is returned.
        """

    def normalize_symbol(self, symbol: str) -> str:
        """Optional hook to convert user symbols into exchange format."""
        return symbol
