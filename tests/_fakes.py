# tests/_fakes.py

from __future__ import annotations

import threading
from typing import Any, Dict, List, Mapping, Optional, Sequence

from tl_history.exchanges.base import HistoricalTradesClient


def trade_row(trade_id: int, time_ms: Optional[int] = None, price: str = "0.00001", qty: str = "10") -> dict:
    return {
        "id": trade_id,
        "price": price,
        "qty": qty,
        "quoteQty": "0.0001",
        "time": 1_500_000_000_000 + trade_id if time_ms is None else time_ms,
        "isBuyerMaker": True,
        "isBestMatch": True,
    }


class ScriptedClient(HistoricalTradesClient):
    """Replays a fixed list of responses (rows or exceptions) per symbol."""

    name = "scripted"

    def __init__(self, symbols: Sequence[str], script: Dict[str, List[Any]]) -> None:
        self._symbols = list(symbols)
        self._script = {k: list(v) for k, v in script.items()}
        self._lock = threading.Lock()
        self.list_calls = 0
        self.calls: List[tuple] = []

    def list_symbols(self) -> Sequence[str]:
        self.list_calls += 1
        return list(self._symbols)

    def get_historical_trades(self, symbol: str, from_id=None, limit=None) -> List[Mapping[str, Any]]:
        with self._lock:
            self.calls.append((symbol, from_id))
            queue = self._script.get(symbol) or []
            if not queue:
                raise AssertionError(f"unexpected request for {symbol} fromId={from_id}")
            item = queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def calls_for(self, symbol: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == symbol]


class HistoryClient(HistoricalTradesClient):
    """Venue with a fixed, finite history of consecutive ids per symbol."""

    name = "fixed"

    def __init__(self, histories: Dict[str, int], page_size: int = 500, extra_symbols: Sequence[str] = ()) -> None:
        self.histories = dict(histories)
        self.page_size = page_size
        self._extra = list(extra_symbols)
        self._lock = threading.Lock()
        self.limits: List[Optional[int]] = []
        self.list_calls = 0
        self.calls: List[tuple] = []

    def list_symbols(self) -> Sequence[str]:
        self.list_calls += 1
        return list(self.histories) + self._extra

    def get_historical_trades(self, symbol: str, from_id=None, limit=None) -> List[Mapping[str, Any]]:
        with self._lock:
            self.calls.append((symbol, from_id))
            self.limits.append(limit)
        limit = limit or self.page_size
        last = self.histories.get(symbol, -1)
        if last < 0:
            return []
        if from_id is None:
            start = max(0, last - limit + 1)
        else:
            start = from_id
        end = min(last, start + limit - 1)
        return [trade_row(i) for i in range(start, end + 1)]
