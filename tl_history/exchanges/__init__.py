from __future__ import annotations

from .base import HistoricalTradesClient
from .binance import BinanceHistoricalTradesClient


_CLIENTS = {
    "binance": BinanceHistoricalTradesClient,
}


def get_client_class(name: str) -> type[HistoricalTradesClient]:
    key = (name or "binance").strip().lower()
    if key not in _CLIENTS:
        raise RuntimeError(f"Unknown exchange {name!r}. Available: {', '.join(sorted(_CLIENTS))}")
    return _CLIENTS[key]
