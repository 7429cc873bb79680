from __future__ import annotations

import csv
import gzip
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List

from tl_core.record import TradeRecord


_INTERVAL_MS = {
    "1s": 1_000,
    "1m": 60_000,
    "5m": 300_000,
    "15m": 900_000,
    "30m": 1_800_000,
    "1h": 3_600_000,
    "4h": 14_400_000,
    "12h": 43_200_000,
    "1d": 86_400_000,
    "1w": 604_800_000,
}


@dataclass
class OHLC:
    ts_ms: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    trades: int = 0


def interval_ms(interval: str) -> int:
    if interval not in _INTERVAL_MS:
        raise ValueError(f"Unsupported interval: {interval}")
    return _INTERVAL_MS[interval]


def bucket_start(ts_ms: int, interval: str) -> int:
    step = interval_ms(interval)
    return (ts_ms // step) * step


def build_candles(records: Iterable[TradeRecord], interval: str) -> List[OHLC]:
    """Aggregate trades into candles, in bucket order.

    Records may arrive in any order (backfill writes newest pages first), so
    open/close are taken from the lowest/highest trade id in the bucket.
    """
    interval_ms(interval)  # reject unknown intervals even with no records
    buckets: Dict[int, OHLC] = {}
    first_id: Dict[int, int] = {}
    last_id: Dict[int, int] = {}
    for r in records:
        if not math.isfinite(r.price):
            continue
        bucket = bucket_start(r.time, interval)
        c = buckets.get(bucket)
        if c is None:
            buckets[bucket] = OHLC(bucket, r.price, r.price, r.price, r.price, r.qty, 1)
            first_id[bucket] = last_id[bucket] = r.id
            continue
        c.high = max(c.high, r.price)
        c.low = min(c.low, r.price)
        c.volume += r.qty
        c.trades += 1
        if r.id < first_id[bucket]:
            first_id[bucket] = r.id
            c.open = r.price
        if r.id > last_id[bucket]:
            last_id[bucket] = r.id
            c.close = r.price
    return [buckets[ts] for ts in sorted(buckets)]


def write_candles_csv(path: Path, candles: Iterable[OHLC], symbol: str, interval: str) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    n = 0
    with gzip.open(path, "wt", encoding="utf-8", newline="") as fh:
        writer = csv.writer(fh)
        writer.writerow(["ts_ms", "open", "high", "low", "close", "volume", "trades", "symbol", "interval"])
        for c in candles:
            writer.writerow([c.ts_ms, c.open, c.high, c.low, c.close, c.volume, c.trades, symbol, interval])
            n += 1
    return n
