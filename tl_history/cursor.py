from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Tuple

from tl_core.errors import CorruptLog
from tl_core.record import RECORD_SIZE, iter_raw
from tl_core.symbols import key_from_field, key_to_str, symbol_key
from tl_history.types import ResumeCursor

log = logging.getLogger(__name__)

DEFAULT_SCAN_BATCH_RECORDS = 1024


@dataclass
class SymbolUniverse:
    """Venue tickers plus the truncated-key index used to match log records.

    Tickers whose first 7 bytes coincide share one key, and therefore one
    resume cursor. The first ticker in listing order owns the index slot.
    """

    symbols: List[str]
    index: Dict[bytes, int] = field(init=False)

    def __post_init__(self) -> None:
        self.index = {}
        for i, symbol in enumerate(self.symbols):
            self.index.setdefault(symbol_key(symbol), i)

    @classmethod
    def from_listing(cls, symbols: Iterable[str], suffix: str = "") -> "SymbolUniverse":
        ordered: List[str] = []
        seen = set()
        for symbol in symbols:
            if suffix and not symbol.endswith(suffix):
                continue
            if symbol in seen:
                continue
            seen.add(symbol)
            ordered.append(symbol)
        return cls(ordered)

    def __contains__(self, key: bytes) -> bool:
        return key in self.index

    def __len__(self) -> int:
        return len(self.symbols)

    def collisions(self) -> Dict[bytes, List[str]]:
        groups: Dict[bytes, List[str]] = {}
        for symbol in self.symbols:
            groups.setdefault(symbol_key(symbol), []).append(symbol)
        return {k: v for k, v in groups.items() if len(v) > 1}


@dataclass
class CursorMap:
    """Per-key resume cursors produced by one full log scan."""

    cursors: Dict[bytes, ResumeCursor] = field(default_factory=dict)
    records_scanned: int = 0

    def for_symbol(self, symbol: str) -> ResumeCursor:
        return self.cursors.get(symbol_key(symbol), ResumeCursor())


def check_log_length(path: Path) -> int:
    """Size of the log in records; raises CorruptLog on a misaligned length."""
    size = path.stat().st_size
    if size % RECORD_SIZE:
        raise CorruptLog(
            path,
            f"length {size} is not a multiple of the {RECORD_SIZE}-byte record size",
        )
    return size // RECORD_SIZE


def iter_log_fields(path: Path, batch_records: int = DEFAULT_SCAN_BATCH_RECORDS) -> Iterator[tuple]:
    """Stream raw record fields in batches, checking the log stays aligned.

    Records appended after the length check are not read, so a concurrent
    writer cannot leave a partial tail in the scan.
    """
    total = check_log_length(path)
    remaining = total * RECORD_SIZE
    batch_bytes = max(1, int(batch_records)) * RECORD_SIZE
    position = 0
    with path.open("rb") as fh:
        while remaining > 0:
            buf = fh.read(min(batch_bytes, remaining))
            if not buf:
                break
            if len(buf) % RECORD_SIZE:
                raise CorruptLog(path, "log changed size while scanning")
            remaining -= len(buf)
            for fields in iter_raw(buf):
                yield fields
                position += 1
    if position != total:
        raise CorruptLog(path, f"expected {total} records, scanned {position}")


def scan_min_ids(
    path: Path,
    universe: SymbolUniverse,
    batch_records: int = DEFAULT_SCAN_BATCH_RECORDS,
) -> Tuple[Dict[bytes, Tuple[int, int]], int]:
    """Stream the log once and keep the lowest (id, time) per symbol key."""
    mins: Dict[bytes, Tuple[int, int]] = {}
    position = 0
    for raw_symbol, _price, _qty, trade_id, ts, _best, _maker in iter_log_fields(path, batch_records):
        key = key_from_field(raw_symbol)
        if key not in universe:
            raise CorruptLog(
                path,
                f"record {position} references unknown symbol {key_to_str(key)!r}",
            )
        current = mins.get(key)
        if current is None or trade_id < current[0]:
            mins[key] = (trade_id, ts)
        position += 1
    return mins, position


def build_resume_cursors(
    path: Path,
    universe: SymbolUniverse,
    batch_records: int = DEFAULT_SCAN_BATCH_RECORDS,
) -> CursorMap:
    """Derive every symbol's resume cursor from the existing log.

    A missing log is a cold start: every symbol gets the unknown cursor.
    Must run before any worker appends to the log.
    """
    path = Path(path)
    cursors = {symbol_key(s): ResumeCursor() for s in universe.symbols}
    if not path.exists():
        log.info("No history log at %s; cold start for %d symbols", path, len(universe))
        return CursorMap(cursors=cursors, records_scanned=0)

    mins, scanned = scan_min_ids(path, universe, batch_records=batch_records)
    for key, (min_id, min_time) in mins.items():
        cursors[key] = ResumeCursor(min_id=min_id, min_time=min_time)
    complete = sum(1 for c in cursors.values() if c.is_complete)
    log.info(
        "Scanned %d records from %s: %d keys with data, %d complete",
        scanned,
        path,
        len(mins),
        complete,
    )
    return CursorMap(cursors=cursors, records_scanned=scanned)
