from __future__ import annotations

import threading
from pathlib import Path

import pytest

from tl_core.errors import StorageWriteFailure
from tl_core.record import RECORD_SIZE, TradeRecord
from tl_history.reader import iter_records
from tl_history.writer import HistoryLog


def _batch(symbol: str, batch_no: int, size: int) -> list:
    return [
        TradeRecord(symbol, 1.0, 2.0, batch_no * 1000 + i, 1_000 + i, True, False)
        for i in range(size)
    ]


def test_append_creates_file_and_keeps_alignment(tmp_path: Path) -> None:
    log = HistoryLog(tmp_path / "nested" / "history.dat", fsync=False)
    assert log.append([]) == 0
    assert not log.path.exists()

    assert log.append(_batch("AAABTC", 1, 3)) == 3
    assert log.append(_batch("AAABTC", 2, 2)) == 2

    assert log.path.stat().st_size == 5 * RECORD_SIZE
    assert log.size_records() == 5
    assert log.appends == 2
    assert [r.id for r in iter_records(log.path)] == [1000, 1001, 1002, 2000, 2001]


def test_concurrent_batches_never_interleave(tmp_path: Path) -> None:
    log = HistoryLog(tmp_path / "history.dat", fsync=False)
    batch_size = 20
    batches_per_thread = 25
    symbols = [f"S{i}BTC" for i in range(6)]

    def worker(symbol: str) -> None:
        for b in range(batches_per_thread):
            log.append(_batch(symbol, b, batch_size))

    threads = [threading.Thread(target=worker, args=(s,)) for s in symbols]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    records = list(iter_records(log.path))
    assert len(records) == batch_size * batches_per_thread * len(symbols)
    for start in range(0, len(records), batch_size):
        chunk = records[start : start + batch_size]
        assert len({r.symbol for r in chunk}) == 1
        assert len({r.id // 1000 for r in chunk}) == 1


def test_unwritable_path_raises_storage_failure(tmp_path: Path) -> None:
    log = HistoryLog(tmp_path, fsync=False)
    with pytest.raises(StorageWriteFailure) as info:
        log.append(_batch("AAABTC", 1, 1))
    assert info.value.path == tmp_path
    assert isinstance(info.value.__cause__, OSError)
