from __future__ import annotations

from pathlib import Path

import pytest

from tl_core.errors import CorruptLog
from tl_core.record import RECORD_SIZE, TradeRecord, encode_batch
from tl_history.cursor import SymbolUniverse, build_resume_cursors, iter_log_fields
from tl_history.types import ResumeCursor


def _rec(symbol: str, trade_id: int, ts: int | None = None) -> TradeRecord:
    return TradeRecord(symbol, 1.0, 1.0, trade_id, ts if ts is not None else 1000 + trade_id, False, True)


def _write(path: Path, records) -> None:
    path.write_bytes(encode_batch(records))


def test_cold_start_gives_unknown_cursors(tmp_path: Path) -> None:
    universe = SymbolUniverse(["AAABTC", "BBBBTC"])
    cursors = build_resume_cursors(tmp_path / "missing.dat", universe)
    assert cursors.for_symbol("AAABTC") == ResumeCursor()
    assert cursors.for_symbol("BBBBTC").is_unknown
    assert cursors.records_scanned == 0


def test_min_id_and_time_per_symbol(tmp_path: Path) -> None:
    path = tmp_path / "history.dat"
    _write(
        path,
        [
            _rec("AAABTC", 50, ts=5000),
            _rec("BBBBTC", 7, ts=700),
            _rec("AAABTC", 12, ts=1200),
            _rec("AAABTC", 30, ts=3000),
            _rec("BBBBTC", 0, ts=1),
        ],
    )
    universe = SymbolUniverse(["AAABTC", "BBBBTC", "CCCBTC"])
    cursors = build_resume_cursors(path, universe, batch_records=2)

    assert cursors.for_symbol("AAABTC") == ResumeCursor(min_id=12, min_time=1200)
    assert cursors.for_symbol("BBBBTC").is_complete
    assert cursors.for_symbol("CCCBTC").is_unknown
    assert cursors.records_scanned == 5


def test_misaligned_length_is_corrupt(tmp_path: Path) -> None:
    path = tmp_path / "history.dat"
    path.write_bytes(encode_batch([_rec("AAABTC", 1)]) + b"xyz")
    with pytest.raises(CorruptLog) as info:
        build_resume_cursors(path, SymbolUniverse(["AAABTC"]))
    assert str(RECORD_SIZE) in str(info.value)


def test_unknown_symbol_is_corrupt(tmp_path: Path) -> None:
    path = tmp_path / "history.dat"
    _write(path, [_rec("AAABTC", 1), _rec("ZZZBTC", 2)])
    with pytest.raises(CorruptLog, match="ZZZBTC"):
        build_resume_cursors(path, SymbolUniverse(["AAABTC"]))


def test_colliding_tickers_share_one_cursor(tmp_path: Path) -> None:
    path = tmp_path / "history.dat"
    _write(path, [_rec("ABCDEFGBTC", 90), _rec("ABCDEFGETH", 40)])
    universe = SymbolUniverse(["ABCDEFGBTC", "ABCDEFGETH"])

    assert list(universe.collisions().values()) == [["ABCDEFGBTC", "ABCDEFGETH"]]
    cursors = build_resume_cursors(path, universe)
    assert cursors.for_symbol("ABCDEFGBTC") == cursors.for_symbol("ABCDEFGETH")
    assert cursors.for_symbol("ABCDEFGBTC").min_id == 40


def test_universe_from_listing_filters_suffix() -> None:
    universe = SymbolUniverse.from_listing(["ETHBTC", "BTCUSDT", "LTCBTC", "ETHBTC"], suffix="BTC")
    assert universe.symbols == ["ETHBTC", "LTCBTC"]
    assert b"LTCBTC" in universe
    assert b"BTCUSDT"[:7] not in universe


def test_scan_ignores_bytes_appended_during_the_scan(tmp_path: Path) -> None:
    path = tmp_path / "history.dat"
    _write(path, [_rec("AAABTC", i) for i in range(5)])

    fields = iter_log_fields(path, batch_records=2)
    first = next(fields)
    with path.open("ab") as fh:
        fh.write(b"\0" * (RECORD_SIZE + 3))
    rest = list(fields)

    assert [f[3] for f in [first, *rest]] == [0, 1, 2, 3, 4]


def test_scan_detects_a_shrinking_log(tmp_path: Path) -> None:
    path = tmp_path / "history.dat"
    _write(path, [_rec("AAABTC", i) for i in range(400)])

    fields = iter_log_fields(path, batch_records=2)
    next(fields)
    with path.open("r+b") as fh:
        fh.truncate(RECORD_SIZE * 3)
    with pytest.raises(CorruptLog):
        list(fields)
