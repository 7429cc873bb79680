from __future__ import annotations

import math
import struct

import pytest

from tl_core.record import (
    RECORD_SIZE,
    TradeRecord,
    decode,
    encode,
    encode_batch,
    iter_decode,
    trade_from_api,
)
from tl_core.symbols import symbol_key


def _record(symbol: str = "ETHBTC", trade_id: int = 42) -> TradeRecord:
    return TradeRecord(
        symbol=symbol,
        price=0.0345,
        qty=12.5,
        id=trade_id,
        time=1_700_000_000_123,
        is_best_match=True,
        is_buyer_maker=False,
    )


def test_record_size_matches_native_struct_layout() -> None:
    assert RECORD_SIZE == 48


def test_encode_decode_round_trip() -> None:
    for record in (_record(), _record("BNBBTC", 0), _record("A", 2**62)):
        assert decode(encode(record)) == record


def test_field_offsets() -> None:
    blob = encode(_record())
    assert blob[:8] == b"ETHBTC\0\0"
    assert struct.unpack_from("<d", blob, 8)[0] == 0.0345
    assert struct.unpack_from("<d", blob, 16)[0] == 12.5
    assert struct.unpack_from("<q", blob, 24)[0] == 42
    assert struct.unpack_from("<q", blob, 32)[0] == 1_700_000_000_123
    assert blob[40:42] == b"\x01\x00"
    assert blob[42:] == b"\0" * 6


def test_long_symbol_is_truncated_to_seven_bytes() -> None:
    blob = encode(_record("BCHABCBTC"))
    assert blob[:8] == b"BCHABCB\0"
    assert decode(blob).symbol == "BCHABCB"


def test_truncated_keys_collide_deterministically() -> None:
    assert symbol_key("ABCDEFGBTC") == symbol_key("ABCDEFGETH") == b"ABCDEFG"
    a = decode(encode(_record("ABCDEFGBTC")))
    b = decode(encode(_record("ABCDEFGETH")))
    assert a.symbol == b.symbol == "ABCDEFG"


def test_decode_requires_exact_block_length() -> None:
    with pytest.raises(ValueError):
        decode(b"\0" * (RECORD_SIZE - 1))


def test_garbage_block_still_decodes() -> None:
    record = decode(bytes(range(RECORD_SIZE)))
    assert isinstance(record.price, float)
    assert isinstance(record.id, int)


def test_iter_decode_batch_preserves_order() -> None:
    records = [_record(trade_id=i) for i in (3, 2, 1)]
    assert [r.id for r in iter_decode(encode_batch(records))] == [3, 2, 1]


def test_trade_from_api_parses_strings_and_flags() -> None:
    row = {
        "id": "28457",
        "price": "4.00000100",
        "qty": "12.00000000",
        "time": "1499865549590",
        "isBuyerMaker": "true",
        "isBestMatch": False,
    }
    record = trade_from_api("LTCBTC", row)
    assert record.symbol == "LTCBTC"
    assert record.id == 28457
    assert record.time == 1499865549590
    assert math.isclose(record.price, 4.000001)
    assert record.qty == 12.0
    assert record.is_buyer_maker is True
    assert record.is_best_match is False


def test_non_ascii_symbol_round_trips() -> None:
    record = _record("é")
    assert decode(encode(record)) == record
    assert encode(record)[:8] == "é".encode("utf-8") + b"\0" * 6


def test_multibyte_symbol_cut_mid_character_keeps_its_key() -> None:
    ticker = "币安人生USDT"
    record = trade_from_api(ticker, {"id": 1, "price": "1", "qty": "1", "time": 5})
    blob = encode(record)
    assert blob[:7] == symbol_key(ticker) == ticker.encode("utf-8")[:7]
    assert decode(blob) == record
    assert symbol_key(decode(blob).symbol) == symbol_key(ticker)
