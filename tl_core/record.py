from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Mapping

from tl_core.symbols import key_from_field, key_to_str, symbol_key

# symbol[8] price qty id time isBestMatch isBuyerMaker, padded to 48 bytes so
# the layout matches a natively aligned C struct on 64-bit little-endian hosts.
RECORD_FORMAT = "<8sddqq??6x"
_STRUCT = struct.Struct(RECORD_FORMAT)
RECORD_SIZE = _STRUCT.size


@dataclass(frozen=True)
class TradeRecord:
    symbol: str
    price: float
    qty: float
    id: int
    time: int
    is_best_match: bool
    is_buyer_maker: bool


def _flag(value: Any) -> bool:
    if isinstance(value, str):
        return value == "true"
    return value is True


def trade_from_api(symbol: str, row: Mapping[str, Any]) -> TradeRecord:
    """Build a record from one historical-trades JSON row.

    Numbers may arrive as JSON numbers or numeric strings.
    """
    return TradeRecord(
        symbol=key_to_str(symbol_key(symbol)),
        price=float(row["price"]),
        qty=float(row["qty"]),
        id=int(row["id"]),
        time=int(row["time"]),
        is_best_match=_flag(row.get("isBestMatch")),
        is_buyer_maker=_flag(row.get("isBuyerMaker")),
    )


def encode(record: TradeRecord) -> bytes:
    # struct pads the 7-byte key with NULs up to the field width
    return _STRUCT.pack(
        symbol_key(record.symbol),
        record.price,
        record.qty,
        record.id,
        record.time,
        bool(record.is_best_match),
        bool(record.is_buyer_maker),
    )


def encode_batch(records: Iterable[TradeRecord]) -> bytes:
    return b"".join(encode(r) for r in records)


def _from_fields(fields: tuple) -> TradeRecord:
    raw_symbol, price, qty, trade_id, ts, best, maker = fields
    return TradeRecord(
        symbol=key_to_str(key_from_field(raw_symbol)),
        price=price,
        qty=qty,
        id=trade_id,
        time=ts,
        is_best_match=best,
        is_buyer_maker=maker,
    )


def decode(block: bytes) -> TradeRecord:
    if len(block) != RECORD_SIZE:
        raise ValueError(f"record block must be {RECORD_SIZE} bytes, got {len(block)}")
    return _from_fields(_STRUCT.unpack(block))


def iter_decode(buf: bytes) -> Iterator[TradeRecord]:
    """Decode a buffer holding a whole number of records."""
    for fields in _STRUCT.iter_unpack(buf):
        yield _from_fields(fields)


def iter_raw(buf: bytes) -> Iterator[tuple]:
    """Unpacked field tuples, symbol left as the raw 8-byte field."""
    return _STRUCT.iter_unpack(buf)
