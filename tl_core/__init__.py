"""On-disk primitives shared by the synchronizer and read-only consumers."""

from .record import RECORD_SIZE, TradeRecord, decode, encode
from .symbols import symbol_key

__all__ = [
    "RECORD_SIZE",
    "TradeRecord",
    "decode",
    "encode",
    "symbol_key",
]
