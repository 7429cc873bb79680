from __future__ import annotations

from pathlib import Path
from typing import Optional


class HistoryError(Exception):
    """Base class for everything the synchronizer raises on purpose."""


class CorruptLog(HistoryError):
    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Corrupt history log {self.path}: {reason}")


class StorageWriteFailure(HistoryError):
    def __init__(self, path: Path | str, detail: str = "") -> None:
        self.path = Path(path)
        msg = f"Cannot open history file for writing: {self.path}"
        if detail:
            msg = f"{msg} ({detail})"
        super().__init__(msg)


class MissingCredentials(HistoryError):
    pass


class ExchangeError(HistoryError):
    def __init__(self, message: str, symbol: Optional[str] = None) -> None:
        self.symbol = symbol
        super().__init__(message)


class TransportError(ExchangeError):
    pass


class AuthError(ExchangeError):
    pass


class RateLimited(ExchangeError):
    def __init__(
        self,
        message: str,
        symbol: Optional[str] = None,
        retry_after_s: Optional[float] = None,
    ) -> None:
        super().__init__(message, symbol=symbol)
        self.retry_after_s = retry_after_s


class EmptyServerResponse(ExchangeError):
    """The venue answered with an empty body. Transient; retry the request."""


class PaginationStalled(HistoryError):
    def __init__(self, symbol: str, min_id: int) -> None:
        self.symbol = symbol
        self.min_id = min_id
        super().__init__(f"{symbol}: page returned nothing below id {min_id}")
