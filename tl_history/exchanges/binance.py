from __future__ import annotations

import os
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence

import requests

from tl_core.errors import (
    AuthError,
    EmptyServerResponse,
    MissingCredentials,
    RateLimited,
    TransportError,
)
from tl_core.symbols import symbol_fs
from tl_history.exchanges.base import HistoricalTradesClient

_BINANCE_REST = "https://api.binance.com"
_TICKER_PRICE_PATH = "/api/v3/ticker/price"
_HISTORICAL_TRADES_PATH = "/api/v3/historicalTrades"
_MAX_LIMIT = 1000
_RATE_LIMIT_STATUSES = (418, 429)
_AUTH_STATUSES = (401, 403)
_AUTH_CODES = (-2014, -2015)

DEFAULT_API_KEY_PATH = Path("~/.binance/key")


def load_api_key(key_path: Path | str | None = None) -> str:
    """API key from BINANCE_API_KEY, else the first line of the key file."""
    api_key = (os.getenv("BINANCE_API_KEY") or "").strip()
    if api_key:
        return api_key
    path = Path(key_path or DEFAULT_API_KEY_PATH).expanduser()
    if path.is_file():
        lines = path.read_text(encoding="utf-8").splitlines()
        if lines and lines[0].strip():
            return lines[0].strip()
    raise MissingCredentials(
        "Cannot find the Binance API key. Provide it in BINANCE_API_KEY "
        f"or in the following file: {path}"
    )


def _retry_after(resp: requests.Response) -> Optional[float]:
    raw = resp.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def _error_code(resp: requests.Response) -> Optional[int]:
    try:
        payload = resp.json()
    except ValueError:
        return None
    if isinstance(payload, dict) and "code" in payload:
        try:
            return int(payload["code"])
        except (TypeError, ValueError):
            return None
    return None


class BinanceHistoricalTradesClient(HistoricalTradesClient):
    name = "binance"

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout_s: float = 30.0,
        page_size: int = 500,
    ) -> None:
        self.api_key = api_key
        self.base_url = (base_url or _BINANCE_REST).rstrip("/")
        self.timeout_s = float(timeout_s)
        self.page_size = min(int(page_size), _MAX_LIMIT)

    def normalize_symbol(self, symbol: str) -> str:
        return symbol_fs(symbol, upper=True)

    def _get(
        self,
        path: str,
        params: Mapping[str, Any],
        symbol: Optional[str] = None,
        signed: bool = False,
    ) -> Any:
        headers = {}
        if signed:
            if not self.api_key:
                raise MissingCredentials("historical trades require an API key")
            headers["X-MBX-APIKEY"] = self.api_key
        try:
            resp = requests.get(
                f"{self.base_url}{path}",
                params=dict(params),
                headers=headers,
                timeout=self.timeout_s,
            )
        except requests.RequestException as exc:
            raise TransportError(f"{path}: {exc}", symbol=symbol) from exc

        status = resp.status_code
        if status in _RATE_LIMIT_STATUSES:
            raise RateLimited(
                f"{path}: HTTP {status}",
                symbol=symbol,
                retry_after_s=_retry_after(resp),
            )
        if status in _AUTH_STATUSES or (status >= 400 and _error_code(resp) in _AUTH_CODES):
            raise AuthError(f"{path}: HTTP {status} {resp.text[:200]}", symbol=symbol)
        if status >= 400:
            raise TransportError(f"{path}: HTTP {status} {resp.text[:200]}", symbol=symbol)
        if not resp.text.strip():
            raise EmptyServerResponse(f"{path}: empty response", symbol=symbol)
        try:
            return resp.json()
        except ValueError as exc:
            raise TransportError(f"{path}: invalid JSON", symbol=symbol) from exc

    def list_symbols(self) -> Sequence[str]:
        payload = self._get(_TICKER_PRICE_PATH, {})
        if not isinstance(payload, list):
            raise TransportError(f"{_TICKER_PRICE_PATH}: expected a list")
        return [str(row["symbol"]) for row in payload]

    def get_historical_trades(
        self,
        symbol: str,
        from_id: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Mapping[str, Any]]:
        symbol = self.normalize_symbol(symbol)
        params: dict = {
            "symbol": symbol,
            "limit": min(int(limit or self.page_size), _MAX_LIMIT),
        }
        if from_id is not None:
            params["fromId"] = int(from_id)
        payload = self._get(_HISTORICAL_TRADES_PATH, params, symbol=symbol, signed=True)
        if not isinstance(payload, list):
            raise TransportError(f"{_HISTORICAL_TRADES_PATH}: expected a list", symbol=symbol)
        return payload
