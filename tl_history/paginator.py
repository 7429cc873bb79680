from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional

from tl_core.errors import EmptyServerResponse, PaginationStalled, RateLimited
from tl_core.record import TradeRecord, trade_from_api
from tl_history.exchanges.base import HistoricalTradesClient
from tl_history.types import ResumeCursor

log = logging.getLogger(__name__)


class FetchAborted(Exception):
    """Raised inside a worker once the scheduler asked everyone to stop."""


def request_from_id(cursor: ResumeCursor, page_size: int) -> Optional[int]:
    """Lower bound for the next older page; None requests the newest page.

    The venue treats fromId as an inclusive lower bound, so the older page
    spans from_id .. min_id - 1 and is requested with request_limit().
    """
    if cursor.is_unknown:
        return None
    return max(0, cursor.min_id - page_size - 1)


def request_limit(cursor: ResumeCursor, page_size: int) -> int:
    """Rows to ask for. Older pages take one extra so the record just below
    the cursor is not skipped at the page boundary.
    """
    if cursor.is_unknown:
        return page_size
    return page_size + 1


@dataclass
class Page:
    records: List[TradeRecord]
    cursor: ResumeCursor
    from_id: Optional[int] = None


@dataclass
class PaginationFetcher:
    """Walks one symbol's history backwards, one page per call."""

    client: HistoricalTradesClient
    symbol: str
    cursor: ResumeCursor = field(default_factory=ResumeCursor)
    page_size: int = 500
    empty_retry_sleep_s: float = 0.5
    rate_limit_retry_max: int = 3
    rate_limit_backoff_s: float = 1.0
    rate_limit_backoff_max_s: float = 30.0
    should_stop: Callable[[], bool] = lambda: False
    requests: int = 0
    empty_responses: int = 0

    @property
    def done(self) -> bool:
        return self.cursor.is_complete

    def _sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)

    def _request(self, from_id: Optional[int], limit: int) -> List[Mapping[str, Any]]:
        rate_limited = 0
        delay = self.rate_limit_backoff_s
        while True:
            if self.should_stop():
                raise FetchAborted(self.symbol)
            self.requests += 1
            try:
                return list(
                    self.client.get_historical_trades(
                        self.symbol, from_id=from_id, limit=limit
                    )
                )
            except EmptyServerResponse:
                self.empty_responses += 1
                log.debug("%s: empty response for fromId=%s, retrying", self.symbol, from_id)
                self._sleep(self.empty_retry_sleep_s)
            except RateLimited as exc:
                rate_limited += 1
                if rate_limited > self.rate_limit_retry_max:
                    raise
                wait = exc.retry_after_s if exc.retry_after_s is not None else delay
                log.warning(
                    "%s: rate limited (attempt %d/%d), sleeping %.1fs",
                    self.symbol,
                    rate_limited,
                    self.rate_limit_retry_max,
                    wait,
                )
                self._sleep(wait)
                delay = min(self.rate_limit_backoff_max_s, max(delay, 0.0) * 2)

    def fetch_page(self) -> Page:
        """Request the page just below the cursor without moving the cursor.

        Rows at or above the current cursor are already on disk and are
        dropped. An empty newest page means the symbol never traded.
        """
        from_id = request_from_id(self.cursor, self.page_size)
        rows = self._request(from_id, request_limit(self.cursor, self.page_size))
        records = [trade_from_api(self.symbol, row) for row in rows]
        if not self.cursor.is_unknown:
            records = [r for r in records if r.id < self.cursor.min_id]
        if not records:
            if self.cursor.is_unknown:
                return Page(records=[], cursor=self.cursor, from_id=from_id)
            raise PaginationStalled(self.symbol, self.cursor.min_id)

        cursor = self.cursor
        for record in records:
            cursor = cursor.lowered(record.id, record.time)
        return Page(records=records, cursor=cursor, from_id=from_id)

    def advance(self, page: Page) -> ResumeCursor:
        """Move the cursor down once the page is persisted."""
        if page.cursor.min_id is not None:
            self.cursor = self.cursor.lowered(page.cursor.min_id, page.cursor.min_time)
        return self.cursor
