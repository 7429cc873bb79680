from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, List, Optional

from tl_core.errors import HistoryError, StorageWriteFailure
from tl_core.timefmt import ms_to_date
from tl_history.cursor import (
    CursorMap,
    SymbolUniverse,
    build_resume_cursors,
    check_log_length,
)
from tl_history.exchanges.base import HistoricalTradesClient
from tl_history.paginator import FetchAborted, PaginationFetcher
from tl_history.settings import SyncSettings
from tl_history.types import ResumeCursor, SymbolOutcome, SymbolStatus, SyncReport
from tl_history.writer import HistoryLog

log = logging.getLogger(__name__)

ProgressCallback = Callable[[str, ResumeCursor], None]


class SyncScheduler:
    """Runs one backfill loop per symbol on a bounded thread pool.

    Symbol failures are isolated and reported. A storage failure stops every
    worker and is re-raised once the pool has drained.
    """

    def __init__(
        self,
        client: HistoricalTradesClient,
        history_log: HistoryLog,
        settings: SyncSettings,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        self.client = client
        self.history_log = history_log
        self.settings = settings
        self.on_progress = on_progress
        self._abort = threading.Event()

    @property
    def aborted(self) -> bool:
        return self._abort.is_set()

    def _report_progress(self, symbol: str, cursor: ResumeCursor) -> None:
        log.info("%s : %d (%s)", symbol, cursor.min_id, ms_to_date(cursor.min_time or 0))
        if self.on_progress is not None:
            self.on_progress(symbol, cursor)

    def _make_fetcher(self, symbol: str, cursor: ResumeCursor) -> PaginationFetcher:
        s = self.settings
        return PaginationFetcher(
            client=self.client,
            symbol=symbol,
            cursor=cursor,
            page_size=s.page_size,
            empty_retry_sleep_s=s.empty_retry_sleep_s,
            rate_limit_retry_max=s.rate_limit_retry_max,
            rate_limit_backoff_s=s.rate_limit_backoff_s,
            rate_limit_backoff_max_s=s.rate_limit_backoff_max_s,
            should_stop=self._abort.is_set,
        )

    def backfill_symbol(self, symbol: str, cursor: ResumeCursor) -> SymbolOutcome:
        if cursor.is_complete:
            return SymbolOutcome(symbol=symbol, status=SymbolStatus.ALREADY_COMPLETE, cursor=cursor)

        fetcher = self._make_fetcher(symbol, cursor)
        outcome = SymbolOutcome(symbol=symbol, status=SymbolStatus.COMPLETED, cursor=cursor)
        try:
            while not fetcher.done:
                if self._abort.is_set():
                    outcome.status = SymbolStatus.ABORTED
                    break
                page = fetcher.fetch_page()
                if not page.records:
                    log.info("%s: no trades listed", symbol)
                    outcome.status = SymbolStatus.NO_TRADES
                    break
                outcome.records += self.history_log.append(page.records)
                outcome.pages += 1
                self._report_progress(symbol, fetcher.advance(page))
        except FetchAborted:
            outcome.status = SymbolStatus.ABORTED
        except StorageWriteFailure:
            log.error("%s: storage failure, stopping all workers", symbol)
            self._abort.set()
            raise
        except HistoryError as exc:
            log.error("%s: backfill failed at minId=%s: %s", symbol, fetcher.cursor.min_id, exc)
            outcome.status = SymbolStatus.FAILED
            outcome.error = exc
        except Exception as exc:
            log.exception("%s: unexpected error during backfill", symbol)
            outcome.status = SymbolStatus.FAILED
            outcome.error = exc
        finally:
            outcome.cursor = fetcher.cursor
            outcome.requests = fetcher.requests

        if outcome.status == SymbolStatus.FAILED and self.settings.fail_fast:
            self._abort.set()
        return outcome

    def run(self, symbols: Iterable[str], cursors: CursorMap) -> SyncReport:
        report = SyncReport()
        symbols = list(symbols)
        storage_error: Optional[StorageWriteFailure] = None
        workers = max(1, min(self.settings.workers, len(symbols) or 1))
        log.info("Backfilling %d symbols with %d workers", len(symbols), workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="backfill") as executor:
            futures = {
                executor.submit(self.backfill_symbol, symbol, cursors.for_symbol(symbol)): symbol
                for symbol in symbols
            }
            for future in as_completed(futures):
                symbol = futures[future]
                try:
                    outcome = future.result()
                except StorageWriteFailure as exc:
                    storage_error = storage_error or exc
                    outcome = SymbolOutcome(
                        symbol=symbol,
                        status=SymbolStatus.FAILED,
                        cursor=cursors.for_symbol(symbol),
                        error=exc,
                    )
                report.add(outcome)
                if outcome.status in (SymbolStatus.COMPLETED, SymbolStatus.ALREADY_COMPLETE):
                    log.info("%s: backfill complete", symbol)

        if storage_error is not None:
            raise storage_error
        return report


def select_symbols(universe: SymbolUniverse, requested: Iterable[str]) -> List[str]:
    requested = list(requested)
    if not requested:
        return list(universe.symbols)
    listed = set(universe.symbols)
    missing = [s for s in requested if s not in listed]
    if missing:
        log.warning("Requested symbols not listed by the venue: %s", ", ".join(missing))
    return [s for s in requested if s in listed]


def run_sync(
    client: HistoricalTradesClient,
    settings: SyncSettings,
    on_progress: Optional[ProgressCallback] = None,
) -> SyncReport:
    """Full synchronizer run: verify, list, scan, then backfill.

    The log length is checked before the first network call, and the scan
    finishes before the log handle is shared with any worker.
    """
    history_path = settings.history_path
    if history_path.exists():
        check_log_length(history_path)

    universe = SymbolUniverse.from_listing(client.list_symbols(), suffix=settings.symbol_suffix)
    for key, group in universe.collisions().items():
        log.warning("Symbols %s share the on-disk key %r and one resume cursor", group, key)

    cursors = build_resume_cursors(history_path, universe, batch_records=settings.scan_batch_records)
    symbols = select_symbols(universe, settings.symbols)

    scheduler = SyncScheduler(
        client=client,
        history_log=HistoryLog(history_path, fsync=settings.fsync),
        settings=settings,
        on_progress=on_progress,
    )
    return scheduler.run(symbols, cursors)
