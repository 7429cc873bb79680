from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from tl_core.errors import CorruptLog, ExchangeError, MissingCredentials, StorageWriteFailure
from tl_core.record import RECORD_SIZE
from tl_core.symbols import key_from_field, key_to_str, symbol_key
from tl_core.timefmt import ms_to_date
from tl_history.candles import build_candles, write_candles_csv
from tl_history.cursor import SymbolUniverse, iter_log_fields
from tl_history.exchanges import get_client_class
from tl_history.exchanges.binance import load_api_key
from tl_history.logging_config import setup_logging
from tl_history.reader import discover_archives, iter_archive_records, iter_records
from tl_history.scheduler import run_sync
from tl_history.settings import SyncSettings, load_settings
from tl_history.types import SymbolStatus, SyncReport

log = logging.getLogger("tradelog")

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_FATAL = 2


def _build_client(settings: SyncSettings):
    client_cls = get_client_class(settings.exchange)
    return client_cls(
        api_key=load_api_key(),
        base_url=settings.base_url,
        timeout_s=settings.timeout_s,
        page_size=settings.page_size,
    )


def _print_report(report: SyncReport) -> None:
    for symbol in sorted(report.outcomes):
        o = report.outcomes[symbol]
        line = f"{symbol:<12} {o.status.value:<16} minId={o.cursor.min_id} pages={o.pages} records={o.records}"
        if o.error is not None:
            line += f" error={type(o.error).__name__}: {o.error}"
        print(line)
    counts: Dict[str, int] = {}
    for o in report.outcomes.values():
        counts[o.status.value] = counts.get(o.status.value, 0) + 1
    summary = " ".join(f"{k}={v}" for k, v in sorted(counts.items()))
    print(f"symbols={len(report.outcomes)} records_written={report.records_written} {summary}")


def cmd_sync(settings: SyncSettings) -> int:
    try:
        client = _build_client(settings)
        report = run_sync(client, settings)
    except (CorruptLog, StorageWriteFailure, MissingCredentials) as exc:
        log.error("%s", exc)
        return EXIT_FATAL
    except ExchangeError as exc:
        log.error("Cannot list symbols: %s", exc)
        return EXIT_FATAL

    _print_report(report)
    if report.ok:
        return EXIT_OK
    for o in report.outcomes.values():
        if o.status == SymbolStatus.FAILED:
            log.error("%s failed: %s", o.symbol, o.error)
    return EXIT_PARTIAL


def summarize_log(path: Path, batch_records: int = 1024) -> Dict[str, Tuple[int, int, int, int, int]]:
    """Per-key (count, min_id, max_id, min_time, max_time) from a full scan."""
    stats: Dict[str, List[int]] = {}
    for raw_symbol, _p, _q, trade_id, ts, _b, _m in iter_log_fields(path, batch_records):
        key = key_to_str(key_from_field(raw_symbol))
        s = stats.get(key)
        if s is None:
            stats[key] = [1, trade_id, trade_id, ts, ts]
            continue
        s[0] += 1
        s[1] = min(s[1], trade_id)
        s[2] = max(s[2], trade_id)
        s[3] = min(s[3], ts)
        s[4] = max(s[4], ts)
    return {k: tuple(v) for k, v in stats.items()}


def cmd_verify(settings: SyncSettings) -> int:
    """Summarize the log. With a symbol list, keys outside it are reported and fail the check."""
    path = settings.history_path
    if not path.exists():
        print(f"{path}: no history log")
        return EXIT_OK
    try:
        stats = summarize_log(path, settings.scan_batch_records)
    except CorruptLog as exc:
        log.error("%s", exc)
        return EXIT_FATAL
    universe = SymbolUniverse(settings.symbols) if settings.symbols else None
    unknown: List[str] = []
    total = 0
    for key in sorted(stats):
        count, min_id, max_id, min_time, max_time = stats[key]
        total += count
        state = "complete" if min_id == 0 else "partial"
        if universe is not None and symbol_key(key) not in universe:
            state = "unknown"
            unknown.append(key)
        print(
            f"{key:<8} records={count} ids=[{min_id}, {max_id}] {state} "
            f"from {ms_to_date(min_time)} to {ms_to_date(max_time)}"
        )
    print(f"{path}: {total} records, {len(stats)} symbols, record size {RECORD_SIZE}")
    if unknown:
        log.error("%d unknown symbol keys in %s: %s", len(unknown), path, ", ".join(map(repr, unknown)))
        return EXIT_FATAL
    return EXIT_OK


def cmd_candles(settings: SyncSettings, symbol: str, interval: str, source: str, out: Optional[Path]) -> int:
    try:
        if source == "archive":
            archives = discover_archives(settings.archive_dir)
            if symbol not in archives:
                log.error("No archive for %s in %s", symbol, settings.archive_dir)
                return EXIT_FATAL
            records = iter_archive_records(archives[symbol])
        else:
            records = iter_records(settings.history_path, symbol=symbol)
        candles = build_candles(records, interval)
    except (CorruptLog, FileNotFoundError) as exc:
        log.error("%s", exc)
        return EXIT_FATAL

    if not candles:
        print(f"No trades for {symbol}")
        return EXIT_PARTIAL
    if out is not None:
        n = write_candles_csv(out, candles, symbol, interval)
        print(f"Wrote {n} candles to {out}")
    else:
        print(f"Candles: {len(candles)}")
        print(f"First ts_ms: {candles[0].ts_ms}  Last ts_ms: {candles[-1].ts_ms}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="tradelog", description="Trade history backfill into a binary log")
    parser.add_argument("--config", default=None, help="YAML settings file")
    parser.add_argument("--history-path", default=None, help="Binary history log (default $HISTORY_PATH)")
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--log-dir", default="logs", help="Base directory for daily log files")
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Backfill every symbol down to trade id 0")
    sync.add_argument("--workers", type=int, default=None)
    sync.add_argument("--symbols", default=None, help="Comma separated subset of symbols")
    sync.add_argument("--suffix", default=None, help="Quote-asset filter for the symbol listing")
    sync.add_argument("--page-size", type=int, default=None)
    sync.add_argument("--fail-fast", action="store_true", default=None)

    verify = sub.add_parser("verify", help="Check log alignment and summarize per-symbol coverage")
    verify.add_argument("--symbols", default=None, help="Comma separated tickers the log may contain")

    candles = sub.add_parser("candles", help="Aggregate one symbol's trades into OHLC candles")
    candles.add_argument("--symbol", required=True)
    candles.add_argument("--interval", default="30m")
    candles.add_argument("--source", choices=("log", "archive"), default="log")
    candles.add_argument("--archive-dir", default=None)
    candles.add_argument("--out", default=None, help="Write gzip CSV here")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    overrides = {
        "history_path": args.history_path,
        "log_level": args.log_level,
    }
    if args.command == "sync":
        overrides.update(
            workers=args.workers,
            symbols=args.symbols,
            symbol_suffix=args.suffix,
            page_size=args.page_size,
            fail_fast=args.fail_fast,
        )
    elif args.command == "verify":
        overrides["symbols"] = args.symbols
    elif args.command == "candles":
        overrides["archive_dir"] = args.archive_dir

    try:
        settings = load_settings(args.config, **overrides)
    except (OSError, ValueError) as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return EXIT_FATAL

    setup_logging(settings.log_level, component="tradelog", subdir=args.command, base_dir=args.log_dir)

    if args.command == "sync":
        log.info("Syncing %s", settings.history_path)
        return cmd_sync(settings)
    if args.command == "verify":
        return cmd_verify(settings)
    out = Path(args.out) if args.out else None
    return cmd_candles(settings, args.symbol, args.interval, args.source, out)


if __name__ == "__main__":
    raise SystemExit(main())
