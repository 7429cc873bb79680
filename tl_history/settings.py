from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, List, Mapping, Optional

import yaml


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "y")


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name) or ""
    return [s.strip() for s in raw.split(",") if s.strip()]


def expand_path(value: str | Path) -> Path:
    return Path(os.path.expandvars(os.path.expanduser(str(value))))


DEFAULT_HISTORY_PATH = "~/.bitrader/history.dat"
DEFAULT_ARCHIVE_DIR = "~/.bitrader/history"
# venue caps a page at 1000 rows and older pages ask for page_size + 1
MAX_PAGE_SIZE = 999


@dataclass
class SyncSettings:
    history_path: Path = field(default_factory=lambda: expand_path(DEFAULT_HISTORY_PATH))
    archive_dir: Path = field(default_factory=lambda: expand_path(DEFAULT_ARCHIVE_DIR))
    exchange: str = "binance"
    page_size: int = 500
    workers: int = 4
    symbol_suffix: str = "BTC"
    symbols: List[str] = field(default_factory=list)
    scan_batch_records: int = 1024
    empty_retry_sleep_s: float = 0.5
    rate_limit_retry_max: int = 3
    rate_limit_backoff_s: float = 1.0
    rate_limit_backoff_max_s: float = 30.0
    fail_fast: bool = False
    fsync: bool = True
    base_url: str = "https://api.binance.com"
    timeout_s: float = 30.0
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self.page_size = min(max(1, int(self.page_size)), MAX_PAGE_SIZE)

    @classmethod
    def from_env(cls) -> "SyncSettings":
        return cls(
            history_path=expand_path(os.getenv("HISTORY_PATH", DEFAULT_HISTORY_PATH)),
            archive_dir=expand_path(os.getenv("HISTORY_ARCHIVE_DIR", DEFAULT_ARCHIVE_DIR)),
            exchange=(os.getenv("EXCHANGE") or "binance").lower(),
            page_size=_env_int("PAGE_SIZE", 500),
            workers=max(1, _env_int("SYNC_WORKERS", 4)),
            symbol_suffix=os.getenv("SYMBOL_SUFFIX", "BTC"),
            symbols=_env_list("SYMBOLS"),
            scan_batch_records=max(1, _env_int("SCAN_BATCH_RECORDS", 1024)),
            empty_retry_sleep_s=max(0.0, _env_float("EMPTY_RETRY_SLEEP_S", 0.5)),
            rate_limit_retry_max=max(0, _env_int("RATE_LIMIT_RETRY_MAX", 3)),
            rate_limit_backoff_s=max(0.0, _env_float("RATE_LIMIT_BACKOFF_S", 1.0)),
            rate_limit_backoff_max_s=max(0.0, _env_float("RATE_LIMIT_BACKOFF_MAX_S", 30.0)),
            fail_fast=_env_bool("FAIL_FAST", False),
            fsync=_env_bool("HISTORY_FSYNC", True),
            base_url=os.getenv("BINANCE_REST_BASE_URL", "https://api.binance.com"),
            timeout_s=_env_float("BINANCE_TIMEOUT_S", 30.0),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )

    def merged(self, overrides: Mapping[str, Any]) -> "SyncSettings":
        """Copy with overrides applied; unknown keys raise, None values are skipped."""
        known = {f.name for f in fields(self)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(unknown)}")
        values = {k: v for k, v in overrides.items() if v is not None}
        for key in ("history_path", "archive_dir"):
            if key in values:
                values[key] = expand_path(values[key])
        if isinstance(values.get("symbols"), str):
            values["symbols"] = [s.strip() for s in values["symbols"].split(",") if s.strip()]
        return replace(self, **values)


def load_config(path: str | Path) -> dict:
    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ValueError(f"{path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def load_settings(config_path: Optional[str | Path] = None, **overrides: Any) -> SyncSettings:
    """Environment, then the YAML file, then explicit overrides."""
    settings = SyncSettings.from_env()
    if config_path is not None:
        settings = settings.merged(load_config(config_path))
    if overrides:
        settings = settings.merged(overrides)
    return settings
