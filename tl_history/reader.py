from __future__ import annotations

import logging
import tarfile
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from tl_core.errors import CorruptLog
from tl_core.record import RECORD_SIZE, TradeRecord, iter_decode
from tl_core.symbols import key_to_str, symbol_key

log = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".tar.bz2"
DEFAULT_BATCH_RECORDS = 1024


def iter_records(
    path: Path,
    symbol: Optional[str] = None,
    batch_records: int = DEFAULT_BATCH_RECORDS,
) -> Iterator[TradeRecord]:
    """Linear scan of a history log, optionally filtered by truncated symbol."""
    path = Path(path)
    size = path.stat().st_size
    if size % RECORD_SIZE:
        raise CorruptLog(path, f"length {size} is not a multiple of {RECORD_SIZE}")
    want = None if symbol is None else key_to_str(symbol_key(symbol))
    remaining = size
    batch_bytes = max(1, int(batch_records)) * RECORD_SIZE
    with path.open("rb") as fh:
        # records appended after the stat are left for the next reader
        while remaining > 0:
            buf = fh.read(min(batch_bytes, remaining))
            if not buf:
                break
            remaining -= len(buf)
            for record in iter_decode(buf):
                if want is None or record.symbol == want:
                    yield record


@dataclass
class TailState:
    offset: int = 0


class LogTailer:
    """Incremental reader that picks up whole records appended since last poll."""

    def __init__(self, path: Path, state: Optional[TailState] = None) -> None:
        self.path = Path(path)
        self.state = state or TailState()

    def poll(self) -> List[TradeRecord]:
        if not self.path.exists():
            return []
        size = self.path.stat().st_size
        if size % RECORD_SIZE:
            raise CorruptLog(self.path, f"length {size} is not a multiple of {RECORD_SIZE}")
        if size < self.state.offset:
            raise CorruptLog(self.path, f"log shrank from {self.state.offset} to {size} bytes")
        if size == self.state.offset:
            return []
        with self.path.open("rb") as fh:
            fh.seek(self.state.offset)
            buf = fh.read(size - self.state.offset)
        whole = len(buf) - len(buf) % RECORD_SIZE
        self.state.offset += whole
        return list(iter_decode(buf[:whole]))


def discover_archives(archive_dir: Path) -> Dict[str, Path]:
    """Map symbol -> per-symbol archive (<SYMBOL>.tar.bz2) in a directory."""
    archive_dir = Path(archive_dir)
    if not archive_dir.is_dir():
        return {}
    found: Dict[str, Path] = {}
    for candidate in sorted(archive_dir.iterdir()):
        if not candidate.is_file() or not candidate.name.endswith(ARCHIVE_SUFFIX):
            continue
        name = candidate.name.split(".", 1)[0]
        if not name:
            log.error("Cannot determine symbol name for file %s", candidate)
            continue
        found[name] = candidate
    return found


def iter_archive_records(
    path: Path,
    batch_records: int = DEFAULT_BATCH_RECORDS,
) -> Iterator[TradeRecord]:
    """Stream records from the first member of a per-symbol archive.

    A trailing partial record is ignored.
    """
    path = Path(path)
    try:
        tar = tarfile.open(path, mode="r|bz2")
    except (tarfile.TarError, OSError) as exc:
        raise CorruptLog(path, f"cannot open archive: {exc}") from exc
    with tar:
        member = tar.next()
        while member is not None and not member.isfile():
            member = tar.next()
        if member is None:
            raise CorruptLog(path, "archive has no file member")
        log.info("Found entry %s in %s", member.name, path)
        fh = tar.extractfile(member)
        if fh is None:
            raise CorruptLog(path, f"cannot read archive member {member.name}")
        batch_bytes = max(1, int(batch_records)) * RECORD_SIZE
        pending = b""
        while True:
            chunk = fh.read(batch_bytes)
            if not chunk:
                break
            buf = pending + chunk
            whole = len(buf) - len(buf) % RECORD_SIZE
            pending = buf[whole:]
            yield from iter_decode(buf[:whole])
        if pending:
            log.warning("%s: ignoring %d trailing bytes", path, len(pending))
