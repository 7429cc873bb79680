from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Sequence

from tl_core.errors import StorageWriteFailure
from tl_core.record import RECORD_SIZE, TradeRecord, encode_batch


class HistoryLog:
    """Append-only handle on the shared history file.

    One instance is shared by every worker. Each append opens the file,
    writes the whole encoded batch and closes it while holding the lock, so
    batches from different workers never interleave.
    """

    def __init__(self, path: str | Path, fsync: bool = True) -> None:
        self.path = Path(path)
        self.fsync = fsync
        self._lock = threading.Lock()
        self.appends = 0

    def append(self, records: Sequence[TradeRecord]) -> int:
        payload = encode_batch(records)
        if not payload:
            return 0
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("ab") as fh:
                    fh.write(payload)
                    if self.fsync:
                        fh.flush()
                        os.fsync(fh.fileno())
            except OSError as exc:
                raise StorageWriteFailure(self.path, str(exc)) from exc
            self.appends += 1
        return len(payload) // RECORD_SIZE

    def size_records(self) -> int:
        if not self.path.exists():
            return 0
        return self.path.stat().st_size // RECORD_SIZE
