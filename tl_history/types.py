from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional


@dataclass(frozen=True)
class ResumeCursor:
    """Lowest trade id known on disk for one symbol.

    min_id None means nothing has been fetched yet; 0 means backfill reached
    the origin.
    """

    min_id: Optional[int] = None
    min_time: Optional[int] = None

    @property
    def is_unknown(self) -> bool:
        return self.min_id is None

    @property
    def is_complete(self) -> bool:
        return self.min_id == 0

    def lowered(self, min_id: int, min_time: int) -> "ResumeCursor":
        if self.min_id is not None and min_id >= self.min_id:
            return self
        return ResumeCursor(min_id=min_id, min_time=min_time)


class SymbolStatus(str, Enum):
    COMPLETED = "completed"
    ALREADY_COMPLETE = "already_complete"
    NO_TRADES = "no_trades"
    FAILED = "failed"
    ABORTED = "aborted"


@dataclass
class SymbolOutcome:
    symbol: str
    status: SymbolStatus
    cursor: ResumeCursor
    pages: int = 0
    records: int = 0
    requests: int = 0
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status in (
            SymbolStatus.COMPLETED,
            SymbolStatus.ALREADY_COMPLETE,
            SymbolStatus.NO_TRADES,
        )


@dataclass
class SyncReport:
    outcomes: Dict[str, SymbolOutcome] = field(default_factory=dict)

    def add(self, outcome: SymbolOutcome) -> None:
        self.outcomes[outcome.symbol] = outcome

    @property
    def failed(self) -> List[SymbolOutcome]:
        return [o for o in self.outcomes.values() if o.status == SymbolStatus.FAILED]

    @property
    def ok(self) -> bool:
        return all(o.ok for o in self.outcomes.values())

    @property
    def records_written(self) -> int:
        return sum(o.records for o in self.outcomes.values())
