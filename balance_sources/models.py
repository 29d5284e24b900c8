"""
Balance Source Data Models - Records produced while walking holder sets.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Generic, Optional, TypeVar


T = TypeVar("T")


@dataclass
class HolderBalance:
    """
    One holder's balance for one asset.

    `balance` starts out as raw units and is replaced in place with the
    scaled amount before the record is handed to the batch callback.
    """
    address: str
    balance: str
    asset: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "address": self.address,
            "balance": self.balance,
            "asset": self.asset,
        }


@dataclass
class Page(Generic[T]):
    """
    A page of holders with an explicit continuation cursor.

    Listings keyed by the last returned address can return a plain list
    instead; `Page` is for listings with an opaque next key.
    """
    items: list[T]
    next_cursor: Optional[str] = None


@dataclass
class FetchOutcome(Generic[T]):
    """Settled results of one page of per-holder reads."""
    results: list[T] = field(default_factory=list)
    failures: list[Exception] = field(default_factory=list)

    @property
    def dropped(self) -> int:
        return len(self.failures)


@dataclass
class AggregationResult:
    """Summary of one aggregation pass over a source."""
    source_name: str
    height: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    batches: int = 0
    records: int = 0
    dropped_holders: int = 0

    @property
    def complete(self) -> bool:
        """True when no holder was dropped during the pass."""
        return self.dropped_holders == 0

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "source_name": self.source_name,
            "height": self.height,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "batches": self.batches,
            "records": self.records,
            "dropped_holders": self.dropped_holders,
            "complete": self.complete,
            "duration_seconds": self.duration_seconds,
        }
