"""Block data models for the TRON collector."""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class Parity(str, Enum):
    """Parity of the digit derived from a block hash."""
    ODD = "ODD"
    EVEN = "EVEN"


class Magnitude(str, Enum):
    """Magnitude of the digit derived from a block hash."""
    BIG = "BIG"
    SMALL = "SMALL"


@dataclass(frozen=True)
class Classification:
    """Deterministic classification of a block hash."""
    digit_value: int
    parity: Parity
    magnitude: Magnitude


@dataclass(frozen=True)
class BlockRecord:
    """A classified block. Immutable once created."""
    height: int
    hash: str
    timestamp: int
    digit_value: int
    parity: Parity
    magnitude: Magnitude

    @classmethod
    def create(cls, height: int, block_hash: str, timestamp: int) -> "BlockRecord":
        """Build a record, deriving the classification from the hash."""
        from tron_collector.core.classifier import classify

        classification = classify(block_hash)
        return cls(
            height=int(height),
            hash=block_hash,
            timestamp=int(timestamp),
            digit_value=classification.digit_value,
            parity=classification.parity,
            magnitude=classification.magnitude,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "height": self.height,
            "hash": self.hash,
            "timestamp": self.timestamp,
            "digit_value": self.digit_value,
            "parity": self.parity.value,
            "magnitude": self.magnitude.value,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BlockRecord":
        return cls(
            height=int(data["height"]),
            hash=data["hash"],
            timestamp=int(data["timestamp"]),
            digit_value=int(data["digit_value"]),
            parity=Parity(data["parity"]),
            magnitude=Magnitude(data["magnitude"]),
        )

    @classmethod
    def from_json(cls, raw: str) -> "BlockRecord":
        return cls.from_dict(json.loads(raw))


@dataclass(frozen=True)
class GapInterval:
    """Contiguous range of missing heights. Never persisted."""
    start: int
    end: int
    count: int

    @classmethod
    def between(cls, start: int, end: int) -> "GapInterval":
        return cls(start=start, end=end, count=end - start + 1)

    def to_dict(self) -> Dict[str, int]:
        return {"start": self.start, "end": self.end, "count": self.count}


@dataclass
class StoreStats:
    """Store-level statistics."""
    backend: str
    total_blocks: int = 0
    latest_height: int = 0
    last_update: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backend": self.backend,
            "total_blocks": self.total_blocks,
            "latest_height": self.latest_height,
            "last_update": self.last_update,
        }


@dataclass
class BackfillResult:
    """Outcome of a backfill run over [start, end]."""
    start: int
    end: int
    requested: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: bool = False
    deferred: Optional[GapInterval] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start": self.start,
            "end": self.end,
            "requested": self.requested,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "deferred": self.deferred.to_dict() if self.deferred else None,
        }
