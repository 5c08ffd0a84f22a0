from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class LedgerEntry:
    timestamp: str
    type: str
    destination_host: str = ""
    url: str | None = None
    method: str | None = None
    status: int | str | None = None
    error: str | None = None
    error_kind: str | None = None
    duration_ms: int = 0
    bytes_in: int = 0
    dimension: str | None = None
    key_index: int | None = None


@dataclass
class CallLedger:
    """Append-only record of every outbound call and dispatch attempt in a run."""

    entries: list[LedgerEntry] = field(default_factory=list)

    def add(self, **kwargs: Any) -> None:
        self.entries.append(LedgerEntry(timestamp=datetime.now(timezone.utc).isoformat(), **kwargs))

    def to_dict(self) -> dict[str, Any]:
        return {"entries": [asdict(e) for e in self.entries], "totals": self.totals()}

    def totals(self) -> dict[str, Any]:
        counts = defaultdict(int)
        errors = defaultdict(int)
        duration_ms = defaultdict(int)
        for entry in self.entries:
            counts[entry.type] += 1
            duration_ms[entry.type] += entry.duration_ms
            if entry.error_kind:
                errors[entry.error_kind] += 1
        return {
            "counts": dict(counts),
            "errors": dict(errors),
            "duration_ms": dict(duration_ms),
            "total_entries": len(self.entries),
        }
