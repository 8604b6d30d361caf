"""Settlement journal — hash-chained record of distributor activity.

Every committed claim, batch claim and administrative change produces an
event. Events are for observability and audit, not correctness: the
distributor's state is authoritative, the journal describes how it got
there.

Each record carries the hash of the record before it, so the journal is
a single chain from GENESIS_HASH to ``head_hash``. Claim and transfer
records also carry the settlement instruction they belong to, which lets
an operator pull the full trail of one payout (commit, then transfer
outcome) with ``for_instruction``.

The journal can be persisted as JSONL and reloaded. Loading is
fail-closed: a record whose hash does not match its content, or whose
previous_hash does not match the record before it, stops the load.
Deleted, reordered and duplicated lines all break the chain.

Usage:
    log = EventLog(Path("events.jsonl"))
    log.record(EventKind.CLAIMED, user, {"round": 0, "amount": 50},
               instruction_id="settle_ab12cd34ef56")
    trail = log.for_instruction("settle_ab12cd34ef56")
"""

from __future__ import annotations

import enum
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

GENESIS_HASH = "sha256:" + "0" * 64


class EventKind(str, enum.Enum):
    """Classification of distributor events."""
    CLAIMED = "claimed"
    CLAIMED_BATCH = "claimed_batch"
    ROUNDS_CONFIGURED = "rounds_configured"
    DEADLINE_UPDATED = "deadline_updated"
    PAUSED = "paused"
    UNPAUSED = "unpaused"
    ROUND_FINANCED = "round_financed"
    TRANSFER_COMPLETED = "transfer_completed"
    TRANSFER_FAILED = "transfer_failed"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"


def _chain_hash(body: dict[str, Any]) -> str:
    canonical = json.dumps(body, sort_keys=True, ensure_ascii=False).encode("utf-8")
    return f"sha256:{hashlib.sha256(canonical).hexdigest()}"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable journal entry, linked to its predecessor."""
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    instruction_id: Optional[str]
    previous_hash: str
    event_hash: str

    def body(self) -> dict[str, Any]:
        """Hashed content: everything except event_hash itself."""
        return {
            "event_id": self.event_id,
            "event_kind": self.event_kind.value,
            "timestamp_utc": self.timestamp_utc,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "instruction_id": self.instruction_id,
            "previous_hash": self.previous_hash,
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self.body(), "event_hash": self.event_hash}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> EventRecord:
        return EventRecord(
            event_id=data["event_id"],
            event_kind=EventKind(data["event_kind"]),
            timestamp_utc=data["timestamp_utc"],
            actor_id=data["actor_id"],
            payload=data["payload"],
            instruction_id=data.get("instruction_id"),
            previous_hash=data["previous_hash"],
            event_hash=data["event_hash"],
        )


class EventLog:
    """Append-only, hash-chained journal with optional JSONL persistence."""

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._by_instruction: dict[str, list[EventRecord]] = {}
        self._storage_path = storage_path

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def record(
        self,
        kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
        instruction_id: Optional[str] = None,
    ) -> EventRecord:
        """Chain a new event onto the head and persist it.

        The record is written to storage before it becomes visible in
        memory; a failed write raises and leaves the journal unchanged.
        """
        ts = timestamp_utc or datetime.now(timezone.utc)
        body = {
            "event_id": f"evt_{len(self._events) + 1:08d}",
            "event_kind": kind.value,
            "timestamp_utc": ts.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "actor_id": actor_id,
            "payload": payload,
            "instruction_id": instruction_id,
            "previous_hash": self.head_hash,
        }
        event = EventRecord.from_dict({**body, "event_hash": _chain_hash(body)})

        if self._storage_path:
            with self._storage_path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(event.to_dict(), sort_keys=True, ensure_ascii=False) + "\n")
        self._add(event)
        return event

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def for_instruction(self, instruction_id: str) -> list[EventRecord]:
        """Every event tied to one settlement instruction, in journal order."""
        return list(self._by_instruction.get(instruction_id, ()))

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def head_hash(self) -> str:
        return self._events[-1].event_hash if self._events else GENESIS_HASH

    def _add(self, event: EventRecord) -> None:
        self._events.append(event)
        if event.instruction_id is not None:
            self._by_instruction.setdefault(event.instruction_id, []).append(event)

    def _load_from_file(self, path: Path) -> None:
        """Load events from JSONL, verifying every hash and chain link."""
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                event = EventRecord.from_dict(json.loads(line))

                expected = _chain_hash(event.body())
                if event.event_hash != expected:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event.event_id} "
                        f"stored hash {event.event_hash} != computed {expected}"
                    )
                if event.previous_hash != self.head_hash:
                    raise ValueError(
                        f"Chain broken (line {line_num}): event {event.event_id} "
                        f"links to {event.previous_hash}, head is {self.head_hash}"
                    )
                self._add(event)
