"""
Match history: a ledger of finished games bucketed by unordered player pair.

- MatchHistoryLedger keeps at most MAX_HISTORY_PER_PAIR records per pair, newest first.
- record_match() is two-phase: update memory, then append to the HistoryStore. A store
  failure is logged and returned on the LedgerWrite; memory is not rolled back.
- HistoryStore implementations: MemoryHistoryStore (tests, ephemeral sessions) and
  JsonHistoryStore (one JSON list on disk, trimmed per pair on every append).

"""
from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Union

from .errors import PersistenceError

log = logging.getLogger("MatchHistory")

MAX_HISTORY_PER_PAIR = 5
DRAW_IDENTITY = "Draw"


class Outcome(str, Enum):
    SIDE_A = "side_a"
    SIDE_B = "side_b"
    DRAW = "draw"


def pair_key(identity_a: str, identity_b: str) -> str:
    return "_vs_".join(sorted([identity_a, identity_b]))


@dataclass(frozen=True)
class MatchRecord:
    timestamp: datetime
    side_a: str
    side_b: str
    game_kind: str
    outcome: Outcome

    @property
    def key(self) -> str:
        return pair_key(self.side_a, self.side_b)

    @property
    def winner(self) -> str:
        if self.outcome is Outcome.SIDE_A:
            return self.side_a
        if self.outcome is Outcome.SIDE_B:
            return self.side_b
        return DRAW_IDENTITY

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "side_a": self.side_a,
            "side_b": self.side_b,
            "game_kind": self.game_kind,
            "outcome": self.outcome.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MatchRecord":
        ts = datetime.fromisoformat(data["timestamp"])
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return cls(
            timestamp=ts,
            side_a=data["side_a"],
            side_b=data["side_b"],
            game_kind=data["game_kind"],
            outcome=Outcome(data["outcome"]),
        )


def resolve_outcome(side_a: str, side_b: str, outcome: Union[Outcome, str]) -> Outcome:
    """Map a winner identity ('Draw' or anything unknown means a draw) onto an Outcome."""
    if isinstance(outcome, Outcome):
        return outcome
    if outcome == side_a:
        return Outcome.SIDE_A
    if outcome == side_b:
        return Outcome.SIDE_B
    return Outcome.DRAW


def _insert_capped(records: List[MatchRecord], record: MatchRecord, cap: int) -> List[MatchRecord]:
    # head insert + stable sort: on equal timestamps the newest insertion stays first
    updated = [record] + records
    updated.sort(key=lambda r: r.timestamp, reverse=True)
    return updated[:cap]


# ---------------- Persistence collaborators -----------------
class HistoryStore(Protocol):
    async def fetch_all(self) -> List[MatchRecord]:
        """Return every stored record, oldest first."""
        ...

    async def append(self, record: MatchRecord) -> None:
        """Durably store one record; raise PersistenceError on failure."""
        ...


class MemoryHistoryStore:
    def __init__(self, records: Optional[List[MatchRecord]] = None):
        self.records: List[MatchRecord] = list(records or [])

    async def fetch_all(self) -> List[MatchRecord]:
        return list(self.records)

    async def append(self, record: MatchRecord) -> None:
        self.records.append(record)


class JsonHistoryStore:
    """History persisted as a JSON list; rewritten on each append and trimmed per pair."""

    def __init__(self, path: Union[str, Path], cap: int = MAX_HISTORY_PER_PAIR):
        self.path = Path(path)
        self.cap = cap
        self._lock = threading.Lock()

    def _read(self) -> List[MatchRecord]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8") or "[]")
        except (OSError, json.JSONDecodeError) as exc:
            raise PersistenceError(f"Failed to read history data: {exc}") from exc
        if not isinstance(raw, list):
            raise PersistenceError("Invalid history data format.")
        records = []
        for row in raw:
            try:
                records.append(MatchRecord.from_dict(row))
            except (KeyError, TypeError, ValueError):
                log.warning("Skipping malformed history row: %r", row)
        return records

    def _write(self, records: List[MatchRecord]) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(json.dumps([r.to_dict() for r in records], indent=2), encoding="utf-8")
        except OSError as exc:
            raise PersistenceError(f"Failed to save history data: {exc}") from exc

    def _append_sync(self, record: MatchRecord) -> None:
        with self._lock:
            records = self._read()
            records.append(record)
            grouped: Dict[str, List[MatchRecord]] = defaultdict(list)
            for r in records:
                grouped[r.key].append(r)
            keep = set()
            for rows in grouped.values():
                rows.sort(key=lambda r: r.timestamp, reverse=True)
                keep.update(id(r) for r in rows[:self.cap])
            self._write([r for r in records if id(r) in keep])

    def _fetch_sync(self) -> List[MatchRecord]:
        with self._lock:
            return self._read()

    async def fetch_all(self) -> List[MatchRecord]:
        return await asyncio.to_thread(self._fetch_sync)

    async def append(self, record: MatchRecord) -> None:
        await asyncio.to_thread(self._append_sync, record)


# ---------------- Ledger -----------------
@dataclass(frozen=True)
class LedgerWrite:
    """Result of record_match: the record kept in memory, plus the store error if any."""

    record: MatchRecord
    error: Optional[PersistenceError] = None

    @property
    def persisted(self) -> bool:
        return self.error is None


class MatchHistoryLedger:
    def __init__(
        self,
        store: Optional[HistoryStore] = None,
        cap: int = MAX_HISTORY_PER_PAIR,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.cap = cap
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._history: Dict[str, List[MatchRecord]] = {}
        self._loaded = False
        self._load_task: Optional[asyncio.Future] = None
        self._guard = threading.Lock()
        self._key_locks: Dict[str, threading.Lock] = {}

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    async def load(self) -> None:
        """Hydrate from the store once. A failing store leaves the ledger empty.

        Concurrent callers share the in-flight fetch and return only once it has finished.
        """
        if self._loaded:
            return
        if self._load_task is None:
            self._load_task = asyncio.ensure_future(self._hydrate())
        await asyncio.shield(self._load_task)

    async def _hydrate(self) -> None:
        records: List[MatchRecord] = []
        if self.store is not None:
            try:
                records = await self.store.fetch_all()
            except Exception:
                log.exception("Error loading match history; starting empty")
        for record in records:
            self._insert(record)
        self._loaded = True
        if records:
            log.info("Match history loaded: %d records across %d pairs", len(records), len(self._history))

    def _insert(self, record: MatchRecord) -> None:
        key = record.key
        with self._lock_for(key):
            self._history[key] = _insert_capped(self._history.get(key, []), record, self.cap)

    async def record_match(
        self,
        side_a: str,
        side_b: str,
        game_kind: str,
        outcome: Union[Outcome, str],
    ) -> LedgerWrite:
        record = MatchRecord(
            timestamp=self._clock(),
            side_a=side_a,
            side_b=side_b,
            game_kind=game_kind,
            outcome=resolve_outcome(side_a, side_b, outcome),
        )
        self._insert(record)
        log.info("Recorded %s: %s vs %s -> %s", game_kind, side_a, side_b, record.winner)
        if self.store is None:
            return LedgerWrite(record)
        try:
            await self.store.append(record)
        except PersistenceError as exc:
            log.exception("Failed to persist match record")
            return LedgerWrite(record, exc)
        except Exception as exc:
            log.exception("Failed to persist match record")
            return LedgerWrite(record, PersistenceError(f"Failed to add match: {exc}"))
        return LedgerWrite(record)

    def get_all(self) -> Dict[str, List[MatchRecord]]:
        return {k: list(v) for k, v in self._history.items()}

    def get_for_pair(self, identity_a: str, identity_b: str) -> List[MatchRecord]:
        return list(self._history.get(pair_key(identity_a, identity_b), []))
