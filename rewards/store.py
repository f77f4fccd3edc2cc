"""
Ledger Store: keyed record storage for users, campaigns, referrals,
watch logs and payment requests.

Records are plain dicts keyed by id. Reads return copies so callers never
mutate stored state. Every mutation runs under one lock, which gives the
single-row atomicity the services rely on: ``update`` and
``increment_clamped`` are read-modify-write steps that cannot interleave
with another writer.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Callable, Optional
from uuid import UUID

from .errors import DuplicateKey, RecordNotFound, StoreUnavailable


USERS = "users"
CAMPAIGNS = "campaigns"
REFERRALS = "referrals"
WATCH_LOGS = "watch_logs"
PAYMENTS = "payments"

KINDS = (USERS, CAMPAIGNS, REFERRALS, WATCH_LOGS, PAYMENTS)

UNIQUE_CONSTRAINTS: dict[str, list[tuple[str, ...]]] = {
    USERS: [("referral_code",), ("email",)],
    REFERRALS: [("inviter_id", "invitee_id")],
}

APPEND_ONLY = frozenset({WATCH_LOGS})


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryStorage:
    def __init__(self):
        self.tables: dict[str, dict[UUID, dict]] = {kind: {} for kind in KINDS}
        self.online = True
        self._lock = threading.RLock()

    def _check_online(self) -> None:
        if not self.online:
            raise StoreUnavailable("Ledger store is not available")

    def _table(self, kind: str) -> dict[UUID, dict]:
        try:
            return self.tables[kind]
        except KeyError:
            raise ValueError(f"Unknown record kind: {kind}") from None

    def get_by_id(self, kind: str, record_id: UUID) -> Optional[dict]:
        self._check_online()
        with self._lock:
            record = self._table(kind).get(record_id)
            return dict(record) if record else None

    def get_by_unique_field(self, kind: str, field: str, value: Any) -> Optional[dict]:
        self._check_online()
        with self._lock:
            for record in self._table(kind).values():
                if record.get(field) == value:
                    return dict(record)
        return None

    def find(
        self,
        kind: str,
        where: Optional[Callable[[dict], bool]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        **equals: Any,
    ) -> list[dict]:
        self._check_online()
        with self._lock:
            rows = [
                dict(r) for r in self._table(kind).values()
                if all(r.get(k) == v for k, v in equals.items()) and (where is None or where(r))
            ]
        if order_by:
            # Reversing first keeps ties newest-first under a stable descending sort.
            if descending:
                rows.reverse()
            rows.sort(key=lambda r: r[order_by], reverse=descending)
        return rows

    def count(self, kind: str, **equals: Any) -> int:
        return len(self.find(kind, **equals))

    def insert(self, kind: str, record: dict) -> dict:
        self._check_online()
        with self._lock:
            table = self._table(kind)
            if record["id"] in table:
                raise DuplicateKey(kind, "id", record["id"])
            for fields in UNIQUE_CONSTRAINTS.get(kind, []):
                key = tuple(record.get(f) for f in fields)
                if any(v is None for v in key):
                    continue
                for existing in table.values():
                    if tuple(existing.get(f) for f in fields) == key:
                        raise DuplicateKey(kind, ",".join(fields), key[0] if len(key) == 1 else key)
            table[record["id"]] = dict(record)
            return dict(record)

    def update(self, kind: str, record_id: UUID, patch: dict) -> dict:
        self._check_online()
        if kind in APPEND_ONLY:
            raise ValueError(f"{kind} records are append-only")
        with self._lock:
            table = self._table(kind)
            record = table.get(record_id)
            if record is None:
                raise RecordNotFound(kind, record_id)
            for fields in UNIQUE_CONSTRAINTS.get(kind, []):
                if not any(f in patch for f in fields):
                    continue
                key = tuple(patch.get(f, record.get(f)) for f in fields)
                for other_id, other in table.items():
                    if other_id != record_id and tuple(other.get(f) for f in fields) == key:
                        raise DuplicateKey(kind, ",".join(fields), key[0] if len(key) == 1 else key)
            record.update(patch)
            if "updated_at" in record:
                record["updated_at"] = utc_now()
            return dict(record)

    def apply(self, kind: str, record_id: UUID, mutate: Callable[[dict], dict]) -> dict:
        """Atomically compute a patch from the current row and write it back."""
        with self._lock:
            current = self.get_by_id(kind, record_id)
            if current is None:
                raise RecordNotFound(kind, record_id)
            return self.update(kind, record_id, mutate(current))

    def increment_clamped(
        self, kind: str, record_id: UUID, field: str, delta: int, floor: int = 0
    ) -> tuple[int, int]:
        """Add ``delta`` to a numeric field, never below ``floor``. Returns (previous, new)."""
        previous: dict = {}

        def clamp(row: dict) -> dict:
            previous[field] = row[field]
            return {field: max(floor, row[field] + delta)}

        updated = self.apply(kind, record_id, clamp)
        return previous[field], updated[field]

    def insert_and_increment(
        self,
        kind: str,
        record: dict,
        target_kind: str,
        target_id: UUID,
        field: str,
        delta: int,
        floor: int = 0,
    ) -> tuple[int, int]:
        """Insert ``record`` and increment a field on another row as one unit.

        If the increment fails the inserted row is removed before the error
        propagates, so neither write survives alone.
        """
        with self._lock:
            self.insert(kind, record)
            try:
                return self.increment_clamped(target_kind, target_id, field, delta, floor)
            except Exception:
                del self._table(kind)[record["id"]]
                raise
