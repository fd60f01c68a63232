# quota.py
#
# Day buckets + the process-wide quota store.
#
# Store shape: client_id -> ClientState(by_day: day -> QuotaRecord, active chain,
# beta grants). Records are created on first touch ("ensure"), never on a miss
# error. Counts live in memory only: a process restart loses them.
#
# Every check-and-charge runs under a per-client lock so concurrent requests from
# one visitor cannot both slip past the cap.
#
from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterator, Optional, Set, Tuple, Union

from .policy import BetaFlags, Cap, under_cap


logger = logging.getLogger(__name__)

Instant = Union[datetime, date, float, int, None]


class QuotaStoreError(RuntimeError):
    """Store unreachable or holding a record that breaks its invariants."""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def day_key(instant: Instant = None) -> str:
    """UTC calendar day (YYYY-MM-DD). Naive datetimes are read as UTC."""
    if instant is None:
        instant = utc_now()
    if isinstance(instant, (int, float)):
        instant = datetime.fromtimestamp(float(instant), tz=timezone.utc)
    if isinstance(instant, datetime):
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(timezone.utc).date().isoformat()
    return instant.isoformat()


@dataclass
class QuotaRecord:
    count: int = 0
    counted_chain_ids: Set[str] = field(default_factory=set)


@dataclass
class ClientState:
    by_day: Dict[str, QuotaRecord] = field(default_factory=dict)
    active_chain: Optional[Any] = None
    beta: BetaFlags = field(default_factory=BetaFlags)
    beta_email: Optional[str] = None


def _check(record: QuotaRecord) -> QuotaRecord:
    if not isinstance(record, QuotaRecord):
        raise QuotaStoreError(f"unexpected record type: {type(record).__name__}")
    if isinstance(record.count, bool) or not isinstance(record.count, int) or record.count < 0:
        raise QuotaStoreError(f"corrupt count: {record.count!r}")
    if not isinstance(record.counted_chain_ids, set):
        raise QuotaStoreError("corrupt counted chain set")
    return record


class QuotaStore:
    def __init__(self) -> None:
        self._clients: Dict[str, ClientState] = {}
        self._lock = threading.Lock()
        self._client_locks: Dict[str, threading.RLock] = {}

    # ---------- locking ----------
    def _lock_for(self, client_id: str) -> threading.RLock:
        with self._lock:
            lk = self._client_locks.get(client_id)
            if lk is None:
                lk = threading.RLock()
                self._client_locks[client_id] = lk
            return lk

    def _client(self, client_id: str) -> ClientState:
        with self._lock:
            st = self._clients.get(client_id)
            if st is None:
                st = ClientState()
                self._clients[client_id] = st
            return st

    @contextmanager
    def transaction(self, client_id: str) -> Iterator[ClientState]:
        """Exclusive access to one client's state for a compound check/act."""
        with self._lock_for(client_id):
            yield self._client(client_id)

    # ---------- records ----------
    def ensure(self, client_id: str, day: str) -> QuotaRecord:
        with self.transaction(client_id) as st:
            rec = st.by_day.get(day)
            if rec is None:
                rec = QuotaRecord()
                st.by_day[day] = rec
            return _check(rec)

    def get_count(self, client_id: str, day: str) -> int:
        return self.ensure(client_id, day).count

    def increment(self, client_id: str, day: str) -> int:
        with self.transaction(client_id):
            rec = self.ensure(client_id, day)
            rec.count += 1
            return rec.count

    def is_chain_counted(self, client_id: str, day: str, chain_id: str) -> bool:
        return chain_id in self.ensure(client_id, day).counted_chain_ids

    def mark_chain_counted(self, client_id: str, day: str, chain_id: str) -> bool:
        """True if chain_id was not yet marked for this day."""
        with self.transaction(client_id):
            rec = self.ensure(client_id, day)
            if chain_id in rec.counted_chain_ids:
                return False
            rec.counted_chain_ids.add(chain_id)
            return True

    def charge(
        self,
        client_id: str,
        day: str,
        cap: Cap,
        chain_id: Optional[str] = None,
    ) -> Tuple[bool, int]:
        """
        Atomic check-and-increment. Returns (charged, count_after).
        With a chain_id the charge happens at most once per day for that chain.
        """
        with self.transaction(client_id):
            rec = self.ensure(client_id, day)
            if chain_id is not None and chain_id in rec.counted_chain_ids:
                return False, rec.count
            if not under_cap(rec.count, cap):
                return False, rec.count
            rec.count += 1
            if chain_id is not None:
                rec.counted_chain_ids.add(chain_id)
            logger.debug("charged client=%s day=%s count=%s cap=%s", client_id, day, rec.count, cap)
            return True, rec.count

    def reset_day(self, client_id: str, day: str) -> None:
        with self.transaction(client_id) as st:
            if day in st.by_day:
                st.by_day[day] = QuotaRecord()

    # ---------- active chain pointer ----------
    def get_chain(self, client_id: str) -> Optional[Any]:
        with self.transaction(client_id) as st:
            return st.active_chain

    def put_chain(self, client_id: str, chain: Optional[Any]) -> None:
        with self.transaction(client_id) as st:
            st.active_chain = chain

    # ---------- beta grants ----------
    def beta_flags(self, client_id: str) -> BetaFlags:
        with self.transaction(client_id) as st:
            return st.beta

    def grant_beta(
        self,
        client_id: str,
        beta1: bool = False,
        beta2: bool = False,
        email: Optional[str] = None,
    ) -> BetaFlags:
        with self.transaction(client_id) as st:
            st.beta = st.beta.merged(BetaFlags(beta1=beta1, beta2=beta2))
            if email:
                st.beta_email = email
            return st.beta


# A module reload re-executes this file in the same namespace, so the guard keeps
# the store (and its counts) alive across dev reloads.
if "_default_store" not in globals():
    _default_store: Optional[QuotaStore] = None
    _default_store_lock = threading.Lock()


def default_store() -> QuotaStore:
    global _default_store
    with _default_store_lock:
        if _default_store is None:
            _default_store = QuotaStore()
        return _default_store
