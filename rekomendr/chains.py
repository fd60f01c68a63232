# chains.py
#
# Chain lifecycle: one logical search session (base query + up to
# REFINES_PER_CHAIN_LIMIT refinements) costs one unit of daily quota.
#
#   NoChain --begin/open--> ActiveChain --refine*--> ActiveChain --end--> NoChain
#
# Charging paths:
#   begin_chain          charges at start (one unit, chain id marked counted)
#   open_chain           checks allowance only; once its base query is served the
#                        unit is charged by end_chain, end_chain_and_count, or when
#                        a newer chain supersedes it
#
# Re-entering the active chain id returns it unchanged. A chain id already
# counted today cannot be opened again.
#   end_chain_and_count  charges at end, at most once per chain id per day
#
# All paths share the day's counted-chain set, so no chain id is ever charged
# twice whichever path saw it first.
#
from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from .policy import BetaFlagPolicy, BetaFlags, CapPolicy, Tier, remaining, under_cap
from .quota import QuotaStore, QuotaStoreError, utc_now
from .settings import CHARGE_AT_END, CHARGE_AT_START
from .softwall import Gate, SoftWall, Usage


logger = logging.getLogger(__name__)

REFINES_PER_CHAIN_LIMIT = 3

_CHAIN_ID_RE = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


class InvalidChainId(ValueError):
    pass


def new_chain_id() -> str:
    return f"ch_{uuid.uuid4().hex[:12]}"


def check_chain_id(chain_id: object) -> str:
    if not isinstance(chain_id, str) or not _CHAIN_ID_RE.match(chain_id):
        raise InvalidChainId(f"invalid chainId: {chain_id!r}")
    return chain_id


class ChainState(BaseModel):
    """Active chain pointer. JSON form matches the client-local chain key."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    started_at: int = Field(alias="startedAt")
    vertical: Optional[str] = None
    base_query: Optional[str] = Field(default=None, alias="baseQuery")
    refines: int = 0
    base_served: bool = Field(default=False, alias="baseServed")
    charged: bool = False

    @property
    def at_refine_limit(self) -> bool:
        return self.refines >= REFINES_PER_CHAIN_LIMIT

    def dumps(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def loads(cls, raw: Optional[str]) -> Optional["ChainState"]:
        """Unreadable pointers and pointers without an id read as no chain."""
        if not raw:
            return None
        try:
            data = json.loads(raw)
            if not isinstance(data, dict) or not data.get("id"):
                return None
            return cls.model_validate(data)
        except Exception:
            return None


@dataclass(frozen=True)
class ChainStart:
    gate: Gate
    chain: Optional[ChainState]


@dataclass(frozen=True)
class RefineResult:
    chain: Optional[ChainState]
    reached_limit: bool


class ChainLedger:
    def __init__(
        self,
        store: QuotaStore,
        policy: Optional[CapPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
        charge_at: str = CHARGE_AT_END,
    ) -> None:
        self.store = store
        self.wall = SoftWall(store, policy or BetaFlagPolicy(), clock)
        self.charge_at = charge_at

    # ---------- helpers ----------
    def _new_chain(self, chain_id: Optional[str], vertical: Optional[str], base_query: Optional[str]) -> ChainState:
        return ChainState(
            id=check_chain_id(chain_id) if chain_id else new_chain_id(),
            startedAt=int(self.wall.clock().timestamp() * 1000),
            vertical=(vertical or None),
            baseQuery=(base_query or None),
        )

    def _denied(self, tier: Tier, flags: Optional[BetaFlags], count: int = 0) -> ChainStart:
        return ChainStart(
            gate=Gate(allowed=False, count=count, limit=self.wall.cap(tier, flags), tier=tier),
            chain=None,
        )

    @staticmethod
    def start_chain() -> str:
        """Server-sourced chain id for clients that do not mint their own."""
        return new_chain_id()

    def active_chain(self, client_id: str) -> Optional[ChainState]:
        try:
            return self.store.get_chain(client_id)
        except QuotaStoreError:
            return None

    # ---------- begin ----------
    def begin_chain(
        self,
        client_id: str,
        tier: Optional[Tier] = None,
        flags: Optional[BetaFlags] = None,
        vertical: Optional[str] = None,
        base_query: Optional[str] = None,
        chain_id: Optional[str] = None,
    ) -> ChainStart:
        """Start-charged: one unit is consumed at creation, or nothing happens."""
        t = Tier.parse(tier)
        chain = self._new_chain(chain_id, vertical, base_query)
        cap = self.wall.cap(t, flags)
        try:
            with self.store.transaction(client_id):
                prev = self.store.get_chain(client_id)
                if prev is not None and chain_id and prev.id == chain_id:
                    count = self.store.get_count(client_id, self.wall.today())
                    return ChainStart(gate=Gate(allowed=True, count=count, limit=cap, tier=t), chain=prev)
                charged, count = self.store.charge(client_id, self.wall.today(), cap, chain.id)
                if not charged:
                    return self._denied(t, flags, count)
                chain.charged = True
                self.store.put_chain(client_id, chain)
        except QuotaStoreError as e:
            logger.warning("begin_chain failed closed for %s: %r", client_id, e)
            return self._denied(t, flags)

        logger.info("chain %s begun for %s (%s/%s)", chain.id, client_id, count, cap)
        return ChainStart(gate=Gate(allowed=True, count=count, limit=cap, tier=t), chain=chain)

    def open_chain(
        self,
        client_id: str,
        tier: Optional[Tier] = None,
        flags: Optional[BetaFlags] = None,
        vertical: Optional[str] = None,
        base_query: Optional[str] = None,
        chain_id: Optional[str] = None,
    ) -> ChainStart:
        """End-charged: allowance is checked now, the unit is charged on end."""
        t = Tier.parse(tier)
        chain = self._new_chain(chain_id, vertical, base_query)
        cap = self.wall.cap(t, flags)
        day = self.wall.today()
        try:
            with self.store.transaction(client_id):
                prev = self.store.get_chain(client_id)
                if prev is not None and prev.id == chain.id:
                    count = self.store.get_count(client_id, day)
                    return ChainStart(gate=Gate(allowed=True, count=count, limit=cap, tier=t), chain=prev)
                if prev is not None:
                    # a superseded chain pays for the base query it served
                    if prev.base_served and not prev.charged:
                        self.store.charge(client_id, day, cap, prev.id)
                    self.store.put_chain(client_id, None)

                count = self.store.get_count(client_id, day)
                if self.store.is_chain_counted(client_id, day, chain.id) or not under_cap(count, cap):
                    return self._denied(t, flags, count)
                self.store.put_chain(client_id, chain)
        except QuotaStoreError as e:
            logger.warning("open_chain failed closed for %s: %r", client_id, e)
            return self._denied(t, flags)

        return ChainStart(gate=Gate(allowed=True, count=count, limit=cap, tier=t), chain=chain)

    def enter_chain(self, client_id: str, **kwargs) -> ChainStart:
        """Begin a chain using the configured charge point."""
        if self.charge_at == CHARGE_AT_START:
            return self.begin_chain(client_id, **kwargs)
        return self.open_chain(client_id, **kwargs)

    # ---------- refine ----------
    def record_refine(self, client_id: str, chain_id: Optional[str] = None) -> RefineResult:
        """Refinements never touch the daily count; the refine counter clamps at the limit."""
        with self.store.transaction(client_id):
            chain = self.store.get_chain(client_id)
            if chain is None or (chain_id and chain.id != chain_id):
                return RefineResult(chain=None, reached_limit=False)
            nxt = chain.model_copy(update={"refines": min(chain.refines + 1, REFINES_PER_CHAIN_LIMIT)})
            self.store.put_chain(client_id, nxt)
        return RefineResult(chain=nxt, reached_limit=nxt.at_refine_limit)

    def mark_base_served(self, client_id: str, chain_id: str) -> Optional[ChainState]:
        with self.store.transaction(client_id):
            chain = self.store.get_chain(client_id)
            if chain is None or chain.id != chain_id:
                return None
            nxt = chain.model_copy(update={"base_served": True})
            self.store.put_chain(client_id, nxt)
            return nxt

    # ---------- end ----------
    def end_chain(
        self,
        client_id: str,
        chain_id: Optional[str] = None,
        tier: Optional[Tier] = None,
        flags: Optional[BetaFlags] = None,
    ) -> bool:
        """
        Clear the pointer. A chain that served its base query and has not been
        charged yet pays its unit here. Unknown or already-ended chains are a no-op.
        """
        cap = self.wall.cap(Tier.parse(tier), flags)
        try:
            with self.store.transaction(client_id):
                chain = self.store.get_chain(client_id)
                if chain is None or (chain_id and chain.id != chain_id):
                    return False
                if chain.base_served and not chain.charged:
                    self.store.charge(client_id, self.wall.today(), cap, chain.id)
                self.store.put_chain(client_id, None)
                return True
        except QuotaStoreError as e:
            logger.warning("end_chain failed closed for %s: %r", client_id, e)
            return False

    def end_chain_and_count(
        self,
        client_id: str,
        chain_id: str,
        tier: Optional[Tier] = None,
        flags: Optional[BetaFlags] = None,
    ) -> Usage:
        """
        Charge one unit for `chain_id` unless it was already charged today or the
        cap is reached. Retries of the same chain id never charge twice.
        """
        check_chain_id(chain_id)
        t = Tier.parse(tier)
        cap = self.wall.cap(t, flags)
        day = self.wall.today()
        try:
            with self.store.transaction(client_id):
                counted, count = self.store.charge(client_id, day, cap, chain_id)
                chain = self.store.get_chain(client_id)
                if chain is not None and chain.id == chain_id:
                    self.store.put_chain(client_id, None)
        except QuotaStoreError as e:
            logger.warning("end_chain_and_count failed closed for %s: %r", client_id, e)
            return Usage(client_id, day, 0, cap, 0, counted=False, degraded=True)

        return Usage(client_id, day, count, cap, remaining(count, cap), counted=counted)
