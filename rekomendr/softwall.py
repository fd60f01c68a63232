# softwall.py
#
# "May this visitor search now, and how many are left?"
#
# Denial is a normal return value (allowed=False + numbers for the paywall copy),
# never an exception. Any store failure reads as a denial.
#
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .policy import BetaFlags, Cap, CapPolicy, NamedTierPolicy, Tier, remaining, under_cap
from .quota import QuotaStore, QuotaStoreError, day_key, utc_now


logger = logging.getLogger(__name__)

# Client-local storage keys. Anything stored under them is a display cache only.
SEARCH_COUNTER_PREFIX = "rekomendr.searches."
TIER_STORAGE_KEY = "rekomendr.tier"
CHAIN_STORAGE_KEY = "rekomendr.chain.state"


def search_counter_key(day: str) -> str:
    return f"{SEARCH_COUNTER_PREFIX}{day}"


@dataclass(frozen=True)
class Gate:
    allowed: bool
    count: int
    limit: Cap
    tier: Tier

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "count": self.count,
            "limit": self.limit,
            "tier": self.tier.value,
        }


@dataclass(frozen=True)
class Usage:
    client_id: str
    day: str
    count_today: int
    cap: Cap
    remaining: Cap
    counted: Optional[bool] = None
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "clientId": self.client_id,
            "day": self.day,
            "countToday": self.count_today,
            "cap": self.cap,
            "remaining": self.remaining,
            "counterKey": search_counter_key(self.day),
        }
        if self.counted is not None:
            out["counted"] = self.counted
        if self.degraded:
            out["degraded"] = True
        return out


class SoftWall:
    def __init__(
        self,
        store: QuotaStore,
        policy: Optional[CapPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.policy = policy or NamedTierPolicy()
        self.clock = clock

    def today(self) -> str:
        return day_key(self.clock())

    def cap(self, tier: Optional[Tier], flags: Optional[BetaFlags] = None) -> Cap:
        return self.policy.cap_for(Tier.parse(tier), flags)

    def can_search_now(
        self,
        client_id: str,
        tier: Optional[Tier] = None,
        flags: Optional[BetaFlags] = None,
    ) -> Gate:
        t = Tier.parse(tier)
        limit = self.cap(t, flags)
        try:
            count = self.store.get_count(client_id, self.today())
        except (QuotaStoreError, KeyError, TypeError, AttributeError) as e:
            logger.warning("quota read failed for %s, denying: %r", client_id, e)
            return Gate(allowed=False, count=0, limit=limit, tier=t)
        return Gate(allowed=under_cap(count, limit), count=count, limit=limit, tier=t)

    def gate_and_maybe_increment(
        self,
        client_id: str,
        tier: Optional[Tier] = None,
        flags: Optional[BetaFlags] = None,
    ) -> Gate:
        """Per-query counting: charges one unit when allowed. `count` is post-call."""
        t = Tier.parse(tier)
        limit = self.cap(t, flags)
        try:
            charged, count = self.store.charge(client_id, self.today(), limit)
        except (QuotaStoreError, KeyError, TypeError, AttributeError) as e:
            logger.warning("quota charge failed for %s, denying: %r", client_id, e)
            return Gate(allowed=False, count=0, limit=limit, tier=t)
        if not charged:
            logger.info("soft wall: client=%s count=%s limit=%s tier=%s", client_id, count, limit, t.value)
        return Gate(allowed=charged, count=count, limit=limit, tier=t)

    def usage(
        self,
        client_id: str,
        tier: Optional[Tier] = None,
        flags: Optional[BetaFlags] = None,
    ) -> Usage:
        day = self.today()
        cap = self.cap(tier, flags)
        try:
            count = self.store.get_count(client_id, day)
        except (QuotaStoreError, KeyError, TypeError, AttributeError) as e:
            logger.warning("quota read failed for %s: %r", client_id, e)
            return Usage(client_id, day, 0, cap, 0, degraded=True)
        return Usage(client_id, day, count, cap, remaining(count, cap))
