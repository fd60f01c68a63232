# policy.py
#
# Daily cap tables. Two tables exist and are used at different call sites:
#
#   BetaFlagPolicy   guest/signed: 5, +beta1: 10, +beta1+beta2: 15, paid: unlimited
#                    (quota + chain endpoints)
#   NamedTierPolicy  guest: 5, free/signed: 10, paid: unlimited
#                    (per-query search gate)
#
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Union


UNLIMITED = "unlimited"

Cap = Union[int, str]


class Tier(str, Enum):
    GUEST = "guest"
    SIGNED = "signed"
    FREE = "free"
    PAID = "paid"

    @classmethod
    def parse(cls, value: Any, default: Optional["Tier"] = None) -> "Tier":
        """Unknown or missing values fall back to guest."""
        if isinstance(value, Tier):
            return value
        t = str(value or "").strip().lower()
        for tier in cls:
            if tier.value == t:
                return tier
        return default or cls.GUEST


@dataclass(frozen=True)
class BetaFlags:
    beta1: bool = False
    beta2: bool = False

    def merged(self, other: Optional["BetaFlags"]) -> "BetaFlags":
        if other is None:
            return self
        return BetaFlags(beta1=self.beta1 or other.beta1, beta2=self.beta2 or other.beta2)


def is_unlimited(cap: Cap) -> bool:
    return cap == UNLIMITED


def under_cap(count: int, cap: Cap) -> bool:
    return is_unlimited(cap) or count < int(cap)


def remaining(count: int, cap: Cap) -> Cap:
    if is_unlimited(cap):
        return UNLIMITED
    return max(0, int(cap) - count)


class CapPolicy:
    name = "base"

    def cap_for(self, tier: Tier, flags: Optional[BetaFlags] = None) -> Cap:
        raise NotImplementedError


class BetaFlagPolicy(CapPolicy):
    name = "beta_flags"

    BASE_CAP = 5
    BETA1_CAP = 10
    BETA2_CAP = 15

    def cap_for(self, tier: Tier, flags: Optional[BetaFlags] = None) -> Cap:
        if Tier.parse(tier) is Tier.PAID:
            return UNLIMITED
        flags = flags or BetaFlags()
        cap = self.BASE_CAP
        if flags.beta1:
            cap = self.BETA1_CAP
        if flags.beta2:
            cap = self.BETA2_CAP
        return cap


class NamedTierPolicy(CapPolicy):
    name = "named_tier"

    CAPS = {
        Tier.GUEST: 5,
        Tier.FREE: 10,
        Tier.SIGNED: 10,
    }

    def cap_for(self, tier: Tier, flags: Optional[BetaFlags] = None) -> Cap:
        tier = Tier.parse(tier)
        if tier is Tier.PAID:
            return UNLIMITED
        return self.CAPS.get(tier, self.CAPS[Tier.GUEST])
