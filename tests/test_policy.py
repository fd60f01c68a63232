import pytest

from rekomendr.policy import (
    UNLIMITED,
    BetaFlagPolicy,
    BetaFlags,
    NamedTierPolicy,
    Tier,
    remaining,
    under_cap,
)


@pytest.mark.parametrize("flags", [None, BetaFlags(), BetaFlags(beta1=True), BetaFlags(beta1=True, beta2=True)])
def test_paid_is_unlimited_under_both_policies(flags):
    assert BetaFlagPolicy().cap_for(Tier.PAID, flags) == UNLIMITED
    assert NamedTierPolicy().cap_for(Tier.PAID, flags) == UNLIMITED


def test_beta_flag_table():
    policy = BetaFlagPolicy()
    assert policy.cap_for(Tier.GUEST, BetaFlags()) == 5
    assert policy.cap_for(Tier.GUEST, BetaFlags(beta1=True)) == 10
    assert policy.cap_for(Tier.GUEST, BetaFlags(beta1=True, beta2=True)) == 15
    assert policy.cap_for(Tier.SIGNED, None) == 5


def test_named_tier_table_ignores_flags():
    policy = NamedTierPolicy()
    assert policy.cap_for(Tier.GUEST) == 5
    assert policy.cap_for(Tier.FREE) == 10
    assert policy.cap_for(Tier.SIGNED) == 10
    assert policy.cap_for(Tier.GUEST, BetaFlags(beta1=True, beta2=True)) == 5


def test_tier_parse_defaults_to_guest():
    assert Tier.parse("PAID") is Tier.PAID
    assert Tier.parse(" free ") is Tier.FREE
    assert Tier.parse("platinum") is Tier.GUEST
    assert Tier.parse(None) is Tier.GUEST


def test_cap_helpers():
    assert under_cap(4, 5)
    assert not under_cap(5, 5)
    assert under_cap(10_000, UNLIMITED)
    assert remaining(3, 5) == 2
    assert remaining(9, 5) == 0
    assert remaining(9, UNLIMITED) == UNLIMITED


def test_flags_merge():
    merged = BetaFlags(beta1=True).merged(BetaFlags(beta2=True))
    assert merged == BetaFlags(beta1=True, beta2=True)
    assert BetaFlags(beta1=True).merged(None) == BetaFlags(beta1=True)
