from rekomendr.policy import UNLIMITED, BetaFlagPolicy, BetaFlags, Tier
from rekomendr.quota import QuotaStore, QuotaStoreError
from rekomendr.softwall import SoftWall, search_counter_key


class BrokenStore(QuotaStore):
    def get_count(self, client_id, day):
        raise QuotaStoreError("store offline")

    def charge(self, client_id, day, cap, chain_id=None):
        raise QuotaStoreError("store offline")


def test_can_search_now_does_not_mutate(store, clock):
    wall = SoftWall(store, clock=clock)
    for _ in range(3):
        gate = wall.can_search_now("c1", Tier.GUEST)
    assert gate.allowed
    assert gate.count == 0
    assert gate.limit == 5
    assert store.get_count("c1", wall.today()) == 0


def test_per_query_gate_stops_at_cap(store, clock):
    wall = SoftWall(store, clock=clock)
    gates = [wall.gate_and_maybe_increment("c1", Tier.GUEST) for _ in range(6)]
    assert [g.allowed for g in gates] == [True] * 5 + [False]
    assert gates[-1].count == 5
    assert gates[-1].limit == 5
    assert store.get_count("c1", wall.today()) == 5
    assert not wall.can_search_now("c1", Tier.GUEST).allowed


def test_named_tier_free_gets_ten(store, clock):
    wall = SoftWall(store, clock=clock)
    for _ in range(10):
        assert wall.gate_and_maybe_increment("c1", Tier.FREE).allowed
    assert not wall.gate_and_maybe_increment("c1", Tier.FREE).allowed


def test_paid_never_blocked(store, clock):
    wall = SoftWall(store, clock=clock)
    for _ in range(50):
        gate = wall.gate_and_maybe_increment("c1", Tier.PAID)
    assert gate.allowed
    assert gate.limit == UNLIMITED


def test_day_rollover_resets_usage(store, clock):
    wall = SoftWall(store, clock=clock)
    for _ in range(5):
        wall.gate_and_maybe_increment("c1", Tier.GUEST)
    assert not wall.can_search_now("c1", Tier.GUEST).allowed

    clock.advance(days=1)
    gate = wall.can_search_now("c1", Tier.GUEST)
    assert gate.allowed
    assert gate.count == 0


def test_store_failure_fails_closed(clock):
    wall = SoftWall(BrokenStore(), clock=clock)
    assert wall.can_search_now("c1", Tier.PAID).allowed is False
    assert wall.gate_and_maybe_increment("c1", Tier.GUEST).allowed is False
    usage = wall.usage("c1", Tier.GUEST)
    assert usage.remaining == 0
    assert usage.degraded


def test_corrupt_record_fails_closed(store, clock):
    wall = SoftWall(store, clock=clock)
    store.ensure("c1", wall.today()).count = -3
    assert wall.can_search_now("c1", Tier.GUEST).allowed is False


def test_usage_shape_with_beta_policy(store, clock):
    wall = SoftWall(store, BetaFlagPolicy(), clock=clock)
    wall.gate_and_maybe_increment("c1", Tier.GUEST, BetaFlags(beta1=True))
    usage = wall.usage("c1", Tier.GUEST, BetaFlags(beta1=True)).to_dict()
    assert usage == {
        "clientId": "c1",
        "day": "2026-03-14",
        "countToday": 1,
        "cap": 10,
        "remaining": 9,
        "counterKey": search_counter_key("2026-03-14"),
    }


def test_counter_key_format():
    assert search_counter_key("2026-03-14") == "rekomendr.searches.2026-03-14"
