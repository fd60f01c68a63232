from datetime import datetime, timezone

import random

from rekomendr.admin import AdminReports, daily_buckets, merge_recent
from rekomendr.content import NUDGES, pick_nudge, seeds_for
from rekomendr.supabase import project_host


NOW = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)


def test_daily_buckets_zero_fill_newest_first():
    usage = [
        {"event": "search", "created_at": "2026-03-14T09:00:00+00:00"},
        {"event": "search", "created_at": "2026-03-12T09:00:00+00:00"},
        {"event": "recs_ok", "created_at": "2026-03-14T09:00:00+00:00"},
    ]
    votes = [{"vote": "up", "created_at": "2026-03-13T01:00:00+00:00"}]
    days = daily_buckets(usage, votes, NOW, days=3)
    assert days == [
        {"date": "2026-03-14", "searches": 1, "votes": 0},
        {"date": "2026-03-13", "searches": 0, "votes": 1},
        {"date": "2026-03-12", "searches": 1, "votes": 0},
    ]


def test_merge_recent_orders_and_filters():
    usage = [
        {"id": "u1", "event": "search", "created_at": "2026-03-14T10:00:00", "prompt": "a"},
        {"id": "u2", "event": "track", "created_at": "2026-03-14T11:00:00", "prompt": None},
    ]
    votes = [{"id": "f1", "vote": "down", "created_at": "2026-03-14T10:30:00", "prompt": "a"}]
    rows = merge_recent(usage, votes)
    assert [r["id"] for r in rows] == ["f1", "u1"]
    assert rows[0]["type"] == "vote"
    assert rows[0]["vote"] == "down"


def test_stats_report(sink):
    sink.insert("usage_events", [{"id": "1", "event": "search", "created_at": "2026-03-14T08:00:00+00:00"}])
    sink.insert("feedback", [{"id": "2", "vote": "up", "created_at": "2026-03-10T08:00:00+00:00"}])
    report = AdminReports(sink, window_days=14).stats(NOW)
    assert report["ok"] is True
    assert report["projectHost"] == "proj-test.supabase.co"
    assert report["totals"] == {"searches": 1, "votes": 1}
    assert len(report["days"]) == 14


def test_project_host_invalid():
    assert project_host("") == "(invalid SUPABASE_URL)"


def test_nudge_rules_follow_history():
    assert pick_nudge("movies", ["a romantic comedy"]) == NUDGES["movies"][0]
    assert pick_nudge("tv", ["Detective shows"]) == NUDGES["tv"][0]
    assert pick_nudge("wine", ["big cab please"]) == NUDGES["wine"][0]


def test_nudge_unknown_vertical_uses_movies():
    assert pick_nudge("podcasts", [], rng=random.Random(1)) in NUDGES["movies"]


def test_seeds():
    assert len(seeds_for("Books")) == 5
    assert seeds_for("podcasts") == []
    seeds_for("wine")[0]["title"] = "changed"
    assert seeds_for("wine")[0]["title"] != "changed"
