# admin.py
#
# Dashboard numbers: searches and votes per UTC day, and a merged recent feed.
#
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .quota import day_key, utc_now
from .supabase import SupabaseSink


RECENT_LIMIT = 20


def daily_buckets(
    usage_rows: List[Dict[str, Any]],
    feedback_rows: List[Dict[str, Any]],
    now: datetime,
    days: int = 14,
) -> List[Dict[str, Any]]:
    """Every day in the window, newest first, zero-filled."""
    buckets: Dict[str, Dict[str, Any]] = {}

    def bucket(key: str) -> Dict[str, Any]:
        return buckets.setdefault(key, {"date": key, "searches": 0, "votes": 0})

    for r in usage_rows or []:
        created = str(r.get("created_at") or "")
        if r.get("event") == "search" and created:
            bucket(created[:10])["searches"] += 1

    for r in feedback_rows or []:
        created = str(r.get("created_at") or "")
        if created:
            bucket(created[:10])["votes"] += 1

    out = []
    for i in range(days):
        key = day_key(now - timedelta(days=i))
        out.append(buckets.get(key) or {"date": key, "searches": 0, "votes": 0})
    return out


def merge_recent(
    usage_rows: List[Dict[str, Any]],
    feedback_rows: List[Dict[str, Any]],
    limit: int = RECENT_LIMIT,
) -> List[Dict[str, Any]]:
    merged: List[Dict[str, Any]] = []
    for r in usage_rows or []:
        if r.get("event") != "search":
            continue
        merged.append({
            "type": "search",
            "id": r.get("id"),
            "created_at": r.get("created_at"),
            "prompt": r.get("prompt"),
        })
    for r in feedback_rows or []:
        merged.append({
            "type": "vote",
            "id": r.get("id"),
            "created_at": r.get("created_at"),
            "prompt": r.get("prompt"),
            "vote": r.get("vote") or "up",
        })
    merged.sort(key=lambda x: str(x.get("created_at") or ""), reverse=True)
    return merged[:limit]


class AdminReports:
    def __init__(self, sink: SupabaseSink, window_days: int = 14) -> None:
        self.sink = sink
        self.window_days = window_days

    def stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utc_now()
        since = (now - timedelta(days=self.window_days)).isoformat()
        usage = self.sink.select("usage_events", "id,event,created_at,prompt", since=since)
        votes = self.sink.select("feedback", "id,vote,created_at,prompt", since=since)
        days = daily_buckets(usage, votes, now, self.window_days)
        return {
            "ok": True,
            "projectHost": self.sink.host,
            "totals": {
                "searches": sum(d["searches"] for d in days),
                "votes": sum(d["votes"] for d in days),
            },
            "days": days,
        }

    def recent(self) -> Dict[str, Any]:
        usage = self.sink.select("usage_events", "id,created_at,event,prompt", limit=RECENT_LIMIT)
        votes = self.sink.select("feedback", "id,created_at,vote,prompt", limit=RECENT_LIMIT)
        return {"ok": True, "projectHost": self.sink.host, "rows": merge_recent(usage, votes)}

    def usage_list(self, limit: int = 10) -> Dict[str, Any]:
        rows = self.sink.select("usage_events", "id,created_at,event,prompt", limit=limit)
        return {"projectHost": self.sink.host, "rows": rows}
