from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from main import create_app
from rekomendr.quota import QuotaStore
from rekomendr.recommender import Recommender
from rekomendr.settings import Settings
from rekomendr.supabase import SupabaseSink


FIVE_ITEMS = {
    "items": [
        {"id": "Heat", "title": "Heat", "summary": "Pacino and De Niro, one diner scene, endless tension."},
        {"id": "thief", "title": "Thief", "summary": "Michael Mann's neon-soaked safecracker debut."},
        {"id": "collateral", "title": "Collateral", "summary": "One night, one cab, one very bad passenger."},
        {"id": "drive", "title": "Drive", "summary": "Quiet getaway driver, loud synth score."},
        {"id": "sicario", "title": "Sicario", "summary": "Border-town dread that never lets up."},
    ]
}


class FixedClock:
    def __init__(self, now: Optional[datetime] = None) -> None:
        self.now = now or datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeCompletions:
    def __init__(self, payload: Any) -> None:
        self.payload = payload
        self.calls: List[Dict[str, Any]] = []

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        content = self.payload if isinstance(self.payload, str) else json.dumps(self.payload)
        return SimpleNamespace(
            id="chatcmpl-test",
            choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
        )


class FakeOpenAI:
    def __init__(self, payload: Any = None) -> None:
        self.chat = SimpleNamespace(completions=FakeCompletions(FIVE_ITEMS if payload is None else payload))


class MemorySink(SupabaseSink):
    def __init__(self) -> None:
        super().__init__("https://proj-test.supabase.co", "service-key")
        self.tables: Dict[str, List[Dict[str, Any]]] = {}

    def insert(self, table: str, rows: List[Dict[str, Any]]) -> None:
        self.tables.setdefault(table, []).extend(rows)

    def select(self, table: str, columns: str = "*", since: Optional[str] = None, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        rows = [r for r in self.tables.get(table, []) if not since or str(r.get("created_at")) >= since]
        rows.sort(key=lambda r: str(r.get("created_at")), reverse=True)
        return rows[:limit] if limit else rows


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> QuotaStore:
    return QuotaStore()


@pytest.fixture
def fake_openai() -> FakeOpenAI:
    return FakeOpenAI()


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key="sk-test",
        supabase_url="https://proj-test.supabase.co",
        supabase_key="service-key",
        dev_tools=True,
    )


@pytest.fixture
def app(settings, store, fake_openai, sink, clock):
    return create_app(
        settings=settings,
        store=store,
        recommender=Recommender(client=fake_openai),
        sink=sink,
        clock=clock,
    )


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
