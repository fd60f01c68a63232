# supabase.py
#
# Analytics sink + dashboard reads over the Supabase REST API (PostgREST).
# Tables: usage_events, feedback, survey_responses.
#
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

import requests


logger = logging.getLogger(__name__)

_TIMEOUT_SECONDS = 12


class SupabaseUnavailable(RuntimeError):
    pass


def project_host(url: Optional[str]) -> str:
    host = urlparse(url or "").netloc
    return host or "(invalid SUPABASE_URL)"


class SupabaseSink:
    def __init__(self, url: Optional[str], key: Optional[str], session: Optional[requests.Session] = None) -> None:
        self.url = (url or "").rstrip("/")
        self.key = key
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.url and self.key)

    @property
    def host(self) -> str:
        return project_host(self.url)

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.key or "",
            "Authorization": f"Bearer {self.key}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _endpoint(self, table: str) -> str:
        if not self.configured:
            raise SupabaseUnavailable("Supabase not configured (SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY missing).")
        return f"{self.url}/rest/v1/{table}"

    def select(
        self,
        table: str,
        columns: str = "*",
        since: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Newest-first rows, optionally created at or after the ISO timestamp `since`."""
        params: Dict[str, Any] = {"select": columns, "order": "created_at.desc"}
        if since:
            params["created_at"] = f"gte.{since}"
        if limit:
            params["limit"] = int(limit)

        try:
            resp = self.session.get(self._endpoint(table), headers=self._headers(), params=params, timeout=_TIMEOUT_SECONDS)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise SupabaseUnavailable(f"{table} query failed: {e!r}") from e

        raw = resp.json()
        if not isinstance(raw, list):
            raise SupabaseUnavailable(f"Unexpected Supabase response shape: {type(raw)}")
        return raw

    def insert(self, table: str, rows: List[Dict[str, Any]]) -> None:
        headers = self._headers()
        headers["Prefer"] = "return=minimal"
        try:
            resp = self.session.post(self._endpoint(table), headers=headers, json=rows, timeout=_TIMEOUT_SECONDS)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise SupabaseUnavailable(f"{table} insert failed: {e!r}") from e

    def record(self, table: str, row: Dict[str, Any]) -> None:
        """Fire-and-forget insert for background tasks: failures are logged only."""
        try:
            self.insert(table, [row])
        except SupabaseUnavailable as e:
            logger.warning("analytics insert dropped: %s", e)
