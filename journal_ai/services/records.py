# =============================================
# File: journal_ai/services/records.py
# Purpose: User/entry record store adapters: in-memory (dev/tests) and PostgREST-style REST backend
# =============================================
"""
The record store is owned elsewhere; this service only reads from it.

UserDirectory.get_user() returns None for unknown users (callers then apply
the free/reflector defaults). EntryStore.list_entries() returns entries
newest-first and must honour the timeout it is given.
"""
from __future__ import annotations

import os
import threading
from datetime import datetime
from typing import Dict, List, Optional, Protocol

import requests

from journal_ai.services.models import Entry, STYLES, TIERS, User


class UserDirectory(Protocol):
    def get_user(self, user_id: str) -> Optional[User]: ...


class EntryStore(Protocol):
    def list_entries(self, owner_id: str, timeout: float) -> List[Entry]: ...


def store_timeout() -> float:
    return float(os.getenv("RECORD_STORE_TIMEOUT_SECONDS", "10"))


class InMemoryRecords:
    """Thread-safe dict-backed store implementing both UserDirectory and EntryStore."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._users: Dict[str, User] = {}
        self._entries: Dict[str, List[Entry]] = {}

    def put_user(self, user: User) -> None:
        with self._lock:
            self._users[user.id] = user

    def add_entry(self, entry: Entry) -> None:
        with self._lock:
            self._entries.setdefault(entry.owner_id, []).append(entry)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def list_entries(self, owner_id: str, timeout: float = 0.0) -> List[Entry]:
        with self._lock:
            items = list(self._entries.get(owner_id, []))
        items.sort(key=lambda e: e.created_at, reverse=True)
        return items


def _parse_ts(raw: str) -> datetime:
    # PostgREST emits ISO-8601, sometimes with a trailing Z
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


class RestRecords:
    """
    PostgREST-style backend (e.g. Supabase): `users` and `journal_entries`
    tables read with the service key. Network errors propagate as
    requests exceptions; callers decide whether to degrade.
    """

    def __init__(self, base_url: str, api_key: str, session: requests.Session | None = None) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Accept": "application/json",
        }

    def _get(self, table: str, params: Dict[str, str], timeout: float) -> list:
        resp = self._session.get(
            f"{self.base_url}/rest/v1/{table}",
            params=params,
            headers=self._headers(),
            timeout=timeout,
        )
        resp.raise_for_status()
        data = resp.json()
        return data if isinstance(data, list) else []

    def get_user(self, user_id: str) -> Optional[User]:
        rows = self._get(
            "users",
            {"id": f"eq.{user_id}", "select": "id,subscription_status,ai_style"},
            timeout=store_timeout(),
        )
        if not rows:
            return None
        row = rows[0]
        tier = row.get("subscription_status") or "free"
        style = row.get("ai_style") or "reflector"
        return User(
            id=str(row.get("id") or user_id),
            tier=tier if tier in TIERS else "free",
            style=style if style in STYLES else "reflector",
            focus_areas=self._focus_areas(user_id),
        )

    def _focus_areas(self, user_id: str) -> List[str]:
        rows = self._get(
            "user_preferences",
            {"user_id": f"eq.{user_id}", "select": "focus_areas"},
            timeout=store_timeout(),
        )
        if not rows:
            return []
        return [str(a) for a in (rows[0].get("focus_areas") or []) if a]

    def list_entries(self, owner_id: str, timeout: float) -> List[Entry]:
        rows = self._get(
            "journal_entries",
            {
                "user_id": f"eq.{owner_id}",
                "select": "id,content,mood_rating,created_at",
                "order": "created_at.desc",
            },
            timeout=timeout,
        )
        return [
            Entry(
                id=str(row.get("id")),
                owner_id=owner_id,
                content=row.get("content") or "",
                mood_rating=row.get("mood_rating"),
                created_at=_parse_ts(row["created_at"]),
            )
            for row in rows
        ]
