"""Response cache keyed by a fingerprint of the conversation.

Stores are async key/value backends with absolute expiry. ``InMemoryCacheStore``
is the per-process default; ``FileCacheStore`` keeps JSON files on disk so a
restarted process can reuse earlier answers.
"""
from __future__ import annotations

import asyncio
import json
import time
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from pathlib import Path
from typing import Any, Callable, Protocol, Sequence

from loguru import logger

from mailscout.config import Settings
from mailscout.models.schemas import ResponseEnvelope

CACHE_VERSION = 1


class CacheStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl: float) -> None: ...

    async def delete(self, key: str) -> None: ...


class InMemoryCacheStore:
    """Dict-backed store. Expired entries are dropped when read or swept."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None
        return value

    async def set(self, key: str, value: Any, ttl: float) -> None:
        if ttl <= 0:
            self._entries.pop(key, None)
            return
        self._entries[key] = (self._clock() + ttl, value)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FileCacheStore:
    """One JSON file per key under ``directory``. Values must be JSON-serializable."""

    def __init__(self, directory: str | Path, now: Callable[[], datetime] = _utc_now):
        self.directory = Path(directory)
        self._now = now

    def path_for(self, key: str) -> Path:
        digest = sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def _read(self, key: str) -> Any | None:
        path = self.path_for(key)
        if not path.exists():
            return None

        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning(f"Discarding unreadable cache file {path.name}")
            path.unlink(missing_ok=True)
            return None

        if not isinstance(payload, dict) or payload.get("version") != CACHE_VERSION:
            return None

        expires_at_raw = payload.get("expires_at")
        if not isinstance(expires_at_raw, str):
            return None
        try:
            expires_at = datetime.fromisoformat(expires_at_raw)
        except ValueError:
            return None
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)

        if self._now() >= expires_at:
            path.unlink(missing_ok=True)
            return None
        return payload.get("value")

    def _write(self, key: str, value: Any, ttl: float) -> None:
        path = self.path_for(key)
        if ttl <= 0:
            path.unlink(missing_ok=True)
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": CACHE_VERSION,
            "key": key,
            "expires_at": (self._now() + timedelta(seconds=ttl)).isoformat(),
            "value": value,
        }
        tmp = path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload, ensure_ascii=True), encoding="utf-8")
        tmp.replace(path)

    async def get(self, key: str) -> Any | None:
        return await asyncio.to_thread(self._read, key)

    async def set(self, key: str, value: Any, ttl: float) -> None:
        await asyncio.to_thread(self._write, key, value, ttl)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self.path_for(key).unlink, missing_ok=True)

    def sweep(self) -> int:
        removed = 0
        if not self.directory.exists():
            return removed
        for path in self.directory.glob("*.json"):
            try:
                payload = json.loads(path.read_text(encoding="utf-8"))
                expires_at = datetime.fromisoformat(payload["expires_at"])
            except (OSError, ValueError, KeyError, TypeError):
                path.unlink(missing_ok=True)
                removed += 1
                continue
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if self._now() >= expires_at:
                path.unlink(missing_ok=True)
                removed += 1
        return removed


def _history_items(history: Sequence[Any]) -> list[dict[str, str]]:
    items = []
    for item in history:
        if isinstance(item, dict):
            items.append({"role": item.get("role"), "content": item.get("content")})
        else:
            items.append({"role": item.role, "content": item.content})
    return items


def fingerprint(message: str, history: Sequence[Any], page: int = 1, limit: int = 5) -> str:
    """Deterministic key for one chat request.

    Pagination is part of the key so each page is cached separately.
    """
    material = json.dumps(
        {
            "v": CACHE_VERSION,
            "message": message,
            "history": _history_items(history),
            "page": page,
            "limit": limit,
        },
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return "chat:" + sha256(material.encode("utf-8")).hexdigest()


class ResponseCache:
    """Envelope-level cache on top of a ``CacheStore``."""

    def __init__(self, store: CacheStore, ttl: float = 3600):
        self.store = store
        self.ttl = ttl

    async def get(self, key: str) -> ResponseEnvelope | None:
        payload = await self.store.get(key)
        if payload is None:
            return None
        try:
            return ResponseEnvelope.from_payload(payload)
        except ValueError:
            logger.warning(f"Dropping malformed cache entry {key}")
            await self.store.delete(key)
            return None

    async def set(self, key: str, envelope: ResponseEnvelope) -> None:
        await self.store.set(key, envelope.to_payload(), self.ttl)


def build_store(settings: Settings) -> CacheStore:
    backend = settings.cache_backend.strip().lower()
    if backend == "file":
        return FileCacheStore(settings.cache_dir)
    if backend != "memory":
        logger.warning(f"Unknown CACHE_BACKEND '{settings.cache_backend}', using memory")
    return InMemoryCacheStore()
