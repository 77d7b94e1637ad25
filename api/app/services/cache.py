from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import redis

from ..config import CACHE_MAX_ENTRIES, CACHE_TTLS
from ..entities import CompatibilityResult, Profile, SearchPreference

logger = logging.getLogger(__name__)

PREFIX_COMPATIBILITY = "comp"
PREFIX_PROFILE = "prof"
PREFIX_PREFERENCES = "pref"
PREFIX_INTERESTS = "interests"
PREFIX_METRICS = "metrics"


def compatibility_key(user_a: str, user_b: str) -> str:
    first, second = sorted((str(user_a), str(user_b)))
    return f"{PREFIX_COMPATIBILITY}:{first}:{second}"


def profile_key(user_id: str) -> str:
    return f"{PREFIX_PROFILE}:{user_id}"


def preferences_key(user_id: str) -> str:
    return f"{PREFIX_PREFERENCES}:{user_id}"


def interests_key(user_id: str) -> str:
    return f"{PREFIX_INTERESTS}:{user_id}"


def metrics_key() -> str:
    return f"{PREFIX_METRICS}:global"


@dataclass
class _Entry:
    payload: Any
    expires_at: float | None
    tags: frozenset[str] = field(default_factory=frozenset)


class InMemoryCacheBackend:
    """Process-local backend with lazy TTL checks and a tag index for reverse lookup."""

    name = "memory"

    def __init__(self, max_entries: int = CACHE_MAX_ENTRIES, clock: Callable[[], float] = time.time) -> None:
        self._entries: dict[str, _Entry] = {}
        self._tags: dict[str, set[str]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.max_entries = max_entries

    def get(self, key: str) -> Any | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at is not None and entry.expires_at <= now:
                self._drop(key)
                return None
            return entry.payload

    def set(self, key: str, value: Any, ttl_seconds: int | None = None, tags: tuple[str, ...] = ()) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        with self._lock:
            self._drop(key)
            self._entries[key] = _Entry(payload=value, expires_at=expires_at, tags=frozenset(tags))
            for tag in tags:
                self._tags.setdefault(tag, set()).add(key)
            if len(self._entries) > self.max_entries:
                self._sweep_locked(self._clock())
                self._evict_overflow_locked()

    def delete(self, key: str) -> None:
        with self._lock:
            self._drop(key)

    def delete_tagged(self, tag: str) -> int:
        with self._lock:
            keys = list(self._tags.get(tag, ()))
            for key in keys:
                self._drop(key)
            self._tags.pop(tag, None)
            return len(keys)

    def sweep_expired(self) -> int:
        with self._lock:
            return self._sweep_locked(self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._tags.clear()

    def key_count(self) -> int:
        with self._lock:
            return len(self._entries)

    def _drop(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is None:
            return
        for tag in entry.tags:
            keys = self._tags.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tags[tag]

    def _sweep_locked(self, now: float) -> int:
        expired = [k for k, e in self._entries.items() if e.expires_at is not None and e.expires_at <= now]
        for key in expired:
            self._drop(key)
        return len(expired)

    def _evict_overflow_locked(self) -> None:
        overflow = len(self._entries) - self.max_entries
        if overflow <= 0:
            return
        # Entries closest to expiry go first; entries without a TTL go last.
        ordered = sorted(self._entries.items(), key=lambda kv: kv[1].expires_at if kv[1].expires_at is not None else float("inf"))
        for key, _ in ordered[:overflow]:
            self._drop(key)


def _decode(member: Any) -> str:
    return member.decode("utf-8") if isinstance(member, bytes) else str(member)


class RedisCacheBackend:
    """Shared backend; Redis expires keys itself, tags are kept as Redis sets."""

    name = "redis"

    def __init__(self, client: redis.Redis, namespace: str = "match") -> None:
        self._client = client
        self._namespace = namespace

    @classmethod
    def from_url(cls, url: str, namespace: str = "match") -> "RedisCacheBackend":
        return cls(redis.Redis.from_url(url), namespace=namespace)

    def _k(self, key: str) -> str:
        return f"{self._namespace}:{key}"

    def _tag_key(self, tag: str) -> str:
        return f"{self._namespace}:tag:{tag}"

    def get(self, key: str) -> Any | None:
        raw = self._client.get(self._k(key))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    def set(self, key: str, value: Any, ttl_seconds: int | None = None, tags: tuple[str, ...] = ()) -> None:
        if ttl_seconds is not None and ttl_seconds <= 0:
            self.delete(key)
            return
        payload = json.dumps(value)
        pipe = self._client.pipeline()
        if ttl_seconds:
            pipe.setex(self._k(key), ttl_seconds, payload)
        else:
            pipe.set(self._k(key), payload)
        for tag in tags:
            pipe.sadd(self._tag_key(tag), key)
            if ttl_seconds:
                pipe.expire(self._tag_key(tag), ttl_seconds)
        pipe.execute()

    def delete(self, key: str) -> None:
        self._client.delete(self._k(key))

    def delete_tagged(self, tag: str) -> int:
        members = self._client.smembers(self._tag_key(tag)) or set()
        keys = [_decode(m) for m in members]
        removed = self._client.delete(*[self._k(k) for k in keys]) if keys else 0
        self._client.delete(self._tag_key(tag))
        return removed

    def sweep_expired(self) -> int:
        """Drop tag members whose entry Redis has already expired; returns members removed."""
        removed = 0
        for tag_key in self._client.scan_iter(match=self._tag_key("*")):
            members = self._client.smembers(tag_key) or set()
            stale = [m for m in members if not self._client.exists(self._k(_decode(m)))]
            if stale:
                self._client.srem(tag_key, *stale)
                removed += len(stale)
        return removed

    def clear(self) -> None:
        keys = list(self._client.scan_iter(match=f"{self._namespace}:*"))
        if keys:
            self._client.delete(*keys)

    def key_count(self) -> int:
        return sum(1 for _ in self._client.scan_iter(match=f"{self._namespace}:*"))


class ScoreCache:
    """Typed, best-effort cache in front of a swappable backend.

    Backend failures are logged and reported as misses; a broken cache only
    costs recomputation.
    """

    def __init__(self, backend=None, ttls: dict[str, int] | None = None) -> None:
        self.backend = backend if backend is not None else InMemoryCacheBackend()
        self.ttls = {**CACHE_TTLS, **(ttls or {})}
        self.hits = 0
        self.misses = 0
        self._lock = threading.Lock()

    def _count(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self.hits += 1
            else:
                self.misses += 1

    def get(self, key: str) -> Any | None:
        try:
            value = self.backend.get(key)
        except (redis.RedisError, ValueError) as exc:
            logger.warning("[CACHE] get failed key=%s error=%s", key, exc)
            value = None
        self._count(value is not None)
        return value

    def set(self, key: str, value: Any, ttl: int | None = None, tags: tuple[str, ...] = ()) -> None:
        try:
            self.backend.set(key, value, ttl, tags=tags)
        except (redis.RedisError, TypeError, ValueError) as exc:
            logger.warning("[CACHE] set failed key=%s error=%s", key, exc)

    def delete(self, key: str) -> None:
        try:
            self.backend.delete(key)
        except redis.RedisError as exc:
            logger.warning("[CACHE] delete failed key=%s error=%s", key, exc)

    def invalidate(self, user_id: str) -> int:
        removed = 0
        for key in (profile_key(user_id), preferences_key(user_id), interests_key(user_id)):
            self.delete(key)
        try:
            removed = self.backend.delete_tagged(str(user_id))
        except redis.RedisError as exc:
            logger.warning("[CACHE] invalidate failed user_id=%s error=%s", user_id, exc)
        logger.info("[CACHE] invalidated user_id=%s compatibility_entries=%s", user_id, removed)
        return removed

    def sweep_expired(self) -> int:
        try:
            return self.backend.sweep_expired()
        except redis.RedisError as exc:
            logger.warning("[CACHE] sweep failed error=%s", exc)
            return 0

    def clear(self) -> None:
        self.backend.clear()
        with self._lock:
            self.hits = 0
            self.misses = 0

    def get_compatibility(self, user_a: str, user_b: str) -> CompatibilityResult | None:
        raw = self.get(compatibility_key(user_a, user_b))
        return CompatibilityResult.from_dict(raw) if raw else None

    def set_compatibility(self, user_a: str, user_b: str, result: CompatibilityResult) -> None:
        self.set(
            compatibility_key(user_a, user_b),
            result.to_dict(),
            self.ttls["compatibility"],
            tags=(str(user_a), str(user_b)),
        )

    def get_profile(self, user_id: str) -> Profile | None:
        raw = self.get(profile_key(user_id))
        return Profile.from_dict(raw) if raw else None

    def set_profile(self, profile: Profile) -> None:
        self.set(profile_key(profile.user_id), profile.to_dict(), self.ttls["profile"])

    def get_preferences(self, user_id: str) -> SearchPreference | None:
        raw = self.get(preferences_key(user_id))
        return SearchPreference.from_row(raw) if raw else None

    def set_preferences(self, user_id: str, preferences: SearchPreference) -> None:
        self.set(preferences_key(user_id), preferences.to_dict(), self.ttls["preferences"])

    def get_interests(self, user_id: str) -> list[str] | None:
        raw = self.get(interests_key(user_id))
        return list(raw["interests"]) if raw else None

    def set_interests(self, user_id: str, interests: list[str]) -> None:
        self.set(interests_key(user_id), {"interests": sorted(interests)}, self.ttls["interests"])

    def set_metrics_snapshot(self, snapshot: dict[str, Any]) -> None:
        self.set(metrics_key(), snapshot, self.ttls["metrics"])

    def get_metrics_snapshot(self) -> dict[str, Any] | None:
        return self.get(metrics_key())

    def stats(self) -> dict[str, Any]:
        try:
            key_count = self.backend.key_count()
        except redis.RedisError as exc:
            logger.warning("[CACHE] stats failed error=%s", exc)
            key_count = -1
        total = self.hits + self.misses
        return {
            "type": getattr(self.backend, "name", "unknown"),
            "key_count": key_count,
            "max_size": getattr(self.backend, "max_entries", None),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hits / total, 4) if total else 0.0,
        }


def build_cache(url: str = "") -> ScoreCache:
    if url:
        logger.info("[CACHE] using redis backend")
        return ScoreCache(RedisCacheBackend.from_url(url))
    logger.info("[CACHE] using in-memory backend")
    return ScoreCache(InMemoryCacheBackend())
