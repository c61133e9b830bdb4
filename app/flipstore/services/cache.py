"""
Read-through cache in front of any ``FeatureStore``.

``FeatureCacheMirror`` is the local copy of backend state. Every key
carries a version; a cache miss remembers the version it started from
and the populated value is only kept if no invalidation happened in the
meantime. That is what stops a slow reader from re-inserting a value
that predates a write this instance already acknowledged.

``CachedFeatureStore`` applies mutations to the backend first and only
invalidates once the backend succeeded. Invalidation never updates in
place; the next read goes back to the backend.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from app.flipstore.core.error_catalog import (
    BackendFailureError,
    FeatureNotFoundError,
    GroupNotFoundError,
    GroupOperationError,
)
from app.flipstore.core.feature import Feature
from app.flipstore.core.logging import log_json
from app.flipstore.core.metrics import metrics
from app.flipstore.repos.base import FeatureStore, require_group, require_uid

logger = logging.getLogger(__name__)

CACHE_PROVIDER = "in-process-mirror"

FEATURES = "feature"
EXISTS = "exist"
AGGREGATES = "aggregate"
GROUPS = "group"
GROUP_EXISTS = "group_exists"

ALL_FEATURES_KEY = (AGGREGATES, "all")
ALL_GROUPS_KEY = (AGGREGATES, "groups")


class _Sentinel:
    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name


MISSING = _Sentinel("MISSING")
ABSENT = _Sentinel("ABSENT")


@dataclass
class _Entry:
    value: object
    expires_at: float


class FeatureCacheMirror:
    """Expiring key/value mirror with per-key versions and striped locks."""

    def __init__(
        self,
        ttl_seconds: float,
        negative_ttl_seconds: float,
        stripes: int = 16,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.negative_ttl_seconds = negative_ttl_seconds
        self._clock = clock
        self._entries: dict[tuple[str, str], _Entry] = {}
        self._versions: dict[tuple[str, str], int] = {}
        self._epochs: dict[str, int] = {}
        self._generation = 0
        self._locks = [threading.Lock() for _ in range(max(1, stripes))]
        # guards generation and epochs; always taken after a stripe lock, never before
        self._namespace_lock = threading.Lock()

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        return self._locks[hash(key) % len(self._locks)]

    def _current_token(self, key: tuple[str, str]) -> tuple[int, int, int]:
        # caller holds the stripe lock and the namespace lock
        return self._generation, self._epochs.get(key[0], 0), self._versions.get(key, 0)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: tuple[str, str]) -> object:
        entry = self._entries.get(key)
        if entry is None:
            return MISSING
        if entry.expires_at <= self._clock():
            with self._lock_for(key):
                if self._entries.get(key) is entry:
                    del self._entries[key]
            return MISSING
        return entry.value

    def token(self, key: tuple[str, str]) -> tuple[int, int, int]:
        with self._lock_for(key), self._namespace_lock:
            return self._current_token(key)

    def put(self, key: tuple[str, str], value: object, token: tuple[int, int, int], *, negative: bool = False) -> bool:
        ttl = self.negative_ttl_seconds if negative else self.ttl_seconds
        if ttl <= 0:
            return False
        with self._lock_for(key), self._namespace_lock:
            if self._current_token(key) != token:
                return False
            self._entries[key] = _Entry(value, self._clock() + ttl)
            return True

    def invalidate(self, key: tuple[str, str]) -> None:
        with self._lock_for(key):
            self._versions[key] = self._versions.get(key, 0) + 1
            self._entries.pop(key, None)

    def invalidate_namespaces(self, *namespaces: str) -> None:
        with self._namespace_lock:
            for namespace in namespaces:
                self._epochs[namespace] = self._epochs.get(namespace, 0) + 1
            stale = [key for key in list(self._entries) if key[0] in namespaces]
        # populates insert under the namespace lock, so every entry accepted before the bump is in the snapshot
        for key in stale:
            with self._lock_for(key):
                self._entries.pop(key, None)

    def clear(self) -> None:
        for lock in self._locks:
            lock.acquire()
        try:
            with self._namespace_lock:
                self._generation += 1
                self._entries.clear()
        finally:
            for lock in reversed(self._locks):
                lock.release()


class CachedFeatureStore(FeatureStore):
    """Decorates a backend with a ``FeatureCacheMirror``."""

    def __init__(self, target: FeatureStore, mirror: FeatureCacheMirror):
        self._target = target
        self._mirror = mirror

    @property
    def target(self) -> FeatureStore:
        return self._target

    @property
    def mirror(self) -> FeatureCacheMirror:
        return self._mirror

    @property
    def backend_name(self) -> str:
        return self._target.backend_name

    @property
    def is_cached(self) -> bool:
        return True

    @property
    def cache_provider(self) -> str | None:
        return CACHE_PROVIDER

    @property
    def cached_target_store(self) -> str | None:
        return self._target.__class__.__name__

    def clear(self) -> None:
        self._mirror.clear()
        log_json(logger, {"event": "feature_cache_cleared", "backend": self.backend_name})

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def _lookup(self, operation: str, *keys: tuple[str, str]) -> object:
        for key in keys:
            value = self._mirror.get(key)
            if value is not MISSING:
                metrics.increment_cache_hit(operation)
                return value
        metrics.increment_cache_miss(operation)
        return MISSING

    def read(self, uid: str) -> Feature:
        require_uid(uid)
        feature_key = (FEATURES, uid)
        cached = self._lookup("read", feature_key)
        if cached is ABSENT:
            raise FeatureNotFoundError(uid)
        if cached is not MISSING:
            return cached.copy()

        exist_key = (EXISTS, uid)
        feature_token = self._mirror.token(feature_key)
        exist_token = self._mirror.token(exist_key)
        try:
            feature = self._target.read(uid)
        except FeatureNotFoundError:
            self._mirror.put(feature_key, ABSENT, feature_token, negative=True)
            self._mirror.put(exist_key, False, exist_token, negative=True)
            raise
        self._mirror.put(feature_key, feature.copy(), feature_token)
        self._mirror.put(exist_key, True, exist_token)
        return feature

    def exist(self, uid: str | None) -> bool:
        if not uid:
            return False
        exist_key = (EXISTS, uid)
        cached = self._lookup("exist", exist_key, (FEATURES, uid))
        if cached is ABSENT:
            return False
        if isinstance(cached, bool):
            return cached
        if cached is not MISSING:
            return True

        token = self._mirror.token(exist_key)
        found = self._target.exist(uid)
        self._mirror.put(exist_key, found, token, negative=not found)
        return found

    def read_all(self) -> dict[str, Feature]:
        cached = self._lookup("read_all", ALL_FEATURES_KEY)
        if cached is not MISSING:
            return {uid: feature.copy() for uid, feature in cached.items()}

        token = self._mirror.token(ALL_FEATURES_KEY)
        features = self._target.read_all()
        self._mirror.put(ALL_FEATURES_KEY, {uid: feature.copy() for uid, feature in features.items()}, token)
        return features

    def read_all_groups(self) -> set[str]:
        cached = self._lookup("read_all_groups", ALL_GROUPS_KEY)
        if cached is not MISSING:
            return set(cached)

        token = self._mirror.token(ALL_GROUPS_KEY)
        groups = self._target.read_all_groups()
        self._mirror.put(ALL_GROUPS_KEY, frozenset(groups), token)
        return set(groups)

    def exist_group(self, group_name: str) -> bool:
        require_group(group_name)
        exists_key = (GROUP_EXISTS, group_name)
        cached = self._lookup("exist_group", exists_key, (GROUPS, group_name))
        if cached is ABSENT:
            return False
        if isinstance(cached, bool):
            return cached
        if cached is not MISSING:
            return True

        token = self._mirror.token(exists_key)
        found = self._target.exist_group(group_name)
        self._mirror.put(exists_key, found, token, negative=not found)
        return found

    def read_group(self, group_name: str) -> dict[str, Feature]:
        require_group(group_name)
        group_key = (GROUPS, group_name)
        cached = self._lookup("read_group", group_key)
        if cached is ABSENT:
            raise GroupNotFoundError(group_name)
        if cached is not MISSING:
            return {uid: feature.copy() for uid, feature in cached.items()}

        token = self._mirror.token(group_key)
        try:
            members = self._target.read_group(group_name)
        except GroupNotFoundError:
            self._mirror.put(group_key, ABSENT, token, negative=True)
            raise
        self._mirror.put(group_key, {uid: feature.copy() for uid, feature in members.items()}, token)
        return members

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def _invalidate_feature(self, operation: str, uid: str, *, membership: bool) -> None:
        self._mirror.invalidate((FEATURES, uid))
        self._mirror.invalidate((EXISTS, uid))
        if membership:
            self._mirror.invalidate_namespaces(AGGREGATES, GROUPS, GROUP_EXISTS)
        else:
            self._mirror.invalidate_namespaces(AGGREGATES, GROUPS)
        metrics.increment_cache_invalidation(operation)
        log_json(
            logger,
            {"event": "feature_cache_invalidated", "operation": operation, "uid": uid, "membership": membership},
            level=logging.DEBUG,
        )

    def create(self, feature: Feature) -> None:
        self._target.create(feature)
        self._invalidate_feature("create", feature.uid, membership=True)

    def update(self, feature: Feature) -> None:
        self._target.update(feature)
        self._invalidate_feature("update", feature.uid, membership=True)

    def delete(self, uid: str) -> None:
        self._target.delete(uid)
        self._invalidate_feature("delete", uid, membership=True)

    def enable(self, uid: str) -> None:
        self._target.enable(uid)
        self._invalidate_feature("enable", uid, membership=False)

    def disable(self, uid: str) -> None:
        self._target.disable(uid)
        self._invalidate_feature("disable", uid, membership=False)

    def grant_role(self, uid: str, role_name: str) -> None:
        self._target.grant_role(uid, role_name)
        self._invalidate_feature("grant_role", uid, membership=False)

    def remove_role(self, uid: str, role_name: str) -> None:
        self._target.remove_role(uid, role_name)
        self._invalidate_feature("remove_role", uid, membership=False)

    def add_to_group(self, uid: str, group_name: str) -> None:
        self._target.add_to_group(uid, group_name)
        self._invalidate_feature("add_to_group", uid, membership=True)

    def remove_from_group(self, uid: str, group_name: str) -> None:
        self._target.remove_from_group(uid, group_name)
        self._invalidate_feature("remove_from_group", uid, membership=True)

    def _set_group_flag(self, operation: str, group_name: str, apply: Callable[[str], None]) -> None:
        require_group(group_name)
        try:
            apply(group_name)
        except BackendFailureError as exc:
            # the backend may have changed some members before failing
            self._invalidate_group_members(operation)
            if isinstance(exc, GroupOperationError):
                log_json(
                    logger,
                    {
                        "event": "feature_group_update_failed",
                        "operation": operation,
                        "group": group_name,
                        "failed_uid": exc.failed_uid,
                        "completed": exc.completed,
                    },
                    level=logging.WARNING,
                )
            raise
        self._invalidate_group_members(operation)

    def _invalidate_group_members(self, operation: str) -> None:
        # membership is decided by the backend, so every cached feature may be affected
        self._mirror.invalidate_namespaces(FEATURES, AGGREGATES, GROUPS)
        metrics.increment_cache_invalidation(operation)

    def enable_group(self, group_name: str) -> None:
        self._set_group_flag("enable_group", group_name, self._target.enable_group)

    def disable_group(self, group_name: str) -> None:
        self._set_group_flag("disable_group", group_name, self._target.disable_group)
