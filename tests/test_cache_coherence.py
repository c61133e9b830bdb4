import threading
from collections import Counter

import fakeredis
import pytest

from app.flipstore.core.error_catalog import (
    BackendFailureError,
    FeatureAlreadyExistsError,
    FeatureNotFoundError,
    GroupNotFoundError,
    GroupOperationError,
)
from app.flipstore.core.feature import Feature
from app.flipstore.db.session import build_engine, build_session_factory
from app.flipstore.repos.memory import InMemoryFeatureStore
from app.flipstore.repos.redis_store import RedisFeatureStore
from app.flipstore.repos.sql import SqlFeatureStore
from app.flipstore.services.cache import (
    ABSENT,
    ALL_FEATURES_KEY,
    CACHE_PROVIDER,
    FEATURES,
    MISSING,
    CachedFeatureStore,
    FeatureCacheMirror,
)
from tests.feature_helpers import seed_features


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingStore(InMemoryFeatureStore):
    """In-memory backend that counts reads and can be told to fail."""

    def __init__(self):
        super().__init__(seed_features())
        self.calls = Counter()
        self.fail_on: set[str] = set()

    def _check(self, operation: str, uid: str | None = None) -> None:
        self.calls[operation] += 1
        if operation in self.fail_on:
            raise BackendFailureError(operation, self.backend_name)

    def read(self, uid):
        self._check("read", uid)
        return super().read(uid)

    def exist(self, uid):
        self._check("exist", uid)
        return super().exist(uid)

    def read_all(self):
        self._check("read_all")
        return super().read_all()

    def read_all_groups(self):
        self._check("read_all_groups")
        return super().read_all_groups()

    def exist_group(self, group_name):
        self._check("exist_group")
        return super().exist_group(group_name)

    def read_group(self, group_name):
        self._check("read_group")
        return super().read_group(group_name)

    def enable(self, uid):
        self._check("enable", uid)
        super().enable(uid)

    def disable(self, uid):
        self._check("disable", uid)
        super().disable(uid)

    def update(self, feature):
        self._check("update", feature.uid)
        super().update(feature)


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def backend():
    return RecordingStore()


@pytest.fixture()
def cached(backend, clock):
    return CachedFeatureStore(backend, FeatureCacheMirror(ttl_seconds=60, negative_ttl_seconds=5, clock=clock))


def test_introspection(cached):
    assert cached.is_cached is True
    assert cached.cache_provider == CACHE_PROVIDER
    assert cached.cached_target_store == "RecordingStore"
    assert cached.backend_name == "memory"
    summary = cached.describe()
    assert summary["type"] == "CachedFeatureStore"
    assert summary["cachedTargetStore"] == "RecordingStore"


def test_plain_store_is_not_cached(backend):
    assert backend.is_cached is False
    assert backend.cache_provider is None
    assert backend.cached_target_store is None


def test_read_is_served_from_mirror(cached, backend):
    assert cached.read("first").enabled is True
    assert cached.read("first").enabled is True
    assert backend.calls["read"] == 1


def test_read_populates_exist(cached, backend):
    cached.read("first")
    assert cached.exist("first") is True
    assert backend.calls["exist"] == 0


def test_mutation_is_visible_on_next_read(cached, backend):
    cached.read("second")
    cached.enable("second")
    assert cached.read("second").enabled is True
    assert backend.calls["read"] == 2


@pytest.mark.parametrize(
    "mutate, check",
    [
        (lambda s: s.disable("first"), lambda s: s.read("first").enabled is False),
        (lambda s: s.grant_role("first", "role-x"), lambda s: "role-x" in s.read("first").permissions),
        (lambda s: s.remove_role("first", "ROLE_USER"), lambda s: s.read("first").permissions == set()),
        (lambda s: s.add_to_group("first", "GRP9"), lambda s: s.read("first").group == "GRP9"),
        (
            lambda s: s.update(Feature(uid="first", description="changed")),
            lambda s: s.read("first").description == "changed",
        ),
        (lambda s: s.delete("first"), lambda s: not s.exist("first")),
    ],
)
def test_every_mutation_invalidates(cached, mutate, check):
    cached.read("first")
    cached.exist("first")
    cached.read_all()
    mutate(cached)
    assert check(cached)


def test_read_all_reflects_enable(cached, backend):
    assert cached.read_all()["second"].enabled is False
    cached.enable("second")
    assert cached.read_all()["second"].enabled is True
    assert backend.calls["read_all"] == 2


def test_group_views_follow_membership(cached):
    assert cached.read_all_groups() == {"GRP0", "GRP1"}
    assert cached.exist_group("GRP0") is True
    assert cached.exist_group("GRP9") is False

    cached.add_to_group("first", "GRP9")
    assert cached.exist_group("GRP9") is True
    assert cached.read_all_groups() == {"GRP0", "GRP1", "GRP9"}

    cached.remove_from_group("second", "GRP0")
    assert cached.exist_group("GRP0") is False
    with pytest.raises(GroupNotFoundError):
        cached.read_group("GRP0")


def test_created_feature_replaces_negative_entry(cached, backend):
    with pytest.raises(FeatureNotFoundError):
        cached.read("new")
    assert cached.exist("new") is False
    cached.create(Feature(uid="new", enabled=True))
    assert cached.exist("new") is True
    assert cached.read("new").enabled is True


def test_negative_read_is_cached(cached, backend):
    for _ in range(3):
        with pytest.raises(FeatureNotFoundError):
            cached.read("missing")
    assert backend.calls["read"] == 1
    assert cached.mirror.get((FEATURES, "missing")) is ABSENT


def test_negative_group_is_cached(cached, backend):
    for _ in range(2):
        with pytest.raises(GroupNotFoundError):
            cached.read_group("GRP9")
    assert backend.calls["read_group"] == 1


def test_failed_mutation_leaves_mirror_untouched(cached, backend):
    cached.read("first")
    with pytest.raises(FeatureAlreadyExistsError):
        cached.create(Feature(uid="first"))
    backend.fail_on.add("disable")
    with pytest.raises(BackendFailureError):
        cached.disable("first")
    assert cached.read("first").enabled is True
    assert backend.calls["read"] == 1


def test_backend_failure_is_not_cached(cached, backend):
    backend.fail_on.add("read")
    with pytest.raises(BackendFailureError):
        cached.read("first")
    backend.fail_on.clear()
    assert cached.read("first").uid == "first"
    assert backend.calls["read"] == 2


def test_entries_expire(cached, backend, clock):
    cached.read("first")
    clock.advance(59)
    cached.read("first")
    assert backend.calls["read"] == 1
    clock.advance(2)
    cached.read("first")
    assert backend.calls["read"] == 2


def test_negative_entries_expire_sooner(cached, backend, clock):
    with pytest.raises(FeatureNotFoundError):
        cached.read("late")
    backend._features["late"] = Feature(uid="late", enabled=True)
    clock.advance(3)
    with pytest.raises(FeatureNotFoundError):
        cached.read("late")
    clock.advance(3)
    assert cached.read("late").enabled is True


def test_clear_drops_everything(cached, backend):
    cached.read("first")
    cached.read_all()
    cached.clear()
    assert len(cached.mirror) == 0
    cached.read("first")
    assert backend.calls["read"] == 2


def test_stale_populate_is_rejected(clock):
    mirror = FeatureCacheMirror(ttl_seconds=60, negative_ttl_seconds=5, clock=clock)
    key = (FEATURES, "first")
    token = mirror.token(key)
    # a write lands while the reader is still talking to the backend
    mirror.invalidate(key)
    assert mirror.put(key, "stale", token) is False
    assert mirror.get(key) is MISSING

    fresh = mirror.token(key)
    assert mirror.put(key, "fresh", fresh) is True
    assert mirror.get(key) == "fresh"


def test_namespace_invalidation_rejects_pending_populate(clock):
    mirror = FeatureCacheMirror(ttl_seconds=60, negative_ttl_seconds=5, clock=clock)
    key = ("aggregate", "all")
    token = mirror.token(key)
    mirror.invalidate_namespaces("aggregate")
    assert mirror.put(key, {}, token) is False


def test_clear_rejects_pending_populate(clock):
    mirror = FeatureCacheMirror(ttl_seconds=60, negative_ttl_seconds=5, clock=clock)
    key = (FEATURES, "first")
    token = mirror.token(key)
    mirror.clear()
    assert mirror.put(key, "stale", token) is False


def test_zero_ttl_disables_storage(clock):
    mirror = FeatureCacheMirror(ttl_seconds=0, negative_ttl_seconds=0, clock=clock)
    key = (FEATURES, "first")
    assert mirror.put(key, "value", mirror.token(key)) is False
    assert len(mirror) == 0


def test_read_racing_with_write_does_not_resurrect_old_value(backend, clock):
    mirror = FeatureCacheMirror(ttl_seconds=60, negative_ttl_seconds=5, clock=clock)
    cached = CachedFeatureStore(backend, mirror)
    original_read = backend.read

    def slow_read(uid):
        feature = original_read(uid)
        # the write happens after the backend answered but before the populate
        InMemoryFeatureStore.enable(backend, uid)
        mirror.invalidate((FEATURES, uid))
        return feature

    backend.read = slow_read
    assert cached.read("second").enabled is False
    backend.read = original_read
    assert cached.read("second").enabled is True


def test_enable_group_updates_members(cached, backend):
    cached.read("third")
    cached.read_group("GRP1")
    cached.enable_group("GRP1")
    assert cached.read("third").enabled is True
    assert cached.read("fourth").enabled is True
    assert cached.read_group("GRP1")["third"].enabled is True


def test_group_toggle_on_unknown_group(cached):
    with pytest.raises(GroupNotFoundError):
        cached.enable_group("GRP9")


def _seeded(store):
    for feature in seed_features():
        store.create(feature)
    return store


@pytest.fixture()
def cached_redis(clock):
    target = _seeded(RedisFeatureStore(fakeredis.FakeRedis()))
    return CachedFeatureStore(target, FeatureCacheMirror(ttl_seconds=60, negative_ttl_seconds=5, clock=clock))


@pytest.fixture()
def cached_sql(sql_url, clock):
    target = _seeded(SqlFeatureStore(build_session_factory(build_engine(sql_url))))
    return CachedFeatureStore(target, FeatureCacheMirror(ttl_seconds=60, negative_ttl_seconds=5, clock=clock))


def test_partial_group_failure_reports_progress(cached_redis, monkeypatch):
    target = cached_redis.target
    cached_redis.enable_group("GRP1")
    cached_redis.read_all()
    cached_redis.read("fourth")
    original_modify = target._modify

    def flaky_modify(operation, uid, mutate):
        if uid == "third":
            raise BackendFailureError(operation, target.backend_name)
        original_modify(operation, uid, mutate)

    monkeypatch.setattr(target, "_modify", flaky_modify)
    with pytest.raises(GroupOperationError) as excinfo:
        cached_redis.disable_group("GRP1")

    error = excinfo.value
    assert error.group_name == "GRP1"
    assert error.failed_uid == "third"
    assert error.completed == ["fourth"]
    assert error.details == {
        "operation": "disable_group",
        "backend": "redis",
        "group": "GRP1",
        "failed_uid": "third",
        "completed": ["fourth"],
    }
    # members updated before the failure are visible through the cache
    assert cached_redis.read("fourth").enabled is False
    assert cached_redis.read_all()["fourth"].enabled is False
    assert cached_redis.read("third").enabled is True


def test_group_toggle_skips_member_moved_mid_operation(cached_redis, monkeypatch):
    target = cached_redis.target
    cached_redis.read("third")
    original_read_group = target.read_group

    def read_then_move(group_name):
        members = original_read_group(group_name)
        target.add_to_group("third", "GRP0")
        return members

    monkeypatch.setattr(target, "read_group", read_then_move)
    cached_redis.enable_group("GRP1")

    third = cached_redis.read("third")
    assert third.enabled is False
    assert third.group == "GRP0"
    assert cached_redis.read("fourth").enabled is True


def test_group_toggle_uses_backend_group_update(cached_sql, monkeypatch):
    target = cached_sql.target

    def per_feature_toggle(uid):
        raise AssertionError(f"group toggle went through single feature update of {uid}")

    monkeypatch.setattr(target, "enable", per_feature_toggle)
    monkeypatch.setattr(target, "disable", per_feature_toggle)
    cached_sql.read_group("GRP1")
    # moved behind the cache's back; the backend decides membership
    target.add_to_group("third", "GRP0")

    cached_sql.enable_group("GRP1")

    assert cached_sql.read("fourth").enabled is True
    third = cached_sql.read("third")
    assert third.enabled is False
    assert third.group == "GRP0"
    assert set(cached_sql.read_group("GRP1")) == {"fourth"}
    assert cached_sql.read_group("GRP1")["fourth"].enabled is True


def test_unknown_group_toggle_keeps_mirror(cached_sql):
    cached_sql.read_all()
    entries = len(cached_sql.mirror)
    with pytest.raises(GroupNotFoundError):
        cached_sql.disable_group("GRP9")
    assert len(cached_sql.mirror) == entries


def test_namespace_invalidation_does_not_wait_for_stripes(clock):
    mirror = FeatureCacheMirror(ttl_seconds=60, negative_ttl_seconds=5, stripes=4, clock=clock)
    key = ALL_FEATURES_KEY
    token = mirror.token(key)
    for lock in mirror._locks:
        lock.acquire()
    try:
        worker = threading.Thread(target=mirror.invalidate_namespaces, args=("aggregate",), daemon=True)
        worker.start()
        worker.join(timeout=2)
        assert not worker.is_alive()
    finally:
        for lock in mirror._locks:
            lock.release()
    assert mirror.put(key, {}, token) is False
    assert mirror.put(key, {}, mirror.token(key)) is True
