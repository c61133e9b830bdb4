import os
from pathlib import Path

import fakeredis
import mongomock
import pytest
from fastapi.testclient import TestClient
from alembic import command
from alembic.config import Config

from app.flipstore.core.metrics import metrics
from app.flipstore.db.session import build_engine, build_session_factory
from app.flipstore.repos.memory import InMemoryFeatureStore
from app.flipstore.repos.mongodb import MongoFeatureStore
from app.flipstore.repos.redis_store import RedisFeatureStore
from app.flipstore.repos.sql import SqlFeatureStore
from app.flipstore.services.authorization import RoleBasedAuthorizationManager
from app.flipstore.services.cache import CachedFeatureStore, FeatureCacheMirror
from app.flipstore.services.flipper import FeatureFlipper
from tests.feature_helpers import seed_features


def _run_migrations(database_url: str):
    os.environ["DATABASE_URL"] = database_url
    config = Config("alembic.ini")
    config.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(config, "head")


def _seed(store):
    for feature in seed_features():
        store.create(feature)
    return store


def _memory_store(tmp_path: Path):
    return InMemoryFeatureStore()


def _sql_store(tmp_path: Path):
    database_url = f"sqlite+pysqlite:///{tmp_path / 'features.db'}"
    _run_migrations(database_url)
    return SqlFeatureStore(build_session_factory(build_engine(database_url)))


def _redis_store(tmp_path: Path):
    return RedisFeatureStore(fakeredis.FakeRedis())


def _mongo_store(tmp_path: Path):
    return MongoFeatureStore(mongomock.MongoClient()["ff4j"]["features"])


def _cached_store(tmp_path: Path):
    return CachedFeatureStore(InMemoryFeatureStore(), FeatureCacheMirror(ttl_seconds=60, negative_ttl_seconds=5))


STORE_BUILDERS = {
    "memory": _memory_store,
    "sql": _sql_store,
    "redis": _redis_store,
    "mongodb": _mongo_store,
    "cached": _cached_store,
}


@pytest.fixture(params=sorted(STORE_BUILDERS))
def store(request, tmp_path: Path):
    return _seed(STORE_BUILDERS[request.param](tmp_path))


@pytest.fixture()
def sql_url(tmp_path: Path) -> str:
    database_url = f"sqlite+pysqlite:///{tmp_path / 'migrations.db'}"
    _run_migrations(database_url)
    return database_url


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture()
def memory_store():
    return _seed(InMemoryFeatureStore())


@pytest.fixture()
def flipper(memory_store):
    return FeatureFlipper(memory_store, authorization=RoleBasedAuthorizationManager())


@pytest.fixture()
def client(memory_store):
    from app.main import create_app

    cached = CachedFeatureStore(memory_store, FeatureCacheMirror(ttl_seconds=60, negative_ttl_seconds=5))
    app = create_app(flipper=FeatureFlipper(cached, authorization=RoleBasedAuthorizationManager()))
    with TestClient(app) as client:
        yield client
