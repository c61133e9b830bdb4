from __future__ import annotations

import logging

from pymongo import MongoClient
from redis import Redis

from app.flipstore.core.config import Settings, settings as default_settings
from app.flipstore.core.error_catalog import InvalidArgumentError
from app.flipstore.core.logging import log_json
from app.flipstore.db.session import build_engine, build_session_factory
from app.flipstore.repos.base import FeatureStore
from app.flipstore.repos.memory import InMemoryFeatureStore
from app.flipstore.repos.mongodb import MongoFeatureStore
from app.flipstore.repos.redis_store import RedisFeatureStore
from app.flipstore.repos.sql import SqlFeatureStore
from app.flipstore.services.authorization import RoleBasedAuthorizationManager
from app.flipstore.services.cache import CachedFeatureStore, FeatureCacheMirror
from app.flipstore.services.flipper import FeatureFlipper
from app.flipstore.services.importer import FeatureImporter
from app.flipstore.services.strategies import StrategyRegistry

logger = logging.getLogger(__name__)


def build_backend(config: Settings) -> FeatureStore:
    backend = config.STORE_BACKEND.lower()
    if backend == "memory":
        return InMemoryFeatureStore()
    if backend == "sql":
        return SqlFeatureStore(build_session_factory(build_engine(config.DATABASE_URL)))
    if backend == "redis":
        return RedisFeatureStore(Redis.from_url(config.REDIS_URL), key_prefix=config.REDIS_KEY_PREFIX)
    if backend == "mongodb":
        client = MongoClient(config.MONGODB_URL)
        return MongoFeatureStore(client[config.MONGODB_DATABASE][config.MONGODB_COLLECTION])
    raise InvalidArgumentError(f"Unsupported STORE_BACKEND '{config.STORE_BACKEND}'", argument="STORE_BACKEND")


def wrap_with_cache(store: FeatureStore, config: Settings) -> FeatureStore:
    if not config.CACHE_ENABLED:
        return store
    mirror = FeatureCacheMirror(
        ttl_seconds=config.CACHE_TTL_SECONDS,
        negative_ttl_seconds=config.CACHE_NEGATIVE_TTL_SECONDS,
        stripes=config.CACHE_LOCK_STRIPES,
    )
    return CachedFeatureStore(store, mirror)


def build_strategy_registry(config: Settings) -> StrategyRegistry:
    prefixes = tuple(prefix.strip() for prefix in config.STRATEGY_MODULE_PREFIXES.split(",") if prefix.strip())
    return StrategyRegistry(module_prefixes=prefixes)


def build_feature_store(config: Settings | None = None) -> FeatureStore:
    config = config or default_settings
    store = wrap_with_cache(build_backend(config), config)
    if config.FEATURES_IMPORT_PATH:
        importer = FeatureImporter(store, strategies=build_strategy_registry(config))
        importer.import_file(config.FEATURES_IMPORT_PATH, skip_existing=True)
    log_json(
        logger,
        {
            "event": "feature_store_ready",
            "backend": store.backend_name,
            "cached": store.is_cached,
        },
    )
    return store


def build_flipper(config: Settings | None = None, store: FeatureStore | None = None) -> FeatureFlipper:
    config = config or default_settings
    return FeatureFlipper(
        store or build_feature_store(config),
        strategies=build_strategy_registry(config),
        authorization=RoleBasedAuthorizationManager(),
    )
