import json
from pathlib import Path

import pytest

from app.flipstore.core.config import Settings
from app.flipstore.core.error_catalog import FeatureAlreadyExistsError, InvalidArgumentError
from app.flipstore.core.feature import Feature, StrategyRef
from app.flipstore.repos.memory import InMemoryFeatureStore
from app.flipstore.services.cache import CachedFeatureStore
from app.flipstore.services.importer import FeatureImporter, load_features_file
from app.flipstore.services.store_factory import build_backend, build_feature_store
from app.flipstore.services.strategies import StrategyRegistry


def _write(path: Path, document: dict) -> Path:
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


@pytest.fixture()
def features_file(tmp_path: Path) -> Path:
    return _write(
        tmp_path / "features.json",
        {
            "features": [
                {"uid": "login", "enable": True, "permissions": ["ROLE_USER"], "group": "auth"},
                {
                    "uid": "beta",
                    "description": "beta users only",
                    "flippingStrategy": {"type": "whitelist", "initParams": {"users": "alice"}},
                },
            ]
        },
    )


def test_load_features_file(features_file):
    features = load_features_file(features_file)
    assert features == [
        Feature(uid="login", enabled=True, permissions={"ROLE_USER"}, group="auth"),
        Feature(
            uid="beta",
            description="beta users only",
            strategy=StrategyRef(name="whitelist", params={"users": "alice"}),
        ),
    ]


def test_load_rejects_invalid_document(tmp_path):
    path = _write(tmp_path / "bad.json", {"features": [{"enable": True}]})
    with pytest.raises(InvalidArgumentError):
        load_features_file(path)


def test_load_rejects_missing_file(tmp_path):
    with pytest.raises(InvalidArgumentError):
        load_features_file(tmp_path / "absent.json")


def test_import_into_store(features_file):
    store = InMemoryFeatureStore()
    imported = FeatureImporter(store).import_file(features_file)
    assert imported == ["login", "beta"]
    assert store.read("login").group == "auth"


def test_import_conflict_raises_unless_skipped(features_file):
    store = InMemoryFeatureStore([Feature(uid="login", description="kept")])
    importer = FeatureImporter(store)
    with pytest.raises(FeatureAlreadyExistsError):
        importer.import_file(features_file)

    store = InMemoryFeatureStore([Feature(uid="login", description="kept")])
    assert FeatureImporter(store).import_file(features_file, skip_existing=True) == ["beta"]
    assert store.read("login").description == "kept"


def test_build_feature_store_imports_on_startup(features_file):
    config = Settings(STORE_BACKEND="memory", CACHE_ENABLED=True, FEATURES_IMPORT_PATH=str(features_file))
    store = build_feature_store(config)
    assert isinstance(store, CachedFeatureStore)
    assert store.exist("login")
    assert store.read_all_groups() == {"auth"}


def test_build_feature_store_without_cache():
    store = build_feature_store(Settings(STORE_BACKEND="memory", CACHE_ENABLED=False))
    assert isinstance(store, InMemoryFeatureStore)
    assert store.read_all() == {}


def test_unknown_backend_is_rejected():
    with pytest.raises(InvalidArgumentError):
        build_backend(Settings(STORE_BACKEND="cassandra"))


def test_import_with_unloadable_strategy_writes_nothing(tmp_path):
    path = _write(
        tmp_path / "features.json",
        {
            "features": [
                {"uid": "login", "enable": True},
                {"uid": "rogue", "enable": True, "flippingStrategy": {"type": "os.getpid", "initParams": {}}},
            ]
        },
    )
    store = InMemoryFeatureStore()
    with pytest.raises(InvalidArgumentError):
        FeatureImporter(store, strategies=StrategyRegistry()).import_file(path)
    assert store.read_all() == {}


def test_startup_import_rejects_strategy_outside_allowed_modules(tmp_path):
    path = _write(
        tmp_path / "custom.json",
        {"features": [{"uid": "custom", "flippingStrategy": {"type": "tests.test_strategies.AlwaysOn"}}]},
    )
    with pytest.raises(InvalidArgumentError):
        build_feature_store(Settings(STORE_BACKEND="memory", FEATURES_IMPORT_PATH=str(path)))

    config = Settings(
        STORE_BACKEND="memory", FEATURES_IMPORT_PATH=str(path), STRATEGY_MODULE_PREFIXES="app.flipstore.,tests."
    )
    assert build_feature_store(config).exist("custom")
