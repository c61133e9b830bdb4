from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from pydantic import ValidationError

from app.flipstore.core.error_catalog import FeatureAlreadyExistsError, InvalidArgumentError
from app.flipstore.core.feature import Feature
from app.flipstore.core.logging import log_json
from app.flipstore.repos.base import FeatureStore
from app.flipstore.schemas.features import FeatureImportDocument
from app.flipstore.services.strategies import StrategyRegistry

logger = logging.getLogger(__name__)


def load_features_file(path: str | Path) -> list[Feature]:
    """Parse a JSON feature document: ``{"features": [{"uid": ..., ...}]}``."""
    try:
        document = FeatureImportDocument.model_validate_json(Path(path).read_text(encoding="utf-8"))
    except ValidationError as exc:
        raise InvalidArgumentError(f"Invalid feature file {path}: {exc.error_count()} error(s)", argument="path") from exc
    except OSError as exc:
        raise InvalidArgumentError(f"Cannot read feature file {path}", argument="path") from exc
    return [item.build() for item in document.features]


class FeatureImporter:
    def __init__(self, store: FeatureStore, strategies: StrategyRegistry | None = None):
        self.store = store
        self.strategies = strategies

    def import_features(self, features: Iterable[Feature], *, skip_existing: bool = False) -> list[str]:
        features = list(features)
        if self.strategies is not None:
            # reject the whole document before anything is written
            for feature in features:
                self.strategies.validate(feature.strategy)
        imported: list[str] = []
        skipped: list[str] = []
        for feature in features:
            try:
                self.store.create(feature)
            except FeatureAlreadyExistsError:
                if not skip_existing:
                    raise
                skipped.append(feature.uid)
                continue
            imported.append(feature.uid)
        log_json(logger, {"event": "features_imported", "imported": imported, "skipped": skipped})
        return imported

    def import_file(self, path: str | Path, *, skip_existing: bool = False) -> list[str]:
        return self.import_features(load_features_file(path), skip_existing=skip_existing)
