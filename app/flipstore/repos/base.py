"""
Feature store contract.

Every backend (memory, relational, key-value, document) implements
``FeatureStore``. Callers and the cache decorator only ever depend on
this interface, so the error kinds raised here are part of the contract:

    create            FeatureAlreadyExistsError
    read/update/...   FeatureNotFoundError
    read_group/...    GroupNotFoundError
    bad arguments     InvalidArgumentError (raised before any I/O)
    medium failures   BackendFailureError
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from app.flipstore.core.error_catalog import InvalidArgumentError
from app.flipstore.core.feature import Feature
from app.flipstore.core.logging import log_json

logger = logging.getLogger("flipstore.store")


def require_uid(uid: str | None) -> str:
    if not isinstance(uid, str) or not uid:
        raise InvalidArgumentError("Feature identifier cannot be null nor empty", argument="uid")
    return uid


def require_role(role_name: str | None) -> str:
    if not isinstance(role_name, str) or not role_name:
        raise InvalidArgumentError("roleName cannot be null nor empty", argument="role_name")
    return role_name


def require_group(group_name: str | None) -> str:
    if not isinstance(group_name, str) or not group_name:
        raise InvalidArgumentError("Groupname cannot be null nor empty", argument="group_name")
    return group_name


def require_feature(feature: Feature | None) -> Feature:
    if not isinstance(feature, Feature):
        raise InvalidArgumentError("Feature cannot be null nor empty", argument="feature")
    return feature


class FeatureStore(ABC):
    """Uniform operation set over one physical medium."""

    backend_name = "abstract"

    # ------------------------------------------------------------------
    # Features
    # ------------------------------------------------------------------

    @abstractmethod
    def create(self, feature: Feature) -> None:
        """Persist a new feature; the uid must be unused."""

    @abstractmethod
    def read(self, uid: str) -> Feature:
        """Return a copy of the stored feature."""

    @abstractmethod
    def update(self, feature: Feature) -> None:
        """Replace the stored state of an existing feature."""

    @abstractmethod
    def delete(self, uid: str) -> None:
        ...

    @abstractmethod
    def exist(self, uid: str | None) -> bool:
        ...

    @abstractmethod
    def enable(self, uid: str) -> None:
        ...

    @abstractmethod
    def disable(self, uid: str) -> None:
        ...

    @abstractmethod
    def grant_role(self, uid: str, role_name: str) -> None:
        ...

    @abstractmethod
    def remove_role(self, uid: str, role_name: str) -> None:
        """Discard a role; absent roles are ignored."""

    @abstractmethod
    def read_all(self) -> dict[str, Feature]:
        ...

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    @abstractmethod
    def exist_group(self, group_name: str) -> bool:
        ...

    @abstractmethod
    def read_all_groups(self) -> set[str]:
        ...

    @abstractmethod
    def read_group(self, group_name: str) -> dict[str, Feature]:
        """Return members of a group; GroupNotFoundError when empty."""

    @abstractmethod
    def enable_group(self, group_name: str) -> None:
        ...

    @abstractmethod
    def disable_group(self, group_name: str) -> None:
        ...

    @abstractmethod
    def add_to_group(self, uid: str, group_name: str) -> None:
        ...

    @abstractmethod
    def remove_from_group(self, uid: str, group_name: str) -> None:
        """Clear the label if the feature belongs to ``group_name``."""

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_cached(self) -> bool:
        return False

    @property
    def cache_provider(self) -> str | None:
        return None

    @property
    def cached_target_store(self) -> str | None:
        return None

    def describe(self) -> dict:
        features = sorted(self.read_all().keys())
        groups = sorted(self.read_all_groups())
        return {
            "type": self.__class__.__name__,
            "backend": self.backend_name,
            "cached": self.is_cached,
            "cacheProvider": self.cache_provider,
            "cachedTargetStore": self.cached_target_store,
            "numberOfFeatures": len(features),
            "features": features,
            "numberOfGroups": len(groups),
            "groups": groups,
        }

    def _log_mutation(self, operation: str, **fields) -> None:
        payload = {"event": "feature_store_mutation", "backend": self.backend_name, "operation": operation}
        payload.update(fields)
        log_json(logger, payload)
