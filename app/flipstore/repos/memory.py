from __future__ import annotations

import threading
from collections.abc import Iterable

from app.flipstore.core.error_catalog import (
    FeatureAlreadyExistsError,
    FeatureNotFoundError,
    GroupNotFoundError,
)
from app.flipstore.core.feature import Feature
from app.flipstore.repos.base import FeatureStore, require_feature, require_group, require_role, require_uid


class InMemoryFeatureStore(FeatureStore):
    """Dictionary-backed store; every operation runs under one re-entrant lock."""

    backend_name = "memory"

    def __init__(self, features: Iterable[Feature] | None = None):
        self._features: dict[str, Feature] = {}
        self._lock = threading.RLock()
        for feature in features or ():
            self.create(feature)

    def _get(self, uid: str) -> Feature:
        feature = self._features.get(require_uid(uid))
        if feature is None:
            raise FeatureNotFoundError(uid)
        return feature

    def _members(self, group_name: str) -> list[Feature]:
        return [feature for feature in self._features.values() if feature.group == group_name]

    def create(self, feature: Feature) -> None:
        require_feature(feature)
        with self._lock:
            if feature.uid in self._features:
                raise FeatureAlreadyExistsError(feature.uid)
            self._features[feature.uid] = feature.copy()
        self._log_mutation("create", uid=feature.uid)

    def read(self, uid: str) -> Feature:
        with self._lock:
            return self._get(uid).copy()

    def update(self, feature: Feature) -> None:
        require_feature(feature)
        with self._lock:
            self._get(feature.uid)
            self._features[feature.uid] = feature.copy()
        self._log_mutation("update", uid=feature.uid)

    def delete(self, uid: str) -> None:
        with self._lock:
            self._get(uid)
            del self._features[uid]
        self._log_mutation("delete", uid=uid)

    def exist(self, uid: str | None) -> bool:
        if not uid:
            return False
        with self._lock:
            return uid in self._features

    def enable(self, uid: str) -> None:
        with self._lock:
            self._get(uid).enable()
        self._log_mutation("enable", uid=uid)

    def disable(self, uid: str) -> None:
        with self._lock:
            self._get(uid).disable()
        self._log_mutation("disable", uid=uid)

    def grant_role(self, uid: str, role_name: str) -> None:
        require_role(role_name)
        with self._lock:
            self._get(uid).permissions.add(role_name)
        self._log_mutation("grant_role", uid=uid, role=role_name)

    def remove_role(self, uid: str, role_name: str) -> None:
        require_role(role_name)
        with self._lock:
            self._get(uid).permissions.discard(role_name)
        self._log_mutation("remove_role", uid=uid, role=role_name)

    def read_all(self) -> dict[str, Feature]:
        with self._lock:
            return {uid: feature.copy() for uid, feature in self._features.items()}

    def exist_group(self, group_name: str) -> bool:
        require_group(group_name)
        with self._lock:
            return bool(self._members(group_name))

    def read_all_groups(self) -> set[str]:
        with self._lock:
            return {feature.group for feature in self._features.values() if feature.group}

    def read_group(self, group_name: str) -> dict[str, Feature]:
        require_group(group_name)
        with self._lock:
            members = self._members(group_name)
            if not members:
                raise GroupNotFoundError(group_name)
            return {feature.uid: feature.copy() for feature in members}

    def _set_group_flag(self, group_name: str, enabled: bool) -> None:
        require_group(group_name)
        with self._lock:
            members = self._members(group_name)
            if not members:
                raise GroupNotFoundError(group_name)
            for feature in members:
                feature.enabled = enabled

    def enable_group(self, group_name: str) -> None:
        self._set_group_flag(group_name, True)
        self._log_mutation("enable_group", group=group_name)

    def disable_group(self, group_name: str) -> None:
        self._set_group_flag(group_name, False)
        self._log_mutation("disable_group", group=group_name)

    def add_to_group(self, uid: str, group_name: str) -> None:
        require_group(group_name)
        with self._lock:
            self._get(uid).group = group_name
        self._log_mutation("add_to_group", uid=uid, group=group_name)

    def remove_from_group(self, uid: str, group_name: str) -> None:
        require_group(group_name)
        with self._lock:
            feature = self._get(uid)
            if not self._members(group_name):
                raise GroupNotFoundError(group_name)
            feature.group = None
        self._log_mutation("remove_from_group", uid=uid, group=group_name)
