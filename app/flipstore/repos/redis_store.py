"""
Redis backing store.

Each feature is one string key ``<prefix><uid>`` holding the feature
JSON. Create and update rely on ``SET NX`` / ``SET XX``; targeted
mutations (enable, roles, group label) run as WATCH/MULTI optimistic
transactions so two concurrent togglers can not lose each other's write.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import contextmanager

from redis import Redis
from redis.exceptions import RedisError

from app.flipstore.core.error_catalog import (
    AppError,
    BackendFailureError,
    FeatureAlreadyExistsError,
    FeatureNotFoundError,
    GroupNotFoundError,
    GroupOperationError,
)
from app.flipstore.core.feature import Feature
from app.flipstore.repos.base import FeatureStore, require_feature, require_group, require_role, require_uid

logger = logging.getLogger(__name__)

DEFAULT_KEY_PREFIX = "FF4J_"


class RedisFeatureStore(FeatureStore):
    backend_name = "redis"

    def __init__(self, client: Redis, key_prefix: str = DEFAULT_KEY_PREFIX):
        self._client = client
        self._prefix = key_prefix

    def _key(self, uid: str) -> str:
        return f"{self._prefix}{uid}"

    def _uid_from_key(self, key) -> str:
        if isinstance(key, bytes):
            key = key.decode("utf-8")
        return key[len(self._prefix):]

    @contextmanager
    def _redis_errors(self, operation: str):
        try:
            yield
        except (RedisError, ValueError) as exc:
            raise BackendFailureError(operation, self.backend_name) from exc

    def _decode(self, operation: str, uid: str, payload) -> Feature:
        try:
            feature = Feature.from_json(payload)
        except (AppError, ValueError, KeyError, TypeError, AttributeError) as exc:
            raise BackendFailureError(
                operation, self.backend_name, details={"uid": uid, "reason": "undecodable feature"}
            ) from exc
        if feature.uid != uid:
            raise BackendFailureError(
                operation, self.backend_name, details={"uid": uid, "reason": f"payload holds uid '{feature.uid}'"}
            )
        return feature

    def _modify(self, operation: str, uid: str, mutate: Callable[[Feature], None]) -> None:
        require_uid(uid)
        key = self._key(uid)

        def apply(pipe) -> None:
            payload = pipe.get(key)
            if payload is None:
                raise FeatureNotFoundError(uid)
            feature = self._decode(operation, uid, payload)
            mutate(feature)
            pipe.multi()
            pipe.set(key, feature.to_json())

        with self._redis_errors(operation):
            self._client.transaction(apply, key)

    def create(self, feature: Feature) -> None:
        require_feature(feature)
        with self._redis_errors("create"):
            created = self._client.set(self._key(feature.uid), feature.to_json(), nx=True)
        if not created:
            raise FeatureAlreadyExistsError(feature.uid)
        self._log_mutation("create", uid=feature.uid)

    def read(self, uid: str) -> Feature:
        require_uid(uid)
        with self._redis_errors("read"):
            payload = self._client.get(self._key(uid))
            if payload is None:
                raise FeatureNotFoundError(uid)
            return self._decode("read", uid, payload)

    def update(self, feature: Feature) -> None:
        require_feature(feature)
        with self._redis_errors("update"):
            replaced = self._client.set(self._key(feature.uid), feature.to_json(), xx=True)
        if not replaced:
            raise FeatureNotFoundError(feature.uid)
        self._log_mutation("update", uid=feature.uid)

    def delete(self, uid: str) -> None:
        require_uid(uid)
        with self._redis_errors("delete"):
            removed = self._client.delete(self._key(uid))
        if not removed:
            raise FeatureNotFoundError(uid)
        self._log_mutation("delete", uid=uid)

    def exist(self, uid: str | None) -> bool:
        if not uid:
            return False
        with self._redis_errors("exist"):
            return self._client.exists(self._key(uid)) == 1

    def enable(self, uid: str) -> None:
        self._modify("enable", uid, Feature.enable)
        self._log_mutation("enable", uid=uid)

    def disable(self, uid: str) -> None:
        self._modify("disable", uid, Feature.disable)
        self._log_mutation("disable", uid=uid)

    def grant_role(self, uid: str, role_name: str) -> None:
        require_role(role_name)
        self._modify("grant_role", uid, lambda feature: feature.permissions.add(role_name))
        self._log_mutation("grant_role", uid=uid, role=role_name)

    def remove_role(self, uid: str, role_name: str) -> None:
        require_role(role_name)
        self._modify("remove_role", uid, lambda feature: feature.permissions.discard(role_name))
        self._log_mutation("remove_role", uid=uid, role=role_name)

    def read_all(self) -> dict[str, Feature]:
        with self._redis_errors("read_all"):
            keys = sorted(self._client.scan_iter(match=f"{self._prefix}*"))
            if not keys:
                return {}
            features = {}
            for key, payload in zip(keys, self._client.mget(keys)):
                # deleted between SCAN and MGET
                if payload is None:
                    continue
                uid = self._uid_from_key(key)
                features[uid] = self._decode("read_all", uid, payload)
            return features

    def exist_group(self, group_name: str) -> bool:
        require_group(group_name)
        return any(feature.group == group_name for feature in self.read_all().values())

    def read_all_groups(self) -> set[str]:
        return {feature.group for feature in self.read_all().values() if feature.group}

    def read_group(self, group_name: str) -> dict[str, Feature]:
        require_group(group_name)
        members = {uid: feature for uid, feature in self.read_all().items() if feature.group == group_name}
        if not members:
            raise GroupNotFoundError(group_name)
        return members

    def _set_group_flag(self, operation: str, group_name: str, enabled: bool) -> None:
        members = self.read_group(group_name)
        completed: list[str] = []

        def set_flag(feature: Feature) -> None:
            # membership may have changed since read_group
            if feature.group == group_name:
                feature.enabled = enabled

        for uid in members:
            try:
                self._modify(operation, uid, set_flag)
            except FeatureNotFoundError:
                logger.info("feature %s deleted during %s of group %s", uid, operation, group_name)
                continue
            except BackendFailureError as exc:
                raise GroupOperationError(operation, self.backend_name, group_name, uid, completed) from exc
            completed.append(uid)
        self._log_mutation(operation, group=group_name, members=completed)

    def enable_group(self, group_name: str) -> None:
        self._set_group_flag("enable_group", group_name, True)

    def disable_group(self, group_name: str) -> None:
        self._set_group_flag("disable_group", group_name, False)

    def add_to_group(self, uid: str, group_name: str) -> None:
        require_group(group_name)

        def set_group(feature: Feature) -> None:
            feature.group = group_name

        self._modify("add_to_group", uid, set_group)
        self._log_mutation("add_to_group", uid=uid, group=group_name)

    def remove_from_group(self, uid: str, group_name: str) -> None:
        require_uid(uid)
        require_group(group_name)
        if not self.exist(uid):
            raise FeatureNotFoundError(uid)
        if not self.exist_group(group_name):
            raise GroupNotFoundError(group_name)

        def clear_group(feature: Feature) -> None:
            feature.group = None

        self._modify("remove_from_group", uid, clear_group)
        self._log_mutation("remove_from_group", uid=uid, group=group_name)
