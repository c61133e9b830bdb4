from __future__ import annotations

from contextlib import contextmanager

from pymongo.collection import Collection
from pymongo.errors import DuplicateKeyError, PyMongoError

from app.flipstore.core.error_catalog import (
    BackendFailureError,
    FeatureAlreadyExistsError,
    FeatureNotFoundError,
    GroupNotFoundError,
)
from app.flipstore.core.feature import Feature, StrategyRef
from app.flipstore.repos.base import FeatureStore, require_feature, require_group, require_role, require_uid

FEATURE_UID = "_id"
ENABLE = "enable"
DESCRIPTION = "description"
STRATEGY = "strategy"
INIT_PARAMS = "initParams"
ROLES = "roles"
GROUPNAME = "groupname"


def to_document(feature: Feature) -> dict:
    return {
        FEATURE_UID: feature.uid,
        ENABLE: feature.enabled,
        DESCRIPTION: feature.description,
        STRATEGY: feature.strategy.name if feature.strategy else None,
        INIT_PARAMS: dict(feature.strategy.params) if feature.strategy else None,
        ROLES: sorted(feature.permissions),
        GROUPNAME: feature.group,
    }


def from_document(document: dict) -> Feature:
    strategy = None
    if document.get(STRATEGY):
        strategy = StrategyRef(name=document[STRATEGY], params=dict(document.get(INIT_PARAMS) or {}))
    return Feature(
        uid=document[FEATURE_UID],
        enabled=bool(document.get(ENABLE, False)),
        description=document.get(DESCRIPTION),
        permissions=set(document.get(ROLES) or ()),
        group=document.get(GROUPNAME),
        strategy=strategy,
    )


class MongoFeatureStore(FeatureStore):
    """One document per feature, keyed by uid; updates use atomic operators."""

    backend_name = "mongodb"

    def __init__(self, collection: Collection):
        self._collection = collection

    @contextmanager
    def _mongo_errors(self, operation: str):
        try:
            yield
        except PyMongoError as exc:
            raise BackendFailureError(operation, self.backend_name) from exc

    def _update_one(self, operation: str, uid: str, change: dict) -> None:
        require_uid(uid)
        with self._mongo_errors(operation):
            result = self._collection.update_one({FEATURE_UID: uid}, change)
        if result.matched_count == 0:
            raise FeatureNotFoundError(uid)

    def create(self, feature: Feature) -> None:
        require_feature(feature)
        try:
            self._collection.insert_one(to_document(feature))
        except DuplicateKeyError as exc:
            raise FeatureAlreadyExistsError(feature.uid) from exc
        except PyMongoError as exc:
            raise BackendFailureError("create", self.backend_name) from exc
        self._log_mutation("create", uid=feature.uid)

    def read(self, uid: str) -> Feature:
        require_uid(uid)
        with self._mongo_errors("read"):
            document = self._collection.find_one({FEATURE_UID: uid})
        if document is None:
            raise FeatureNotFoundError(uid)
        return from_document(document)

    def update(self, feature: Feature) -> None:
        require_feature(feature)
        with self._mongo_errors("update"):
            result = self._collection.replace_one({FEATURE_UID: feature.uid}, to_document(feature))
        if result.matched_count == 0:
            raise FeatureNotFoundError(feature.uid)
        self._log_mutation("update", uid=feature.uid)

    def delete(self, uid: str) -> None:
        require_uid(uid)
        with self._mongo_errors("delete"):
            result = self._collection.delete_one({FEATURE_UID: uid})
        if result.deleted_count == 0:
            raise FeatureNotFoundError(uid)
        self._log_mutation("delete", uid=uid)

    def exist(self, uid: str | None) -> bool:
        if not uid:
            return False
        with self._mongo_errors("exist"):
            return self._collection.count_documents({FEATURE_UID: uid}) == 1

    def enable(self, uid: str) -> None:
        self._update_one("enable", uid, {"$set": {ENABLE: True}})
        self._log_mutation("enable", uid=uid)

    def disable(self, uid: str) -> None:
        self._update_one("disable", uid, {"$set": {ENABLE: False}})
        self._log_mutation("disable", uid=uid)

    def grant_role(self, uid: str, role_name: str) -> None:
        require_role(role_name)
        self._update_one("grant_role", uid, {"$addToSet": {ROLES: role_name}})
        self._log_mutation("grant_role", uid=uid, role=role_name)

    def remove_role(self, uid: str, role_name: str) -> None:
        require_role(role_name)
        self._update_one("remove_role", uid, {"$pull": {ROLES: role_name}})
        self._log_mutation("remove_role", uid=uid, role=role_name)

    def read_all(self) -> dict[str, Feature]:
        with self._mongo_errors("read_all"):
            documents = list(self._collection.find().sort(FEATURE_UID, 1))
        return {document[FEATURE_UID]: from_document(document) for document in documents}

    def exist_group(self, group_name: str) -> bool:
        require_group(group_name)
        with self._mongo_errors("exist_group"):
            return self._collection.count_documents({GROUPNAME: group_name}) > 0

    def read_all_groups(self) -> set[str]:
        with self._mongo_errors("read_all_groups"):
            names = self._collection.distinct(GROUPNAME)
        return {name for name in names if name}

    def read_group(self, group_name: str) -> dict[str, Feature]:
        require_group(group_name)
        with self._mongo_errors("read_group"):
            documents = list(self._collection.find({GROUPNAME: group_name}).sort(FEATURE_UID, 1))
        if not documents:
            raise GroupNotFoundError(group_name)
        return {document[FEATURE_UID]: from_document(document) for document in documents}

    def _set_group_flag(self, operation: str, group_name: str, enabled: bool) -> None:
        require_group(group_name)
        with self._mongo_errors(operation):
            result = self._collection.update_many({GROUPNAME: group_name}, {"$set": {ENABLE: enabled}})
        if result.matched_count == 0:
            raise GroupNotFoundError(group_name)
        self._log_mutation(operation, group=group_name)

    def enable_group(self, group_name: str) -> None:
        self._set_group_flag("enable_group", group_name, True)

    def disable_group(self, group_name: str) -> None:
        self._set_group_flag("disable_group", group_name, False)

    def add_to_group(self, uid: str, group_name: str) -> None:
        require_group(group_name)
        self._update_one("add_to_group", uid, {"$set": {GROUPNAME: group_name}})
        self._log_mutation("add_to_group", uid=uid, group=group_name)

    def remove_from_group(self, uid: str, group_name: str) -> None:
        require_uid(uid)
        require_group(group_name)
        if not self.exist(uid):
            raise FeatureNotFoundError(uid)
        if not self.exist_group(group_name):
            raise GroupNotFoundError(group_name)
        with self._mongo_errors("remove_from_group"):
            self._collection.update_one({FEATURE_UID: uid}, {"$set": {GROUPNAME: None}})
        self._log_mutation("remove_from_group", uid=uid, group=group_name)
