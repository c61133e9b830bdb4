from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from app.flipstore.core.error_catalog import (
    BackendFailureError,
    FeatureAlreadyExistsError,
    FeatureNotFoundError,
    GroupNotFoundError,
)
from app.flipstore.core.feature import Feature, StrategyRef
from app.flipstore.db.models import FeaturePermission, FeatureRecord
from app.flipstore.repos.base import FeatureStore, require_feature, require_group, require_role, require_uid


def _to_feature(record: FeatureRecord) -> Feature:
    strategy = None
    if record.strategy_name:
        strategy = StrategyRef(name=record.strategy_name, params=dict(record.strategy_params or {}))
    return Feature(
        uid=record.uid,
        enabled=record.enabled,
        description=record.description,
        permissions={permission.role_name for permission in record.permissions},
        group=record.group_name,
        strategy=strategy,
    )


def _apply_feature(record: FeatureRecord, feature: Feature) -> None:
    record.enabled = feature.enabled
    record.description = feature.description
    record.group_name = feature.group
    record.strategy_name = feature.strategy.name if feature.strategy else None
    record.strategy_params = dict(feature.strategy.params) if feature.strategy else None
    current = {permission.role_name: permission for permission in record.permissions}
    for role_name, permission in current.items():
        if role_name not in feature.permissions:
            record.permissions.remove(permission)
    for role_name in sorted(feature.permissions - current.keys()):
        record.permissions.append(FeaturePermission(role_name=role_name))


class SqlFeatureStore(FeatureStore):
    """Relational store; targeted mutations are single conditional UPDATE statements."""

    backend_name = "sql"

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self, operation: str, *, conflict_uid: str | None = None):
        try:
            with self._session_factory.begin() as db:
                yield db
        except IntegrityError as exc:
            if conflict_uid is not None:
                raise FeatureAlreadyExistsError(conflict_uid) from exc
            raise BackendFailureError(operation, self.backend_name) from exc
        except SQLAlchemyError as exc:
            raise BackendFailureError(operation, self.backend_name) from exc

    def _require_record(self, db, uid: str) -> FeatureRecord:
        record = db.get(FeatureRecord, uid)
        if record is None:
            raise FeatureNotFoundError(uid)
        return record

    def _require_group_exists(self, db, group_name: str) -> None:
        if not self._count_group(db, group_name):
            raise GroupNotFoundError(group_name)

    @staticmethod
    def _count_group(db, group_name: str) -> int:
        stmt = select(func.count()).select_from(FeatureRecord).where(FeatureRecord.group_name == group_name)
        return db.execute(stmt).scalar_one()

    def _update_flag(self, operation: str, uid: str, **values) -> None:
        require_uid(uid)
        values["updated_at"] = datetime.utcnow()
        with self._transaction(operation) as db:
            result = db.execute(update(FeatureRecord).where(FeatureRecord.uid == uid).values(**values))
            if result.rowcount == 0:
                raise FeatureNotFoundError(uid)
        self._log_mutation(operation, uid=uid)

    def create(self, feature: Feature) -> None:
        require_feature(feature)
        with self._transaction("create", conflict_uid=feature.uid) as db:
            if db.get(FeatureRecord, feature.uid) is not None:
                raise FeatureAlreadyExistsError(feature.uid)
            record = FeatureRecord(uid=feature.uid)
            _apply_feature(record, feature)
            db.add(record)
        self._log_mutation("create", uid=feature.uid)

    def read(self, uid: str) -> Feature:
        require_uid(uid)
        with self._transaction("read") as db:
            return _to_feature(self._require_record(db, uid))

    def update(self, feature: Feature) -> None:
        require_feature(feature)
        with self._transaction("update") as db:
            record = self._require_record(db, feature.uid)
            _apply_feature(record, feature)
        self._log_mutation("update", uid=feature.uid)

    def delete(self, uid: str) -> None:
        require_uid(uid)
        with self._transaction("delete") as db:
            db.execute(delete(FeaturePermission).where(FeaturePermission.feature_uid == uid))
            result = db.execute(delete(FeatureRecord).where(FeatureRecord.uid == uid))
            if result.rowcount == 0:
                raise FeatureNotFoundError(uid)
        self._log_mutation("delete", uid=uid)

    def exist(self, uid: str | None) -> bool:
        if not uid:
            return False
        with self._transaction("exist") as db:
            stmt = select(func.count()).select_from(FeatureRecord).where(FeatureRecord.uid == uid)
            return db.execute(stmt).scalar_one() == 1

    def enable(self, uid: str) -> None:
        self._update_flag("enable", uid, enabled=True)

    def disable(self, uid: str) -> None:
        self._update_flag("disable", uid, enabled=False)

    def grant_role(self, uid: str, role_name: str) -> None:
        require_uid(uid)
        require_role(role_name)
        with self._transaction("grant_role") as db:
            self._require_record(db, uid)
            if db.get(FeaturePermission, (uid, role_name)) is None:
                db.add(FeaturePermission(feature_uid=uid, role_name=role_name))
        self._log_mutation("grant_role", uid=uid, role=role_name)

    def remove_role(self, uid: str, role_name: str) -> None:
        require_uid(uid)
        require_role(role_name)
        with self._transaction("remove_role") as db:
            self._require_record(db, uid)
            db.execute(
                delete(FeaturePermission).where(
                    FeaturePermission.feature_uid == uid,
                    FeaturePermission.role_name == role_name,
                )
            )
        self._log_mutation("remove_role", uid=uid, role=role_name)

    def read_all(self) -> dict[str, Feature]:
        with self._transaction("read_all") as db:
            records = db.execute(select(FeatureRecord).order_by(FeatureRecord.uid)).scalars().all()
            return {record.uid: _to_feature(record) for record in records}

    def exist_group(self, group_name: str) -> bool:
        require_group(group_name)
        with self._transaction("exist_group") as db:
            return self._count_group(db, group_name) > 0

    def read_all_groups(self) -> set[str]:
        stmt = select(FeatureRecord.group_name).where(FeatureRecord.group_name.is_not(None)).distinct()
        with self._transaction("read_all_groups") as db:
            return {name for name in db.execute(stmt).scalars().all() if name}

    def read_group(self, group_name: str) -> dict[str, Feature]:
        require_group(group_name)
        stmt = select(FeatureRecord).where(FeatureRecord.group_name == group_name).order_by(FeatureRecord.uid)
        with self._transaction("read_group") as db:
            records = db.execute(stmt).scalars().all()
            if not records:
                raise GroupNotFoundError(group_name)
            return {record.uid: _to_feature(record) for record in records}

    def _update_group_flag(self, operation: str, group_name: str, enabled: bool) -> None:
        require_group(group_name)
        stmt = (
            update(FeatureRecord)
            .where(FeatureRecord.group_name == group_name)
            .values(enabled=enabled, updated_at=datetime.utcnow())
        )
        with self._transaction(operation) as db:
            if db.execute(stmt).rowcount == 0:
                raise GroupNotFoundError(group_name)
        self._log_mutation(operation, group=group_name)

    def enable_group(self, group_name: str) -> None:
        self._update_group_flag("enable_group", group_name, True)

    def disable_group(self, group_name: str) -> None:
        self._update_group_flag("disable_group", group_name, False)

    def add_to_group(self, uid: str, group_name: str) -> None:
        require_group(group_name)
        self._update_flag("add_to_group", uid, group_name=group_name)

    def remove_from_group(self, uid: str, group_name: str) -> None:
        require_uid(uid)
        require_group(group_name)
        stmt = (
            update(FeatureRecord)
            .where(FeatureRecord.uid == uid)
            .values(group_name=None, updated_at=datetime.utcnow())
        )
        with self._transaction("remove_from_group") as db:
            self._require_record(db, uid)
            self._require_group_exists(db, group_name)
            db.execute(stmt)
        self._log_mutation("remove_from_group", uid=uid, group=group_name)
