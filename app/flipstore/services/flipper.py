from __future__ import annotations

import logging

from app.flipstore.core.context import FlipContext
from app.flipstore.core.error_catalog import InvalidArgumentError
from app.flipstore.core.feature import Feature
from app.flipstore.core.logging import log_json
from app.flipstore.core.metrics import metrics
from app.flipstore.repos.base import FeatureStore
from app.flipstore.services.authorization import AuthorizationManager
from app.flipstore.services.strategies import StrategyRegistry

logger = logging.getLogger(__name__)

_ANONYMOUS = FlipContext()


class FeatureFlipper:
    """Caller-facing entry point: evaluates features through a store.

    The store may be a plain backend or a ``CachedFeatureStore``; results
    are the same either way, only latency differs. Unknown features raise
    ``FeatureNotFoundError``; nothing is created on the fly.
    """

    def __init__(
        self,
        store: FeatureStore,
        strategies: StrategyRegistry | None = None,
        authorization: AuthorizationManager | None = None,
    ):
        self.store = store
        self.strategies = strategies or StrategyRegistry()
        self.authorization = authorization

    def _evaluate(self, feature: Feature, context: FlipContext) -> tuple[bool, str]:
        if self.authorization is not None and feature.permissions:
            if not self.authorization.is_allowed(feature.permissions, context.roles):
                return False, "denied"
        if feature.strategy is not None:
            strategy = self.strategies.resolve(feature.strategy)
            return bool(strategy.evaluate(feature.enabled, dict(feature.strategy.params), context)), "strategy"
        return feature.enabled, "flag"

    def is_enabled(self, uid: str, context: FlipContext | None = None) -> bool:
        context = context or _ANONYMOUS
        feature = self.store.read(uid)
        result, source = self._evaluate(feature, context)
        if result:
            metrics.increment_evaluation("enabled")
        else:
            metrics.increment_evaluation("denied" if source == "denied" else "disabled")
        log_json(
            logger,
            {
                "event": "feature_evaluated",
                "uid": uid,
                "result": result,
                "source": source,
                "user_id": context.user_id,
                "trace_id": context.trace_id,
            },
            level=logging.DEBUG,
        )
        return result

    is_flipped = is_enabled

    def check_all(self, context: FlipContext | None = None) -> list[str]:
        """Uids enabled for ``context``; features with an unusable strategy are skipped."""
        context = context or _ANONYMOUS
        enabled: list[str] = []
        for uid, feature in sorted(self.store.read_all().items()):
            try:
                result, _ = self._evaluate(feature, context)
            except InvalidArgumentError as exc:
                log_json(
                    logger,
                    {"event": "feature_evaluation_skipped", "uid": uid, "reason": str(exc)},
                    level=logging.WARNING,
                )
                continue
            if result:
                enabled.append(uid)
        return enabled

    def enable(self, uid: str) -> None:
        self.store.enable(uid)

    def disable(self, uid: str) -> None:
        self.store.disable(uid)

    def get_feature(self, uid: str) -> Feature:
        return self.store.read(uid)

    def get_features(self) -> dict[str, Feature]:
        return self.store.read_all()

    def exist(self, uid: str) -> bool:
        return self.store.exist(uid)

    def create(self, feature: Feature) -> None:
        self.strategies.validate(feature.strategy)
        self.store.create(feature)

    def update(self, feature: Feature) -> None:
        self.strategies.validate(feature.strategy)
        self.store.update(feature)

    def delete(self, uid: str) -> None:
        self.store.delete(uid)

    def grant_role(self, uid: str, role_name: str) -> None:
        self.store.grant_role(uid, role_name)

    def remove_role(self, uid: str, role_name: str) -> None:
        self.store.remove_role(uid, role_name)

    def add_to_group(self, uid: str, group_name: str) -> None:
        self.store.add_to_group(uid, group_name)

    def remove_from_group(self, uid: str, group_name: str) -> None:
        self.store.remove_from_group(uid, group_name)

    def get_groups(self) -> set[str]:
        return self.store.read_all_groups()

    def get_group(self, group_name: str) -> dict[str, Feature]:
        return self.store.read_group(group_name)

    def enable_group(self, group_name: str) -> None:
        self.store.enable_group(group_name)

    def disable_group(self, group_name: str) -> None:
        self.store.disable_group(group_name)
