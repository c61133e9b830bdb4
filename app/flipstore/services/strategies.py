from __future__ import annotations

import hashlib
import importlib
from datetime import datetime
from typing import Callable, Protocol

from app.flipstore.core.context import FlipContext
from app.flipstore.core.error_catalog import InvalidArgumentError
from app.flipstore.core.feature import StrategyRef

RELEASE_DATE_FORMAT = "%Y-%m-%d-%H:%M"
DEFAULT_MODULE_PREFIXES = ("app.flipstore.",)


class FlipStrategy(Protocol):
    def evaluate(self, enabled: bool, params: dict[str, str], context: FlipContext) -> bool:
        ...


def _split_list(raw: str | None) -> set[str]:
    if not raw:
        return set()
    return {item.strip() for item in raw.split(",") if item.strip()}


class PonderationStrategy:
    """Activate for a stable share of users, given by ``weight`` in [0, 1]."""

    def evaluate(self, enabled: bool, params: dict[str, str], context: FlipContext) -> bool:
        if not enabled:
            return False
        try:
            weight = float(params.get("weight", "1"))
        except ValueError as exc:
            raise InvalidArgumentError("weight must be a number between 0 and 1", argument="weight") from exc
        if weight >= 1:
            return True
        if weight <= 0 or not context.user_id:
            return False
        seed = f"{params.get('salt', '')}:{context.user_id}"
        bucket = int(hashlib.md5(seed.encode()).hexdigest(), 16) % 100
        return bucket < weight * 100


class WhiteListStrategy:
    def evaluate(self, enabled: bool, params: dict[str, str], context: FlipContext) -> bool:
        return enabled and context.user_id in _split_list(params.get("users"))


class BlackListStrategy:
    def evaluate(self, enabled: bool, params: dict[str, str], context: FlipContext) -> bool:
        return enabled and context.user_id not in _split_list(params.get("users"))


class ReleaseDateStrategy:
    def __init__(self, clock: Callable[[], datetime] = datetime.now):
        self._clock = clock

    def evaluate(self, enabled: bool, params: dict[str, str], context: FlipContext) -> bool:
        raw = params.get("releaseDate")
        if not raw:
            raise InvalidArgumentError("releaseDate is required", argument="releaseDate")
        try:
            release_date = datetime.strptime(raw, RELEASE_DATE_FORMAT)
        except ValueError as exc:
            raise InvalidArgumentError(
                f"releaseDate must match {RELEASE_DATE_FORMAT}", argument="releaseDate"
            ) from exc
        return enabled and self._clock() >= release_date


BUILTIN_STRATEGIES: dict[str, Callable[[], FlipStrategy]] = {
    "ponderation": PonderationStrategy,
    "whitelist": WhiteListStrategy,
    "blacklist": BlackListStrategy,
    "releasedate": ReleaseDateStrategy,
}


class StrategyRegistry:
    """Resolves a ``StrategyRef`` name to a strategy instance.

    Names are looked up case-insensitively among registered strategies.
    A dotted ``module.ClassName`` is imported only from modules under one
    of ``module_prefixes`` and only when it names a class with an
    ``evaluate`` method.
    """

    def __init__(
        self,
        strategies: dict[str, Callable[[], FlipStrategy]] | None = None,
        module_prefixes: tuple[str, ...] = DEFAULT_MODULE_PREFIXES,
    ):
        self._factories = {name.lower(): factory for name, factory in (strategies or BUILTIN_STRATEGIES).items()}
        self._module_prefixes = tuple(prefix for prefix in module_prefixes if prefix)
        self._instances: dict[str, FlipStrategy] = {}

    def register(self, name: str, factory: Callable[[], FlipStrategy]) -> None:
        self._factories[name.lower()] = factory
        self._instances.pop(name.lower(), None)

    def _unknown(self, name: str) -> InvalidArgumentError:
        return InvalidArgumentError(f"Unknown strategy '{name}'", argument="strategy")

    def _import(self, dotted_path: str) -> Callable[[], FlipStrategy]:
        module_name, _, attribute = dotted_path.rpartition(".")
        if not module_name or not any(
            module_name == prefix.rstrip(".") or module_name.startswith(prefix) for prefix in self._module_prefixes
        ):
            raise self._unknown(dotted_path)
        try:
            factory = getattr(importlib.import_module(module_name), attribute)
        except (ImportError, AttributeError) as exc:
            raise self._unknown(dotted_path) from exc
        if (
            not isinstance(factory, type)
            or getattr(factory, "_is_protocol", False)
            or not callable(getattr(factory, "evaluate", None))
        ):
            raise self._unknown(dotted_path)
        return factory

    def _factory_for(self, ref: StrategyRef) -> Callable[[], FlipStrategy]:
        factory = self._factories.get(ref.name.lower())
        if factory is not None:
            return factory
        if "." not in ref.name:
            raise self._unknown(ref.name)
        return self._import(ref.name)

    def validate(self, ref: StrategyRef | None) -> None:
        """Raise ``InvalidArgumentError`` unless ``ref`` can be resolved."""
        if ref is not None:
            self._factory_for(ref)

    def resolve(self, ref: StrategyRef) -> FlipStrategy:
        name = ref.name.lower()
        instance = self._instances.get(name)
        if instance is not None:
            return instance
        instance = self._factory_for(ref)()
        self._instances[name] = instance
        return instance
