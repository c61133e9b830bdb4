"""
Feature entity and its JSON representation.

A feature is identified by an immutable ``uid``. Everything else
(flag, description, permissions, group label, strategy) is mutable
state owned by a store. Stores hand out copies, so mutating a returned
feature never changes stored state until it is written back.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from typing import Any

from app.flipstore.core.error_catalog import InvalidArgumentError


@dataclass
class StrategyRef:
    """Reference to an evaluation strategy plus its init parameters."""

    name: str
    params: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.name, "initParams": dict(self.params)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> StrategyRef | None:
        if not data:
            return None
        name = data.get("type") or data.get("name")
        if not name:
            raise InvalidArgumentError("Strategy reference requires a type", argument="strategy")
        params = data.get("initParams") or data.get("params") or {}
        return cls(name=name, params={str(k): str(v) for k, v in params.items()})


@dataclass
class Feature:
    uid: str
    enabled: bool = False
    description: str | None = None
    permissions: set[str] = field(default_factory=set)
    group: str | None = None
    strategy: StrategyRef | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.uid, str) or not self.uid:
            raise InvalidArgumentError("Feature identifier cannot be null nor empty", argument="uid")
        self.permissions = set(self.permissions or ())
        # "" and None both mean ungrouped
        self.group = self.group or None

    def enable(self) -> None:
        self.enabled = True

    def disable(self) -> None:
        self.enabled = False

    def copy(self) -> Feature:
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "uid": self.uid,
            "enable": self.enabled,
            "description": self.description,
            "group": self.group,
            "permissions": sorted(self.permissions),
            "flippingStrategy": self.strategy.to_dict() if self.strategy else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Feature:
        return cls(
            uid=data.get("uid"),
            enabled=bool(data.get("enable", False)),
            description=data.get("description"),
            permissions=set(data.get("permissions") or ()),
            group=data.get("group"),
            strategy=StrategyRef.from_dict(data.get("flippingStrategy")),
        )

    @classmethod
    def from_json(cls, payload: str | bytes) -> Feature:
        return cls.from_dict(json.loads(payload))
