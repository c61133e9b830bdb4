from dataclasses import dataclass, field

from fastapi import Request


@dataclass(frozen=True)
class FlipContext:
    user_id: str | None = None
    roles: frozenset[str] = frozenset()
    attributes: dict = field(default_factory=dict)
    trace_id: str = ""


def build_flip_context(
    *,
    user_id: str | None,
    roles: list[str] | set[str] | frozenset[str] | None = None,
    attributes: dict | None = None,
    trace_id: str = "",
) -> FlipContext:
    return FlipContext(
        user_id=user_id,
        roles=frozenset(role for role in (roles or ()) if role),
        attributes=dict(attributes or {}),
        trace_id=trace_id,
    )


def _split_roles(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [role.strip() for role in raw.split(",") if role.strip()]


def get_flip_context(request: Request) -> FlipContext:
    return build_flip_context(
        user_id=request.headers.get("X-User-Id"),
        roles=_split_roles(request.headers.get("X-User-Roles")),
        attributes=dict(request.query_params),
        trace_id=getattr(request.state, "trace_id", ""),
    )
