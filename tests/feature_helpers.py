from app.flipstore.core.feature import Feature, StrategyRef


def seed_features() -> list[Feature]:
    return [
        Feature(uid="first", enabled=True, description="the first", permissions={"ROLE_USER"}),
        Feature(uid="second", enabled=False, description="the second", group="GRP0"),
        Feature(uid="third", enabled=False, description="the third", group="GRP1", permissions={"ADMIN", "BETA"}),
        Feature(uid="fourth", enabled=True, description="the fourth", group="GRP1"),
        Feature(
            uid="fifth",
            enabled=True,
            description="the fifth",
            strategy=StrategyRef(name="whitelist", params={"users": "alice,bob"}),
        ),
    ]
