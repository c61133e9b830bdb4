from pydantic import BaseModel, Field

from app.flipstore.core.feature import Feature, StrategyRef


class StrategyPayload(BaseModel):
    type: str = Field(..., min_length=1, max_length=255)
    initParams: dict[str, str] = Field(default_factory=dict)


class FeaturePayload(BaseModel):
    enable: bool = False
    description: str | None = None
    group: str | None = Field(default=None, max_length=100)
    permissions: list[str] = Field(default_factory=list)
    flippingStrategy: StrategyPayload | None = None

    def to_feature(self, uid: str) -> Feature:
        strategy = None
        if self.flippingStrategy is not None:
            strategy = StrategyRef(name=self.flippingStrategy.type, params=dict(self.flippingStrategy.initParams))
        return Feature(
            uid=uid,
            enabled=self.enable,
            description=self.description,
            permissions=set(self.permissions),
            group=self.group,
            strategy=strategy,
        )


class FeatureCreateRequest(FeaturePayload):
    uid: str = Field(..., min_length=1, max_length=100)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "uid": "new-checkout",
                    "enable": True,
                    "description": "New checkout flow",
                    "group": "checkout",
                    "permissions": ["ROLE_USER"],
                }
            ]
        }
    }


class FeatureUpdateRequest(FeaturePayload):
    pass


class FeatureItem(BaseModel):
    uid: str
    enable: bool
    description: str | None = None
    group: str | None = None
    permissions: list[str]
    flippingStrategy: StrategyPayload | None = None

    @classmethod
    def from_feature(cls, feature: Feature) -> "FeatureItem":
        return cls(**feature.to_dict())


class FeatureResponse(BaseModel):
    feature: FeatureItem
    trace_id: str


class FeatureListResponse(BaseModel):
    features: list[FeatureItem]
    count: int
    trace_id: str


class GroupListResponse(BaseModel):
    groups: list[str]
    trace_id: str


class GroupResponse(BaseModel):
    group: str
    features: list[FeatureItem]
    trace_id: str


class FeatureCheckResponse(BaseModel):
    uid: str
    enabled: bool
    user_id: str | None = None
    trace_id: str


class StoreSummaryResponse(BaseModel):
    type: str
    backend: str
    cached: bool
    cacheProvider: str | None = None
    cachedTargetStore: str | None = None
    numberOfFeatures: int
    features: list[str]
    numberOfGroups: int
    groups: list[str]


class FeatureImportItem(FeaturePayload):
    uid: str = Field(..., min_length=1, max_length=100)

    def build(self) -> Feature:
        return self.to_feature(self.uid)


class FeatureImportDocument(BaseModel):
    features: list[FeatureImportItem] = Field(default_factory=list)
