from fastapi import APIRouter, Depends, Request, status

from app.flipstore.core.context import get_flip_context
from app.flipstore.core.deps import get_flipper
from app.flipstore.schemas.features import (
    FeatureCheckResponse,
    FeatureCreateRequest,
    FeatureItem,
    FeatureListResponse,
    FeatureResponse,
    FeatureUpdateRequest,
    StoreSummaryResponse,
)

router = APIRouter()


def _trace_id(request: Request) -> str:
    return getattr(request.state, "trace_id", "")


def _feature_response(request: Request, flipper, uid: str) -> FeatureResponse:
    return FeatureResponse(feature=FeatureItem.from_feature(flipper.get_feature(uid)), trace_id=_trace_id(request))


@router.get("/store", response_model=StoreSummaryResponse)
def describe_store(flipper=Depends(get_flipper)):
    return StoreSummaryResponse(**flipper.store.describe())


@router.get("/features", response_model=FeatureListResponse)
def list_features(request: Request, flipper=Depends(get_flipper)):
    features = [FeatureItem.from_feature(feature) for _, feature in sorted(flipper.get_features().items())]
    return FeatureListResponse(features=features, count=len(features), trace_id=_trace_id(request))


@router.post("/features", response_model=FeatureResponse, status_code=status.HTTP_201_CREATED)
def create_feature(request: Request, payload: FeatureCreateRequest, flipper=Depends(get_flipper)):
    flipper.create(payload.to_feature(payload.uid))
    return _feature_response(request, flipper, payload.uid)


@router.get("/features/{uid}", response_model=FeatureResponse)
def get_feature(request: Request, uid: str, flipper=Depends(get_flipper)):
    return _feature_response(request, flipper, uid)


@router.put("/features/{uid}", response_model=FeatureResponse)
def update_feature(request: Request, uid: str, payload: FeatureUpdateRequest, flipper=Depends(get_flipper)):
    flipper.update(payload.to_feature(uid))
    return _feature_response(request, flipper, uid)


@router.delete("/features/{uid}", status_code=status.HTTP_204_NO_CONTENT)
def delete_feature(uid: str, flipper=Depends(get_flipper)):
    flipper.delete(uid)


@router.post("/features/{uid}/enable", response_model=FeatureResponse)
def enable_feature(request: Request, uid: str, flipper=Depends(get_flipper)):
    flipper.enable(uid)
    return _feature_response(request, flipper, uid)


@router.post("/features/{uid}/disable", response_model=FeatureResponse)
def disable_feature(request: Request, uid: str, flipper=Depends(get_flipper)):
    flipper.disable(uid)
    return _feature_response(request, flipper, uid)


@router.put("/features/{uid}/permissions/{role_name}", response_model=FeatureResponse)
def grant_role(request: Request, uid: str, role_name: str, flipper=Depends(get_flipper)):
    flipper.grant_role(uid, role_name)
    return _feature_response(request, flipper, uid)


@router.delete("/features/{uid}/permissions/{role_name}", response_model=FeatureResponse)
def remove_role(request: Request, uid: str, role_name: str, flipper=Depends(get_flipper)):
    flipper.remove_role(uid, role_name)
    return _feature_response(request, flipper, uid)


@router.put("/features/{uid}/group/{group_name}", response_model=FeatureResponse)
def add_to_group(request: Request, uid: str, group_name: str, flipper=Depends(get_flipper)):
    flipper.add_to_group(uid, group_name)
    return _feature_response(request, flipper, uid)


@router.delete("/features/{uid}/group/{group_name}", response_model=FeatureResponse)
def remove_from_group(request: Request, uid: str, group_name: str, flipper=Depends(get_flipper)):
    flipper.remove_from_group(uid, group_name)
    return _feature_response(request, flipper, uid)


@router.get("/features/{uid}/check", response_model=FeatureCheckResponse)
def check_feature(request: Request, uid: str, flipper=Depends(get_flipper)):
    context = get_flip_context(request)
    return FeatureCheckResponse(
        uid=uid,
        enabled=flipper.is_enabled(uid, context),
        user_id=context.user_id,
        trace_id=context.trace_id,
    )
