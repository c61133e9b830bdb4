from fastapi import APIRouter, Depends, Request

from app.flipstore.core.deps import get_flipper
from app.flipstore.schemas.features import FeatureItem, GroupListResponse, GroupResponse

router = APIRouter()


def _group_response(request: Request, flipper, group_name: str) -> GroupResponse:
    members = flipper.get_group(group_name)
    return GroupResponse(
        group=group_name,
        features=[FeatureItem.from_feature(feature) for _, feature in sorted(members.items())],
        trace_id=getattr(request.state, "trace_id", ""),
    )


@router.get("/groups", response_model=GroupListResponse)
def list_groups(request: Request, flipper=Depends(get_flipper)):
    return GroupListResponse(groups=sorted(flipper.get_groups()), trace_id=getattr(request.state, "trace_id", ""))


@router.get("/groups/{group_name}", response_model=GroupResponse)
def get_group(request: Request, group_name: str, flipper=Depends(get_flipper)):
    return _group_response(request, flipper, group_name)


@router.post("/groups/{group_name}/enable", response_model=GroupResponse)
def enable_group(request: Request, group_name: str, flipper=Depends(get_flipper)):
    flipper.enable_group(group_name)
    return _group_response(request, flipper, group_name)


@router.post("/groups/{group_name}/disable", response_model=GroupResponse)
def disable_group(request: Request, group_name: str, flipper=Depends(get_flipper)):
    flipper.disable_group(group_name)
    return _group_response(request, flipper, group_name)
