from fastapi import APIRouter, Response

from app.flipstore.core.metrics import metrics

router = APIRouter()


@router.get("/flipstore/ops/metrics")
def get_metrics():
    snapshot = metrics.render()
    return Response(content=snapshot.content, media_type=snapshot.content_type)
