from fastapi import APIRouter, Depends, Request

from app.flipstore.core.deps import get_flipper
from app.flipstore.core.error_catalog import BackendFailureError, ErrorCatalog
from app.flipstore.core.errors import error_response

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    trace_id = getattr(request.state, "trace_id", "")
    return {"status": "ok", "trace_id": trace_id}


@router.get("/ready")
def ready(request: Request, flipper=Depends(get_flipper)):
    trace_id = getattr(request.state, "trace_id", "")
    # bypass the mirror so readiness reflects the backing store
    backend = getattr(flipper.store, "target", flipper.store)
    try:
        backend.exist("__ready__")
    except BackendFailureError as exc:
        return error_response(
            code=ErrorCatalog.BACKEND_FAILURE.code,
            message=ErrorCatalog.BACKEND_FAILURE.message,
            details=exc.details,
            trace_id=trace_id,
            status_code=ErrorCatalog.BACKEND_FAILURE.status_code,
        )
    return {"status": "ready", "backend": flipper.store.backend_name, "trace_id": trace_id}
