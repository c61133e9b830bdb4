from fastapi import FastAPI

from app.flipstore.api import api_router
from app.flipstore.core.config import settings
from app.flipstore.core.errors import setup_exception_handlers
from app.flipstore.core.logging import configure_logging
from app.flipstore.middleware.observability import ObservabilityMiddleware
from app.flipstore.middleware.trace import TraceIdMiddleware
from app.flipstore.services.flipper import FeatureFlipper
from app.flipstore.services.store_factory import build_flipper


def create_app(flipper: FeatureFlipper | None = None) -> FastAPI:
    configure_logging()
    app = FastAPI(title=settings.APP_NAME)
    app.state.flipper = flipper or build_flipper()
    app.add_middleware(TraceIdMiddleware)
    app.add_middleware(ObservabilityMiddleware)
    setup_exception_handlers(app)
    app.include_router(api_router)
    return app


app = create_app()
