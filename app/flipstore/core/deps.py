from fastapi import Request

from app.flipstore.services.flipper import FeatureFlipper


def get_flipper(request: Request) -> FeatureFlipper:
    return request.app.state.flipper
