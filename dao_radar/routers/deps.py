from fastapi import Request

from dao_radar.exceptions import InternalError
from dao_radar.services.context import AppContext


def get_app_context(request: Request) -> AppContext:
    """The AppContext built in the application lifespan."""
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise InternalError("Application context is not initialised")
    return context
