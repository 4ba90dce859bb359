from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from .service_state import ServiceState


class RequestCounterMiddleware(BaseHTTPMiddleware):
    """
    Counts every request under ``/api/`` for the admin statistics endpoint.
    The counter is owned by ``ServiceState``; this middleware only bumps it.
    """

    def __init__(self, app: ASGIApp, state: ServiceState, prefix: str = "/api/") -> None:
        super().__init__(app)
        self.state = state
        self.prefix = prefix

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path.startswith(self.prefix):
            self.state.record_request()
        return await call_next(request)
