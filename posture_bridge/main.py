import logging

from fastapi import FastAPI
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from posture_bridge.api.v1 import posture
from posture_bridge.api.v1.router import api_router
from posture_bridge.core.config import get_settings, Settings
from posture_bridge.core.errors import PostureBridgeError
from posture_bridge.core.logging import configure_logging
from posture_bridge.schemas.device import PostureResponse

logger = logging.getLogger(__name__)


SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains; preload",
    "Cache-Control": "no-store",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        return response


def _error_response(status_code: int, message: str) -> JSONResponse:
    # unhandled errors are rendered outside the middleware stack, so headers are set here too
    return JSONResponse({"success": False, "error": message}, status_code=status_code, headers=SECURITY_HEADERS)


async def posture_bridge_error_handler(request: Request, exc: PostureBridgeError) -> JSONResponse:
    return _error_response(exc.status_code, exc.message)


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Request handler error: %s", exc)
    return _error_response(500, str(exc) or exc.__class__.__name__)


def get_application(settings: Settings | None = None) -> FastAPI:
    # missing required configuration fails here, before anything is served
    settings = settings or get_settings()
    configure_logging(settings)
    app = FastAPI(title=settings.app_name, debug=settings.debug)

    app.add_middleware(SecurityHeadersMiddleware)
    app.add_exception_handler(PostureBridgeError, posture_bridge_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    app.include_router(api_router)
    # bare service URL, as configured in the access-control plane
    app.add_api_route("/", posture.evaluate_posture, methods=["POST"], response_model=PostureResponse, include_in_schema=False)

    @app.get("/healthz", include_in_schema=False)
    async def healthz():
        return {"status": "ok"}

    return app


app = get_application()
