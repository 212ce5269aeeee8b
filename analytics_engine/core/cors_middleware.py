"""Custom CORS middleware for handling different origin policies."""

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse

ALLOW_METHODS = "GET, POST, OPTIONS"
ALLOW_HEADERS = "Accept, Accept-Language, Content-Language, Content-Type, X-Requested-With"
OPEN_PATHS = ("/docs", "/openapi.json", "/redoc")


class CustomCORSMiddleware(BaseHTTPMiddleware):
    """
    Tracking endpoints accept any origin because the tracking script runs on
    every page of the site; dashboard endpoints are limited to known origins.
    """

    def __init__(self, app, restricted_origins: list, tracking_paths: list = None):
        super().__init__(app)
        self.restricted_origins = restricted_origins
        self.tracking_paths = tracking_paths or ["/analytics/track"]

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if any(path.startswith(prefix) for prefix in self.tracking_paths) or path.startswith(OPEN_PATHS):
            return await self._handle_cors(request, call_next)
        return await self._handle_restricted_cors(request, call_next)

    async def _handle_cors(self, request: Request, call_next):
        origin = request.headers.get("origin")

        # Handle preflight requests
        if request.method == "OPTIONS" and origin:
            response = StarletteResponse()
            self._set_headers(response, origin)
            response.headers["Access-Control-Allow-Methods"] = ALLOW_METHODS
            response.headers["Access-Control-Allow-Headers"] = ALLOW_HEADERS
            response.headers["Access-Control-Max-Age"] = "600"
            return response

        response = await call_next(request)
        self._set_headers(response, origin)
        return response

    async def _handle_restricted_cors(self, request: Request, call_next):
        origin = request.headers.get("origin")

        # Same-origin requests carry no origin header or our own host
        if not origin or origin == str(request.base_url).rstrip("/"):
            return await call_next(request)

        if origin not in self.restricted_origins:
            return StarletteResponse(
                content="Disallowed CORS origin",
                status_code=400,
                headers={"Content-Type": "text/plain"}
            )
        return await self._handle_cors(request, call_next)

    @staticmethod
    def _set_headers(response, origin):
        if origin:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
        # The visitor cookie must travel with cross-origin tracking calls
        response.headers["Access-Control-Allow-Credentials"] = "true"
