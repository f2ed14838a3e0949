"""
FastAPI application for the passkey authentication service.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from .api import router as auth_router
from .config import AuthConfig, config as default_config
from .exceptions import AuthErrorCode
from .middleware import SecurityHeadersMiddleware
from .models import utc_now
from .startup import build_services, startup_auth_system, shutdown_auth_system
from .store import StoreProvider

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[AuthConfig] = None,
    store: Optional[StoreProvider] = None
) -> FastAPI:
    """Build the app; services are created here once and shared by every request."""
    config = config or default_config
    services = build_services(config, store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        startup_auth_system(services)
        yield
        shutdown_auth_system(services)

    app = FastAPI(title="Passkey Auth", lifespan=lifespan)
    app.state.auth_services = services

    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        SecurityHeadersMiddleware,
        enable_hsts=config.ENVIRONMENT != "development"
    )
    # CORS configuration - only the relying party's own origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[config.WEBAUTHN_ORIGIN],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Missing or malformed fields are a plain 400, not FastAPI's 422."""
        errors = [
            {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return JSONResponse(
            status_code=400,
            content={"detail": {
                "error": AuthErrorCode.BAD_REQUEST.value,
                "message": "Missing or invalid fields",
                "details": {"errors": errors}
            }}
        )

    @app.get("/_health")
    async def health_check():
        """Liveness plus a database round trip."""
        healthy = services.store.ping()
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "OK" if healthy else "DEGRADED",
                "timestamp": utc_now().isoformat(),
                "services": {"database": "healthy" if healthy else "unhealthy"}
            }
        )

    app.include_router(auth_router)
    return app
