"""
FastAPI application for the authorization service.

Routes:
- POST /authorization/check : resource-and-id authorization check
- /permissions/...          : permission catalog and grant administration
- GET  /roles, /users       : tenant-scoped listings
- GET  /health              : liveness
"""

from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from config.settings import AuthzSettings, get_settings
from database.async_engine import reset_engine
from .errors import AuthorizationError, InvalidArgumentError, NotFoundError
from .middleware import TenantContextMiddleware
from .routes import check_router, listing_router, router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await reset_engine()


def create_app(settings: Optional[AuthzSettings] = None) -> FastAPI:
    """Build the application with tenant middleware and authorization routes."""
    settings = settings or get_settings()

    app = FastAPI(title="Clinic Authorization Service", lifespan=lifespan)
    app.add_middleware(TenantContextMiddleware, settings=settings)

    app.include_router(check_router)
    app.include_router(router)
    app.include_router(listing_router)

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        logger.warning(f"{exc.code.value}: {exc.message}")
        return JSONResponse(status_code=404, content=exc.to_dict())

    @app.exception_handler(InvalidArgumentError)
    async def invalid_argument_handler(request: Request, exc: InvalidArgumentError):
        logger.warning(f"{exc.code.value}: {exc.message}")
        return JSONResponse(status_code=400, content=exc.to_dict())

    @app.exception_handler(AuthorizationError)
    async def authorization_error_handler(request: Request, exc: AuthorizationError):
        logger.warning(f"{exc.code.value}: {exc.message}")
        return JSONResponse(status_code=403, content=exc.to_dict())

    return app
