"""
Tenant Context Middleware - builds the per-request identity.

Responsibilities:
1. Extract the bearer token (Authorization header or access_token cookie)
2. Verify and decode it with PyJWT
3. Place a TenantContext on request.state and in the context variable

Tokens are only consumed here. A missing or invalid token yields an
anonymous context; route dependencies decide whether that is acceptable.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Set
import logging

import jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from config.settings import AuthzSettings, get_settings
from .context import TenantContext, reset_current_context, set_current_context

logger = logging.getLogger(__name__)


@dataclass
class TenantMiddlewareConfig:
    """Configuration for the tenant context middleware."""
    # Paths that never carry identity
    public_paths: Set[str] = field(default_factory=lambda: {
        "/health",
        "/docs",
        "/redoc",
        "/openapi.json",
    })


class TenantContextMiddleware(BaseHTTPMiddleware):
    """Populates TenantContext from verified token claims."""

    def __init__(
        self,
        app: ASGIApp,
        settings: Optional[AuthzSettings] = None,
        config: Optional[TenantMiddlewareConfig] = None,
    ):
        super().__init__(app)
        self.settings = settings or get_settings()
        self.config = config or TenantMiddlewareConfig()

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        context = TenantContext.anonymous()

        if request.url.path not in self.config.public_paths:
            token = self._extract_token(request)
            if token:
                claims = self._decode(token)
                if claims is not None:
                    context = TenantContext.from_claims(
                        claims,
                        self.settings,
                        tenant_header=request.headers.get(self.settings.tenant_header),
                    )

        request.state.tenant_context = context
        token_ref = set_current_context(context)
        try:
            return await call_next(request)
        finally:
            reset_current_context(token_ref)

    def _extract_token(self, request: Request) -> Optional[str]:
        """Extract JWT token from request."""
        auth_header = request.headers.get("Authorization")
        if auth_header and auth_header.startswith("Bearer "):
            return auth_header[7:]

        return request.cookies.get("access_token")

    def _decode(self, token: str) -> Optional[Dict[str, Any]]:
        if not self.settings.jwt_secret:
            logger.error("AUTHZ_JWT_SECRET is not configured; treating request as anonymous")
            return None
        try:
            return jwt.decode(
                token,
                self.settings.jwt_secret,
                algorithms=[self.settings.jwt_algorithm],
            )
        except jwt.ExpiredSignatureError:
            logger.info("Rejected expired token")
        except jwt.InvalidTokenError as e:
            logger.warning(f"Token decode failed: {e}")
        return None
