"""Authorization settings using Pydantic Settings.

Centralized configuration for the permission engine: cache lifetimes,
check-result caching, client reconciliation timing and token consumption.

SECURITY: Production requires AUTHZ_JWT_SECRET (min 32 chars). Tokens are
only verified here, never issued.
"""

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class AuthzSettings(BaseSettings):
    """Authorization engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="AUTHZ_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = Field(default="development", description="Environment name")

    # Permission cache (absolute lifetimes + shared sliding window)
    effective_ttl_seconds: int = Field(default=900, ge=1, description="Effective-set lifetime (15 min)")
    role_ttl_seconds: int = Field(default=1800, ge=1, description="Role grant-set lifetime (30 min)")
    user_ttl_seconds: int = Field(default=1800, ge=1, description="User override-set lifetime (30 min)")
    sliding_ttl_seconds: int = Field(default=300, ge=1, description="Idle eviction window (5 min)")
    cache_max_entries: int = Field(default=10000, ge=1, description="LRU bound per in-process cache")

    # Authorization check results
    check_ttl_seconds: int = Field(default=300, ge=1, description="Check-result lifetime (5 min)")
    check_sliding_seconds: int = Field(default=120, ge=1, description="Check-result idle window (2 min)")

    # Client reconciliation
    pending_staleness_seconds: float = Field(default=5.0, gt=0, description="Pending toggle max age")
    pending_sweep_interval_seconds: float = Field(default=2.0, gt=0, description="Stale sweep period")

    # Principal
    super_admin_role: str = Field(default="SuperAdmin", description="Role claim marking a super-admin")
    jwt_secret: Optional[str] = Field(default=None, description="Bearer token verification key")
    jwt_algorithm: str = Field(default="HS256", description="Bearer token algorithm")
    tenant_header: str = Field(default="X-Clinic-Id", description="Tenant fallback header")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod", "staging")

    def validate_production_security(self) -> List[str]:
        """Return a list of configuration problems that block a production start."""
        errors = []
        if self.is_production:
            if not self.jwt_secret:
                errors.append("AUTHZ_JWT_SECRET must be set in production")
            elif len(self.jwt_secret) < 32:
                errors.append("AUTHZ_JWT_SECRET must be at least 32 characters")
        return errors


@lru_cache
def get_settings() -> AuthzSettings:
    """
    Get cached authorization settings instance.

    Returns:
        AuthzSettings: Cached settings loaded from environment.
    """
    settings = AuthzSettings()
    for problem in settings.validate_production_security():
        logger.error(problem)
    return settings
