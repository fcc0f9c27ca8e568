"""
Member Portal - Configuration Management

Centralized configuration for environment variables, CORS, and deployment settings.
This module ensures:
- No hardcoded secrets
- Environment-specific settings (dev/staging/prod)
- Secure defaults for the bank feed, SSO and email integrations
"""

from typing import List
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
import logging

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses pydantic-settings for validation and type coercion.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # ==================== ENVIRONMENT ====================
    ENVIRONMENT: str = Field(
        default="development",
        description="Runtime environment: development, staging, production"
    )
    DEBUG: bool = Field(
        default=False,
        description="Enable debug mode (auto-enabled in development)"
    )
    BASE_URL: str = Field(
        default="http://localhost:8000",
        description="Public URL of the portal (used in emails)"
    )

    # ==================== DATABASE ====================
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./data/portal.db",
        description="SQLAlchemy async URL (sqlite+aiosqlite or postgresql+asyncpg)"
    )

    # ==================== AUTHENTICATION (SSO) ====================
    OIDC_ISSUER: str = Field(
        default="",
        description="Issuer of the SSO access tokens, e.g. https://sso.example.org/realms/members"
    )
    OIDC_AUDIENCE: str = Field(
        default="",
        description="Expected audience claim (empty disables the audience check)"
    )
    OIDC_SIGNING_KEY: str = Field(
        default="",
        description="Shared secret or PEM public key used to verify access tokens"
    )
    OIDC_ALGORITHMS: str = Field(
        default="RS256",
        description="Comma-separated list of accepted signing algorithms"
    )
    ADMIN_ROLE: str = Field(
        default="memberportal_admin",
        description="Role name granting access to the admin API"
    )

    # ==================== CORS ====================
    CORS_ORIGINS: str = Field(
        default="",
        description="Comma-separated list of allowed origins"
    )

    # ==================== BANK ====================
    BANK_FIO_TOKEN: str = Field(
        default="",
        description="Fio bank API token (read-only)"
    )
    BANK_FIO_BASE_URL: str = Field(
        default="https://fioapi.fio.cz/v1/rest",
        description="Fio bank REST API base URL"
    )
    BANK_IBAN: str = Field(
        default="",
        description="Organization account IBAN (used for QR payment codes)"
    )
    BANK_BIC: str = Field(
        default="",
        description="Organization bank BIC/SWIFT code"
    )
    SYNC_DAYS_BACK: int = Field(
        default=90,
        description="How many days of bank history the daily sync fetches"
    )

    # ==================== EMAIL ====================
    EMAIL_API_KEY: str = Field(
        default="",
        description="Resend API key (empty disables outbound email)"
    )
    EMAIL_FROM_ADDRESS: str = Field(
        default="",
        description="Sender address for notifications"
    )

    # ==================== OBSERVABILITY ====================
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking"
    )
    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level: DEBUG, INFO, WARNING, ERROR"
    )

    # ==================== API ====================
    API_TITLE: str = Field(
        default="Member Portal API",
        description="API title for OpenAPI docs"
    )
    API_VERSION: str = Field(
        default="1.0.0",
        description="API version"
    )

    # ==================== COMPUTED PROPERTIES ====================

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() == "development"

    @property
    def cors_origins_list(self) -> List[str]:
        """
        Parse CORS_ORIGINS into a list with environment-aware defaults.

        Development also allows the usual localhost frontends.
        """
        if self.CORS_ORIGINS and self.CORS_ORIGINS != "*":
            origins = [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]
        else:
            origins = []

        dev_origins = [
            "http://localhost:3000",
            "http://localhost:5173",
            "http://localhost:8000",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ]

        all_origins = set(origins + [self.BASE_URL])
        if not self.is_production:
            all_origins.update(dev_origins)

        return list(all_origins)

    @property
    def oidc_algorithms_list(self) -> List[str]:
        return [a.strip() for a in self.OIDC_ALGORITHMS.split(",") if a.strip()]

    @property
    def debug_enabled(self) -> bool:
        """Enable debug in development or when explicitly set"""
        return self.DEBUG or self.is_development

    def validate_production_config(self) -> List[str]:
        """
        Validate configuration for production deployment.
        Returns list of validation errors.
        """
        errors = []

        if not self.OIDC_SIGNING_KEY:
            errors.append("OIDC_SIGNING_KEY is required")
        if not self.OIDC_ISSUER:
            errors.append("OIDC_ISSUER is required")

        if self.is_production:
            if self.CORS_ORIGINS == "*":
                errors.append("CORS_ORIGINS cannot be '*' in production")

            if self.DEBUG:
                errors.append("DEBUG should be False in production")

        return errors


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Settings are loaded once and cached for the application lifetime.
    """
    settings = Settings()

    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Debug: {settings.debug_enabled}")

    if settings.is_production:
        errors = settings.validate_production_config()
        if errors:
            for error in errors:
                logger.error(f"Configuration error: {error}")
            raise ValueError(f"Production configuration invalid: {', '.join(errors)}")

    return settings


# ==================== CORS CONFIGURATION ====================

def get_cors_config() -> dict:
    """
    Get CORS middleware configuration.

    Returns configuration dict for CORSMiddleware.
    """
    settings = get_settings()

    return {
        "allow_origins": settings.cors_origins_list,
        "allow_credentials": True,
        "allow_methods": ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        "allow_headers": [
            "Authorization",
            "Content-Type",
            "Accept",
            "Origin",
            "X-Requested-With",
            "X-Request-ID",
        ],
        "expose_headers": ["X-Request-ID"],
        "max_age": 600,  # Cache preflight for 10 minutes
    }


# ==================== ENVIRONMENT VALIDATION ====================

def validate_environment() -> dict:
    """
    Validate required environment variables.

    Returns a status dict with validation results.
    """
    settings = get_settings()

    status = {
        "valid": True,
        "environment": settings.ENVIRONMENT,
        "errors": [],
        "warnings": [],
        "variables": {}
    }

    optional_vars = [
        ("BANK_FIO_TOKEN", settings.BANK_FIO_TOKEN, "Bank sync disabled"),
        ("BANK_IBAN", settings.BANK_IBAN, "QR payment codes disabled"),
        ("EMAIL_API_KEY", settings.EMAIL_API_KEY, "Outbound email disabled"),
        ("SENTRY_DSN", settings.SENTRY_DSN, "Error tracking disabled"),
    ]

    for name, value, warning in optional_vars:
        if not value:
            status["warnings"].append(warning)
            status["variables"][name] = "⚠ Not set"
        else:
            status["variables"][name] = "✓ Set"

    errors = settings.validate_production_config()
    if errors:
        status["errors"].extend(errors)
        status["valid"] = False

    return status
