"""
Unified Configuration
All environment variables and settings in one place

ARCHITECTURE:
- ONE Supabase for everything (auth + integrations + file index)
- Service role key on the backend, RLS enforces tenant isolation for users
- Provider OAuth apps (Google, Microsoft, Dropbox) configured per deployment
- S3 is the destination for every mirrored file

SECURITY:
- All secrets loaded from environment variables
- No hardcoded credentials
"""
from typing import Optional
import logging
from pydantic_settings import BaseSettings
from pydantic import Field, model_validator

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Unified application settings.
    Validates all environment variables at startup.
    """

    # ============================================================================
    # SERVER
    # ============================================================================

    environment: str = Field(default="production", description="Environment: development/staging/production")
    port: int = Field(default=8080, description="Server port")
    debug: bool = Field(default=False, description="Debug mode")
    app_url: str = Field(default="http://localhost:3000", description="Public portal URL (OAuth redirects land here)")

    # ============================================================================
    # DATABASE (Supabase PostgreSQL)
    # ============================================================================

    supabase_url: str = Field(description="Supabase project URL")
    supabase_anon_key: str = Field(description="Supabase anonymous key")
    supabase_service_key: str = Field(description="Supabase service key (backend uses this)")

    # ============================================================================
    # SCHEDULER
    # ============================================================================

    cron_secret: Optional[str] = Field(default=None, description="Shared secret for the scheduled file-sync call")
    file_sync_lease_seconds: int = Field(default=300, description="How long one sync pass may hold an integration")
    provider_http_timeout: float = Field(default=60.0, description="Timeout (seconds) for provider and token calls")

    # ============================================================================
    # OAUTH PROVIDERS
    # ============================================================================

    oauth_state_secret: Optional[str] = Field(default=None, description="HMAC key for OAuth state parameters")

    google_client_id: Optional[str] = Field(default=None, description="Google OAuth client ID (Drive)")
    google_client_secret: Optional[str] = Field(default=None, description="Google OAuth client secret")

    microsoft_client_id: Optional[str] = Field(default=None, description="Microsoft OAuth client ID (OneDrive)")
    microsoft_client_secret: Optional[str] = Field(default=None, description="Microsoft OAuth client secret")

    dropbox_client_id: Optional[str] = Field(default=None, description="Dropbox app key")
    dropbox_client_secret: Optional[str] = Field(default=None, description="Dropbox app secret")

    # ============================================================================
    # OBJECT STORAGE (S3)
    # ============================================================================

    aws_region: str = Field(default="us-east-1", description="AWS region")
    aws_access_key_id: Optional[str] = Field(default=None, description="AWS access key (IAM role used if unset)")
    aws_secret_access_key: Optional[str] = Field(default=None, description="AWS secret key")
    aws_s3_bucket_name: Optional[str] = Field(default=None, description="Destination bucket for synced files")
    aws_s3_kms_key_id: Optional[str] = Field(default=None, description="KMS key for SSE (AES256 if unset)")

    # ============================================================================
    # PRODUCTION INFRASTRUCTURE
    # ============================================================================

    # Redis (job queue)
    redis_url: Optional[str] = Field(default=None, description="Redis connection URL (dramatiq broker)")

    # Error tracking (Sentry)
    sentry_dsn: Optional[str] = Field(default=None, description="Sentry DSN for error tracking")

    # ============================================================================
    # CORS
    # ============================================================================

    cors_allowed_origins: str = Field(default="http://localhost:3000", description="Comma-separated list of allowed CORS origins")

    @property
    def oauth_redirect_base(self) -> str:
        """Base URL the provider callbacks are registered under."""
        return f"{self.app_url.rstrip('/')}/api/file-integrations"

    @model_validator(mode='after')
    def validate_settings(self):
        """
        Validate critical settings at startup.

        SECURITY CHECKS:
        - Warn if running in production without Sentry
        - Warn if debug mode enabled in production
        - Warn if the scheduler or OAuth state cannot be authenticated
        """
        if self.environment == "production":
            if self.debug:
                logger.warning("⚠️  DEBUG MODE ENABLED IN PRODUCTION! This is insecure.")

            if not self.sentry_dsn:
                logger.warning("⚠️  Sentry not configured in production. Error tracking disabled.")

        if not self.cron_secret:
            logger.warning("⚠️  CRON_SECRET not set. Only super admins can trigger file sync.")

        if not self.oauth_state_secret:
            logger.warning("⚠️  OAUTH_STATE_SECRET not set. Provider connections will fail.")

        if not self.aws_s3_bucket_name:
            logger.warning("⚠️  AWS_S3_BUCKET_NAME not set. File sync uploads will fail.")

        logger.info("=" * 80)
        logger.info("KT-Portal File Sync Configuration Loaded")
        logger.info("=" * 80)
        logger.info(f"Environment: {self.environment}")
        logger.info(f"Debug: {self.debug}")
        logger.info(f"Supabase URL: {self.supabase_url}")
        logger.info(f"S3 Bucket: {self.aws_s3_bucket_name or '❌ Not configured'}")
        logger.info(f"Google Drive: {'✅ Configured' if self.google_client_id and self.google_client_secret else '❌ Not configured'}")
        logger.info(f"OneDrive: {'✅ Configured' if self.microsoft_client_id and self.microsoft_client_secret else '❌ Not configured'}")
        logger.info(f"Dropbox: {'✅ Configured' if self.dropbox_client_id and self.dropbox_client_secret else '❌ Not configured'}")
        logger.info(f"Redis: {'✅ Configured' if self.redis_url else '❌ Not configured'}")
        logger.info(f"Sentry: {'✅ Configured' if self.sentry_dsn else '❌ Not configured'}")
        logger.info("=" * 80)

        return self

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
