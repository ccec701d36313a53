"""Configuration models."""

from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvSettings(BaseSettings):
    """Settings loaded from .env file (backend endpoint and public key)."""

    supabase_url: Optional[str] = Field(
        None,
        description="Base URL of the Supabase project",
        validation_alias=AliasChoices("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
    )
    supabase_anon_key: Optional[str] = Field(
        None,
        description="Public (anon) API key of the Supabase project",
        validation_alias=AliasChoices("SUPABASE_ANON_KEY", "NEXT_PUBLIC_SUPABASE_ANON_KEY"),
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @property
    def is_configured(self) -> bool:
        """Whether both the project URL and the public key are present."""
        return bool(self.supabase_url and self.supabase_anon_key)


class AppConfig(BaseModel):
    """Application configuration from config.yaml."""

    # Server settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: Optional[int] = Field(None, description="Server port (8000 if None)")
    log_level: str = Field(default="INFO", description="Logging level")
    allowed_origins: List[str] = Field(
        default_factory=list, description="Browser origins allowed by CORS"
    )

    # Session gate
    protected_path: str = Field(
        default="/dashboard", description="Root of the area that requires a session"
    )
    login_path: str = Field(default="/login", description="Sign-in page path")

    # Session cookies
    cookie_prefix: str = Field(default="sb", description="Prefix of session cookie names")
    cookie_secure: bool = Field(default=False, description="Mark session cookies Secure")
    cookie_max_age_seconds: int = Field(
        default=60 * 60 * 24 * 7, ge=60, description="Lifetime of session cookies"
    )

    # Identity provider
    site_url: Optional[str] = Field(
        None, description="Public base URL used for OAuth redirects (request URL if None)"
    )
    oauth_provider: str = Field(default="google", description="Default OAuth provider")

    # Outbound calls
    request_timeout_seconds: float = Field(default=10.0, gt=0, le=120)

    # Change feed
    change_feed_keepalive_seconds: float = Field(default=15.0, gt=0, le=300)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "host": "127.0.0.1",
            "port": 8000,
            "log_level": "INFO",
            "protected_path": "/dashboard",
            "login_path": "/login",
            "cookie_prefix": "sb",
            "cookie_secure": True,
            "site_url": "https://vault.example.com",
            "oauth_provider": "google",
            "allowed_origins": ["https://vault.example.com"],
        }
    })

    @field_validator("protected_path", "login_path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        """Gate paths must be absolute and carry no trailing slash."""
        if not v.startswith("/"):
            raise ValueError("Path must start with '/'")
        if len(v) > 1:
            v = v.rstrip("/")
        return v

    @field_validator("cookie_prefix")
    @classmethod
    def validate_cookie_prefix(cls, v: str) -> str:
        """Validate cookie prefix contains only safe characters."""
        import re

        if not re.match(r'^[a-zA-Z0-9_-]+$', v):
            raise ValueError(
                "Cookie prefix must contain only letters, numbers, dashes, and underscores"
            )
        return v

    @property
    def session_cookie_name(self) -> str:
        return f"{self.cookie_prefix}-auth-token"

    @property
    def verifier_cookie_name(self) -> str:
        return f"{self.session_cookie_name}-code-verifier"
