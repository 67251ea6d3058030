"""
Configuration settings for the application
"""
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings

DEFAULT_APP_URL = "http://localhost:5173"


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Stripe billing configuration
    stripe_secret_key: Optional[str] = Field(default=None, alias="STRIPE_SECRET_KEY")
    stripe_webhook_secret: Optional[str] = Field(default=None, alias="STRIPE_WEBHOOK_SECRET")
    stripe_price_id: Optional[str] = Field(default=None, alias="STRIPE_PRICE_ID")

    # Identity provider (JWT issued by the hosted auth service)
    jwt_secret_key: Optional[str] = Field(default=None, alias="JWT_SECRET_KEY")
    jwt_audience: Optional[str] = Field(default="authenticated", alias="JWT_AUDIENCE")

    # Infrastructure configuration
    redis_url: Optional[str] = Field(default=None, alias="REDIS_URL")
    database_url: Optional[str] = Field(default="sqlite+aiosqlite:///./sql_app.db", alias="DATABASE_URL")

    # Trial configuration
    trial_days: int = Field(default=14, alias="TRIAL_DAYS")

    # Email domain verification
    email_verify_rate_limit: int = Field(default=5, alias="EMAIL_VERIFY_RATE_LIMIT")
    email_verify_rate_window_seconds: int = Field(default=60, alias="EMAIL_VERIFY_RATE_WINDOW_SECONDS")
    dns_resolver_url: str = Field(default="https://dns.google/resolve", alias="DNS_RESOLVER_URL")
    dns_timeout_seconds: float = Field(default=5.0, alias="DNS_TIMEOUT_SECONDS")

    # Frontend configuration (used for checkout redirect URLs)
    app_url: Optional[str] = Field(default=None, alias="APP_URL")

    # Deployment configuration
    render: Optional[str] = Field(default=None, alias="RENDER")
    env: Optional[str] = Field(default=None, alias="ENV")

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "populate_by_name": True,
        "extra": "ignore",
    }


# Instantiate settings object
settings = Settings()

# Determine if we're in production mode
IS_PRODUCTION = bool(settings.render) or (settings.env and settings.env.lower() == "production")
