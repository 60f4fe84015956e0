# /chatbotflex/config/settings.py

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # MongoDB
    mongo_uri: str = "mongodb://localhost:27017/chatbotflex"
    max_pool_size: int = 10
    min_pool_size: int = 1
    mongo_tls: bool = False

    # Redis
    redis_url: str = "redis://localhost:6379"
    processed_message_ttl_seconds: int = 300

    # Graph API (shared by WhatsApp Cloud API and Instagram messaging)
    graph_api_url: str = "https://graph.facebook.com/v18.0"

    # WhatsApp
    whatsapp_access_token: str | None = None
    whatsapp_phone_id: str | None = None
    whatsapp_verify_token: str
    whatsapp_app_secret: str

    # Instagram
    instagram_access_token: str | None = None
    instagram_page_id: str | None = None
    instagram_verify_token: str | None = None
    instagram_app_secret: str | None = None

    # Security
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_hours: int = 24
    admin_password_hash: str
    api_key: str | None = None

    # Bot behaviour
    default_department: str = "Geral"
    waiting_queue_interval_seconds: int = 30

    # Inactivity auto-close
    auto_close_enabled: bool = True
    auto_close_inactivity_minutes: int = 60
    auto_close_send_warning: bool = True
    auto_close_warning_minutes: int = 10
    auto_close_interval_seconds: int = 300

    # Deployment
    environment: str = Field(default="production")
    api_version: str = "v1"
    workers: int = 4
    cors_allowed_origins: str = "http://localhost:3000"

    # Limits
    rate_limit_per_minute: int = 100
    auth_rate_limit_per_minute: int = 5

    # ---------------- Validators ---------------- #

    @field_validator("jwt_secret_key")
    @classmethod
    def key_length_must_be_sufficient(cls, v):
        if len(v) < 32:
            raise ValueError("JWT secret key must be at least 32 characters long")
        return v

    @field_validator("whatsapp_phone_id")
    @classmethod
    def phone_id_must_be_digits(cls, v):
        if v is not None and not v.isdigit():
            raise ValueError("WHATSAPP_PHONE_ID must contain only digits")
        return v

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
