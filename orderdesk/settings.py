from __future__ import annotations

import os
from datetime import timezone, tzinfo
from pathlib import Path
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ValidationError

PACKAGE_ROOT = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    app_name: str = Field(..., alias="APP_NAME")
    jwt_secret: str = Field(..., alias="JWT_SECRET")
    jwt_issuer: str = Field(..., alias="JWT_ISSUER")
    token_ttl_seconds: int = Field(..., alias="TOKEN_TTL_SECONDS")
    admin_user: str = Field(..., alias="ADMIN_USER")
    admin_password: str = Field(..., alias="ADMIN_PASSWORD")
    order_seed_path: str = Field("", alias="ORDER_SEED_PATH")
    artifact_prefix: str = Field("artifacts/orders", alias="ARTIFACT_PREFIX")
    display_timezone: str = Field("UTC", alias="DISPLAY_TIMEZONE")
    default_page_size: int = Field(10, alias="DEFAULT_PAGE_SIZE")
    stats_period_days: int = Field(30, alias="STATS_PERIOD_DAYS")
    view_idle_seconds: int = Field(1800, alias="VIEW_IDLE_SECONDS")
    max_views_per_owner: int = Field(20, alias="MAX_VIEWS_PER_OWNER")
    database_url: Optional[str] = Field(None, alias="DATABASE_URL")
    db_echo: bool = Field(False, alias="DB_ECHO")
    cors_allow_origins: str = Field("", alias="CORS_ALLOW_ORIGINS")
    request_id_header: str = Field("X-Request-Id", alias="REQUEST_ID_HEADER")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    otel_enabled: bool = Field(False, alias="OTEL_ENABLED")
    otel_service_name: str = Field("orderdesk", alias="OTEL_SERVICE_NAME")
    otel_exporter_otlp_endpoint: Optional[str] = Field(None, alias="OTEL_EXPORTER_OTLP_ENDPOINT")

    model_config = SettingsConfigDict(extra="ignore")

    @property
    def allowed_origins(self) -> List[str]:
        return [origin.strip() for origin in self.cors_allow_origins.split(",") if origin.strip()]

    @property
    def seed_path(self) -> Optional[Path]:
        if not self.order_seed_path:
            return None
        path = Path(self.order_seed_path)
        if not path.is_absolute() and not path.exists():
            path = PACKAGE_ROOT / path
        return path

    @property
    def viewer_timezone(self) -> tzinfo:
        return resolve_timezone(self.display_timezone)


def resolve_timezone(name: Optional[str]) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"Unknown timezone: {name}") from exc


def resolve_env_file() -> Optional[Path]:
    explicit = os.getenv("ORDERDESK_ENV_FILE")
    if explicit:
        return Path(explicit)
    for candidate in (Path.cwd() / "config" / "api.env", PACKAGE_ROOT / "config" / "api.env"):
        if candidate.exists():
            return candidate
    return None


def load_settings() -> Settings:
    env_file = resolve_env_file()
    if env_file:
        return Settings(_env_file=str(env_file))
    return Settings()
