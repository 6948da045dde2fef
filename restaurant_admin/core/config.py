import json
from typing import List, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_list(value: Union[str, List[str], None], *, name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        if not value.strip():
            return []
        if value.startswith("["):
            parsed = json.loads(value)
            if not isinstance(parsed, list):
                raise ValueError(f"{name} JSON value must be a list")
            return [str(i).strip() for i in parsed if str(i).strip()]
        return [i.strip() for i in value.split(",") if i.strip()]
    if isinstance(value, list):
        return [str(i).strip() for i in value if str(i).strip()]
    raise ValueError(value)


class Settings(BaseSettings):
    app_name: str = "Restaurant Admin Backend"
    env: str = "dev"
    log_level: str = "INFO"

    # DATABASE
    database_url: str
    db_pool_size: int = Field(default=10, ge=1, le=100)
    db_max_overflow: int = Field(default=20, ge=0, le=200)
    db_pool_timeout_seconds: int = Field(default=30, ge=1, le=300)
    db_pool_recycle_seconds: int = Field(default=1800, ge=30, le=86_400)

    # CATALOG
    required_languages: List[str] = Field(default_factory=lambda: ["th", "en"])

    # ORDERS
    order_number_prefix: str = Field(default="ORD", min_length=1, max_length=10)
    order_strict_transitions: bool = False
    order_transition_max_attempts: int = Field(default=3, ge=1, le=20)
    order_history_limit: int = Field(default=100, ge=1, le=1000)

    # DASHBOARD
    business_timezone: str = "Asia/Bangkok"
    dashboard_recent_orders_limit: int = Field(default=10, ge=1, le=100)

    # CORS
    cors_origins: List[str] = Field(default_factory=lambda: ["http://localhost:5173"])
    cors_origin_regex: str | None = None

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> List[str]:
        return _split_list(v, name="CORS_ORIGINS")

    @field_validator("required_languages", mode="before")
    @classmethod
    def assemble_required_languages(cls, v: Union[str, List[str]]) -> List[str]:
        languages = [item.lower() for item in _split_list(v, name="REQUIRED_LANGUAGES")]
        for tag in languages:
            if len(tag) != 2 or not tag.isalpha():
                raise ValueError(f"Language tags must be two letters, got '{tag}'")
        return languages

    @field_validator("business_timezone")
    @classmethod
    def validate_business_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone '{value}'") from exc
        return value

    @model_validator(mode="after")
    def validate_production_safety(self) -> "Settings":
        env_value = self.env.lower().strip()
        if env_value not in {"prod", "production"}:
            return self

        if "*" in self.cors_origins:
            raise ValueError("CORS_ORIGINS cannot contain '*' in production")
        if self.cors_origin_regex:
            raise ValueError("CORS_ORIGIN_REGEX cannot be set in production")
        if self.database_url.lower().startswith("sqlite"):
            raise ValueError("DATABASE_URL cannot point at SQLite in production")

        return self

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        enable_decoding=False,
    )


settings = Settings()
