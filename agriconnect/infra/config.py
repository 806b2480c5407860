from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    backend_url: str = Field(
        default="http://localhost:54321", validation_alias="BACKEND_URL"
    )
    backend_anon_key: Optional[str] = Field(
        default=None, validation_alias="BACKEND_ANON_KEY"
    )
    backend_timeout_seconds: float = Field(
        default=15.0, validation_alias="BACKEND_TIMEOUT_SECONDS"
    )
    produce_bucket: str = Field(
        default="produce-photos", validation_alias="PRODUCE_BUCKET"
    )
    max_image_bytes: int = Field(
        default=5 * 1024 * 1024, validation_alias="MAX_IMAGE_BYTES"
    )
    default_country_code: str = Field(
        default="256", validation_alias="DEFAULT_COUNTRY_CODE"
    )
    default_map_lat: float = Field(default=0.3476, validation_alias="DEFAULT_MAP_LAT")
    default_map_lng: float = Field(
        default=32.5825, validation_alias="DEFAULT_MAP_LNG"
    )
    home_listing_limit: int = Field(
        default=300, validation_alias="HOME_LISTING_LIMIT"
    )
    trending_listing_limit: int = Field(
        default=50, validation_alias="TRENDING_LISTING_LIMIT"
    )
    session_store: str = Field(default="sqlite", validation_alias="SESSION_STORE")
    session_store_ttl_seconds: int = Field(
        default=7 * 86400, validation_alias="SESSION_STORE_TTL_SECONDS"
    )
    session_store_path: Optional[str] = Field(
        default=None, validation_alias="SESSION_STORE_PATH"
    )
    session_cookie_secure: bool = Field(
        default=False, validation_alias="SESSION_COOKIE_SECURE"
    )
    favorites_store: str = Field(
        default="sqlite", validation_alias="FAVORITES_STORE"
    )
    favorites_store_path: Optional[str] = Field(
        default=None, validation_alias="FAVORITES_STORE_PATH"
    )
    fastapi_port: int = Field(default=8000, validation_alias="FASTAPI_PORT")
    log_path: Optional[str] = Field(default=None, validation_alias="LOG_PATH")

    @field_validator("backend_url", mode="after")
    @classmethod
    def strip_backend_url(cls, value: str) -> str:
        return value.rstrip("/") if value else value

    @field_validator("session_store", "favorites_store", mode="after")
    @classmethod
    def normalize_store(cls, value: str) -> str:
        return value.lower() if value else value


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    return AppConfig()
