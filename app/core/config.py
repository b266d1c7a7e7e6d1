from functools import lru_cache
from typing import Annotated

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ALLOWED_ENV_FIELD_NAMES = frozenset(
    {
        "app_name",
        "app_env",
        "app_version",
        "api_prefix",
        "allowed_origins",
        "data_store",
        "mongodb_uri",
        "mongodb_db_name",
        "mongodb_users_collection",
        "mongodb_rooms_collection",
        "mongodb_bookings_collection",
        "mongodb_connect_timeout_ms",
        "auth_secret_key",
        "auth_token_ttl_minutes",
        "default_admin_email",
        "default_admin_password",
        "default_admin_full_name",
        "calendar_timezone",
        "calendar_show_weekends",
        "notification_duration_seconds",
        "quick_booking_title",
        "next_slot_search_days",
    },
)


class Settings(BaseSettings):
    app_name: str = "Meeting Room Booking API"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    allowed_origins: Annotated[list[str], NoDecode] = [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]
    data_store: str = "mongodb"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "meeting_rooms"
    mongodb_users_collection: str = "profiles"
    mongodb_rooms_collection: str = "rooms"
    mongodb_bookings_collection: str = "bookings"
    mongodb_connect_timeout_ms: int = 2000
    auth_secret_key: str = "change-me-in-production"
    auth_token_ttl_minutes: int = 60 * 12
    default_admin_email: str = "admin"
    default_admin_password: str = "admin"
    default_admin_full_name: str = "Administrator"
    calendar_timezone: str = "UTC"
    calendar_show_weekends: bool = False
    notification_duration_seconds: int = 5
    quick_booking_title: str = "Quick Booking"
    next_slot_search_days: int = 14

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        def _filter_allowed_env_fields(source):
            return {
                field_name: raw_value
                for field_name, raw_value in source().items()
                if field_name in ALLOWED_ENV_FIELD_NAMES
            }

        return (
            init_settings,
            lambda: _filter_allowed_env_fields(env_settings),
            lambda: _filter_allowed_env_fields(dotenv_settings),
            file_secret_settings,
        )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value: str | list[str]) -> list[str]:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @field_validator("data_store", mode="before")
    @classmethod
    def normalize_data_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("calendar_timezone", mode="before")
    @classmethod
    def normalize_calendar_timezone(cls, value: str) -> str:
        return value.strip() or "UTC"

    @field_validator("auth_token_ttl_minutes", mode="before")
    @classmethod
    def normalize_auth_token_ttl(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 60 * 12
        return parsed_value

    @field_validator("notification_duration_seconds", mode="before")
    @classmethod
    def normalize_notification_duration(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 5
        return parsed_value

    @field_validator("next_slot_search_days", mode="before")
    @classmethod
    def normalize_next_slot_search_days(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 14
        return parsed_value


@lru_cache
def get_settings() -> Settings:
    return Settings()
