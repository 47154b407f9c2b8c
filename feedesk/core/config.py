from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Gateway configuration loaded from environment variables."""

    fee_api_base_url: str = Field(..., alias="FEE_API_BASE_URL")
    http_timeout_seconds: float = Field(15.0, alias="HTTP_TIMEOUT_SECONDS")

    jwt_secret_key: str = Field(..., alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")

    cache_database_url: str = Field("sqlite+aiosqlite:///./feedesk_cache.db", alias="CACHE_DATABASE_URL")
    cache_max_age_seconds: int = Field(86400, alias="CACHE_MAX_AGE_SECONDS")

    records_page_size: int = Field(30, alias="RECORDS_PAGE_SIZE")

    checkout_brand_name: str = Field("Tutorix", alias="CHECKOUT_BRAND_NAME")
    checkout_theme_color: str = Field("#3D4F2F", alias="CHECKOUT_THEME_COLOR")
    institute_display_name: Optional[str] = Field(None, alias="INSTITUTE_DISPLAY_NAME")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    debug: bool = Field(False, alias="DEBUG")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


settings = Settings()
