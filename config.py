"""Application configuration, read from the environment via pydantic-settings.

Invariants:
    - Secrets come from environment variables or a local .env file
    - get_settings() is cached, one Settings instance per process
"""

from functools import lru_cache
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False)

    # Database
    database_url: str = "mongodb://localhost:27017"
    database_name: str = "grocery_app"

    # Auth
    jwt_secret: str = "devsecret"
    jwt_expires_days: int = 30
    jwt_issuer: str = "grocery-app"
    jwt_audience: str = "grocery-users"

    # API
    cors_origins: List[str] = ["*"]
    port: int = 8000

    # Observability
    log_level: str = "INFO"
    log_format: str = "json"

    # Uploads
    upload_dir: str = "uploads"
    max_file_size: int = 5 * 1024 * 1024
    allowed_image_types: List[str] = [
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
    ]

    # Pagination
    max_page_size: int = 100

    # Orders
    free_delivery_threshold: float = 500
    delivery_fee: float = 40
    estimated_delivery_hours: int = 24
    order_number_prefix: str = "HRA"
    merchant_name: str = "Fresh Grocery Store"


@lru_cache
def get_settings() -> Settings:
    return Settings()
