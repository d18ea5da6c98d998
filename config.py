from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator
from typing import Optional, Union
from functools import lru_cache
import json


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Database
    DATABASE_URL: Optional[str] = None
    DATABASE_NAME: str = "storefront"

    # App Settings
    APP_NAME: str = "Storefront API"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000

    # CORS - accepts JSON string, comma-separated, or list
    CORS_ORIGINS: Union[list[str], str] = ["*"]

    # Public storefront URL, used to build ambassador referral links
    SITE_URL: str = "https://elevee.netlify.app"

    # Admin service (separate backend with its own persistence)
    ADMIN_API_URL: str = "https://eleveadmin.netlify.app"
    ADMIN_API_KEY: str = ""
    ADMIN_API_TIMEOUT: float = 5.0  # Seconds before a remote call is treated as failed
    REDEMPTION_MAX_ATTEMPTS: int = 5

    # Ambassador program
    DEFAULT_COMMISSION_RATE: float = 50.0  # Percent of merchandise value
    DEFAULT_AMBASSADOR_DISCOUNT: float = 10.0  # Percent, when the admin record carries none

    # Inventory
    INVENTORY_WRITE_RETRIES: int = 3

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                return json.loads(v)
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @property
    def cors_origins_list(self) -> list[str]:
        if isinstance(self.CORS_ORIGINS, str):
            return [self.CORS_ORIGINS]
        return list(self.CORS_ORIGINS)


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
