from pydantic_settings import BaseSettings
from pydantic import field_validator
from typing import Optional, Any
from functools import lru_cache
import json


def _parse_json_or_csv(v: Any) -> Any:
    if isinstance(v, str):
        try:
            return json.loads(v)
        except json.JSONDecodeError:
            return [item.strip() for item in v.split(',') if item.strip()]
    return v


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./marketship.db"

    # Database Connection Pool Settings
    DB_POOL_SIZE: int = 10  # Base number of connections in pool
    DB_MAX_OVERFLOW: int = 20  # Extra connections allowed beyond pool_size
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for connection from pool
    DB_POOL_RECYCLE: int = 1800  # Recycle connections after 30 minutes

    # App Settings
    APP_NAME: str = "Marketship Shipping Engine"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    SCHEDULER_ENABLED: bool = True
    SCHEDULER_TIMEZONE: str = "Asia/Kolkata"
    CORS_ORIGINS: list[str] = ["*"]

    # Redis Cache Settings (carrier auth tokens)
    REDIS_URL: Optional[str] = None  # e.g., "redis://localhost:6379/0"
    CACHE_ENABLED: bool = True
    CARRIER_TOKEN_CACHE_TTL: int = 86400  # 24 hours

    # Carrier network settings
    CARRIER_TIMEOUT_SECONDS: float = 30.0

    # Shiprocket Integration
    SHIPROCKET_ENABLED: bool = True
    SHIPROCKET_EMAIL: str = ""  # Shiprocket API user email
    SHIPROCKET_PASSWORD: str = ""  # Shiprocket API user password
    SHIPROCKET_API_URL: str = "https://apiv2.shiprocket.in/v1/external"
    SHIPROCKET_DEFAULT_PICKUP_LOCATION: str = "Primary"

    # BigShip Integration
    BIGSHIP_ENABLED: bool = True
    BIGSHIP_USERNAME: str = ""
    BIGSHIP_PASSWORD: str = ""
    BIGSHIP_ACCESS_KEY: str = ""
    BIGSHIP_API_URL: str = "https://api.bigship.in/api"
    BIGSHIP_WAREHOUSE_ID: str = ""  # Pickup warehouse registered on BigShip
    BIGSHIP_TOKEN_TTL: int = 39600  # Tokens expire after 12 hours
    BIGSHIP_LABEL_DIR: str = "./labels"  # BigShip returns labels as base64 PDFs
    BIGSHIP_LABEL_BASE_URL: str = "/labels"

    # Logistics sync
    LOGISTICS_SYNC_INTERVAL_MINUTES: int = 60
    LOGISTICS_SYNC_LOOKBACK_DAYS: int = 30
    LOGISTICS_SYNC_THROTTLE_HOURS: int = 12  # Background batch throttle per order
    LOGISTICS_MANUAL_THROTTLE_SECONDS: int = 30  # Manual refresh throttle per order
    LOGISTICS_BULK_CHUNK_SIZE: int = 50  # AWBs per multi-AWB tracking call
    LOGISTICS_SPACED_LIMIT: int = 15  # Max individually-tracked orders per carrier per run
    LOGISTICS_SPACED_DELAY_SECONDS: float = 0.2  # Pause between individual tracking calls

    # Book a label as soon as an order moves to PROCESSING
    AUTO_BOOK_ON_PROCESSING: bool = True

    # Estimate cache
    ESTIMATE_CACHE_TTL_HOURS: int = 24
    ESTIMATE_DEFAULT_ZONE: str = "A"

    # Shipping cost split (percent of base carrier cost charged to each party)
    VENDOR_SHIPPING_SHARE_PERCENT: float = 50
    RETAILER_SHIPPING_SHARE_PERCENT: float = 50

    # Hidden cap slab tables - JSON list of {"min": .., "max": .., "percent": ..}
    VENDOR_HIDDEN_CAP_SLABS: list[dict] = []
    RETAILER_HIDDEN_CAP_SLABS: list[dict] = []

    # Identities (emails) that are charged the plain share without a cap
    EXCLUDED_VENDOR_IDENTITIES: list[str] = []
    EXCLUDED_RETAILER_IDENTITIES: list[str] = []

    @field_validator(
        'CORS_ORIGINS',
        'VENDOR_HIDDEN_CAP_SLABS',
        'RETAILER_HIDDEN_CAP_SLABS',
        'EXCLUDED_VENDOR_IDENTITIES',
        'EXCLUDED_RETAILER_IDENTITIES',
        mode='before',
    )
    @classmethod
    def parse_list_settings(cls, v):
        return _parse_json_or_csv(v)

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
