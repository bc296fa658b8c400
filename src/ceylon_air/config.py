"""Configuration settings for the air quality fusion service."""

import logging
import os
from typing import Dict, Final, List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Provider credentials
IQAIR_API_KEY: str = os.getenv("IQAIR_API_KEY", "")
OPENWEATHER_API_KEY: str = os.getenv("OPENWEATHER_API_KEY", "")
WEATHERAPI_API_KEY: str = os.getenv("WEATHERAPI_API_KEY", "")

# Provider base URLs
IQAIR_BASE_URL: str = os.getenv("IQAIR_BASE_URL", "https://api.airvisual.com/v2")
OPENWEATHER_BASE_URL: str = os.getenv("OPENWEATHER_BASE_URL", "https://api.openweathermap.org/data/2.5")
WEATHERAPI_BASE_URL: str = os.getenv("WEATHERAPI_BASE_URL", "https://api.weatherapi.com/v1")

REQUEST_TIMEOUT_SECONDS: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "10"))
USER_AGENT: Final[str] = "CeylonAir/0.1 (air-quality-fusion)"

# Default location (Colombo)
DEFAULT_LAT: Final[float] = 6.9271
DEFAULT_LON: Final[float] = 79.8612
DEFAULT_CITY: Final[str] = "Colombo, Sri Lanka"

# Monitored location; falls back to the default city when unset or unresolvable
LOCATION_CITY: str = os.getenv("LOCATION_CITY", "")
LOCATION_LAT: str = os.getenv("LOCATION_LAT", "")
LOCATION_LON: str = os.getenv("LOCATION_LON", "")
LOCATION_FALLBACK_ENABLED: bool = os.getenv("LOCATION_FALLBACK_ENABLED", "true").lower() == "true"
GEOCODING_USER_AGENT: Final[str] = "ceylon-air-geocoder"

# Server configuration
HOST: str = os.getenv("HOST", "0.0.0.0")
PORT: int = int(os.getenv("PORT", "8000"))
DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"

# Redis store configuration
REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")
CACHE_PREFIX: str = os.getenv("CACHE_PREFIX", "ceylon-air")

# Fetch scheduling
FETCH_INTERVAL_MS: int = int(os.getenv("FETCH_INTERVAL_MS", str(60 * 60 * 1000)))  # 1 hour
SCHEDULER_TICK_SECONDS: int = int(os.getenv("SCHEDULER_TICK_SECONDS", "300"))
SCHEDULER_ENABLED: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

# Cache retention
CACHE_MAX_AGE_MS: Final[int] = 2 * 60 * 60 * 1000
HISTORY_RETENTION_MS: Final[int] = 7 * 24 * 60 * 60 * 1000

# Alerting
DEFAULT_AQI_THRESHOLD: int = int(os.getenv("DEFAULT_AQI_THRESHOLD", "150"))
DEFAULT_UV_THRESHOLD: int = int(os.getenv("DEFAULT_UV_THRESHOLD", "8"))
ALERT_HISTORY_LIMIT: int = int(os.getenv("ALERT_HISTORY_LIMIT", "50"))
NOTIFICATION_WEBHOOK_URL: str = os.getenv("NOTIFICATION_WEBHOOK_URL", "")


def validate_api_keys(keys: Optional[Dict[str, str]] = None) -> List[str]:
    """Report providers whose API key is missing or still a placeholder.

    Missing keys are not fatal: the affected provider simply fails on every
    fetch and the fusion runs on the remaining sources.

    Args:
        keys: Mapping of provider name to key (defaults to configured keys)

    Returns:
        Names of providers without a usable key
    """
    if keys is None:
        keys = {
            "IQAIR": IQAIR_API_KEY,
            "OPENWEATHER": OPENWEATHER_API_KEY,
            "WEATHERAPI": WEATHERAPI_API_KEY,
        }

    missing = [name for name, key in keys.items() if not key or key.startswith("your_")]
    if missing:
        logger.warning(f"Missing API keys for: {', '.join(missing)}")
        logger.warning("Providers without a key will be skipped during fusion")
    return missing
