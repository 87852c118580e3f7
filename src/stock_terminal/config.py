"""Configuration management via environment variables.

Reads from .env file (via pydantic-settings) with sensible defaults.
All values can be overridden via environment variables.

Required:
    TWELVEDATA_API_KEY  — API key for https://twelvedata.com market data

Optional:
    CACHE_TTL_DAYS  — How long merged financial statements stay cached
    DATA_DIR        — Directory holding the US/SA stock catalog JSON files
    PORT            — HTTP server port
"""

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # TwelveData market-data API
    twelvedata_api_key: str = ""
    twelvedata_base_url: str = "https://api.twelvedata.com"
    request_timeout: float = 30.0
    request_retries: int = 2

    # Statement cache (prices and valuations are never cached)
    cache_ttl_days: float = 30
    cache_dir: Path = Path("data/cache")

    # Industry-grouped stock catalogs
    data_dir: Path = Path("data")
    us_catalog_file: str = "sp500_grouped_by_industry.json"
    sa_catalog_file: str = "tasi_grouped_by_industry.json"

    # HTTP server
    port: int = 5175
    log_level: str = "INFO"
    allowed_origins: str = "*"

    # Strip whitespace and quotes from string fields; the .env file often has
    # trailing spaces or quotes around keys
    @field_validator("twelvedata_api_key", "twelvedata_base_url", mode="before")
    @classmethod
    def strip_whitespace(cls, v: str) -> str:
        if isinstance(v, str):
            return v.strip().strip('"').strip("'").strip()
        return v

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @property
    def cache_ttl_seconds(self) -> float:
        return self.cache_ttl_days * 24 * 60 * 60

    @property
    def origins(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]


_config: Settings | None = None


def get_config() -> Settings:
    """Get or create the shared Settings singleton."""
    global _config
    if _config is None:
        _config = Settings()
    return _config
