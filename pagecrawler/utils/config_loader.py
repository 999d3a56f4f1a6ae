import os
from typing import Any, Dict, Optional

import yaml

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from pagecrawler.utils.env_loader import load_environment


DEFAULT_USER_AGENT = "PageCrawler/1.0"
DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "../../config/config.yaml")


class ResourceLimits(BaseModel):
    model_config = ConfigDict(frozen=True)

    max_memory_mb: float = Field(2000, gt=0)
    max_cpu_percent: float = Field(80, gt=0)
    max_bandwidth: float = Field(10, gt=0)


class CrawlOptions(BaseModel):
    """Per-run crawl settings; immutable once the crawler is built."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(3, gt=0)
    retry_delay_ms: float = Field(1000, gt=0)
    timeout_ms: float = Field(30000, gt=0)
    max_depth: int = Field(3, gt=0)
    concurrency: int = Field(5, ge=1)
    respect_robots_txt: bool = True
    cache_enabled: bool = True
    cache_ttl: int = Field(3600, gt=0)
    resource_limits: ResourceLimits = Field(default_factory=ResourceLimits)


class Config(BaseSettings):
    start_url: Optional[str] = None

    max_retries: int = 3
    retry_delay_ms: float = 1000
    timeout_ms: float = 30000
    max_depth: int = 3
    concurrency: int = 5
    respect_robots_txt: bool = True
    cache_enabled: bool = True
    cache_ttl: int = 3600

    max_memory_mb: float = 2000
    max_cpu_percent: float = 80
    max_bandwidth: float = 10

    max_pages_per_browser: int = 5
    health_check_interval: float = 30.0
    acquire_poll_interval: float = 1.0
    acquire_timeout: Optional[float] = None
    rate_limit_interval_ms: float = 1000

    redis_url: Optional[str] = None
    crawler_user_agent: str = DEFAULT_USER_AGENT
    metrics_port: Optional[int] = None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = "INFO"
    log_path: Optional[str] = None


def _load_yaml_config() -> Dict[str, Any]:
    config_path = os.getenv("CRAWLER_CONFIG_PATH") or DEFAULT_CONFIG_PATH
    if not os.path.exists(config_path):
        return {}

    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


def load_config() -> Config:
    """Build the runtime config: environment, then config.yaml, then defaults."""
    load_environment()
    file_data = _load_yaml_config()
    crawler_settings: Dict[str, Any] = file_data.get("crawler") or {}

    overrides: Dict[str, Any] = {}
    for name in Config.model_fields:
        if os.getenv(name.upper()) is not None:
            # BaseSettings reads it from the environment itself
            continue
        if crawler_settings.get(name) is not None:
            overrides[name] = crawler_settings[name]

    # User-agent precedence: env -> config file -> default
    user_agent = os.getenv("CRAWLER_USER_AGENT") or crawler_settings.get("user_agent")
    if user_agent:
        overrides["crawler_user_agent"] = user_agent

    return Config(**overrides)


def build_crawl_options(config: Config) -> CrawlOptions:
    return CrawlOptions(
        max_retries=config.max_retries,
        retry_delay_ms=config.retry_delay_ms,
        timeout_ms=config.timeout_ms,
        max_depth=config.max_depth,
        concurrency=config.concurrency,
        respect_robots_txt=config.respect_robots_txt,
        cache_enabled=config.cache_enabled,
        cache_ttl=config.cache_ttl,
        resource_limits=ResourceLimits(
            max_memory_mb=config.max_memory_mb,
            max_cpu_percent=config.max_cpu_percent,
            max_bandwidth=config.max_bandwidth,
        ),
    )
