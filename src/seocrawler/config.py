from __future__ import annotations
import os
import random
from dataclasses import dataclass
from urllib.parse import urlparse

DATA_DIR = os.getenv("SEOCRAWLER_DATA", os.path.abspath("./data"))

# Politeness cap on concurrent fetches against a single origin
MAX_CONCURRENCY = 8

IMAGE_SIZE_POLICIES = ("off", "sequential", "parallel")

@dataclass
class HttpConfig:
    user_agent: str = os.getenv("SEOCRAWLER_UA", "SEOCrawler/0.1 (+https://example.invalid/seocrawler)")
    timeout: float = float(os.getenv("SEOCRAWLER_TIMEOUT", "20"))
    max_concurrency: int = int(os.getenv("SEOCRAWLER_CONCURRENCY", "4"))
    delay_between_requests: float = float(os.getenv("SEOCRAWLER_DELAY", "0.1"))
    retry_delay: float = float(os.getenv("SEOCRAWLER_RETRY_DELAY", "1.0"))
    retry_backoff_factor: float = float(os.getenv("SEOCRAWLER_RETRY_BACKOFF", "2.0"))
    image_size_probes: str = os.getenv("SEOCRAWLER_IMAGE_SIZES", "off")
    use_js: bool = os.getenv("SEOCRAWLER_JS", "0") == "1"

    def __post_init__(self):
        if self.image_size_probes not in IMAGE_SIZE_POLICIES:
            raise ValueError(f"image_size_probes must be one of {IMAGE_SIZE_POLICIES}, got {self.image_size_probes!r}")

@dataclass
class CrawlLimits:
    max_requests: int = int(os.getenv("SEOCRAWLER_MAX_REQUESTS", "10"))
    max_retries: int = int(os.getenv("SEOCRAWLER_MAX_RETRIES", "3"))

def get_website_db_name(url: str) -> str:
    """Extract domain from URL and create a safe database name by replacing dots with underscores."""
    parsed = urlparse(url)
    domain = parsed.netloc.lower()
    if domain.startswith('www.'):
        domain = domain[4:]
    safe_name = domain.replace('.', '_').replace('-', '_')
    safe_name = ''.join(c if c.isalnum() or c == '_' else '_' for c in safe_name)
    return safe_name or "site"

def get_db_path(start_url: str, data_dir: str | None = None) -> str:
    """Get the crawl database path for a start URL, creating the data directory if needed."""
    data_dir = data_dir or DATA_DIR
    os.makedirs(data_dir, exist_ok=True)
    return os.path.join(data_dir, f"{get_website_db_name(start_url)}_crawl.db")

USER_AGENTS = {
    "default": "SEOCrawler/0.1 (+https://example.invalid/seocrawler)",
    "chrome": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "firefox": "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "safari": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
    "edge": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36 Edg/120.0.0.0",
    "mobile": "Mozilla/5.0 (iPhone; CPU iPhone OS 17_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Mobile/15E148 Safari/604.1"
}

def get_user_agent(ua_type: str = "default") -> str:
    """Get a user agent string by type or return a random one if 'random' is specified."""
    if ua_type == "random":
        return random.choice(list(USER_AGENTS.values()))
    return USER_AGENTS.get(ua_type, USER_AGENTS["default"])
