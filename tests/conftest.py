import pytest

from seocrawler.config import CrawlLimits, HttpConfig


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "crawl.db")


@pytest.fixture
def http_config():
    return HttpConfig(timeout=5, max_concurrency=2, delay_between_requests=0, retry_delay=0, image_size_probes="off")


@pytest.fixture
def limits():
    return CrawlLimits(max_requests=10, max_retries=3)
