from .queue_model import QueueItem
from .page_result_model import PageError, PageMetrics, PageResult
from .crawl_metrics_model import CrawlMetrics

__all__ = [
    "QueueItem",
    "PageError",
    "PageMetrics",
    "PageResult",
    "CrawlMetrics",
]
