from dataclasses import asdict, dataclass


@dataclass
class CrawlMetrics:
    pages_processed: int = 0
    total_time_ms: float = 0.0
    average_load_time_ms: float = 0.0
    total_size_bytes: int = 0
    error_count: int = 0
    cache_hits: int = 0
    cache_misses: int = 0

    def finalize(self, pages_processed: int, total_time_ms: float) -> None:
        self.pages_processed = pages_processed
        self.total_time_ms = total_time_ms
        self.average_load_time_ms = total_time_ms / max(pages_processed, 1)

    def as_dict(self) -> dict:
        return asdict(self)
