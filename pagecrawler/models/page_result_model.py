from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from pagecrawler.errors import ErrorCode


@dataclass(frozen=True)
class PageMetrics:
    load_time_ms: float
    content_size_bytes: int


@dataclass(frozen=True)
class PageError:
    message: str
    code: ErrorCode
    retries: int = 0


@dataclass(frozen=True)
class PageResult:
    """
    Outcome of processing one frontier URL: either content or an error.
    """
    url: str
    depth: int
    content: str = ""
    title: str = ""
    links: List[str] = field(default_factory=list)
    metrics: Optional[PageMetrics] = None
    error: Optional[PageError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.error is not None:
            data["error"]["code"] = self.error.code.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PageResult":
        metrics = data.get("metrics")
        error = data.get("error")
        return cls(
            url=data["url"],
            depth=int(data.get("depth") or 0),
            content=data.get("content") or "",
            title=data.get("title") or "",
            links=list(data.get("links") or []),
            metrics=PageMetrics(**metrics) if metrics else None,
            error=(
                PageError(
                    message=error["message"],
                    code=ErrorCode(error["code"]),
                    retries=error.get("retries", 0),
                )
                if error
                else None
            ),
        )
