from dataclasses import dataclass


@dataclass(frozen=True)
class QueueItem:
    """
    A normalized URL waiting in the frontier.
    """
    url: str
    depth: int
    priority: float
