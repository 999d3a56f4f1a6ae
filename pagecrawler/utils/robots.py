from typing import Dict, Optional
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

from loguru import logger


class RobotsHandler:
    """Evaluate robots.txt rules fetched with an httpx-style async client.

    Hosts that were never fetched, or whose robots.txt could not be fetched,
    are treated as "allow all".
    """

    def __init__(self, client, user_agent: str):
        self.client = client
        self.user_agent = user_agent
        self._parsers: Dict[str, Optional[RobotFileParser]] = {}

    # -------------------------------------------------------
    async def fetch_and_parse(self, robots_url: str) -> bool:
        """Fetch ``robots_url`` and store its rules; True when rules were loaded."""
        host = urlparse(robots_url).netloc.lower()
        parser = await self._fetch_robots(robots_url)
        self._parsers[host] = parser
        if parser is None:
            logger.info(f"No usable robots.txt at {robots_url}; allowing all paths")
            return False
        logger.info(f"Loaded robots.txt rules from {robots_url}")
        return True

    # -------------------------------------------------------
    def is_allowed(self, url: str) -> bool:
        host = urlparse(url).netloc.lower()
        parser = self._parsers.get(host)
        if parser is None:
            return True
        return parser.can_fetch(self.user_agent, url)

    # -------------------------------------------------------
    async def _fetch_robots(self, robots_url: str) -> Optional[RobotFileParser]:
        try:
            response = await self.client.get(
                robots_url,
                headers={"User-Agent": self.user_agent},
            )

            # 404 → allow
            if response.status_code == 404:
                return None

            # 5xx → allow
            if response.status_code >= 500:
                return None

            text = getattr(response, "text", "")

            parser = RobotFileParser()
            parser.parse(text.splitlines())
            parser.modified()
            return parser

        except Exception as exc:
            logger.warning(f"Failed to fetch robots.txt from {robots_url}: {exc}")
            return None
