"""HTTP fetcher for syndication feeds."""
import asyncio
import logging
from typing import Optional
import aiohttp
from shared.config import settings
from shared.exceptions import FetchError

logger = logging.getLogger(__name__)


class FeedFetcher:
    """Downloads raw feed documents.

    Failures are raised as FetchError; retrying is left to the task queue.
    """

    def __init__(self, timeout: Optional[int] = None, user_agent: Optional[str] = None):
        self.timeout = timeout or settings.fetch_timeout
        self.headers = {
            "User-Agent": user_agent or settings.fetch_user_agent,
            "Accept": "application/rss+xml,application/atom+xml,application/xml;q=0.9,text/xml;q=0.8,*/*;q=0.5",
            "Accept-Encoding": "gzip, deflate",
        }

    async def fetch(self, url: str) -> bytes:
        """Fetch the feed at ``url`` and return its body."""
        logger.info(f"Fetching feed from: {url}")
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers=self.headers
            ) as session:
                async with session.get(url) as response:
                    if not 200 <= response.status < 300:
                        raise FetchError(
                            url,
                            f"HTTP Error {response.status} fetching {url}",
                            status=response.status
                        )
                    body = await response.read()

        except asyncio.TimeoutError as e:
            raise FetchError(url, f"Timeout after {self.timeout} seconds fetching {url}") from e
        except aiohttp.ClientError as e:
            raise FetchError(url, f"Network error fetching {url}: {str(e)}") from e

        logger.info(f"Fetched {len(body)} bytes from {url}")
        return body
