from datetime import datetime
from typing import List, Optional
import logging

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
GET_FEED_PATH = "/xrpc/app.bsky.feed.getFeed"


class SocialMessage(BaseModel):
    author: str
    text: str
    time: int  # milliseconds since epoch


class SocialFeedFetcher:
    """
    Reads the newest posts of a public Bluesky feed generator.

    Any network or decoding error yields an empty list so that generation
    can proceed without social context.
    """

    def __init__(
        self,
        api_base: str,
        feed_uri: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_base = api_base.rstrip("/")
        self.feed_uri = feed_uri
        self.timeout = timeout
        self.transport = transport

    async def fetch_latest_messages(self, n: int) -> List[SocialMessage]:
        if n <= 0:
            return []

        messages: List[SocialMessage] = []
        cursor = None
        try:
            async with httpx.AsyncClient(
                base_url=self.api_base, timeout=self.timeout, transport=self.transport
            ) as client:
                while len(messages) < n:
                    params = {
                        "feed": self.feed_uri,
                        "limit": min(MAX_PAGE_SIZE, n - len(messages)),
                    }
                    if cursor:
                        params["cursor"] = cursor

                    response = await client.get(GET_FEED_PATH, params=params)
                    response.raise_for_status()
                    data = response.json()

                    page = [self._parse_item(item) for item in data.get("feed", [])]
                    messages.extend(m for m in page if m is not None)

                    cursor = data.get("cursor")
                    if not cursor or not page:
                        break
        except httpx.HTTPStatusError as e:
            logger.warning(f"Feed request failed with status {e.response.status_code}")
            return []
        except Exception as e:
            logger.warning(f"Failed to fetch social feed: {str(e)}")
            return []

        logger.debug(f"Fetched {len(messages)} social messages")
        return messages[:n]

    @staticmethod
    def _parse_item(item: dict) -> Optional[SocialMessage]:
        post = item.get("post") or {}
        record = post.get("record") or {}
        text = record.get("text")
        if not text:
            return None

        created = record.get("createdAt") or post.get("indexedAt")
        try:
            time_ms = int(
                datetime.fromisoformat(created.replace("Z", "+00:00")).timestamp() * 1000
            )
        except (AttributeError, ValueError):
            time_ms = 0

        author = post.get("author") or {}
        return SocialMessage(
            author=author.get("did") or author.get("handle") or "", text=text, time=time_ms
        )
