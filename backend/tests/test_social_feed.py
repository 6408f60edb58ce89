"""Tests for the social feed reader."""

import httpx
import pytest

from newsroom.services.social_feed import GET_FEED_PATH, SocialFeedFetcher

FEED_URI = "at://did:plc:abc/app.bsky.feed.generator/local"


def _item(text, created="2024-03-04T12:00:00.000Z", did="did:plc:author"):
    return {
        "post": {
            "author": {"did": did, "handle": "someone.bsky.social"},
            "record": {"text": text, "createdAt": created},
            "indexedAt": created,
        }
    }


def _fetcher(handler):
    return SocialFeedFetcher(
        "https://public.api.example/", FEED_URI, transport=httpx.MockTransport(handler)
    )


@pytest.mark.unit
class TestSocialFeedFetcher:
    @pytest.mark.asyncio
    async def test_single_page(self):
        requests = []

        def handler(request: httpx.Request):
            requests.append(request)
            return httpx.Response(200, json={"feed": [_item("Hello"), _item("World")]})

        messages = await _fetcher(handler).fetch_latest_messages(10)

        assert [m.text for m in messages] == ["Hello", "World"]
        assert messages[0].author == "did:plc:author"
        assert messages[0].time == 1709553600000
        assert requests[0].url.path == GET_FEED_PATH
        assert requests[0].url.params["feed"] == FEED_URI
        assert requests[0].url.params["limit"] == "10"

    @pytest.mark.asyncio
    async def test_follows_cursor_until_enough_messages(self):
        pages = {
            None: {"feed": [_item(f"Post {i}") for i in range(100)], "cursor": "page2"},
            "page2": {"feed": [_item(f"Post {i}") for i in range(100, 200)], "cursor": "page3"},
        }
        seen_limits = []

        def handler(request: httpx.Request):
            seen_limits.append(request.url.params["limit"])
            return httpx.Response(200, json=pages[request.url.params.get("cursor")])

        messages = await _fetcher(handler).fetch_latest_messages(150)

        assert len(messages) == 150
        assert messages[-1].text == "Post 149"
        assert seen_limits == ["100", "50"]

    @pytest.mark.asyncio
    async def test_stops_when_cursor_missing(self):
        def handler(request: httpx.Request):
            return httpx.Response(200, json={"feed": [_item("Only one")]})

        messages = await _fetcher(handler).fetch_latest_messages(50)

        assert len(messages) == 1

    @pytest.mark.asyncio
    async def test_items_without_text_are_skipped(self):
        def handler(request: httpx.Request):
            return httpx.Response(
                200, json={"feed": [{"post": {"record": {}}}, _item("Kept", created="bad")]}
            )

        messages = await _fetcher(handler).fetch_latest_messages(5)

        assert [m.text for m in messages] == ["Kept"]
        assert messages[0].time == 0

    @pytest.mark.asyncio
    async def test_http_error_returns_empty(self):
        def handler(request: httpx.Request):
            return httpx.Response(502, json={"error": "UpstreamFailure"})

        assert await _fetcher(handler).fetch_latest_messages(5) == []

    @pytest.mark.asyncio
    async def test_network_error_returns_empty(self):
        def handler(request: httpx.Request):
            raise httpx.ConnectError("connection refused")

        assert await _fetcher(handler).fetch_latest_messages(5) == []

    @pytest.mark.asyncio
    async def test_zero_requested(self):
        def handler(request: httpx.Request):
            raise AssertionError("no request expected")

        assert await _fetcher(handler).fetch_latest_messages(0) == []
