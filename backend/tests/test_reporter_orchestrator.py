"""Tests for the reporter generation paths."""

from unittest.mock import patch

import pytest

from conftest import (
    FailingFeed,
    StaticFeed,
    article_payload,
    empty_article_payload,
    event_payload,
    make_completion,
)
from newsroom.schemas.entities import AdEntry, Article, Event, Reporter
from newsroom.services.social_feed import SocialMessage


def _messages(count: int):
    return [SocialMessage(author="did:plc:x", text=f"Post {i}", time=i) for i in range(1, count + 1)]


@pytest.mark.unit
class TestFeedArticles:
    @pytest.mark.asyncio
    async def test_article_is_persisted(self, context, mock_create, tenant_id, test_reporter):
        mock_create.return_value = make_completion(article_payload(message_ids=[2, 4]), 300, 200)

        article = await context.reporters.generate_article(tenant_id, test_reporter)

        assert article.id.startswith("article_")
        assert article.reporter_id == test_reporter.id
        assert article.message_ids == [2, 4]
        assert article.message_texts == ["Message number 2", "Message number 4"]
        assert article.input_token_count == 300
        assert article.prompt.startswith("System: ")
        assert context.repository.get_article(tenant_id, article.id) == article

    @pytest.mark.asyncio
    async def test_empty_response_is_not_persisted(self, context, mock_create, tenant_id, test_reporter):
        mock_create.return_value = make_completion(empty_article_payload())

        article = await context.reporters.generate_article(tenant_id, test_reporter)

        assert article is None
        assert context.repository.get_all_articles(tenant_id) == []

    @pytest.mark.asyncio
    async def test_message_slice_count_comes_from_editor(
        self, context, mock_create, feed, tenant_id, test_reporter, test_editor
    ):
        mock_create.return_value = make_completion(article_payload())

        await context.reporters.generate_article(tenant_id, test_reporter)

        assert feed.requested == [test_editor.message_slice_count]

    @pytest.mark.asyncio
    async def test_ad_is_injected_after_every_twentieth_message(
        self, context, mock_create, tenant_id, test_reporter
    ):
        context.reporters.feed = StaticFeed(_messages(45))
        context.repository.save_ad(
            tenant_id,
            AdEntry(id="ad_1", user_id=tenant_id, name="Bakery", bid_price=1.0, prompt_content="Try Rosa's bakery"),
        )
        mock_create.return_value = make_completion(article_payload())

        article = await context.reporters.generate_article(tenant_id, test_reporter)

        assert article.prompt.count("Try Rosa's bakery") == 2
        assert '20. "Post 20"\n\n\nTry Rosa\'s bakery\n\n\n21. "Post 21"' in article.prompt

    @pytest.mark.asyncio
    async def test_ad_store_failure_still_generates(
        self, context, mock_create, tenant_id, test_reporter
    ):
        context.reporters.feed = StaticFeed(_messages(25))
        mock_create.return_value = make_completion(article_payload())

        with patch.object(
            context.reporters.repository,
            "get_most_recent_ad",
            side_effect=ConnectionError("store unavailable"),
        ):
            article = await context.reporters.generate_article(tenant_id, test_reporter)

        assert article is not None
        assert '20. "Post 20"\n21. "Post 21"' in article.prompt

    @pytest.mark.asyncio
    async def test_feed_failure_still_generates(self, context, mock_create, tenant_id, test_reporter):
        context.reporters.feed = FailingFeed()
        mock_create.return_value = make_completion(article_payload(message_ids=[]))

        article = await context.reporters.generate_article(tenant_id, test_reporter)

        assert article is not None
        assert "Recent social media discussions" not in article.prompt


@pytest.mark.unit
class TestEvents:
    @pytest.mark.asyncio
    async def test_new_events_are_created(self, context, mock_create, tenant_id, test_reporter):
        mock_create.return_value = make_completion(
            event_payload(
                [
                    {"title": "Bridge closed", "facts": ["Closed at noon"], "messageIds": [1]},
                    {"title": "Strike vote", "facts": ["Vote on Friday"], "where": "City hall"},
                ]
            )
        )

        events = await context.reporters.generate_events(tenant_id, test_reporter)

        assert [e.title for e in events] == ["Bridge closed", "Strike vote"]
        assert events[0].message_texts == ["Message number 1"]
        assert events[1].where == "City hall"
        stored = context.repository.get_events_by_reporter(tenant_id, test_reporter.id)
        assert {e.id for e in stored} == {e.id for e in events}

    @pytest.mark.asyncio
    async def test_indexed_candidate_appends_facts(self, context, mock_create, tenant_id, test_reporter):
        existing = Event(
            id="event_existing",
            reporter_id=test_reporter.id,
            title="Bridge closed",
            facts=["Closed at noon", "Detour via Main St"],
            created_time=1000,
            updated_time=1000,
        )
        context.repository.save_event(tenant_id, existing)
        mock_create.return_value = make_completion(
            event_payload(
                [{"index": 1, "title": "Bridge closed", "facts": ["Closed at noon", "Reopens Monday"]}]
            )
        )

        events = await context.reporters.generate_events(tenant_id, test_reporter)

        assert len(events) == 1
        updated = context.repository.get_event(tenant_id, "event_existing")
        assert updated.facts == ["Closed at noon", "Detour via Main St", "Reopens Monday"]
        assert updated.updated_time > existing.updated_time
        assert len(context.repository.get_all_events(tenant_id)) == 1

    @pytest.mark.asyncio
    async def test_at_most_five_candidates_are_processed(self, context, mock_create, tenant_id, test_reporter):
        mock_create.return_value = make_completion(
            event_payload([{"title": f"Event {i}"} for i in range(8)])
        )

        events = await context.reporters.generate_events(tenant_id, test_reporter)

        assert len(events) == 5

    @pytest.mark.asyncio
    async def test_feed_failure_returns_result(self, context, mock_create, tenant_id, test_reporter):
        context.reporters.feed = FailingFeed()
        mock_create.return_value = make_completion(event_payload([]))

        events = await context.reporters.generate_events(tenant_id, test_reporter)

        assert events == []
        prompt = mock_create.call_args.kwargs["messages"][1]["content"]
        assert "No social media messages available." in prompt


@pytest.mark.unit
class TestArticlesFromEvents:
    @pytest.mark.asyncio
    async def test_no_events_means_no_article(self, context, mock_create, tenant_id, test_reporter):
        article = await context.reporters.generate_article_from_events(tenant_id, test_reporter)

        assert article is None
        mock_create.assert_not_called()

    @pytest.mark.asyncio
    async def test_recent_headlines_are_in_prompt(self, context, mock_create, tenant_id, test_reporter):
        context.repository.save_event(
            tenant_id,
            Event(
                id="event_1",
                reporter_id=test_reporter.id,
                title="Bridge closed",
                facts=["Closed at noon"],
                created_time=1000,
                updated_time=1000,
            ),
        )
        context.repository.save_article(
            tenant_id,
            Article(
                id="article_old",
                reporter_id=test_reporter.id,
                headline="Bridge closure announced",
                body="b",
                generation_time=900,
                prompt="p",
            ),
        )
        mock_create.return_value = make_completion(article_payload(headline="Bridge reopens"))

        article = await context.reporters.generate_article_from_events(tenant_id, test_reporter)

        assert article.headline == "Bridge reopens"
        assert 'Article 1: "Bridge closure announced"' in article.prompt
        assert "Title: Bridge closed" in article.prompt
        assert "Created: 1970-01-01T00:00:01.000Z" in article.prompt


@pytest.mark.unit
class TestAllReporters:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_others(self, context, mock_create, tenant_id):
        for reporter_id in ("reporter_a", "reporter_b"):
            context.repository.save_reporter(
                tenant_id, Reporter(id=reporter_id, beats=["science"], prompt="p")
            )
        context.repository.save_reporter(
            tenant_id, Reporter(id="reporter_off", beats=["arts"], prompt="p", enabled=False)
        )
        mock_create.side_effect = [
            make_completion(article_payload()),
            Exception("model overloaded"),
        ]

        results = await context.reporters.generate_all_reporter_articles(tenant_id)

        assert set(results) == {"reporter_a", "reporter_b"}
        assert sorted(len(v) for v in results.values()) == [0, 1]
        assert len(context.repository.get_all_articles(tenant_id)) == 1

    @pytest.mark.asyncio
    async def test_no_reporters(self, context, tenant_id):
        assert await context.reporters.generate_all_reporter_events(tenant_id) == {}

    @pytest.mark.asyncio
    async def test_events_for_all_reporters(self, context, mock_create, tenant_id, test_reporter):
        mock_create.return_value = make_completion(event_payload([{"title": "Heat wave"}]))

        results = await context.reporters.generate_all_reporter_events(tenant_id)

        assert [e.title for e in results[test_reporter.id]] == ["Heat wave"]

