"""Tests for hourly and daily edition assembly."""

from datetime import datetime

import pytest

from conftest import daily_payload, make_completion
from newsroom.core.exceptions import (
    EditorNotConfiguredError,
    GenerationError,
    NoArticlesInWindowError,
    NoEditionsInWindowError,
)
from newsroom.schemas.entities import Article, NewspaperEdition
from newsroom.services.editor import newspaper_name
from newsroom.storage import now_ms

HOUR_MS = 60 * 60 * 1000


def _save_article(repository, tenant_id, article_id, age_ms=0, reporter_id="reporter_1"):
    article = Article(
        id=article_id,
        reporter_id=reporter_id,
        headline=f"Headline {article_id}",
        body=f"First paragraph of {article_id}\nSecond paragraph",
        generation_time=now_ms() - age_ms,
        prompt="p",
    )
    repository.save_article(tenant_id, article)
    return article


def _save_edition(repository, tenant_id, edition_id, stories, age_ms=0):
    edition = NewspaperEdition(
        id=edition_id, stories=stories, generation_time=now_ms() - age_ms, prompt="p"
    )
    repository.save_newspaper_edition(tenant_id, edition)
    return edition


@pytest.mark.unit
class TestNewspaperName:
    def test_no_zero_padding(self):
        assert newspaper_name(datetime(2024, 3, 4)) == "Monday, 3/4"
        assert newspaper_name(datetime(2024, 12, 25)) == "Wednesday, 12/25"


@pytest.mark.unit
class TestHourlyEdition:
    @pytest.mark.asyncio
    async def test_no_recent_articles(self, context, mock_create, tenant_id, test_editor):
        _save_article(context.repository, tenant_id, "a_old", age_ms=4 * HOUR_MS)

        with pytest.raises(NoArticlesInWindowError):
            await context.editor.generate_hourly_edition(tenant_id)

        mock_create.assert_not_called()
        assert context.repository.get_newspaper_editions(tenant_id) == []

    @pytest.mark.asyncio
    async def test_missing_editor(self, context, mock_create, tenant_id):
        _save_article(context.repository, tenant_id, "a1")

        with pytest.raises(EditorNotConfiguredError):
            await context.editor.generate_hourly_edition(tenant_id)

    @pytest.mark.asyncio
    async def test_edition_references_selected_articles(
        self, context, mock_create, tenant_id, test_editor
    ):
        _save_article(context.repository, tenant_id, "a1", age_ms=2 * HOUR_MS)
        _save_article(context.repository, tenant_id, "a2", age_ms=HOUR_MS, reporter_id="reporter_2")
        _save_article(context.repository, tenant_id, "a3")
        _save_article(context.repository, tenant_id, "a_old", age_ms=5 * HOUR_MS)
        mock_create.return_value = make_completion("3, 1")

        edition = await context.editor.generate_hourly_edition(tenant_id)

        assert edition.stories == ["a3", "a1"]
        assert "Favor local impact" in edition.prompt
        assert "a_old" not in edition.prompt
        assert context.repository.get_newspaper_edition(tenant_id, edition.id) == edition

    @pytest.mark.asyncio
    async def test_selection_failure_still_produces_edition(
        self, context, mock_create, tenant_id, test_editor
    ):
        for i in range(6):
            _save_article(context.repository, tenant_id, f"a{i}")
        mock_create.side_effect = Exception("model unavailable")

        edition = await context.editor.generate_hourly_edition(tenant_id)

        assert 3 <= len(edition.stories) <= 5
        assert edition.input_token_count == 0


@pytest.mark.unit
class TestDailyEdition:
    @pytest.mark.asyncio
    async def test_no_editions_in_window(self, context, mock_create, tenant_id, test_editor):
        _save_edition(context.repository, tenant_id, "ed_old", [], age_ms=25 * HOUR_MS)

        with pytest.raises(NoEditionsInWindowError):
            await context.editor.generate_daily_edition(tenant_id)

        mock_create.assert_not_called()
        assert context.repository.get_daily_editions(tenant_id) == []

    @pytest.mark.asyncio
    async def test_daily_edition_is_persisted_with_derived_name(
        self, context, mock_create, tenant_id, test_editor
    ):
        _save_article(context.repository, tenant_id, "a1")
        _save_edition(context.repository, tenant_id, "ed1", ["a1", "a_deleted"], age_ms=HOUR_MS)
        _save_edition(context.repository, tenant_id, "ed2", ["a1"])
        mock_create.return_value = make_completion(daily_payload(topic_count=4))

        daily = await context.editor.generate_daily_edition(tenant_id)

        assert daily.editions == ["ed1", "ed2"]
        assert len(daily.topics) == 4
        assert daily.newspaper_name == newspaper_name(datetime.now())
        assert daily.newspaper_name != "The Model Times"
        assert daily.model_feedback.negative == "Vague"
        assert "First Paragraph: First paragraph of a1" in daily.prompt
        assert context.repository.get_daily_edition(tenant_id, daily.id) == daily

    @pytest.mark.asyncio
    async def test_synthesis_failure_propagates(self, context, mock_create, tenant_id, test_editor):
        _save_edition(context.repository, tenant_id, "ed1", [])
        mock_create.side_effect = Exception("model unavailable")

        with pytest.raises(GenerationError):
            await context.editor.generate_daily_edition(tenant_id)

        assert context.repository.get_daily_editions(tenant_id) == []


@pytest.mark.unit
class TestEditionReads:
    def test_dangling_articles_are_dropped(self, context, tenant_id):
        _save_article(context.repository, tenant_id, "a1")
        _save_article(context.repository, tenant_id, "a3")
        _save_edition(context.repository, tenant_id, "ed1", ["a1", "a2_deleted", "a3"])

        result = context.editor.get_edition_with_articles(tenant_id, "ed1")

        assert [a.id for a in result.articles] == ["a1", "a3"]
        assert result.edition.stories == ["a1", "a2_deleted", "a3"]

    def test_dangling_editions_are_dropped(self, context, tenant_id):
        from newsroom.schemas.entities import DailyEdition, DailyTopic

        _save_edition(context.repository, tenant_id, "ed1", [])
        topic = DailyTopic(
            name="n",
            headline="h",
            news_story_first_paragraph="p1",
            news_story_second_paragraph="p2",
            one_line_summary="s",
            supporting_social_media_message="m",
            skeptical_comment="sc",
            gullible_comment="gc",
        )
        context.repository.save_daily_edition(
            tenant_id,
            DailyEdition(
                id="d1",
                editions=["ed1", "ed_missing"],
                generation_time=now_ms(),
                front_page_headline="f",
                front_page_article="a",
                topics=[topic] * 3,
                newspaper_name="Monday, 1/1",
                prompt="p",
            ),
        )

        result = context.editor.get_daily_edition_with_editions(tenant_id, "d1")

        assert [e.id for e in result.editions] == ["ed1"]

    def test_missing_edition_returns_none(self, context, tenant_id):
        assert context.editor.get_edition_with_articles(tenant_id, "nope") is None
        assert context.editor.get_daily_edition_with_editions(tenant_id, "nope") is None

    def test_latest_edition(self, context, tenant_id):
        assert context.editor.get_latest_newspaper_edition(tenant_id) is None

        _save_edition(context.repository, tenant_id, "ed_old", [], age_ms=HOUR_MS)
        _save_edition(context.repository, tenant_id, "ed_new", [])

        assert context.editor.get_latest_newspaper_edition(tenant_id).id == "ed_new"
        assert context.editor.get_latest_daily_edition(tenant_id) is None
