from datetime import datetime, timedelta
from typing import Optional
import logging

from newsroom.core.exceptions import (
    EditorNotConfiguredError,
    NoArticlesInWindowError,
    NoEditionsInWindowError,
)
from newsroom.schemas.entities import (
    DailyEdition,
    DailyEditionWithEditions,
    DailyTopic,
    Editor,
    EditionWithArticles,
    ModelFeedback,
    NewspaperEdition,
)
from newsroom.services.generation_client import GenerationClientFactory
from newsroom.storage.repository import EntityRepository, generate_id, now_ms

logger = logging.getLogger(__name__)

EDITION_WINDOW = timedelta(hours=3)
DAILY_WINDOW = timedelta(hours=24)


def newspaper_name(date: datetime) -> str:
    """Daily edition title, e.g. "Monday, 3/9"."""
    return f"{date.strftime('%A')}, {date.month}/{date.day}"


def _window_start(window: timedelta) -> int:
    return now_ms() - int(window.total_seconds() * 1000)


class EditorOrchestrator:
    """
    Assembles editions from generated articles.

    - Hourly edition: the editor's pick of articles from the last 3 hours
    - Daily edition: a synthesized front page and topics from the last
      24 hours of editions

    Editions store references, never copies; reads drop references that no
    longer resolve.
    """

    def __init__(self, repository: EntityRepository, clients: GenerationClientFactory):
        self.repository = repository
        self.clients = clients

    def _require_editor(self, tenant_id: str) -> Editor:
        editor = self.repository.get_editor(tenant_id)
        if not editor:
            raise EditorNotConfiguredError(f"No editor configuration for tenant {tenant_id}")
        return editor

    async def generate_hourly_edition(self, tenant_id: str) -> NewspaperEdition:
        """
        Raises:
            NoArticlesInWindowError: no article was generated in the last 3 hours
            EditorNotConfiguredError: the tenant has no editor
        """
        articles = self.repository.get_all_articles_in_time_range(
            tenant_id, _window_start(EDITION_WINDOW), now_ms()
        )
        if not articles:
            raise NoArticlesInWindowError("No articles found in the last 3 hours")

        logger.info(f"Found {len(articles)} articles from the last 3 hours for tenant {tenant_id}")
        editor = self._require_editor(tenant_id)

        client = self.clients.for_tenant(tenant_id)
        selection = await client.select_newsworthy_stories(articles, editor.prompt)

        edition = NewspaperEdition(
            id=generate_id("edition"),
            stories=[article.id for article in selection.selected],
            generation_time=now_ms(),
            prompt=selection.full_prompt,
            model_name=selection.model_name or None,
            input_token_count=selection.usage.input_tokens,
            output_token_count=selection.usage.output_tokens,
        )
        self.repository.save_newspaper_edition(tenant_id, edition)

        logger.info(
            f"Newspaper edition {edition.id} generated with {len(edition.stories)} stories"
        )
        return edition

    async def generate_daily_edition(self, tenant_id: str) -> DailyEdition:
        """
        Raises:
            NoEditionsInWindowError: no edition was generated in the last 24 hours
            EditorNotConfiguredError: the tenant has no editor
            GenerationError: synthesis failed; nothing is persisted
        """
        editions = self.repository.get_newspaper_editions_since(
            tenant_id, _window_start(DAILY_WINDOW)
        )
        if not editions:
            raise NoEditionsInWindowError("No newspaper editions found in the last 24 hours")

        logger.info(f"Found {len(editions)} editions from the last 24 hours for tenant {tenant_id}")
        editor = self._require_editor(tenant_id)

        digest = [
            (edition.id, self._resolve_articles(tenant_id, edition.stories))
            for edition in editions
        ]

        client = self.clients.for_tenant(tenant_id)
        result = await client.generate_daily_edition(digest, editor.prompt)
        parsed = result.parsed

        generation_time = now_ms()
        daily = DailyEdition(
            id=generate_id("daily_edition"),
            editions=[edition.id for edition in editions],
            generation_time=generation_time,
            front_page_headline=parsed.front_page_headline,
            front_page_article=parsed.front_page_article,
            topics=[DailyTopic(**topic.model_dump()) for topic in parsed.topics],
            model_feedback=ModelFeedback(
                positive=parsed.model_feedback_about_the_prompt.positive,
                negative=parsed.model_feedback_about_the_prompt.negative,
            ),
            newspaper_name=newspaper_name(datetime.now()),
            prompt=result.full_prompt,
            model_name=result.model_name,
            input_token_count=result.usage.input_tokens,
            output_token_count=result.usage.output_tokens,
        )
        self.repository.save_daily_edition(tenant_id, daily)

        logger.info(f"Daily edition {daily.id} generated from {len(editions)} editions")
        return daily

    def _resolve_articles(self, tenant_id: str, article_ids):
        articles = []
        for article_id in article_ids:
            article = self.repository.get_article(tenant_id, article_id)
            if article:
                articles.append(article)
        return articles

    def get_latest_newspaper_edition(self, tenant_id: str) -> Optional[NewspaperEdition]:
        editions = self.repository.get_newspaper_editions(tenant_id, limit=1)
        return editions[0] if editions else None

    def get_latest_daily_edition(self, tenant_id: str) -> Optional[DailyEdition]:
        dailies = self.repository.get_daily_editions(tenant_id, limit=1)
        return dailies[0] if dailies else None

    def get_edition_with_articles(
        self, tenant_id: str, edition_id: str
    ) -> Optional[EditionWithArticles]:
        edition = self.repository.get_newspaper_edition(tenant_id, edition_id)
        if not edition:
            return None
        return EditionWithArticles(
            edition=edition, articles=self._resolve_articles(tenant_id, edition.stories)
        )

    def get_daily_edition_with_editions(
        self, tenant_id: str, daily_edition_id: str
    ) -> Optional[DailyEditionWithEditions]:
        daily = self.repository.get_daily_edition(tenant_id, daily_edition_id)
        if not daily:
            return None

        editions = []
        for edition_id in daily.editions:
            edition = self.repository.get_newspaper_edition(tenant_id, edition_id)
            if edition:
                editions.append(edition)
        return DailyEditionWithEditions(daily_edition=daily, editions=editions)
