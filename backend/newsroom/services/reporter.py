import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar

from newsroom.schemas.entities import (
    DEFAULT_MESSAGE_SLICE_COUNT,
    AdEntry,
    Article,
    Event,
    Reporter,
)
from newsroom.schemas.generation import MAX_EVENTS_PER_CYCLE, ReporterArticleResponse
from newsroom.services.generation_client import GenerationClientFactory, GenerationResult
from newsroom.services.prompts import referenced_texts
from newsroom.services.social_feed import SocialFeedFetcher, SocialMessage
from newsroom.storage.repository import EntityRepository, generate_id, now_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Context sizes for the article-from-events path
RECENT_EVENTS_COUNT = 5
RECENT_ARTICLES_COUNT = 5


class ReporterOrchestrator:
    """
    Runs the reporter generation paths for one tenant at a time.

    - Feed articles: one article per reporter from the latest social messages
    - Events: new events or new facts for the reporter's latest events
    - Articles from events: one article about a recent, not yet covered event

    Each reporter is failure-isolated; the generate_all_* entry points
    never raise because of a single reporter.
    """

    def __init__(
        self,
        repository: EntityRepository,
        clients: GenerationClientFactory,
        feed: SocialFeedFetcher,
    ):
        self.repository = repository
        self.clients = clients
        self.feed = feed

    def _message_slice_count(self, tenant_id: str) -> int:
        editor = self.repository.get_editor(tenant_id)
        if editor:
            return editor.message_slice_count
        config = self.repository.get_user_ai_config(tenant_id)
        if config:
            return config.message_slice_count
        return DEFAULT_MESSAGE_SLICE_COUNT

    async def _fetch_messages(self, tenant_id: str) -> List[SocialMessage]:
        try:
            return await self.feed.fetch_latest_messages(self._message_slice_count(tenant_id))
        except Exception as e:
            logger.warning(f"Failed to fetch social messages for tenant {tenant_id}: {str(e)}")
            return []

    def _most_recent_ad(self, tenant_id: str) -> Optional[AdEntry]:
        try:
            return self.repository.get_most_recent_ad(tenant_id)
        except Exception as e:
            logger.warning(f"Failed to load ad for tenant {tenant_id}: {str(e)}")
            return None

    def _save_article(
        self,
        tenant_id: str,
        reporter: Reporter,
        result: GenerationResult[ReporterArticleResponse],
        messages: List[SocialMessage],
    ) -> Optional[Article]:
        parsed = result.parsed
        if parsed.is_empty:
            logger.info(f"Reporter {reporter.id} found no relevant messages, no article saved")
            return None

        generation_time = now_ms()
        article = Article(
            id=generate_id("article"),
            reporter_id=reporter.id,
            headline=parsed.headline,
            body=parsed.body,
            generation_time=generation_time,
            prompt=result.full_prompt,
            message_ids=parsed.message_ids,
            message_texts=referenced_texts(parsed.message_ids, messages),
            model_name=result.model_name,
            input_token_count=result.usage.input_tokens,
            output_token_count=result.usage.output_tokens,
        )
        self.repository.save_article(tenant_id, article)
        logger.info(f"Saved article {article.id} for reporter {reporter.id}")
        return article

    async def generate_article(self, tenant_id: str, reporter: Reporter) -> Optional[Article]:
        """
        Write one article from the social feed.

        Returns None when the model reports nothing relevant. Generation
        errors propagate.
        """
        client = self.clients.for_tenant(tenant_id)
        messages = await self._fetch_messages(tenant_id)
        ad = self._most_recent_ad(tenant_id)

        result = await client.generate_article(reporter, messages, ad)
        return self._save_article(tenant_id, reporter, result, messages)

    async def generate_events(self, tenant_id: str, reporter: Reporter) -> List[Event]:
        """
        Create new events or extend the reporter's latest ones.

        Candidates that carry a 1-based index into the previous events add
        their new facts to that event; the rest become new events. Returns
        every event created or updated in this cycle.
        """
        client = self.clients.for_tenant(tenant_id)
        previous_events = self.repository.get_events_by_reporter(
            tenant_id, reporter.id, MAX_EVENTS_PER_CYCLE
        )
        messages = await self._fetch_messages(tenant_id)

        result = await client.generate_events(reporter, previous_events, messages)

        touched: List[Event] = []
        for candidate in result.parsed.events[:MAX_EVENTS_PER_CYCLE]:
            texts = referenced_texts(candidate.message_ids, messages)

            if candidate.index is not None and 1 <= candidate.index <= len(previous_events):
                existing = previous_events[candidate.index - 1]
                new_facts = [f for f in candidate.facts if f not in existing.facts]
                if not new_facts:
                    logger.debug(f"No new facts for event {existing.id}")
                    continue
                updated = self.repository.append_event_facts(tenant_id, existing.id, new_facts)
                touched.append(updated)
                logger.info(f"Added {len(new_facts)} facts to event {existing.id}")
                continue

            created_time = now_ms()
            event = Event(
                id=generate_id("event"),
                reporter_id=reporter.id,
                title=candidate.title,
                facts=candidate.facts,
                created_time=created_time,
                updated_time=created_time,
                where=candidate.where,
                when=candidate.when,
                message_ids=candidate.message_ids,
                message_texts=texts,
                model_name=result.model_name,
                input_token_count=result.usage.input_tokens,
                output_token_count=result.usage.output_tokens,
            )
            self.repository.save_event(tenant_id, event)
            touched.append(event)
            logger.info(f"Created event {event.id} for reporter {reporter.id}")

        return touched

    async def generate_article_from_events(
        self, tenant_id: str, reporter: Reporter
    ) -> Optional[Article]:
        """Write one article about a recent event the reporter has not covered yet."""
        client = self.clients.for_tenant(tenant_id)
        events = self.repository.get_events_by_reporter(
            tenant_id, reporter.id, RECENT_EVENTS_COUNT
        )
        if not events:
            logger.info(f"Reporter {reporter.id} has no events to write about")
            return None

        recent_articles = self.repository.get_articles_by_reporter(
            tenant_id, reporter.id, RECENT_ARTICLES_COUNT
        )
        messages = await self._fetch_messages(tenant_id)

        result = await client.generate_article_from_events(
            reporter, events, recent_articles, messages
        )
        return self._save_article(tenant_id, reporter, result, messages)

    async def _for_all_reporters(
        self,
        tenant_id: str,
        label: str,
        run: Callable[[str, Reporter], Awaitable[T]],
    ) -> Dict[str, List[T]]:
        reporters = [r for r in self.repository.get_all_reporters(tenant_id) if r.enabled]
        if not reporters:
            logger.info(f"No enabled reporters for tenant {tenant_id}")
            return {}

        outcomes = await asyncio.gather(
            *(run(tenant_id, reporter) for reporter in reporters),
            return_exceptions=True,
        )

        results: Dict[str, List[T]] = {}
        for reporter, outcome in zip(reporters, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"{label} failed for reporter {reporter.id}: {str(outcome)}")
                results[reporter.id] = []
            elif outcome is None:
                results[reporter.id] = []
            elif isinstance(outcome, list):
                results[reporter.id] = outcome
            else:
                results[reporter.id] = [outcome]

        produced = sum(len(items) for items in results.values())
        logger.info(
            f"{label} for tenant {tenant_id}: {produced} produced by {len(reporters)} reporters"
        )
        return results

    async def generate_all_reporter_articles(self, tenant_id: str) -> Dict[str, List[Article]]:
        return await self._for_all_reporters(tenant_id, "Article generation", self.generate_article)

    async def generate_all_reporter_events(self, tenant_id: str) -> Dict[str, List[Event]]:
        return await self._for_all_reporters(tenant_id, "Event generation", self.generate_events)

    async def generate_all_reporter_articles_from_events(
        self, tenant_id: str
    ) -> Dict[str, List[Article]]:
        return await self._for_all_reporters(
            tenant_id, "Article-from-events generation", self.generate_article_from_events
        )
