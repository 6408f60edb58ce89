"""
Calls to the text-generation endpoint.

One `GenerationClient` serves one tenant: it builds prompts from typed inputs,
sends a single chat completion per call, parses the structured reply with a
strict pydantic schema and reports token usage to the KPI layer. Concurrency
and the tokens-per-minute budget are shared across tenants via the factory.
"""

import asyncio
import logging
import random
import re
from dataclasses import dataclass, field
from typing import Dict, Generic, List, Optional, Sequence, Tuple, Type, TypeVar

from openai import AsyncOpenAI
from pydantic import BaseModel, ValidationError

from newsroom.core.exceptions import GenerationError
from newsroom.schemas.entities import AdEntry, Article, Event, Reporter
from newsroom.schemas.generation import (
    DailyEditionResponse,
    EventGenerationResponse,
    ReporterArticleResponse,
    strict_response_format,
)
from newsroom.services import prompts
from newsroom.services.audit import AuditSink
from newsroom.services.kpi import KpiService
from newsroom.services.rate_limiter import TokenBucketRateLimiter, estimate_request_tokens
from newsroom.services.social_feed import SocialMessage
from newsroom.storage.repository import EntityRepository, now_ms

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

MIN_SELECTED_STORIES = 3
MAX_SELECTED_STORIES = 5


@dataclass
class Usage:
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None


@dataclass
class GenerationResult(Generic[T]):
    parsed: T
    full_prompt: str
    model_name: str
    usage: Usage = field(default_factory=Usage)


@dataclass
class SelectionResult:
    selected: List[Article]
    full_prompt: str
    model_name: str = ""
    usage: Usage = field(default_factory=Usage)
    used_fallback: bool = False


def parse_selection(content: Optional[str], candidate_count: int) -> List[int]:
    """
    Parse a comma-separated list of 1-based article numbers.

    Entries that are not numbers or fall outside the candidate list are
    dropped; repeats keep their first position. Returns 0-based indices.
    """
    if not content:
        return []
    indices = []
    for part in content.strip().split(","):
        match = re.match(r"\s*(\d+)", part)
        if not match:
            continue
        index = int(match.group(1)) - 1
        if 0 <= index < candidate_count and index not in indices:
            indices.append(index)
    return indices


def random_selection(articles: Sequence[Article], rng: random.Random = None) -> List[Article]:
    """Pick between 3 and min(5, N) articles at random, or all of them when N < 3."""
    rng = rng or random
    pool = list(articles)
    if len(pool) < MIN_SELECTED_STORIES:
        count = len(pool)
    else:
        count = rng.randint(MIN_SELECTED_STORIES, min(MAX_SELECTED_STORIES, len(pool)))
    rng.shuffle(pool)
    return pool[:count]


class GenerationClient:
    def __init__(
        self,
        tenant_id: str,
        client: AsyncOpenAI,
        model_name: str,
        rate_limiter: TokenBucketRateLimiter,
        semaphore: asyncio.Semaphore,
        timeout: float,
        audit: Optional[AuditSink] = None,
        kpi: Optional[KpiService] = None,
    ):
        self.tenant_id = tenant_id
        self.client = client
        self.model_name = model_name
        self.rate_limiter = rate_limiter
        self.semaphore = semaphore
        self.timeout = timeout
        self.audit = audit
        self.kpi = kpi

    async def _complete(
        self,
        system_prompt: str,
        user_prompt: str,
        purpose: str,
        response_format: Optional[Dict] = None,
        audit_timestamp: Optional[int] = None,
    ) -> Tuple[str, Usage]:
        """Send one chat completion; any failure surfaces as GenerationError."""
        estimated_tokens = estimate_request_tokens(system_prompt, user_prompt, self.model_name)
        kwargs = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        if response_format is not None:
            kwargs["response_format"] = response_format

        logger.info(f"Calling model {self.model_name} for {purpose} (tenant {self.tenant_id})")
        logger.debug(f"{purpose} prompt, ~{estimated_tokens} tokens:\n{user_prompt}")

        try:
            async with self.semaphore:
                await self.rate_limiter.acquire(estimated_tokens)
                response = await asyncio.wait_for(
                    self.client.chat.completions.create(**kwargs), timeout=self.timeout
                )
        except asyncio.TimeoutError:
            raise GenerationError(f"{purpose} timed out after {self.timeout}s")
        except Exception as e:
            logger.error(f"Model API error during {purpose}: {str(e)}")
            raise GenerationError(f"{purpose} failed: {str(e)}") from e

        usage = Usage()
        if getattr(response, "usage", None) is not None:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
            )
            self.rate_limiter.report_actual_usage(
                (usage.input_tokens or 0) + (usage.output_tokens or 0), estimated_tokens
            )
            if self.kpi is not None:
                self.kpi.record_usage(
                    self.tenant_id, usage.input_tokens or 0, usage.output_tokens or 0
                )

        if self.audit is not None and audit_timestamp is not None:
            await self.audit.save(response, purpose, audit_timestamp)

        try:
            content = response.choices[0].message.content
        except (AttributeError, IndexError) as e:
            raise GenerationError(f"{purpose} returned no choices") from e
        if not content or not content.strip():
            raise GenerationError(f"{purpose} returned empty content")

        return content.strip(), usage

    async def _structured(
        self,
        system_prompt: str,
        user_prompt: str,
        schema: Type[T],
        schema_name: str,
        purpose: str,
    ) -> GenerationResult[T]:
        content, usage = await self._complete(
            system_prompt,
            user_prompt,
            purpose,
            response_format=strict_response_format(schema, schema_name),
            audit_timestamp=now_ms(),
        )
        try:
            parsed = schema.model_validate_json(content)
        except ValidationError as e:
            logger.error(f"Invalid {purpose} response: {str(e)}")
            raise GenerationError(f"{purpose} response failed validation") from e

        return GenerationResult(
            parsed=parsed,
            full_prompt=prompts.full_prompt(system_prompt, user_prompt),
            model_name=self.model_name,
            usage=usage,
        )

    async def generate_article(
        self,
        reporter: Reporter,
        messages: Sequence[SocialMessage],
        ad: Optional[AdEntry] = None,
    ) -> GenerationResult[ReporterArticleResponse]:
        social_context = prompts.format_social_media_context(messages, ad)
        system_prompt, user_prompt = prompts.article_prompts(reporter, social_context)
        return await self._structured(
            system_prompt, user_prompt, ReporterArticleResponse, "reporter_article", "article"
        )

    async def generate_events(
        self,
        reporter: Reporter,
        previous_events: Sequence[Event],
        messages: Sequence[SocialMessage],
    ) -> GenerationResult[EventGenerationResponse]:
        system_prompt, user_prompt = prompts.events_prompts(
            reporter,
            prompts.format_events_context(previous_events),
            prompts.format_event_messages(messages),
        )
        return await self._structured(
            system_prompt, user_prompt, EventGenerationResponse, "event_generation", "events"
        )

    async def generate_article_from_events(
        self,
        reporter: Reporter,
        events: Sequence[Event],
        recent_articles: Sequence[Article],
        messages: Sequence[SocialMessage],
    ) -> GenerationResult[ReporterArticleResponse]:
        system_prompt, user_prompt = prompts.article_from_events_prompts(
            reporter,
            prompts.format_events_context(events),
            prompts.format_articles_context(recent_articles),
            prompts.format_social_media_context(messages),
        )
        return await self._structured(
            system_prompt,
            user_prompt,
            ReporterArticleResponse,
            "reporter_article",
            "article_from_events",
        )

    async def select_newsworthy_stories(
        self, articles: Sequence[Article], editor_prompt: str
    ) -> SelectionResult:
        """
        Ask the model for the most newsworthy candidates.

        Never fails: an error or an unusable reply falls back to a random
        pick of 3 to 5 articles.
        """
        if not articles:
            return SelectionResult(selected=[], full_prompt="", model_name=self.model_name)

        system_prompt, user_prompt = prompts.story_selection_prompts(
            prompts.format_articles_text(articles), editor_prompt
        )
        prompt = prompts.full_prompt(system_prompt, user_prompt)

        try:
            content, usage = await self._complete(
                system_prompt, user_prompt, "story_selection", audit_timestamp=now_ms()
            )
        except GenerationError as e:
            logger.warning(f"Story selection failed, using random selection: {str(e)}")
            return SelectionResult(
                selected=random_selection(articles),
                full_prompt=prompt,
                model_name=self.model_name,
                usage=Usage(0, 0),
                used_fallback=True,
            )

        indices = parse_selection(content, len(articles))
        if not indices:
            logger.warning(f"Unusable story selection {content!r}, using random selection")
            return SelectionResult(
                selected=random_selection(articles),
                full_prompt=prompt,
                model_name=self.model_name,
                usage=usage,
                used_fallback=True,
            )

        return SelectionResult(
            selected=[articles[i] for i in indices],
            full_prompt=prompt,
            model_name=self.model_name,
            usage=usage,
        )

    async def generate_daily_edition(
        self,
        editions: Sequence[Tuple[str, Sequence[Article]]],
        editor_prompt: str,
    ) -> GenerationResult[DailyEditionResponse]:
        """No fallback: any failure propagates to the caller."""
        system_prompt, user_prompt = prompts.daily_edition_prompts(
            prompts.format_editions_text(editions), editor_prompt
        )
        return await self._structured(
            system_prompt, user_prompt, DailyEditionResponse, "daily_edition", "daily_edition"
        )


class GenerationClientFactory:
    """
    Builds per-tenant clients. The tenant's own endpoint settings win over
    the process-wide defaults; limits are shared by every client.
    """

    def __init__(
        self,
        settings,
        repository: EntityRepository,
        audit: Optional[AuditSink] = None,
        kpi: Optional[KpiService] = None,
    ):
        self.settings = settings
        self.repository = repository
        self.audit = audit
        self.kpi = kpi
        self.rate_limiter = TokenBucketRateLimiter(settings.LLM_TPM_LIMIT)
        self.semaphore = asyncio.Semaphore(settings.LLM_MAX_CONCURRENT)
        self._clients: Dict[Tuple[str, Optional[str]], AsyncOpenAI] = {}

    def _openai_client(self, api_key: str, base_url: Optional[str]) -> AsyncOpenAI:
        cache_key = (api_key, base_url)
        if cache_key not in self._clients:
            self._clients[cache_key] = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=self.settings.LLM_TIMEOUT_SECONDS,
                max_retries=self.settings.LLM_MAX_RETRIES,
            )
        return self._clients[cache_key]

    def for_tenant(self, tenant_id: str) -> GenerationClient:
        """
        Raises:
            GenerationError: if neither the tenant nor the process has an API key
        """
        config = self.repository.get_user_ai_config(tenant_id)
        if config is not None:
            api_key = config.openai_api_key
            base_url = config.openai_base_url
            model_name = config.model_name
        else:
            editor = self.repository.get_editor(tenant_id)
            api_key = self.settings.OPENAI_API_KEY
            base_url = self.settings.OPENAI_BASE_URL
            model_name = editor.model_name if editor else self.settings.LLM_MODEL

        if not api_key:
            raise GenerationError(f"No model API key configured for tenant {tenant_id}")

        return GenerationClient(
            tenant_id=tenant_id,
            client=self._openai_client(api_key, base_url),
            model_name=model_name,
            rate_limiter=self.rate_limiter,
            semaphore=self.semaphore,
            timeout=self.settings.LLM_TIMEOUT_SECONDS,
            audit=self.audit,
            kpi=self.kpi,
        )

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()
