"""
Typed persistence for newsroom entities.

Each entity is stored as one key per field. Writes go through a single
`pipeline()` batch so an entity is never half-written, reads fetch every
field with one `get_many` and substitute defaults for absent optional fields.
"""

import json
import logging
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from newsroom.core.exceptions import DuplicateEmailError, NotFoundError
from newsroom.schemas.entities import (
    DEFAULT_ARTICLE_PERIOD_MINUTES,
    DEFAULT_EDITION_PERIOD_MINUTES,
    DEFAULT_EVENT_PERIOD_MINUTES,
    DEFAULT_INPUT_TOKEN_COST,
    DEFAULT_MESSAGE_SLICE_COUNT,
    DEFAULT_MODEL_NAME,
    DEFAULT_OUTPUT_TOKEN_COST,
    AdEntry,
    Article,
    DailyEdition,
    DailyTopic,
    DailyUsage,
    Editor,
    Event,
    JobStatus,
    ModelFeedback,
    NewspaperEdition,
    Reporter,
    UsageStats,
    User,
    UserAIConfig,
    UserCreate,
)
from newsroom.storage import keys
from newsroom.storage.base import KeyValueStore, WriteBatch

logger = logging.getLogger(__name__)

ID_ALPHABET = string.digits + string.ascii_lowercase
ID_SUFFIX_LENGTH = 10
MAX_SCORE = 2**62

# Jobs whose last success doubles as the editor's last generation time
JOB_ARTICLES = "articles"
JOB_EVENTS = "events"
JOB_EDITION = "edition"


def now_ms() -> int:
    return int(time.time() * 1000)


def generate_id(prefix: str) -> str:
    """`{prefix}_{millis}_{suffix}`; sortable by creation time, unique in practice."""
    suffix = "".join(secrets.choice(ID_ALPHABET) for _ in range(ID_SUFFIX_LENGTH))
    return f"{prefix}_{now_ms()}_{suffix}"


def _to_int(value: Optional[str], default: Optional[int] = None) -> Optional[int]:
    if value is None or value == "":
        return default
    return int(float(value))


def _to_float(value: Optional[str], default: Optional[float] = None) -> Optional[float]:
    if value is None or value == "":
        return default
    return float(value)


def _to_bool(value: Optional[str], default: bool = False) -> bool:
    if value is None:
        return default
    return value == "true"


def _bool_str(value: bool) -> str:
    return "true" if value else "false"


def _from_json(value: Optional[str], default: Any = None) -> Any:
    if value is None or value == "":
        return default
    return json.loads(value)


class EntityRepository:
    def __init__(self, store: KeyValueStore):
        self.store = store

    def _read_fields(self, key_fn, fields: List[str]) -> Dict[str, Optional[str]]:
        values = self.store.get_many([key_fn(field) for field in fields])
        return dict(zip(fields, values))

    @staticmethod
    def _set_optional(batch: WriteBatch, key: str, value: Any) -> None:
        if value is not None:
            batch.set(key, str(value))

    def _newest_ids(self, index_key: str, limit: Optional[int]) -> List[str]:
        """Newest-first ids from a sorted index; `None` means no limit."""
        if limit is None:
            return self.store.z_range_rev(index_key)
        if limit <= 0:
            return []
        return self.store.z_range_rev(index_key, 0, limit - 1)

    # ------------------------------------------------------------------
    # AI configuration

    _AI_CONFIG_FIELDS = [
        "openai_api_key",
        "openai_base_url",
        "model_name",
        "input_token_cost",
        "output_token_cost",
        "message_slice_count",
    ]

    def save_user_ai_config(self, tenant_id: str, config: UserAIConfig) -> None:
        self.update_user_ai_config(tenant_id, config.model_dump())

    def update_user_ai_config(self, tenant_id: str, updates: Dict[str, Any]) -> None:
        """Write only the supplied fields; unknown fields are rejected."""
        if not updates:
            return
        known = set(self._AI_CONFIG_FIELDS) | {
            "article_generation_period_minutes",
            "event_generation_period_minutes",
            "edition_generation_period_minutes",
        }
        unknown = set(updates) - known
        if unknown:
            raise ValueError(f"Unknown AI config fields: {sorted(unknown)}")

        current = self.get_user_ai_config(tenant_id)
        merged = current.model_dump() if current else {"openai_api_key": ""}
        merged.update(updates)
        config = UserAIConfig(**merged)

        with self.store.pipeline() as batch:
            for field in updates:
                value = getattr(config, field)
                if field.endswith("_period_minutes"):
                    kind = field[: -len("_generation_period_minutes")]
                    batch.set(keys.generation_period(tenant_id, kind), str(value))
                elif value is None:
                    batch.delete(keys.ai_config_field(tenant_id, field))
                else:
                    batch.set(keys.ai_config_field(tenant_id, field), str(value))

    def get_user_ai_config(self, tenant_id: str) -> Optional[UserAIConfig]:
        values = self._read_fields(
            lambda f: keys.ai_config_field(tenant_id, f), self._AI_CONFIG_FIELDS
        )
        periods = self.store.get_many(
            [
                keys.generation_period(tenant_id, kind)
                for kind in ("article", "event", "edition")
            ]
        )
        if not values["openai_api_key"] or not values["model_name"]:
            return None

        return UserAIConfig(
            openai_api_key=values["openai_api_key"],
            openai_base_url=values["openai_base_url"] or None,
            model_name=values["model_name"],
            input_token_cost=_to_float(values["input_token_cost"], DEFAULT_INPUT_TOKEN_COST),
            output_token_cost=_to_float(values["output_token_cost"], DEFAULT_OUTPUT_TOKEN_COST),
            message_slice_count=_to_int(values["message_slice_count"], DEFAULT_MESSAGE_SLICE_COUNT),
            article_generation_period_minutes=_to_int(periods[0], DEFAULT_ARTICLE_PERIOD_MINUTES),
            event_generation_period_minutes=_to_int(periods[1], DEFAULT_EVENT_PERIOD_MINUTES),
            edition_generation_period_minutes=_to_int(periods[2], DEFAULT_EDITION_PERIOD_MINUTES),
        )

    # ------------------------------------------------------------------
    # Editor

    _EDITOR_FIELDS = [
        "bio",
        "prompt",
        "model_name",
        "message_slice_count",
        "input_token_cost",
        "output_token_cost",
    ]

    def save_editor(self, tenant_id: str, editor: Editor) -> None:
        """Last-generation times are owned by job status and are not written here."""
        with self.store.pipeline() as batch:
            for field in self._EDITOR_FIELDS:
                batch.set(keys.editor_field(tenant_id, field), str(getattr(editor, field)))
            batch.set(
                keys.generation_period(tenant_id, "article"),
                str(editor.article_generation_period_minutes),
            )
            batch.set(
                keys.generation_period(tenant_id, "event"),
                str(editor.event_generation_period_minutes),
            )
            batch.set(
                keys.generation_period(tenant_id, "edition"),
                str(editor.edition_generation_period_minutes),
            )

    def get_editor(self, tenant_id: str) -> Optional[Editor]:
        values = self._read_fields(
            lambda f: keys.editor_field(tenant_id, f), self._EDITOR_FIELDS
        )
        if values["bio"] is None or values["prompt"] is None:
            return None

        periods = self.store.get_many(
            [
                keys.generation_period(tenant_id, kind)
                for kind in ("article", "event", "edition")
            ]
        )
        last_success = self.store.get_many(
            [
                keys.job_field(tenant_id, job, "last_success")
                for job in (JOB_ARTICLES, JOB_EVENTS, JOB_EDITION)
            ]
        )

        return Editor(
            bio=values["bio"],
            prompt=values["prompt"],
            model_name=values["model_name"] or DEFAULT_MODEL_NAME,
            message_slice_count=_to_int(values["message_slice_count"], DEFAULT_MESSAGE_SLICE_COUNT),
            input_token_cost=_to_float(values["input_token_cost"], DEFAULT_INPUT_TOKEN_COST),
            output_token_cost=_to_float(values["output_token_cost"], DEFAULT_OUTPUT_TOKEN_COST),
            article_generation_period_minutes=_to_int(periods[0], DEFAULT_ARTICLE_PERIOD_MINUTES),
            event_generation_period_minutes=_to_int(periods[1], DEFAULT_EVENT_PERIOD_MINUTES),
            edition_generation_period_minutes=_to_int(periods[2], DEFAULT_EDITION_PERIOD_MINUTES),
            last_article_generation_time=_to_int(last_success[0]),
            last_event_generation_time=_to_int(last_success[1]),
            last_edition_generation_time=_to_int(last_success[2]),
        )

    # ------------------------------------------------------------------
    # Reporters

    def save_reporter(self, tenant_id: str, reporter: Reporter) -> None:
        with self.store.pipeline() as batch:
            batch.add_to_set(keys.reporters(tenant_id), reporter.id)
            batch.set(
                keys.reporter_field(tenant_id, reporter.id, "beats"),
                json.dumps(reporter.beats),
            )
            batch.set(keys.reporter_field(tenant_id, reporter.id, "prompt"), reporter.prompt)
            batch.set(
                keys.reporter_field(tenant_id, reporter.id, "enabled"),
                _bool_str(reporter.enabled),
            )

    def get_reporter(self, tenant_id: str, reporter_id: str) -> Optional[Reporter]:
        values = self._read_fields(
            lambda f: keys.reporter_field(tenant_id, reporter_id, f),
            ["beats", "prompt", "enabled"],
        )
        if values["beats"] is None or values["prompt"] is None:
            return None
        return Reporter(
            id=reporter_id,
            beats=_from_json(values["beats"], []),
            prompt=values["prompt"],
            enabled=_to_bool(values["enabled"], default=True),
        )

    def get_all_reporters(self, tenant_id: str) -> List[Reporter]:
        reporters = []
        for reporter_id in sorted(self.store.members(keys.reporters(tenant_id))):
            reporter = self.get_reporter(tenant_id, reporter_id)
            if reporter:
                reporters.append(reporter)
        return reporters

    def delete_reporter(self, tenant_id: str, reporter_id: str) -> None:
        """Remove the reporter record; its articles and events stay readable."""
        with self.store.pipeline() as batch:
            batch.remove_from_set(keys.reporters(tenant_id), reporter_id)
            batch.delete(
                *[
                    keys.reporter_field(tenant_id, reporter_id, f)
                    for f in ("beats", "prompt", "enabled")
                ]
            )

    # ------------------------------------------------------------------
    # Articles

    _ARTICLE_FIELDS = [
        "reporter_id",
        "headline",
        "body",
        "time",
        "prompt",
        "message_ids",
        "message_texts",
        "model_name",
        "input_token_count",
        "output_token_count",
    ]

    def save_article(self, tenant_id: str, article: Article) -> None:
        field = lambda f: keys.article_field(tenant_id, article.id, f)
        with self.store.pipeline() as batch:
            batch.z_add(
                keys.articles_by_reporter(tenant_id, article.reporter_id),
                article.generation_time,
                article.id,
            )
            batch.z_add(keys.all_articles(tenant_id), article.generation_time, article.id)
            batch.set(field("reporter_id"), article.reporter_id)
            batch.set(field("headline"), article.headline)
            batch.set(field("body"), article.body)
            batch.set(field("time"), str(article.generation_time))
            batch.set(field("prompt"), article.prompt)
            batch.set(field("message_ids"), json.dumps(article.message_ids))
            batch.set(field("message_texts"), json.dumps(article.message_texts))
            self._set_optional(batch, field("model_name"), article.model_name)
            self._set_optional(batch, field("input_token_count"), article.input_token_count)
            self._set_optional(batch, field("output_token_count"), article.output_token_count)

    def get_article(self, tenant_id: str, article_id: str) -> Optional[Article]:
        values = self._read_fields(
            lambda f: keys.article_field(tenant_id, article_id, f), self._ARTICLE_FIELDS
        )
        if (
            values["headline"] is None
            or values["body"] is None
            or values["time"] is None
            or values["reporter_id"] is None
        ):
            return None

        return Article(
            id=article_id,
            reporter_id=values["reporter_id"],
            headline=values["headline"],
            body=values["body"],
            generation_time=_to_int(values["time"]),
            prompt=values["prompt"] or "",
            message_ids=_from_json(values["message_ids"], []),
            message_texts=_from_json(values["message_texts"], []),
            model_name=values["model_name"],
            input_token_count=_to_int(values["input_token_count"]),
            output_token_count=_to_int(values["output_token_count"]),
        )

    def _load_articles(self, tenant_id: str, article_ids: List[str]) -> List[Article]:
        articles = []
        for article_id in article_ids:
            article = self.get_article(tenant_id, article_id)
            if article:
                articles.append(article)
        return articles

    def get_articles_by_reporter(
        self, tenant_id: str, reporter_id: str, limit: Optional[int] = None
    ) -> List[Article]:
        ids = self._newest_ids(keys.articles_by_reporter(tenant_id, reporter_id), limit)
        return self._load_articles(tenant_id, ids)

    def get_all_articles(self, tenant_id: str, limit: Optional[int] = None) -> List[Article]:
        ids = self._newest_ids(keys.all_articles(tenant_id), limit)
        return self._load_articles(tenant_id, ids)

    def get_articles_in_time_range(
        self, tenant_id: str, reporter_id: str, start_time: int, end_time: int
    ) -> List[Article]:
        """Articles with start_time <= generation_time <= end_time, oldest first."""
        ids = self.store.z_range_by_score(
            keys.articles_by_reporter(tenant_id, reporter_id), start_time, end_time
        )
        return self._load_articles(tenant_id, ids)

    def get_all_articles_in_time_range(
        self, tenant_id: str, start_time: int, end_time: int
    ) -> List[Article]:
        ids = self.store.z_range_by_score(keys.all_articles(tenant_id), start_time, end_time)
        return self._load_articles(tenant_id, ids)

    # ------------------------------------------------------------------
    # Events

    _EVENT_FIELDS = [
        "reporter_id",
        "title",
        "created_time",
        "updated_time",
        "facts",
        "where",
        "when",
        "message_ids",
        "message_texts",
        "model_name",
        "input_token_count",
        "output_token_count",
    ]

    def save_event(self, tenant_id: str, event: Event) -> None:
        field = lambda f: keys.event_field(tenant_id, event.id, f)
        with self.store.pipeline() as batch:
            batch.z_add(
                keys.events_by_reporter(tenant_id, event.reporter_id),
                event.created_time,
                event.id,
            )
            batch.z_add(keys.all_events(tenant_id), event.created_time, event.id)
            batch.z_add(keys.events_by_update(tenant_id), event.updated_time, event.id)
            batch.set(field("reporter_id"), event.reporter_id)
            batch.set(field("title"), event.title)
            batch.set(field("created_time"), str(event.created_time))
            batch.set(field("updated_time"), str(event.updated_time))
            batch.set(field("facts"), json.dumps(event.facts))
            self._set_optional(batch, field("where"), event.where)
            self._set_optional(batch, field("when"), event.when)
            if event.message_ids is not None:
                batch.set(field("message_ids"), json.dumps(event.message_ids))
            if event.message_texts is not None:
                batch.set(field("message_texts"), json.dumps(event.message_texts))
            self._set_optional(batch, field("model_name"), event.model_name)
            self._set_optional(batch, field("input_token_count"), event.input_token_count)
            self._set_optional(batch, field("output_token_count"), event.output_token_count)

    def get_event(self, tenant_id: str, event_id: str) -> Optional[Event]:
        values = self._read_fields(
            lambda f: keys.event_field(tenant_id, event_id, f), self._EVENT_FIELDS
        )
        if any(
            values[f] is None
            for f in ("title", "created_time", "updated_time", "facts", "reporter_id")
        ):
            return None

        return Event(
            id=event_id,
            reporter_id=values["reporter_id"],
            title=values["title"],
            facts=_from_json(values["facts"], []),
            created_time=_to_int(values["created_time"]),
            updated_time=_to_int(values["updated_time"]),
            where=values["where"],
            when=values["when"],
            message_ids=_from_json(values["message_ids"]),
            message_texts=_from_json(values["message_texts"]),
            model_name=values["model_name"],
            input_token_count=_to_int(values["input_token_count"]),
            output_token_count=_to_int(values["output_token_count"]),
        )

    def _load_events(self, tenant_id: str, event_ids: List[str]) -> List[Event]:
        events = []
        for event_id in event_ids:
            event = self.get_event(tenant_id, event_id)
            if event:
                events.append(event)
        return events

    def get_events_by_reporter(
        self, tenant_id: str, reporter_id: str, limit: Optional[int] = None
    ) -> List[Event]:
        ids = self._newest_ids(keys.events_by_reporter(tenant_id, reporter_id), limit)
        return self._load_events(tenant_id, ids)

    def get_all_events(self, tenant_id: str, limit: Optional[int] = None) -> List[Event]:
        ids = self._newest_ids(keys.all_events(tenant_id), limit)
        return self._load_events(tenant_id, ids)

    def get_latest_updated_events(
        self, tenant_id: str, limit: Optional[int] = None
    ) -> List[Event]:
        ids = self._newest_ids(keys.events_by_update(tenant_id), limit)
        return self._load_events(tenant_id, ids)

    def append_event_facts(
        self, tenant_id: str, event_id: str, new_facts: List[str], updated_time: Optional[int] = None
    ) -> Event:
        """
        Append facts to an existing event and bump its updated_time.

        Existing facts are never removed or reordered; updated_time always
        moves strictly forward even within the same millisecond.

        Raises:
            NotFoundError: if the event does not exist
        """
        event = self.get_event(tenant_id, event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")

        facts = list(event.facts) + list(new_facts)
        updated = max(updated_time or now_ms(), event.updated_time + 1)

        with self.store.pipeline() as batch:
            batch.set(keys.event_field(tenant_id, event_id, "facts"), json.dumps(facts))
            batch.set(keys.event_field(tenant_id, event_id, "updated_time"), str(updated))
            batch.z_add(keys.events_by_update(tenant_id), updated, event_id)

        return event.model_copy(update={"facts": facts, "updated_time": updated})

    # ------------------------------------------------------------------
    # Newspaper editions

    _EDITION_FIELDS = [
        "stories",
        "time",
        "prompt",
        "model_name",
        "input_token_count",
        "output_token_count",
    ]

    def save_newspaper_edition(self, tenant_id: str, edition: NewspaperEdition) -> None:
        field = lambda f: keys.edition_field(tenant_id, edition.id, f)
        with self.store.pipeline() as batch:
            batch.z_add(keys.editions(tenant_id), edition.generation_time, edition.id)
            batch.set(field("stories"), json.dumps(edition.stories))
            batch.set(field("time"), str(edition.generation_time))
            batch.set(field("prompt"), edition.prompt)
            self._set_optional(batch, field("model_name"), edition.model_name)
            self._set_optional(batch, field("input_token_count"), edition.input_token_count)
            self._set_optional(batch, field("output_token_count"), edition.output_token_count)

    def get_newspaper_edition(
        self, tenant_id: str, edition_id: str
    ) -> Optional[NewspaperEdition]:
        values = self._read_fields(
            lambda f: keys.edition_field(tenant_id, edition_id, f), self._EDITION_FIELDS
        )
        if values["stories"] is None or values["time"] is None:
            return None

        return NewspaperEdition(
            id=edition_id,
            stories=_from_json(values["stories"], []),
            generation_time=_to_int(values["time"]),
            prompt=values["prompt"] or "",
            model_name=values["model_name"],
            input_token_count=_to_int(values["input_token_count"]),
            output_token_count=_to_int(values["output_token_count"]),
        )

    def _load_editions(self, tenant_id: str, edition_ids: List[str]) -> List[NewspaperEdition]:
        editions = []
        for edition_id in edition_ids:
            edition = self.get_newspaper_edition(tenant_id, edition_id)
            if edition:
                editions.append(edition)
        return editions

    def get_newspaper_editions(
        self, tenant_id: str, limit: Optional[int] = None
    ) -> List[NewspaperEdition]:
        ids = self._newest_ids(keys.editions(tenant_id), limit)
        return self._load_editions(tenant_id, ids)

    def get_newspaper_editions_since(
        self, tenant_id: str, start_time: int
    ) -> List[NewspaperEdition]:
        ids = self.store.z_range_by_score(keys.editions(tenant_id), start_time, MAX_SCORE)
        return self._load_editions(tenant_id, ids)

    # ------------------------------------------------------------------
    # Daily editions

    _DAILY_EDITION_FIELDS = [
        "editions",
        "time",
        "front_page_headline",
        "front_page_article",
        "topics",
        "model_feedback_positive",
        "model_feedback_negative",
        "newspaper_name",
        "prompt",
        "model_name",
        "input_token_count",
        "output_token_count",
    ]

    def save_daily_edition(self, tenant_id: str, daily: DailyEdition) -> None:
        field = lambda f: keys.daily_edition_field(tenant_id, daily.id, f)
        with self.store.pipeline() as batch:
            batch.z_add(keys.daily_editions(tenant_id), daily.generation_time, daily.id)
            batch.set(field("editions"), json.dumps(daily.editions))
            batch.set(field("time"), str(daily.generation_time))
            batch.set(field("front_page_headline"), daily.front_page_headline)
            batch.set(field("front_page_article"), daily.front_page_article)
            batch.set(
                field("topics"), json.dumps([topic.model_dump() for topic in daily.topics])
            )
            batch.set(field("model_feedback_positive"), daily.model_feedback.positive)
            batch.set(field("model_feedback_negative"), daily.model_feedback.negative)
            batch.set(field("newspaper_name"), daily.newspaper_name)
            batch.set(field("prompt"), daily.prompt)
            self._set_optional(batch, field("model_name"), daily.model_name)
            self._set_optional(batch, field("input_token_count"), daily.input_token_count)
            self._set_optional(batch, field("output_token_count"), daily.output_token_count)

    def get_daily_edition(self, tenant_id: str, daily_edition_id: str) -> Optional[DailyEdition]:
        values = self._read_fields(
            lambda f: keys.daily_edition_field(tenant_id, daily_edition_id, f),
            self._DAILY_EDITION_FIELDS,
        )
        if any(
            values[f] is None
            for f in ("editions", "time", "front_page_headline", "front_page_article", "topics")
        ):
            return None

        return DailyEdition(
            id=daily_edition_id,
            editions=_from_json(values["editions"], []),
            generation_time=_to_int(values["time"]),
            front_page_headline=values["front_page_headline"],
            front_page_article=values["front_page_article"],
            topics=[DailyTopic(**topic) for topic in _from_json(values["topics"], [])],
            model_feedback=ModelFeedback(
                positive=values["model_feedback_positive"] or "",
                negative=values["model_feedback_negative"] or "",
            ),
            newspaper_name=values["newspaper_name"] or "",
            prompt=values["prompt"] or "",
            model_name=values["model_name"],
            input_token_count=_to_int(values["input_token_count"]),
            output_token_count=_to_int(values["output_token_count"]),
        )

    def get_daily_editions(self, tenant_id: str, limit: Optional[int] = None) -> List[DailyEdition]:
        ids = self._newest_ids(keys.daily_editions(tenant_id), limit)
        dailies = []
        for daily_edition_id in ids:
            daily = self.get_daily_edition(tenant_id, daily_edition_id)
            if daily:
                dailies.append(daily)
        return dailies

    # ------------------------------------------------------------------
    # Ads

    _AD_FIELDS = ["name", "bid_price", "prompt_content", "created_time"]

    def save_ad(self, tenant_id: str, ad: AdEntry) -> AdEntry:
        if not ad.created_time:
            ad = ad.model_copy(update={"created_time": now_ms()})
        field = lambda f: keys.ad_field(tenant_id, ad.id, f)
        with self.store.pipeline() as batch:
            batch.add_to_set(keys.ads(tenant_id), ad.id)
            batch.z_add(keys.ads_by_time(tenant_id), ad.created_time, ad.id)
            batch.set(field("name"), ad.name)
            batch.set(field("bid_price"), str(ad.bid_price))
            batch.set(field("prompt_content"), ad.prompt_content)
            batch.set(field("created_time"), str(ad.created_time))
        return ad

    def get_ad(self, tenant_id: str, ad_id: str) -> Optional[AdEntry]:
        values = self._read_fields(
            lambda f: keys.ad_field(tenant_id, ad_id, f), self._AD_FIELDS
        )
        if not values["name"] or values["bid_price"] is None:
            return None
        return AdEntry(
            id=ad_id,
            user_id=tenant_id,
            name=values["name"],
            bid_price=_to_float(values["bid_price"]),
            prompt_content=values["prompt_content"] or "",
            created_time=_to_int(values["created_time"], 0),
        )

    def get_all_ads(self, tenant_id: str) -> List[AdEntry]:
        ads = []
        for ad_id in sorted(self.store.members(keys.ads(tenant_id))):
            ad = self.get_ad(tenant_id, ad_id)
            if ad:
                ads.append(ad)
        return ads

    def get_most_recent_ad(self, tenant_id: str) -> Optional[AdEntry]:
        for ad_id in self.store.z_range_rev(keys.ads_by_time(tenant_id)):
            ad = self.get_ad(tenant_id, ad_id)
            if ad:
                return ad
        return None

    def update_ad(self, tenant_id: str, ad_id: str, updates: Dict[str, Any]) -> AdEntry:
        """
        Raises:
            NotFoundError: if the ad does not exist
        """
        ad = self.get_ad(tenant_id, ad_id)
        if ad is None:
            raise NotFoundError(f"Ad {ad_id} not found")

        allowed = {"name", "bid_price", "prompt_content"}
        unknown = set(updates) - allowed
        if unknown:
            raise ValueError(f"Unknown ad fields: {sorted(unknown)}")

        updated = AdEntry(**{**ad.model_dump(), **updates})
        with self.store.pipeline() as batch:
            for field in updates:
                batch.set(keys.ad_field(tenant_id, ad_id, field), str(getattr(updated, field)))
        return updated

    def delete_ad(self, tenant_id: str, ad_id: str) -> None:
        with self.store.pipeline() as batch:
            batch.remove_from_set(keys.ads(tenant_id), ad_id)
            batch.z_remove(keys.ads_by_time(tenant_id), ad_id)
            batch.delete(*[keys.ad_field(tenant_id, ad_id, f) for f in self._AD_FIELDS])

    # ------------------------------------------------------------------
    # Users (global)

    _USER_FIELDS = [
        "email",
        "password_hash",
        "role",
        "created_at",
        "last_login_at",
        "has_reader",
        "has_reporter",
        "has_editor",
    ]

    def create_user(self, data: UserCreate) -> User:
        """
        Register a user; emails are unique across the registry.

        Raises:
            DuplicateEmailError: if a user with this email already exists
        """
        if self.store.get(keys.user_by_email(data.email)) is not None:
            raise DuplicateEmailError(data.email)

        user = User(id=generate_id("user"), created_at=now_ms(), **data.model_dump())
        with self.store.pipeline() as batch:
            batch.add_to_set(keys.USERS, user.id)
            batch.set(keys.user_field(user.id, "email"), user.email)
            batch.set(keys.user_field(user.id, "password_hash"), user.password_hash)
            batch.set(keys.user_field(user.id, "role"), user.role)
            batch.set(keys.user_field(user.id, "created_at"), str(user.created_at))
            batch.set(keys.user_field(user.id, "has_reader"), _bool_str(user.has_reader))
            batch.set(keys.user_field(user.id, "has_reporter"), _bool_str(user.has_reporter))
            batch.set(keys.user_field(user.id, "has_editor"), _bool_str(user.has_editor))
            batch.set(keys.user_by_email(user.email), user.id)

        logger.info(f"Created user {user.id}")
        return user

    def get_user_by_id(self, user_id: str) -> Optional[User]:
        values = self._read_fields(lambda f: keys.user_field(user_id, f), self._USER_FIELDS)
        if any(values[f] is None for f in ("email", "password_hash", "role", "created_at")):
            return None
        return User(
            id=user_id,
            email=values["email"],
            password_hash=values["password_hash"],
            role=values["role"],
            created_at=_to_int(values["created_at"]),
            last_login_at=_to_int(values["last_login_at"]),
            has_reader=_to_bool(values["has_reader"]),
            has_reporter=_to_bool(values["has_reporter"]),
            has_editor=_to_bool(values["has_editor"]),
        )

    def get_user_by_email(self, email: str) -> Optional[User]:
        user_id = self.store.get(keys.user_by_email(email))
        if not user_id:
            return None
        return self.get_user_by_id(user_id)

    def update_user_last_login(self, user_id: str) -> None:
        self.store.set(keys.user_field(user_id, "last_login_at"), str(now_ms()))

    def get_all_users(self) -> List[User]:
        users = []
        for user_id in sorted(self.store.members(keys.USERS)):
            user = self.get_user_by_id(user_id)
            if user:
                users.append(user)
        return users

    def delete_user(self, user_id: str) -> None:
        user = self.get_user_by_id(user_id)
        if user is None:
            return
        with self.store.pipeline() as batch:
            batch.remove_from_set(keys.USERS, user_id)
            batch.delete(*[keys.user_field(user_id, f) for f in self._USER_FIELDS])
            batch.delete(keys.user_by_email(user.email))

    # ------------------------------------------------------------------
    # Usage

    _USAGE_FIELDS = ["api_calls", "input_tokens", "output_tokens", "cost"]

    def log_usage(
        self,
        tenant_id: str,
        api_calls: int,
        input_tokens: int,
        output_tokens: int,
        cost: float,
        timestamp: Optional[int] = None,
    ) -> None:
        """Add to the running totals and the UTC day's counters in one batch."""
        timestamp = timestamp or now_ms()
        day_start = datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        day = day_start.strftime("%Y-%m-%d")

        with self.store.pipeline() as batch:
            batch.incr_by(keys.usage_daily(tenant_id, day, "api_calls"), api_calls)
            batch.incr_by(keys.usage_daily(tenant_id, day, "input_tokens"), input_tokens)
            batch.incr_by(keys.usage_daily(tenant_id, day, "output_tokens"), output_tokens)
            batch.incr_by_float(keys.usage_daily(tenant_id, day, "cost"), cost)
            batch.incr_by(keys.usage_total(tenant_id, "api_calls"), api_calls)
            batch.incr_by(keys.usage_total(tenant_id, "input_tokens"), input_tokens)
            batch.incr_by(keys.usage_total(tenant_id, "output_tokens"), output_tokens)
            batch.incr_by_float(keys.usage_total(tenant_id, "cost"), cost)
            batch.set(keys.usage_total(tenant_id, "last_updated"), str(timestamp))
            batch.z_add(keys.usage_days(tenant_id), int(day_start.timestamp() * 1000), day)

    def get_user_usage_stats(self, tenant_id: str) -> UsageStats:
        values = self._read_fields(
            lambda f: keys.usage_total(tenant_id, f), self._USAGE_FIELDS + ["last_updated"]
        )
        return UsageStats(
            total_api_calls=_to_int(values["api_calls"], 0),
            total_input_tokens=_to_int(values["input_tokens"], 0),
            total_output_tokens=_to_int(values["output_tokens"], 0),
            total_cost=_to_float(values["cost"], 0.0),
            last_updated=_to_int(values["last_updated"], 0),
        )

    def get_user_usage_history(
        self, tenant_id: str, start_time: int, end_time: int
    ) -> List[DailyUsage]:
        """Daily rows whose UTC day starts within [start_time, end_time], oldest first."""
        history = []
        for day in self.store.z_range_by_score(keys.usage_days(tenant_id), start_time, end_time):
            values = self._read_fields(
                lambda f: keys.usage_daily(tenant_id, day, f), self._USAGE_FIELDS
            )
            history.append(
                DailyUsage(
                    date=day,
                    api_calls=_to_int(values["api_calls"], 0),
                    input_tokens=_to_int(values["input_tokens"], 0),
                    output_tokens=_to_int(values["output_tokens"], 0),
                    cost=_to_float(values["cost"], 0.0),
                )
            )
        return history

    # ------------------------------------------------------------------
    # Job status

    def get_job_status(self, tenant_id: str, job_name: str) -> JobStatus:
        values = self._read_fields(
            lambda f: keys.job_field(tenant_id, job_name, f),
            ["running", "last_run", "last_success"],
        )
        return JobStatus(
            job_name=job_name,
            running=_to_bool(values["running"]),
            last_run=_to_int(values["last_run"]),
            last_success=_to_int(values["last_success"]),
        )

    def set_job_running(self, tenant_id: str, job_name: str, running: bool) -> None:
        self.store.set(keys.job_field(tenant_id, job_name, "running"), _bool_str(running))

    def mark_job_started(self, tenant_id: str, job_name: str, timestamp: int) -> None:
        with self.store.pipeline() as batch:
            batch.set(keys.job_field(tenant_id, job_name, "running"), "true")
            batch.set(keys.job_field(tenant_id, job_name, "last_run"), str(timestamp))

    def mark_job_succeeded(self, tenant_id: str, job_name: str, timestamp: int) -> None:
        with self.store.pipeline() as batch:
            batch.set(keys.job_field(tenant_id, job_name, "running"), "false")
            batch.set(keys.job_field(tenant_id, job_name, "last_success"), str(timestamp))

    def mark_job_failed(self, tenant_id: str, job_name: str) -> None:
        # last_success is left untouched so the next tick retries
        self.set_job_running(tenant_id, job_name, False)

    # ------------------------------------------------------------------
    # KPIs

    def get_kpi_value(self, tenant_id: str, name: str) -> float:
        return _to_float(self.store.get(keys.kpi_value(tenant_id, name)), 0.0)

    def set_kpi_value(self, tenant_id: str, name: str, value: float) -> None:
        with self.store.pipeline() as batch:
            batch.set(keys.kpi_value(tenant_id, name), repr(float(value)))
            batch.set(keys.kpi_last_updated(tenant_id, name), str(now_ms()))

    def increment_kpi_value(self, tenant_id: str, name: str, increment: float) -> float:
        batch = self.store.pipeline()
        batch.incr_by_float(keys.kpi_value(tenant_id, name), increment)
        batch.set(keys.kpi_last_updated(tenant_id, name), str(now_ms()))
        results = batch.execute()
        return float(results[0])

    def generate_id(self, prefix: str) -> str:
        return generate_id(prefix)
