"""
Strict schemas for structured model responses.

The JSON keys seen by the model are camelCase (field aliases); every field is
required so the generated JSON schema is accepted by strict structured-output
mode. Parsing is parse-or-reject: a payload that does not validate never
reaches the orchestrators.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional, Type

MAX_EVENTS_PER_CYCLE = 5
MIN_DAILY_TOPICS = 3
MAX_DAILY_TOPICS = 5


class StrictResponse(BaseModel):
    model_config = ConfigDict(
        extra="forbid", alias_generator=to_camel, populate_by_name=True
    )


class ReporterNotes(StrictResponse):
    research_quality: str
    source_diversity: str
    factual_accuracy: str


class ReporterArticleResponse(StrictResponse):
    beat: str
    headline: str
    lead_paragraph: str
    body: str
    key_quotes: List[str]
    sources: List[str]
    social_media_summary: str
    reporter_notes: ReporterNotes
    message_ids: List[int]
    potential_message_ids: List[int]

    @property
    def is_empty(self) -> bool:
        """The model found no relevant messages and returned blank fields."""
        return not self.headline.strip() or not self.body.strip()


class GeneratedEvent(StrictResponse):
    index: Optional[int]  # 1-based position in the prior-events list, or null
    title: str
    facts: List[str]
    where: Optional[str]
    when: Optional[str]
    message_ids: List[int]
    potential_message_ids: List[int]


class EventGenerationResponse(StrictResponse):
    events: List[GeneratedEvent]


class GeneratedTopic(StrictResponse):
    name: str
    headline: str
    news_story_first_paragraph: str
    news_story_second_paragraph: str
    one_line_summary: str
    supporting_social_media_message: str
    skeptical_comment: str
    gullible_comment: str


class PromptFeedback(StrictResponse):
    positive: str
    negative: str


class DailyEditionResponse(StrictResponse):
    front_page_headline: str = Field(min_length=1)
    front_page_article: str = Field(min_length=1)
    topics: List[GeneratedTopic]
    model_feedback_about_the_prompt: PromptFeedback
    newspaper_name: str  # discarded; the name is derived from the date

    @field_validator("topics")
    @classmethod
    def check_topic_count(cls, v):
        if len(v) < MIN_DAILY_TOPICS:
            raise ValueError(
                f"Expected at least {MIN_DAILY_TOPICS} topics, got {len(v)}"
            )
        return v[:MAX_DAILY_TOPICS]


_UNSUPPORTED_KEYWORDS = ("title", "minLength", "default")


def _strip_unsupported(schema: Any) -> Any:
    """Remove keywords strict mode rejects (e.g. minLength, titles)."""
    if isinstance(schema, list):
        return [_strip_unsupported(item) for item in schema]
    if not isinstance(schema, dict):
        return schema

    cleaned = {}
    for key, value in schema.items():
        if key in _UNSUPPORTED_KEYWORDS:
            continue
        if key in ("properties", "$defs"):
            # Keys here are field/definition names, not keywords
            cleaned[key] = {name: _strip_unsupported(sub) for name, sub in value.items()}
        else:
            cleaned[key] = _strip_unsupported(value)
    return cleaned


def strict_response_format(model: Type[BaseModel], name: str) -> Dict[str, Any]:
    """Build an OpenAI `response_format` payload for a strict JSON schema."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": name,
            "schema": _strip_unsupported(model.model_json_schema(by_alias=True)),
            "strict": True,
        },
    }
