from pydantic import BaseModel, Field, model_validator
from enum import Enum
from typing import List, Optional, Literal

DEFAULT_MODEL_NAME = "gpt-5-nano"
DEFAULT_MESSAGE_SLICE_COUNT = 200
DEFAULT_INPUT_TOKEN_COST = 0.050  # USD per 1M input tokens
DEFAULT_OUTPUT_TOKEN_COST = 0.400  # USD per 1M output tokens
DEFAULT_ARTICLE_PERIOD_MINUTES = 60
DEFAULT_EVENT_PERIOD_MINUTES = 30
DEFAULT_EDITION_PERIOD_MINUTES = 1440

Role = Literal["admin", "editor", "reporter", "user"]


class KpiName(str, Enum):
    TOTAL_AI_API_SPEND = "Total AI API spend"
    TOTAL_TEXT_INPUT_TOKENS = "Total text input tokens"
    TOTAL_TEXT_OUTPUT_TOKENS = "Total text output tokens"


class Editor(BaseModel):
    """Per-tenant editor configuration."""

    bio: str
    prompt: str
    model_name: str = DEFAULT_MODEL_NAME
    message_slice_count: int = Field(DEFAULT_MESSAGE_SLICE_COUNT, ge=1, le=1000)
    input_token_cost: float = Field(DEFAULT_INPUT_TOKEN_COST, ge=0)
    output_token_cost: float = Field(DEFAULT_OUTPUT_TOKEN_COST, ge=0)
    article_generation_period_minutes: int = Field(
        DEFAULT_ARTICLE_PERIOD_MINUTES, ge=1, le=1440
    )
    event_generation_period_minutes: int = Field(
        DEFAULT_EVENT_PERIOD_MINUTES, ge=1, le=1440
    )
    edition_generation_period_minutes: int = Field(
        DEFAULT_EDITION_PERIOD_MINUTES, ge=1, le=1440
    )

    # Read from job status; never written through save_editor
    last_article_generation_time: Optional[int] = None
    last_event_generation_time: Optional[int] = None
    last_edition_generation_time: Optional[int] = None


class UserAIConfig(BaseModel):
    """Per-tenant model endpoint credentials and generation settings."""

    openai_api_key: str
    openai_base_url: Optional[str] = None
    model_name: str = DEFAULT_MODEL_NAME
    input_token_cost: float = Field(DEFAULT_INPUT_TOKEN_COST, ge=0)
    output_token_cost: float = Field(DEFAULT_OUTPUT_TOKEN_COST, ge=0)
    message_slice_count: int = Field(DEFAULT_MESSAGE_SLICE_COUNT, ge=1, le=1000)
    article_generation_period_minutes: int = Field(
        DEFAULT_ARTICLE_PERIOD_MINUTES, ge=1, le=1440
    )
    event_generation_period_minutes: int = Field(
        DEFAULT_EVENT_PERIOD_MINUTES, ge=1, le=1440
    )
    edition_generation_period_minutes: int = Field(
        DEFAULT_EDITION_PERIOD_MINUTES, ge=1, le=1440
    )


class Reporter(BaseModel):
    id: str
    beats: List[str]
    prompt: str
    enabled: bool = True


class Article(BaseModel):
    id: str
    reporter_id: str
    headline: str
    body: str
    generation_time: int  # milliseconds since epoch
    prompt: str  # exact text sent to the model
    message_ids: List[int] = Field(default_factory=list)
    message_texts: List[str] = Field(default_factory=list)
    model_name: Optional[str] = None
    input_token_count: Optional[int] = None
    output_token_count: Optional[int] = None


class Event(BaseModel):
    id: str
    reporter_id: str
    title: str
    facts: List[str]
    created_time: int
    updated_time: int
    where: Optional[str] = None
    when: Optional[str] = None
    message_ids: Optional[List[int]] = None
    message_texts: Optional[List[str]] = None
    model_name: Optional[str] = None
    input_token_count: Optional[int] = None
    output_token_count: Optional[int] = None

    @model_validator(mode="after")
    def check_times(self):
        if self.updated_time < self.created_time:
            raise ValueError("updated_time must not precede created_time")
        return self


class NewspaperEdition(BaseModel):
    id: str
    stories: List[str]  # article ids, frozen at creation
    generation_time: int
    prompt: str
    model_name: Optional[str] = None
    input_token_count: Optional[int] = None
    output_token_count: Optional[int] = None


class DailyTopic(BaseModel):
    name: str
    headline: str
    news_story_first_paragraph: str
    news_story_second_paragraph: str
    one_line_summary: str
    supporting_social_media_message: str
    skeptical_comment: str
    gullible_comment: str


class ModelFeedback(BaseModel):
    positive: str = ""
    negative: str = ""


class DailyEdition(BaseModel):
    id: str
    editions: List[str]  # newspaper edition ids
    generation_time: int
    front_page_headline: str
    front_page_article: str
    topics: List[DailyTopic]
    model_feedback: ModelFeedback = Field(default_factory=ModelFeedback)
    newspaper_name: str
    prompt: str
    model_name: Optional[str] = None
    input_token_count: Optional[int] = None
    output_token_count: Optional[int] = None


class AdEntry(BaseModel):
    id: str
    user_id: str
    name: str
    bid_price: float = Field(ge=0)
    prompt_content: str
    created_time: int = 0


class User(BaseModel):
    id: str
    email: str
    password_hash: str
    role: Role = "user"
    created_at: int
    last_login_at: Optional[int] = None
    has_reader: bool = True
    has_reporter: bool = False
    has_editor: bool = False


class UserCreate(BaseModel):
    email: str
    password_hash: str
    role: Role = "user"
    has_reader: bool = True
    has_reporter: bool = False
    has_editor: bool = False


class UsageStats(BaseModel):
    total_api_calls: int = 0
    total_input_tokens: int = 0
    total_output_tokens: int = 0
    total_cost: float = 0.0
    last_updated: int = 0


class DailyUsage(BaseModel):
    date: str  # YYYY-MM-DD (UTC)
    api_calls: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0


class JobStatus(BaseModel):
    job_name: str
    running: bool = False
    last_run: Optional[int] = None
    last_success: Optional[int] = None


class EditionWithArticles(BaseModel):
    edition: NewspaperEdition
    articles: List[Article]


class DailyEditionWithEditions(BaseModel):
    daily_edition: DailyEdition
    editions: List[NewspaperEdition]
