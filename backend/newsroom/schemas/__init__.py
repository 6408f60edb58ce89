from newsroom.schemas.entities import (
    Editor,
    UserAIConfig,
    Reporter,
    Article,
    Event,
    NewspaperEdition,
    DailyTopic,
    ModelFeedback,
    DailyEdition,
    AdEntry,
    User,
    UserCreate,
    UsageStats,
    DailyUsage,
    JobStatus,
    KpiName,
    EditionWithArticles,
    DailyEditionWithEditions,
)
from newsroom.schemas.generation import (
    ReporterArticleResponse,
    EventGenerationResponse,
    GeneratedEvent,
    DailyEditionResponse,
    strict_response_format,
)

__all__ = [
    "Editor",
    "UserAIConfig",
    "Reporter",
    "Article",
    "Event",
    "NewspaperEdition",
    "DailyTopic",
    "ModelFeedback",
    "DailyEdition",
    "AdEntry",
    "User",
    "UserCreate",
    "UsageStats",
    "DailyUsage",
    "JobStatus",
    "KpiName",
    "EditionWithArticles",
    "DailyEditionWithEditions",
    "ReporterArticleResponse",
    "EventGenerationResponse",
    "GeneratedEvent",
    "DailyEditionResponse",
    "strict_response_format",
]
