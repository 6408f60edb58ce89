"""
Pytest configuration and fixtures for newsroom tests.
"""

import json
from typing import List, Optional
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from openai.types.chat import ChatCompletion

from newsroom.core.config import Settings
from newsroom.core.context import build_context
from newsroom.schemas.entities import Editor, Reporter, UserCreate
from newsroom.services.social_feed import SocialMessage
from newsroom.storage import EntityRepository, MemoryKeyValueStore
from newsroom.storage.sql import SqlKeyValueStore

TEST_DATABASE_URL = "sqlite:///:memory:"
TEST_SECRET_KEY = "test_secret_key_for_testing_only"
TEST_API_KEY = "test_key_123"


class StaticFeed:
    """Feed collaborator returning a fixed list of messages."""

    def __init__(self, messages: Optional[List[SocialMessage]] = None):
        self.messages = messages or []
        self.requested: List[int] = []

    async def fetch_latest_messages(self, n: int) -> List[SocialMessage]:
        self.requested.append(n)
        return self.messages[:n]


class FailingFeed:
    async def fetch_latest_messages(self, n: int) -> List[SocialMessage]:
        raise ConnectionError("feed unavailable")


def make_completion(content: str, prompt_tokens: int = 120, completion_tokens: int = 80):
    """Build a chat completion exactly as the API would return it."""
    return ChatCompletion.model_validate(
        {
            "id": "chatcmpl-test",
            "object": "chat.completion",
            "created": 1700000000,
            "model": "gpt-5-nano",
            "choices": [
                {
                    "index": 0,
                    "finish_reason": "stop",
                    "message": {"role": "assistant", "content": content},
                }
            ],
            "usage": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        }
    )


def article_payload(
    headline: str = "City council approves transit plan",
    body: str = "The council voted 7-2 on Tuesday.\nFunding comes from a new levy.",
    message_ids: Optional[List[int]] = None,
) -> str:
    return json.dumps(
        {
            "beat": "politics",
            "headline": headline,
            "leadParagraph": "The council approved the plan.",
            "body": body,
            "keyQuotes": ["This is a good day for riders."],
            "sources": ["City council minutes"],
            "socialMediaSummary": "Transit plan approved.",
            "reporterNotes": {
                "researchQuality": "good",
                "sourceDiversity": "limited",
                "factualAccuracy": "high",
            },
            "messageIds": message_ids if message_ids is not None else [1],
            "potentialMessageIds": [],
        }
    )


def empty_article_payload() -> str:
    return article_payload(headline="", body="", message_ids=[])


def event_payload(events: List[dict]) -> str:
    full = []
    for event in events:
        full.append(
            {
                "index": event.get("index"),
                "title": event.get("title", "Storm hits coast"),
                "facts": event.get("facts", ["Winds reached 120 km/h"]),
                "where": event.get("where"),
                "when": event.get("when"),
                "messageIds": event.get("messageIds", []),
                "potentialMessageIds": [],
            }
        )
    return json.dumps({"events": full})


def daily_payload(topic_count: int = 3) -> str:
    topic = {
        "name": "Transit",
        "headline": "Transit plan approved",
        "newsStoryFirstParagraph": "The council approved the plan.",
        "newsStorySecondParagraph": "Construction starts next year.",
        "oneLineSummary": "Plan approved.",
        "supportingSocialMediaMessage": "Finally!",
        "skepticalComment": "Who pays for this?",
        "gullibleComment": "Trains will be free forever.",
    }
    return json.dumps(
        {
            "frontPageHeadline": "A busy day in the city",
            "frontPageArticle": "Several stories dominated the day.",
            "topics": [dict(topic, name=f"Topic {i}") for i in range(topic_count)],
            "modelFeedbackAboutThePrompt": {"positive": "Clear", "negative": "Vague"},
            "newspaperName": "The Model Times",
        }
    )


class WordEncoding:
    """Stands in for a tiktoken encoding: one token per whitespace-separated word."""

    def encode(self, text: str) -> List[str]:
        return text.split()


@pytest.fixture(autouse=True)
def tokenizer():
    """Keep token counting offline; tiktoken downloads its encoding files on first use."""
    with patch("newsroom.services.rate_limiter.tiktoken") as mock_tiktoken:
        mock_tiktoken.encoding_for_model.return_value = WordEncoding()
        mock_tiktoken.get_encoding.return_value = WordEncoding()
        yield mock_tiktoken


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        STORAGE_BACKEND="memory",
        OPENAI_API_KEY=TEST_API_KEY,
        SECRET_KEY=TEST_SECRET_KEY,
        CRON_SECRET=None,
        API_RESPONSES_DIR=str(tmp_path / "api_responses"),
        SCHEDULER_ENABLED=False,
        LLM_TIMEOUT_SECONDS=5.0,
    )


@pytest.fixture
def memory_store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def sql_store():
    store = SqlKeyValueStore(TEST_DATABASE_URL)
    yield store
    store.close()


@pytest.fixture(params=["memory", "sql"])
def kv_store(request):
    """Every backend must pass the same contract tests."""
    if request.param == "memory":
        yield MemoryKeyValueStore()
    else:
        store = SqlKeyValueStore(TEST_DATABASE_URL)
        yield store
        store.close()


@pytest.fixture
def repository(memory_store) -> EntityRepository:
    return EntityRepository(memory_store)


@pytest.fixture
def tenant_id(repository) -> str:
    user = repository.create_user(
        UserCreate(email="editor@example.com", password_hash="hash", role="admin", has_editor=True)
    )
    return user.id


@pytest.fixture
def test_reporter(repository, tenant_id) -> Reporter:
    reporter = Reporter(id="reporter_1", beats=["politics", "transit"], prompt="You cover city hall.")
    repository.save_reporter(tenant_id, reporter)
    return reporter


@pytest.fixture
def test_editor(repository, tenant_id) -> Editor:
    editor = Editor(bio="Veteran editor", prompt="Favor local impact", message_slice_count=50)
    repository.save_editor(tenant_id, editor)
    return editor


@pytest.fixture
def social_messages() -> List[SocialMessage]:
    return [
        SocialMessage(author=f"did:plc:user{i}", text=f"Message number {i}", time=1700000000000 + i)
        for i in range(1, 6)
    ]


@pytest.fixture
def feed(social_messages) -> StaticFeed:
    return StaticFeed(social_messages)


@pytest.fixture
def context(test_settings, memory_store, feed):
    return build_context(test_settings, store=memory_store, feed=feed)


@pytest.fixture
def mock_create(context):
    """Patch chat.completions.create on the default-key client."""
    openai_client = context.clients._openai_client(TEST_API_KEY, None)
    with patch.object(openai_client.chat.completions, "create", new_callable=AsyncMock) as mocked:
        yield mocked


@pytest.fixture
def test_app(context):
    """The application with an injected context and no lifespan."""
    from newsroom.main import app

    app.state.context = context
    yield app
    del app.state.context


@pytest.fixture
def client(test_app) -> TestClient:
    """Create a test client without entering context manager."""
    return TestClient(test_app, raise_server_exceptions=False)


def make_token(user_id: str, secret_key: str = TEST_SECRET_KEY) -> str:
    return jwt.encode({"sub": user_id, "type": "access"}, secret_key, algorithm="HS256")


@pytest.fixture
def auth_headers(tenant_id) -> dict:
    return {"Authorization": f"Bearer {make_token(tenant_id)}"}
