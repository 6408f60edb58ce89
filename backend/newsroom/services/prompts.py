"""
Prompt construction for every generation call.

Context blocks are rendered deterministically from typed inputs; the exact
text sent to the model is stored on the resulting entity for auditing.
"""

from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from newsroom.schemas.entities import AdEntry, Article, Event, Reporter
from newsroom.services.social_feed import SocialMessage

AD_INTERVAL = 20
ARTICLE_EXCERPT_CHARS = 300
EDITION_EXCERPT_CHARS = 200

PromptPair = Tuple[str, str]


def full_prompt(system_prompt: str, user_prompt: str) -> str:
    return f"System: {system_prompt}\n\nUser: {user_prompt}"


def format_social_media_context(
    messages: Sequence[SocialMessage], ad: Optional[AdEntry] = None
) -> str:
    """
    Number messages from 1 and, when an ad is given, insert its prompt
    content after every 20th message. An empty list renders as "".
    """
    if not messages:
        return ""

    lines = []
    for i, message in enumerate(messages, start=1):
        lines.append(f'{i}. "{message.text}"')
        if ad is not None and i % AD_INTERVAL == 0:
            lines.append(f"\n\n{ad.prompt_content}\n\n")

    return "\n\nRecent social media discussions:\n" + "\n".join(lines)


def format_event_messages(messages: Sequence[SocialMessage]) -> str:
    if not messages:
        return "No social media messages available."
    return "\n".join(f'{i}. "{m.text}"' for i, m in enumerate(messages, start=1))


def format_articles_text(articles: Sequence[Article]) -> str:
    """Story-selection candidates with a bounded body excerpt."""
    return "\n\n".join(
        f"Article {i}:\nHeadline: {a.headline}\nContent: {a.body[:ARTICLE_EXCERPT_CHARS]}..."
        for i, a in enumerate(articles, start=1)
    )


def first_paragraph(body: str) -> str:
    return body.split("\n")[0] or body[:EDITION_EXCERPT_CHARS]


def format_editions_text(editions: Sequence[Tuple[str, Sequence[Article]]]) -> str:
    blocks = []
    for i, (edition_id, articles) in enumerate(editions, start=1):
        articles_text = "\n\n".join(
            f"Article {j}:\nHeadline: {a.headline}\nFirst Paragraph: {first_paragraph(a.body)}"
            for j, a in enumerate(articles, start=1)
        )
        blocks.append(f"Edition {i} (ID: {edition_id}):\n{articles_text}")
    return "\n\n".join(blocks)


def _iso(ms: int) -> str:
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def format_events_context(events: Sequence[Event]) -> str:
    if not events:
        return "No previous events available."
    return "\n\n".join(
        f"Event {i}:\nTitle: {e.title}\nFacts: {', '.join(e.facts)}\nCreated: {_iso(e.created_time)}"
        for i, e in enumerate(events, start=1)
    )


def format_articles_context(articles: Sequence[Article]) -> str:
    """Headlines only; used to steer the model away from repeating itself."""
    if not articles:
        return "No previous articles available for this reporter."
    return "\n".join(f'Article {i}: "{a.headline}"' for i, a in enumerate(articles, start=1))


# ---------------------------------------------------------------------------
# Prompt pairs

_JOURNALIST_SYSTEM = (
    "You are a professional journalist writing structured news articles with a "
    "headline, lead paragraph, body, key quotes, sources and reporter notes."
)

_ARTICLE_CHECKLIST = """Include:
1. A headline about this single development
2. A lead paragraph of 2-3 sentences
3. A body of 300-500 words with context and analysis
4. 2-4 key quotes
5. 3-5 credible sources
6. A social media summary under 280 characters
7. Reporter notes on research quality, source diversity and factual accuracy
8. beat: the beat you chose from your list
9. messageIds: the 1-based indices of the messages you actually used, or an empty array"""


def article_prompts(reporter: Reporter, social_context: str) -> PromptPair:
    beats = ", ".join(reporter.beats)
    system_prompt = f"{_JOURNALIST_SYSTEM} {reporter.prompt}"
    user_prompt = f"""Write a focused news article about one recent development. Your beats are: {beats}. Pick one beat and cover the most significant recent development within it.

Scan the social media messages below for anything relevant to your beats. If no message is relevant, stop and return empty strings for every text field and empty arrays for every list.

{_ARTICLE_CHECKLIST}

Keep the article factual and cover only the chosen development.{social_context}

After writing, scan the messages again and list the indices of any that may be related to your story in "potentialMessageIds"."""
    return system_prompt, user_prompt


def events_prompts(
    reporter: Reporter, events_context: str, messages_context: str
) -> PromptPair:
    beats = ", ".join(reporter.beats)
    system_prompt = (
        "You are a journalist who tracks ongoing events as structured records of "
        f"facts. Your beats are: {beats}. {reporter.prompt}"
    )
    user_prompt = f"""From the social media messages and your previous events, identify up to 5 significant events related to your beats ({beats}). For each event:

1. If it continues one of the previous events, set "index" to that event's number and list only the new facts
2. Otherwise set "index" to null and give a new title and initial facts
3. Give 1-5 short, verifiable facts
4. messageIds: 1-based indices of the messages you used, or an empty array
5. potentialMessageIds: indices of other messages that may relate to the event

Previous Events:
{events_context}

Recent Social Media Messages:
{messages_context}

Return at most 5 events and always include both index arrays, even when empty."""
    return system_prompt, user_prompt


def article_from_events_prompts(
    reporter: Reporter, events_context: str, articles_context: str, social_context: str
) -> PromptPair:
    beats = ", ".join(reporter.beats)
    system_prompt = f"{_JOURNALIST_SYSTEM} {reporter.prompt}"
    user_prompt = f"""Write a focused news article about one of your recent events. Your beats are: {beats}.

Your latest events:
{events_context}

Headlines of your latest articles:
{articles_context}

Choose ONE event and write an article about it. Do not repeat a topic from your recent headlines unless there is new information; if every event has been covered, choose the one with the most significant new developments. If no social media message is relevant, return empty strings for every text field.

{_ARTICLE_CHECKLIST}{social_context}

After writing, list the indices of any messages related to the chosen event in "potentialMessageIds"."""
    return system_prompt, user_prompt


def story_selection_prompts(articles_text: str, editor_prompt: str) -> PromptPair:
    system_prompt = (
        "You are an experienced news editor. Select the most important and "
        "engaging stories using journalistic judgement."
    )
    user_prompt = f"""Editorial guidelines: "{editor_prompt}"

Select the 3-5 most newsworthy stories below, weighing timeliness, impact, audience interest and editorial fit.

Articles:
{articles_text}

Reply with the article numbers only (1, 2, 3, ...), separated by commas."""
    return system_prompt, user_prompt


def daily_edition_prompts(editions_text: str, editor_prompt: str) -> PromptPair:
    system_prompt = (
        "You are a newspaper editor assembling a daily edition from the day's "
        "editions: a front page, several topics and feedback on your instructions."
    )
    user_prompt = f"""Editorial guidelines: "{editor_prompt}"

Available editions and their articles:

{editions_text}

Produce:
1. A front page headline for the day's most important story
2. A front page article of 300-500 words
3. 3-5 topics, each with a headline, a two-paragraph story, a one-line summary, a supporting social media message, a skeptical comment and a gullible comment
4. Positive and negative feedback about the editorial guidelines"""
    return system_prompt, user_prompt


def referenced_texts(message_ids: List[int], messages: Sequence[SocialMessage]) -> List[str]:
    """Resolve 1-based message indices; out-of-range indices are skipped."""
    return [messages[i - 1].text for i in message_ids if 1 <= i <= len(messages)]
