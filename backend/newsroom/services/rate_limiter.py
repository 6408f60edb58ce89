"""Tokens-per-minute limiter shared by every generation client in the process."""

import asyncio
import logging
import time

import tiktoken

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60
DEFAULT_MODEL = "gpt-4"
MESSAGE_OVERHEAD_TOKENS = 8


class TokenBucketRateLimiter:
    """
    Fixed-window token budget.

    Requests reserve an estimate up front; once the real usage is known the
    difference is booked so later requests see an accurate balance.
    """

    def __init__(self, tpm_limit: int):
        self.tpm_limit = tpm_limit
        self.tokens_used = 0
        self.window_start = time.monotonic()
        self.lock = asyncio.Lock()

    async def acquire(self, estimated_tokens: int) -> None:
        """Block until `estimated_tokens` fit into the current window."""
        async with self.lock:
            elapsed = time.monotonic() - self.window_start
            if elapsed >= WINDOW_SECONDS:
                self._reset()
                elapsed = 0

            # A single oversized request still goes through on a fresh window
            if self.tokens_used > 0 and self.tokens_used + estimated_tokens > self.tpm_limit:
                wait = WINDOW_SECONDS - elapsed
                logger.info(
                    f"Rate limit: {self.tokens_used}/{self.tpm_limit} tokens used, "
                    f"waiting {wait:.1f}s"
                )
                await asyncio.sleep(wait)
                self._reset()

            self.tokens_used += estimated_tokens

    def report_actual_usage(self, actual_tokens: int, estimated_tokens: int) -> None:
        difference = actual_tokens - estimated_tokens
        self.tokens_used = max(self.tokens_used + difference, 0)
        if abs(difference) > 500:
            logger.debug(
                f"Token estimate off by {difference} "
                f"(estimated {estimated_tokens}, actual {actual_tokens})"
            )

    def _reset(self) -> None:
        self.tokens_used = 0
        self.window_start = time.monotonic()


def estimate_tokens(text: str, model: str = DEFAULT_MODEL) -> int:
    """
    Count the tokens in a text string with the model's tokenizer.

    Models tiktoken does not know are counted with cl100k_base.
    """
    try:
        encoding = tiktoken.encoding_for_model(model)
    except KeyError:
        encoding = tiktoken.get_encoding("cl100k_base")

    return len(encoding.encode(text))


def estimate_request_tokens(
    system_prompt: str,
    user_prompt: str,
    model: str = DEFAULT_MODEL,
    response_buffer: int = 1000,
) -> int:
    """
    Estimate a chat request's total budget.

    Args:
        system_prompt: The system message
        user_prompt: The user message
        model: The model name, used to pick the tokenizer
        response_buffer: Tokens reserved for the completion

    Returns:
        Input tokens plus message overhead plus the response buffer
    """
    return (
        estimate_tokens(system_prompt, model)
        + estimate_tokens(user_prompt, model)
        + MESSAGE_OVERHEAD_TOKENS
        + response_buffer
    )
