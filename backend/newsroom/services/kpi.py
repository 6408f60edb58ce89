import logging
from typing import Dict

from newsroom.schemas.entities import (
    DEFAULT_INPUT_TOKEN_COST,
    DEFAULT_OUTPUT_TOKEN_COST,
    KpiName,
)
from newsroom.storage.repository import EntityRepository

logger = logging.getLogger(__name__)

TOKENS_PER_PRICE_UNIT = 1_000_000


class KpiService:
    """Per-tenant spend and token counters derived from model usage."""

    def __init__(self, repository: EntityRepository):
        self.repository = repository

    def calculate_spend(self, tenant_id: str, input_tokens: int, output_tokens: int) -> float:
        """USD cost using the tenant's per-1M-token rates."""
        editor = self.repository.get_editor(tenant_id)
        input_cost = editor.input_token_cost if editor else DEFAULT_INPUT_TOKEN_COST
        output_cost = editor.output_token_cost if editor else DEFAULT_OUTPUT_TOKEN_COST
        return (
            input_tokens / TOKENS_PER_PRICE_UNIT * input_cost
            + output_tokens / TOKENS_PER_PRICE_UNIT * output_cost
        )

    def record_usage(self, tenant_id: str, input_tokens: int, output_tokens: int) -> None:
        """Book one model call. Tracking failures never reach the caller."""
        try:
            spend = self.calculate_spend(tenant_id, input_tokens, output_tokens)
            self.repository.increment_kpi_value(
                tenant_id, KpiName.TOTAL_TEXT_INPUT_TOKENS.value, input_tokens
            )
            self.repository.increment_kpi_value(
                tenant_id, KpiName.TOTAL_TEXT_OUTPUT_TOKENS.value, output_tokens
            )
            self.repository.increment_kpi_value(
                tenant_id, KpiName.TOTAL_AI_API_SPEND.value, spend
            )
            self.repository.log_usage(tenant_id, 1, input_tokens, output_tokens, spend)
        except Exception as e:
            logger.error(f"Error recording usage for tenant {tenant_id}: {str(e)}")

    def get_all_kpis(self, tenant_id: str) -> Dict[str, float]:
        return {
            name.value: self.repository.get_kpi_value(tenant_id, name.value)
            for name in KpiName
        }
