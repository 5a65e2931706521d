"""
AI Enrichment Service
Short pre-visit checklist for new appointments via the Anthropic API
"""

from typing import Optional

import structlog
from anthropic import Anthropic

from app.config import settings
from app.services.monitoring.circuit_breakers import AI_ENRICHMENT, CircuitBreakerError, get_breaker

logger = structlog.get_logger(__name__)


class AIEnrichmentService:
    """
    generate_summary() never raises and never waits longer than the client
    timeout: failures come back as {"error": ...} and the caller carries on
    without a summary.
    """

    def __init__(self, client: Optional[Anthropic] = None):
        self.model = settings.anthropic_model
        self.max_tokens = settings.ai_max_tokens
        if client is not None:
            self.client = client
        elif settings.anthropic_api_key:
            # No SDK retries: a slow summary must not hold up notifications
            self.client = Anthropic(
                api_key=settings.anthropic_api_key,
                timeout=settings.ai_timeout_seconds,
                max_retries=0,
            )
        else:
            self.client = None

    def generate_summary(self, context: dict) -> dict:
        """
        Args:
            context: patient_name, clinician_name, starts_at, type, notes

        Returns:
            {"summary": str} or {"error": str}
        """
        if self.client is None:
            return {"error": "ai_not_configured"}

        prompt = self._build_prompt(context)
        try:
            message = get_breaker(AI_ENRICHMENT).call(
                self.client.messages.create,
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except CircuitBreakerError:
            logger.warning("ai_circuit_open")
            return {"error": "ai_circuit_open"}
        except Exception as e:
            logger.warning("ai_summary_failed", error=str(e), error_type=type(e).__name__)
            return {"error": str(e) or type(e).__name__}

        summary = "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        ).strip()
        if not summary:
            return {"error": "ai_empty_response"}

        logger.info("ai_summary_generated", length=len(summary))
        return {"summary": summary}

    @staticmethod
    def _build_prompt(context: dict) -> str:
        return (
            f"Write a 2-3 line pre-visit checklist for patient {context.get('patient_name') or 'the patient'} "
            f"seeing {context.get('clinician_name') or 'their clinician'} on {context.get('starts_at')}.\n"
            f"Reason: {context.get('type') or 'consultation'}\n"
            f"Notes: {context.get('notes') or 'none'}\n"
            "Keep it concise (max 60 words)."
        )
