"""
Guarded OpenAI client wrapper.

Admits each call against the usage ledger before it is made and records
the spend after it succeeded.
"""

import logging
from typing import Any, Dict, List, Optional

from openai import OpenAI

from ..config.loader import OperationEstimate
from ..core.ledger import AdmissionDecision, UsageLedger

logger = logging.getLogger(__name__)


class QuotaExceeded(Exception):
    """Raised when a call would push today's usage over a ceiling."""
    def __init__(self, decision: AdmissionDecision):
        super().__init__(decision.reason)
        self.decision = decision


class GuardedOpenAI:
    """OpenAI client wrapper that spends quota through a UsageLedger.

    Usage is recorded with the fixed per-call estimate rather than the
    token counts the provider reports, so that the same unit is used for
    admission and accounting.
    """

    def __init__(
        self,
        model: str,
        ledger: UsageLedger,
        estimate: Optional[OperationEstimate] = None,
        client: Optional[OpenAI] = None
    ):
        """Initialize guarded OpenAI client.

        Args:
            model: Model name (required)
            ledger: Ledger the calls are admitted against (required)
            estimate: Spend charged per call (defaults to 1 request / 750 tokens)
            client: Preconfigured OpenAI client; one is created if omitted

        Raises:
            ValueError: If model is missing/empty or ledger is missing
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if ledger is None:
            raise ValueError("ledger is required")

        self.model = model
        self.ledger = ledger
        self.estimate = estimate or OperationEstimate()
        self.client = client or OpenAI()

    def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        **kwargs: Any
    ) -> Any:
        """Create chat completion within today's quota.

        Args:
            messages: List of message dictionaries (required)
            temperature: Sampling temperature (optional)
            max_tokens: Maximum tokens to generate (optional)
            **kwargs: Additional OpenAI parameters

        Returns:
            OpenAI chat completion response, unchanged

        Raises:
            ValueError: If messages is empty
            QuotaExceeded: If the call would exceed a daily ceiling
            OpenAI API errors: Propagated without modification; no usage
                is recorded for a failed call
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        decision = self.ledger.check_limits(self.estimate.requests, self.estimate.tokens)
        if not decision.can_proceed:
            logger.warning("API limit reached: %s", decision.reason)
            raise QuotaExceeded(decision)

        response = self.client.chat.completions.create(
            model=self.model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            **kwargs
        )

        self.ledger.record_usage(self.estimate.requests, self.estimate.tokens)

        return response
