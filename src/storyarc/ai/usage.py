"""In-memory usage and cost tracking for model calls.

Every request made through ``AIClient`` is recorded here with its model,
operation label, token counts and latency. The pipeline reads the running
total to report the estimated cost of a biography run.

Only metadata is stored. Prompt and response text never reach the tracker.

Example:
    >>> tracker = UsageTracker()
    >>> tracker.record(
    ...     model="gemini-1.5-flash",
    ...     operation="chapter_title",
    ...     prompt_tokens=500,
    ...     completion_tokens=120,
    ...     latency_ms=850.0,
    ... )
    >>> f"${tracker.total_cost():.7f}"
    '$0.0000735'
"""

from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


# =============================================================================
# Pricing Constants
# =============================================================================


PRICING: dict[str, dict[str, float]] = {
    "gemini-1.5-pro": {
        "input": 0.00125,  # per 1K input tokens
        "output": 0.00375,  # per 1K output tokens
    },
    "gemini-1.5-flash": {
        "input": 0.000075,
        "output": 0.0003,
    },
    "gemini-1.5-flash-8b": {
        "input": 0.0000375,
        "output": 0.00015,
    },
    "gemini-2.0-flash": {
        "input": 0.0001,
        "output": 0.0004,
    },
    "default": {
        "input": 0.001,
        "output": 0.003,
    },
}
"""Approximate USD pricing per 1K tokens. Estimates only."""


# =============================================================================
# Data Models
# =============================================================================


@dataclass
class UsageRecord:
    """A single model call.

    Attributes:
        id: Unique record identifier.
        timestamp: When the call finished.
        model: Model used.
        operation: Caller-supplied label (``chapter_title``, ``sentiment_batch``).
        prompt_tokens: Input token count.
        completion_tokens: Output token count.
        latency_ms: Request latency in milliseconds.
        success: Whether the call succeeded.
        error_type: Exception class name when the call failed.
        estimated_cost_usd: Estimated cost in USD.
    """

    id: str
    timestamp: datetime
    model: str
    operation: str
    prompt_tokens: int
    completion_tokens: int
    latency_ms: float
    success: bool
    error_type: str | None = None
    estimated_cost_usd: float = 0.0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class UsageSummary:
    """Aggregated usage statistics for the tracker's lifetime."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_prompt_tokens: int = 0
    total_completion_tokens: int = 0
    average_latency_ms: float = 0.0
    total_estimated_cost_usd: float = 0.0
    by_operation: dict[str, int] = field(default_factory=dict)
    by_model: dict[str, int] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return self.total_prompt_tokens + self.total_completion_tokens


# =============================================================================
# Main Usage Tracker
# =============================================================================


class UsageTracker:
    """Thread-safe, in-memory record of model calls.

    Sentiment batches may be scored from a thread pool, so all mutation
    happens under a lock.

    Args:
        pricing: Optional pricing table overriding ``PRICING``.
    """

    def __init__(self, pricing: dict[str, dict[str, float]] | None = None) -> None:
        self._pricing = pricing or PRICING
        self._records: list[UsageRecord] = []
        self._lock = threading.Lock()

    @classmethod
    def with_default_price(cls, input_per_1k: float, output_per_1k: float) -> "UsageTracker":
        """Tracker using ``PRICING`` with its ``default`` row replaced."""
        pricing = dict(PRICING)
        pricing["default"] = {"input": input_per_1k, "output": output_per_1k}
        return cls(pricing=pricing)

    def record(
        self,
        model: str,
        operation: str,
        prompt_tokens: int,
        completion_tokens: int,
        latency_ms: float,
        success: bool = True,
        error_type: str | None = None,
    ) -> UsageRecord:
        """Record one model call and return the stored record."""
        record = UsageRecord(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc),
            model=model,
            operation=operation,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            latency_ms=latency_ms,
            success=success,
            error_type=error_type,
            estimated_cost_usd=self.estimate_cost(model, prompt_tokens, completion_tokens),
        )
        with self._lock:
            self._records.append(record)

        logger.debug(
            f"Recorded: {operation} on {model}, "
            f"{record.total_tokens} tokens, ${record.estimated_cost_usd:.6f}"
        )
        return record

    def record_failure(
        self,
        model: str,
        operation: str,
        error_type: str,
        latency_ms: float = 0.0,
    ) -> UsageRecord:
        """Record a failed call with zero tokens."""
        return self.record(
            model=model,
            operation=operation,
            prompt_tokens=0,
            completion_tokens=0,
            latency_ms=latency_ms,
            success=False,
            error_type=error_type,
        )

    def estimate_cost(self, model: str, prompt_tokens: int, completion_tokens: int) -> float:
        """Estimate USD cost from the pricing table.

        Unknown models use the ``default`` row. Versioned names such as
        ``gemini-1.5-flash-002`` match their base entry.
        """
        prices = self._pricing.get(model)
        if prices is None:
            base = next(
                (name for name in sorted(self._pricing, key=len, reverse=True)
                 if name != "default" and model.startswith(name)),
                "default",
            )
            prices = self._pricing.get(base, PRICING["default"])
        return (prompt_tokens / 1000) * prices["input"] + (completion_tokens / 1000) * prices["output"]

    @property
    def records(self) -> list[UsageRecord]:
        with self._lock:
            return list(self._records)

    def total_cost(self) -> float:
        with self._lock:
            return sum(r.estimated_cost_usd for r in self._records)

    def total_tokens(self) -> int:
        with self._lock:
            return sum(r.total_tokens for r in self._records)

    def summary(self) -> UsageSummary:
        """Aggregate every record into a ``UsageSummary``."""
        with self._lock:
            records = list(self._records)

        summary = UsageSummary()
        for r in records:
            summary.total_requests += 1
            if r.success:
                summary.successful_requests += 1
            else:
                summary.failed_requests += 1
            summary.total_prompt_tokens += r.prompt_tokens
            summary.total_completion_tokens += r.completion_tokens
            summary.total_estimated_cost_usd += r.estimated_cost_usd
            summary.by_operation[r.operation] = summary.by_operation.get(r.operation, 0) + 1
            summary.by_model[r.model] = summary.by_model.get(r.model, 0) + 1

        if records:
            summary.average_latency_ms = sum(r.latency_ms for r in records) / len(records)
        return summary

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
