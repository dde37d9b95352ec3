"""Stage timing and token cost accounting."""

from __future__ import annotations

import re
import time

from mini_rag.config import PricingConfig
from mini_rag.types import CostEstimate, TokenUsage

_PER_MILLION = 1_000_000.0
_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


def estimate_cost(
    prompt_tokens: int,
    completion_tokens: int,
    input_rate_per_million: float,
    output_rate_per_million: float,
) -> CostEstimate:
    """Estimate the USD cost of one generation from its token counts.

    Rates are USD per one million tokens. The formatted total always carries
    six decimal places, e.g. ``$0.000123``.
    """

    if prompt_tokens < 0 or completion_tokens < 0:
        raise ValueError("token counts must be non-negative")
    if input_rate_per_million < 0 or output_rate_per_million < 0:
        raise ValueError("rates must be non-negative")

    input_cost = (prompt_tokens / _PER_MILLION) * input_rate_per_million
    output_cost = (completion_tokens / _PER_MILLION) * output_rate_per_million
    total = input_cost + output_cost
    return CostEstimate(
        input=input_cost,
        output=output_cost,
        total=total,
        formatted=f"${total:.6f}",
    )


def estimate_usage_cost(usage: TokenUsage, pricing: PricingConfig | None = None) -> CostEstimate:
    pricing = pricing or PricingConfig()
    return estimate_cost(
        usage.prompt_tokens,
        usage.completion_tokens,
        pricing.input_per_million,
        pricing.output_per_million,
    )


def format_duration(elapsed_ms: float, *, always_seconds: bool = False) -> str:
    if elapsed_ms < 1000 and not always_seconds:
        return f"{elapsed_ms:.0f}ms"
    return f"{elapsed_ms / 1000:.2f}s"


class Timer:
    """Simple context timer used by the pipeline stages."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        return self.start()

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.stop()

    def start(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def stop(self) -> float:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
        return self.elapsed_ms

    @property
    def running_ms(self) -> float:
        """Elapsed time so far, usable while the timer is still open."""
        return (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    """Rough word/punctuation count for collaborators that report no usage."""
    return len(_TOKEN_PATTERN.findall(text))
