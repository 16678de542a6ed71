"""Token and timing metrics of one provider call or of a whole conversation."""

from dataclasses import dataclass, replace
from typing import Any

from smarthopper.calls.messages import Origin, RuntimeMessage, Severity


@dataclass(slots=True, frozen=True)
class AIMetrics:
    provider: str = ""
    model: str = ""
    finish_reason: str = ""
    completion_time: float = 0.0
    input_tokens_prompt: int = 0
    input_tokens_cached: int = 0
    output_tokens_generation: int = 0
    output_tokens_reasoning: int = 0

    @property
    def input_tokens(self) -> int:
        return self.input_tokens_prompt + self.input_tokens_cached

    @property
    def output_tokens(self) -> int:
        return self.output_tokens_generation + self.output_tokens_reasoning

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def is_empty(self) -> bool:
        return self == AIMetrics() or self == AIMetrics(provider="Unknown")

    def validate(self) -> tuple[bool, list[RuntimeMessage]]:
        problems: list[str] = []
        if not self.provider or not self.model:
            problems.append("Provider and model fields are required")
        if self.input_tokens < 0 or self.output_tokens < 0:
            problems.append("Input and output tokens must be greater than or equal to 0")
        if not self.finish_reason:
            problems.append("Finish reason must be set")
        if self.completion_time < 0:
            problems.append("Completion time must be greater than or equal to 0")
        messages = [
            RuntimeMessage(Severity.ERROR, Origin.VALIDATION, text, surfaceable=False)
            for text in problems
        ]
        return not messages, messages

    def is_valid(self) -> bool:
        return self.validate()[0]

    def combine(self, other: "AIMetrics") -> "AIMetrics":
        """Sum counters and timings; identity fields take ``other``'s non-empty values."""
        return AIMetrics(
            provider=other.provider or self.provider,
            model=other.model or self.model,
            finish_reason=other.finish_reason or self.finish_reason,
            completion_time=self.completion_time + other.completion_time,
            input_tokens_prompt=self.input_tokens_prompt + other.input_tokens_prompt,
            input_tokens_cached=self.input_tokens_cached + other.input_tokens_cached,
            output_tokens_generation=self.output_tokens_generation
            + other.output_tokens_generation,
            output_tokens_reasoning=self.output_tokens_reasoning + other.output_tokens_reasoning,
        )

    def with_identity(
        self, *, provider: str, model: str, completion_time: float | None = None
    ) -> "AIMetrics":
        updated = replace(self, provider=provider, model=model)
        if completion_time is not None:
            updated = replace(updated, completion_time=completion_time)
        return updated

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider,
            "model": self.model,
            "finish_reason": self.finish_reason,
            "completion_time": self.completion_time,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "total_tokens": self.total_tokens,
        }
