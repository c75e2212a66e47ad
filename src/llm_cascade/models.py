"""Pydantic models and enums for the cascade pipeline."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, computed_field

from llm_cascade.exceptions import InvalidMessagesError


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Tier(StrEnum):
    CHEAP = "cheap"
    PREMIUM = "premium"


class KeySource(StrEnum):
    USER_PROVIDED = "user_provided"
    SYSTEM_DEFAULT = "system_default"


class QuestionType(StrEnum):
    FACTUAL = "FACTUAL"
    ANALYTICAL = "ANALYTICAL"
    CREATIVE = "CREATIVE"
    TECHNICAL = "TECHNICAL"
    ETHICAL = "ETHICAL"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# -----------------------------------------------------------------------
# Messages
# -----------------------------------------------------------------------


class Message(_Frozen):
    role: Role
    content: str


def coerce_messages(messages: Iterable[Message | Mapping[str, Any]] | None) -> list[Message]:
    """Validate a raw message list. Raises InvalidMessagesError before any I/O."""
    if messages is None or isinstance(messages, (str, bytes, Mapping)):
        msg = "Messages array is required and must not be empty"
        raise InvalidMessagesError(msg)
    result: list[Message] = []
    for i, m in enumerate(messages):
        if isinstance(m, Message):
            result.append(m)
            continue
        try:
            result.append(Message.model_validate(m))
        except ValidationError as e:
            msg = f"Message {i} is malformed: {e.errors()[0]['msg']}"
            raise InvalidMessagesError(msg) from e
    if not result:
        msg = "Messages array is required and must not be empty"
        raise InvalidMessagesError(msg)
    return result


def system_context(messages: Iterable[Message]) -> str:
    """Concatenate every system message into one context string."""
    return " ".join(m.content for m in messages if m.role == Role.SYSTEM)


def last_user_message(messages: Iterable[Message]) -> str:
    users = [m.content for m in messages if m.role == Role.USER]
    return users[-1] if users else ""


def render_prompt(messages: Iterable[Message]) -> str:
    """Flatten a conversation into the ``role: content`` form used for compression."""
    return "\n\n".join(f"{m.role.value}: {m.content}" for m in messages)


# -----------------------------------------------------------------------
# Timing, tokens, pricing
# -----------------------------------------------------------------------


class Timing(_Frozen):
    """Wall-clock span of one stage. Times are epoch seconds, durations milliseconds."""

    duration_ms: float = 0.0
    start_time: float = 0.0
    end_time: float = 0.0
    api_call_ms: float = 0.0


class GradingTiming(Timing):
    classification_ms: float = 0.0
    evaluation_ms: float = 0.0


class TokenUsage(_Frozen):
    input_tokens: int = 0
    output_tokens: int = 0


class ModelPricing(_Frozen):
    provider: str
    model_name: str
    model_variant: str | None = None
    input_cost_per_million_tokens: float
    output_cost_per_million_tokens: float
    cached_input_cost_per_million_tokens: float | None = None
    context_window_tokens: int = 8192
    notes: str | None = None


class CallCostBreakdown(_Frozen):
    input_tokens: int = 0
    output_tokens: int = 0
    input_cost_per_1m: float = 0.0
    output_cost_per_1m: float = 0.0
    input_cost: float = 0.0
    output_cost: float = 0.0
    total_cost: float = 0.0


class ProviderResponse(_Frozen):
    """Normalized result of one tier call."""

    content: str
    model: str
    tier: Tier
    cost: float
    prompt_tokens: int
    completion_tokens: int
    usage_estimated: bool = False
    timing: Timing
    cost_breakdown: CallCostBreakdown
    key_source: KeySource | None = None


# -----------------------------------------------------------------------
# Compression
# -----------------------------------------------------------------------


class CompressionStrategy(_Frozen):
    name: str
    applied: bool
    reason: str | None = None
    transformations: tuple[str, ...] = ()
    original_tokens: int | None = None
    compressed_tokens: int | None = None


class CompressionResult(_Frozen):
    compressed: str
    original_tokens: int
    compressed_tokens: int
    ratio: float
    strategies: tuple[CompressionStrategy, ...] = ()
    cost: float = 0.0
    timing: Timing = Timing()

    @property
    def transformations(self) -> list[str]:
        return [t for s in self.strategies for t in s.transformations]


# -----------------------------------------------------------------------
# Grading
# -----------------------------------------------------------------------


class DimensionScore(_Frozen):
    dimension: str
    score: float = Field(ge=1, le=10)
    reasoning: str = ""
    confidence: float = Field(default=0.5, ge=0, le=1)


class GraderCall(_Frozen):
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    cost: float = 0.0


class GradingResult(_Frozen):
    score: float = Field(ge=0, le=100)
    passed: bool
    question_type: QuestionType
    dimension_scores: tuple[DimensionScore, ...] = ()
    confidence: float = 0.0
    variance: float = 0.0
    threshold: float
    cost: float = 0.0
    timing: GradingTiming = GradingTiming()
    cost_breakdown: dict[str, GraderCall] = Field(default_factory=dict)
    grader: str
    reasoning: str = ""


# -----------------------------------------------------------------------
# Flow trace: one typed step per stage
# -----------------------------------------------------------------------


class _StepBase(_Frozen):
    step: int
    name: str
    status: str
    cost: float = 0.0
    timing: Timing | None = None
    details: str = ""


class CacheStep(_StepBase):
    kind: Literal["cache"] = "cache"
    hit: bool = False


class CompressStep(_StepBase):
    kind: Literal["compress"] = "compress"
    compression: CompressionResult


class GenerateStep(_StepBase):
    kind: Literal["generate"] = "generate"
    tier: Tier
    model: str = ""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_breakdown: CallCostBreakdown | None = None
    response_preview: str = ""
    key_source: KeySource | None = None
    error: str | None = None


class GradeStep(_StepBase):
    kind: Literal["grade"] = "grade"
    score: float
    passed: bool
    question_type: QuestionType
    dimension_scores: tuple[DimensionScore, ...] = ()
    confidence: float = 0.0
    variance: float = 0.0
    threshold: float
    grader: str
    cost_breakdown: dict[str, GraderCall] = Field(default_factory=dict)


class FastPathStep(_StepBase):
    kind: Literal["fast_path"] = "fast_path"
    model: str
    score: float
    passed: bool = True
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cost_breakdown: CallCostBreakdown | None = None


FlowStep = Annotated[
    CacheStep | CompressStep | GenerateStep | GradeStep | FastPathStep,
    Field(discriminator="kind"),
]


# -----------------------------------------------------------------------
# Terminal aggregate
# -----------------------------------------------------------------------


class CostBreakdown(_Frozen):
    cache_check: float = 0.0
    prompt_compression: float = 0.0
    cheap_generation: float = 0.0
    quality_grading: float = 0.0
    premium_generation: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total(self) -> float:
        return (
            self.cache_check
            + self.prompt_compression
            + self.cheap_generation
            + self.quality_grading
            + self.premium_generation
        )


class TimingBreakdown(_Frozen):
    cache_check_ms: float = 0.0
    prompt_compression_ms: float = 0.0
    cheap_generation_ms: float = 0.0
    quality_grading_ms: float = 0.0
    premium_generation_ms: float = 0.0
    total_ms: float = 0.0
    overhead_ms: float = 0.0
    model_api_calls_ms: float = 0.0
    grader_api_calls_ms: float = 0.0
    grader_classification_ms: float = 0.0
    grader_evaluation_ms: float = 0.0
    total_api_calls_ms: float = 0.0


class PerformanceMetrics(_Frozen):
    total_response_time_ms: float
    overhead_ms: float
    model_api_calls_ms: float
    grader_api_calls_ms: float
    total_api_calls_ms: float
    total_cost_usd: float
    baseline_cost_usd: float
    cost_savings_usd: float = Field(ge=0)
    cost_savings_percent: float
    quality_score: float
    tier_used: Tier
    tokens_processed: int
    system_context_applied: bool
    compression_applied: bool


class CascadeResult(_Frozen):
    """The sole externally observable record of one routing decision."""

    response: str
    model: str
    tier: Tier
    cost: float = Field(ge=0)
    flow: tuple[FlowStep, ...] = Field(min_length=1)
    cached: bool = False
    system_context_applied: bool = False
    prompt_tokens: int = 0
    completion_tokens: int = 0
    key_source: KeySource | None = None
    cost_breakdown: CostBreakdown
    timing_breakdown: TimingBreakdown
    performance_metrics: PerformanceMetrics
