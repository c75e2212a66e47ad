"""Per-request trace builder, frozen into a CascadeResult once the cascade finishes."""

from __future__ import annotations

import time

from llm_cascade.models import (
    CascadeResult,
    CostBreakdown,
    FlowStep,
    GradingTiming,
    KeySource,
    PerformanceMetrics,
    Tier,
    TimingBreakdown,
)

CACHE_CHECK = "cache_check"
PROMPT_COMPRESSION = "prompt_compression"
CHEAP_GENERATION = "cheap_generation"
QUALITY_GRADING = "quality_grading"
PREMIUM_GENERATION = "premium_generation"

STAGES: tuple[str, ...] = (
    CACHE_CHECK,
    PROMPT_COMPRESSION,
    CHEAP_GENERATION,
    QUALITY_GRADING,
    PREMIUM_GENERATION,
)


class CascadeTrace:
    """Mutable record owned by one cascade task.

    Costs are recorded as each stage completes, so a trace held by the caller
    still reports every cost incurred when the cascade is cancelled midway.
    """

    def __init__(self) -> None:
        self.start_time = time.time()
        self._start = time.perf_counter()
        self.steps: list[FlowStep] = []
        self.costs: dict[str, float] = dict.fromkeys(STAGES, 0.0)
        self.durations_ms: dict[str, float] = dict.fromkeys(STAGES, 0.0)
        self._booked: dict[str, float] = dict.fromkeys(STAGES, 0.0)
        self.model_api_ms = 0.0
        self.grader_api_ms = 0.0
        self.grader_classification_ms = 0.0
        self.grader_evaluation_ms = 0.0

    @property
    def next_step(self) -> int:
        return len(self.steps) + 1

    @property
    def total_cost(self) -> float:
        return sum(self.costs.values())

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000

    def book(self, stage: str, cost: float) -> None:
        """Book a cost against ``stage`` before its step is recorded."""
        if stage not in self.costs:
            msg = f"Unknown stage: {stage}"
            raise ValueError(msg)
        self.costs[stage] += cost
        self._booked[stage] += cost

    def record(
        self,
        step: FlowStep,
        stage: str,
        *,
        duration_ms: float = 0.0,
        model_api_ms: float = 0.0,
        grader_timing: GradingTiming | None = None,
    ) -> None:
        """Append a finished step and book its cost and time against ``stage``.

        Cost already booked against ``stage`` counts towards ``step.cost``.
        """
        if stage not in self.costs:
            msg = f"Unknown stage: {stage}"
            raise ValueError(msg)
        self.steps.append(step)
        self.costs[stage] += step.cost - self._booked[stage]
        self._booked[stage] = 0.0
        self.durations_ms[stage] += duration_ms
        self.model_api_ms += model_api_ms
        if grader_timing is not None:
            self.grader_api_ms += grader_timing.api_call_ms
            self.grader_classification_ms += grader_timing.classification_ms
            self.grader_evaluation_ms += grader_timing.evaluation_ms

    def cost_breakdown(self) -> CostBreakdown:
        return CostBreakdown(**self.costs)

    def timing_breakdown(self, total_ms: float | None = None) -> TimingBreakdown:
        total_ms = self.elapsed_ms if total_ms is None else total_ms
        api_ms = self.model_api_ms + self.grader_api_ms
        return TimingBreakdown(
            cache_check_ms=self.durations_ms[CACHE_CHECK],
            prompt_compression_ms=self.durations_ms[PROMPT_COMPRESSION],
            cheap_generation_ms=self.durations_ms[CHEAP_GENERATION],
            quality_grading_ms=self.durations_ms[QUALITY_GRADING],
            premium_generation_ms=self.durations_ms[PREMIUM_GENERATION],
            total_ms=total_ms,
            overhead_ms=max(0.0, total_ms - api_ms),
            model_api_calls_ms=self.model_api_ms,
            grader_api_calls_ms=self.grader_api_ms,
            grader_classification_ms=self.grader_classification_ms,
            grader_evaluation_ms=self.grader_evaluation_ms,
            total_api_calls_ms=api_ms,
        )

    def freeze(
        self,
        *,
        response: str,
        model: str,
        tier: Tier,
        quality_score: float,
        baseline_cost: float,
        prompt_tokens: int,
        completion_tokens: int,
        tokens_processed: int,
        system_context_applied: bool,
        compression_applied: bool,
        key_source: KeySource | None = None,
        cached: bool = False,
    ) -> CascadeResult:
        """Build the immutable result. The trace may keep recording afterwards."""
        timing = self.timing_breakdown()
        costs = self.cost_breakdown()
        total = costs.total
        savings = max(0.0, baseline_cost - total)
        savings_percent = round(savings / baseline_cost * 100, 1) if baseline_cost > 0 else 0.0

        return CascadeResult(
            response=response,
            model=model,
            tier=tier,
            cost=total,
            flow=tuple(self.steps),
            cached=cached,
            system_context_applied=system_context_applied,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            key_source=key_source,
            cost_breakdown=costs,
            timing_breakdown=timing,
            performance_metrics=PerformanceMetrics(
                total_response_time_ms=timing.total_ms,
                overhead_ms=timing.overhead_ms,
                model_api_calls_ms=timing.model_api_calls_ms,
                grader_api_calls_ms=timing.grader_api_calls_ms,
                total_api_calls_ms=timing.total_api_calls_ms,
                total_cost_usd=total,
                baseline_cost_usd=baseline_cost,
                cost_savings_usd=savings,
                cost_savings_percent=savings_percent,
                quality_score=quality_score,
                tier_used=tier,
                tokens_processed=tokens_processed,
                system_context_applied=system_context_applied,
                compression_applied=compression_applied,
            ),
        )
