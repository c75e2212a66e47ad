"""Two-stage quality grading: a cheap fast grader, escalating to a strong one when unsure."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from llm_cascade.exceptions import CascadeError, GradingError
from llm_cascade.grading.prompts import build_grading_prompt, parse_grader_json
from llm_cascade.grading.rubric import (
    DEFAULT_SCORE,
    Rubric,
    clamp_confidence,
    clamp_score,
    composite_score,
    is_simple_factual,
    needs_escalation,
    rubric_for,
    score_variance,
)
from llm_cascade.models import (
    DimensionScore,
    GraderCall,
    GradingResult,
    GradingTiming,
    QuestionType,
)
from llm_cascade.pricing.table import calculate_cost
from llm_cascade.providers.base import chat_completion
from llm_cascade.security import redact_secrets
from llm_cascade.tokens.counter import estimate_tokens

if TYPE_CHECKING:
    from llm_cascade.config import Config
    from llm_cascade.net.client import ResilientClient
    from llm_cascade.pricing.table import PricingTable

logger = logging.getLogger(__name__)

AUTO_PASS_GRADER = "auto-pass"
FALLBACK_GRADER = "fallback"
FALLBACK_SCORE = 50.0
FALLBACK_THRESHOLD = 75.0


@dataclass(frozen=True)
class _GraderSpec:
    key: str
    provider: str
    model: str
    base_url: str
    api_key: str | None
    timeout_s: float
    max_tokens: int
    default_confidence: float
    strong: bool


@dataclass(frozen=True)
class _Scored:
    """One grader's verdict before it is folded into a GradingResult."""

    grader: str
    rubric: Rubric
    question_type: QuestionType
    dimension_scores: tuple[DimensionScore, ...]
    composite: float
    confidence: float
    variance: float
    call: GraderCall
    api_call_ms: float

    @property
    def passed(self) -> bool:
        return self.composite >= self.rubric.threshold


def _number(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return default
    return float(value)


class QualityGrader:
    """Grades a candidate answer and decides whether it is good enough to ship.

    ``grade`` never raises apart from cancellation: when no grader can produce
    a verdict the result is a failing fallback grade, which routes the request
    to the premium tier.
    """

    def __init__(self, config: Config, http: ResilientClient, pricing: PricingTable) -> None:
        self.config = config
        self.http = http
        self.pricing = pricing

    # -----------------------------------------------------------------------
    # Grader calls
    # -----------------------------------------------------------------------

    def _fast_spec(self, slim: bool) -> _GraderSpec:
        return _GraderSpec(
            key="fast_grade",
            provider="groq",
            model=self.config.fast_grader_model,
            base_url=self.config.cheap_base_url,
            api_key=self.config.credential(self.config.cheap_key_env),
            timeout_s=self.config.fast_grader_timeout_s,
            max_tokens=150 if slim else 250,
            default_confidence=0.5,
            strong=False,
        )

    def _strong_spec(self, slim: bool) -> _GraderSpec:
        return _GraderSpec(
            key="strong_grade",
            provider="openai",
            model=self.config.strong_grader_model,
            base_url=self.config.premium_base_url,
            api_key=self.config.grader_credential(),
            timeout_s=self.config.strong_grader_timeout_s,
            max_tokens=200 if slim else 300,
            default_confidence=0.8,
            strong=True,
        )

    async def _score(
        self, spec: _GraderSpec, query: str, answer: str, system_context: str, slim: bool
    ) -> _Scored:
        if not spec.api_key:
            msg = f"No credential for grader {spec.model}"
            raise GradingError(msg)

        prompt = build_grading_prompt(
            query, answer, system_context, slim=slim, strong=spec.strong
        )
        try:
            completion = await chat_completion(
                self.http,
                label=spec.key,
                base_url=spec.base_url,
                api_key=spec.api_key,
                payload={
                    "model": spec.model,
                    "max_tokens": spec.max_tokens,
                    "response_format": {"type": "json_object"},
                    "messages": [{"role": "user", "content": prompt}],
                },
                timeout_s=spec.timeout_s,
                max_retries=self.config.max_retries,
            )
        except CascadeError as e:
            raise GradingError(str(e)) from e

        input_tokens = completion.prompt_tokens or 0
        output_tokens = completion.completion_tokens or 0
        pricing = await self.pricing.price_for(spec.provider, spec.model)
        call = GraderCall(
            model=spec.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cost=calculate_cost(pricing, input_tokens, output_tokens),
        )

        try:
            data = parse_grader_json(completion.content)
        except GradingError as e:
            raise GradingError(str(e), call=call) from e
        return self._interpret(spec, data, slim, call, completion.api_call_ms)

    def _interpret(
        self,
        spec: _GraderSpec,
        data: dict[str, Any],
        slim: bool,
        call: GraderCall,
        api_call_ms: float,
    ) -> _Scored:
        raw_type = data.get("type")
        default_type = QuestionType.FACTUAL if slim else QuestionType.ANALYTICAL
        if raw_type is None or raw_type == "":
            question_type = default_type
        else:
            try:
                question_type = QuestionType(str(raw_type).strip().upper())
            except ValueError as e:
                msg = f"Invalid question type: {raw_type}"
                raise GradingError(msg, call=call) from e

        rubric = rubric_for(question_type, slim=slim)
        confidence = clamp_confidence(_number(data.get("confidence"), spec.default_confidence))
        scores = data.get("scores") if isinstance(data.get("scores"), dict) else {}
        reasoning = data.get("reasoning") if isinstance(data.get("reasoning"), dict) else {}

        dimension_scores = tuple(
            DimensionScore(
                dimension=dimension,
                score=clamp_score(_number(scores.get(dimension), DEFAULT_SCORE)),
                reasoning=str(reasoning.get(dimension) or "No reasoning provided"),
                confidence=confidence,
            )
            for dimension in rubric.dimensions
        )
        values = {d.dimension: d.score for d in dimension_scores}
        return _Scored(
            grader=spec.model,
            rubric=rubric,
            question_type=rubric.question_type,
            dimension_scores=dimension_scores,
            composite=composite_score(rubric, values),
            confidence=confidence,
            variance=score_variance([d.score for d in dimension_scores]),
            call=call,
            api_call_ms=api_call_ms,
        )

    # -----------------------------------------------------------------------
    # State machine
    # -----------------------------------------------------------------------

    def should_auto_pass(self, query: str, answer: str) -> bool:
        return (
            estimate_tokens(query) < self.config.auto_pass_query_tokens
            and estimate_tokens(answer) <= self.config.auto_pass_answer_tokens
        )

    async def grade(
        self,
        query: str,
        answer: str,
        system_context: str = "",
        on_call: Callable[[GraderCall], None] | None = None,
    ) -> GradingResult:
        """Grade ``answer`` to ``query``. Returns a result in every case.

        ``on_call`` receives each grader call as soon as it completes, so its
        cost can be booked before a later call is cancelled.
        """
        start_time = time.time()
        start = time.perf_counter()

        if self.should_auto_pass(query, answer):
            logger.debug("Auto-passing trivial exchange")
            return self._auto_pass(start_time, start)

        slim = is_simple_factual(query)
        calls: dict[str, GraderCall] = {}
        api_ms = 0.0

        def keep(key: str, call: GraderCall) -> None:
            calls[key] = call
            if on_call is not None:
                on_call(call)

        fast: _Scored | None = None
        try:
            fast = await self._score(self._fast_spec(slim), query, answer, system_context, slim)
        except Exception as e:
            self._record_failed_call(e, "fast_grade", keep)
            logger.info("Fast grader failed, escalating: %s", redact_secrets(e))
        else:
            keep("fast_grade", fast.call)
            api_ms += fast.api_call_ms
            if not needs_escalation(
                fast.composite,
                fast.rubric.threshold,
                fast.confidence,
                margin=self.config.escalation_margin,
                min_confidence=self.config.min_grader_confidence,
            ):
                return self._result(fast, calls, api_ms, start_time, start)
            logger.info(
                "Borderline fast grade %.1f (threshold %.0f, confidence %.2f), escalating",
                fast.composite,
                fast.rubric.threshold,
                fast.confidence,
            )

        try:
            strong = await self._score(
                self._strong_spec(slim), query, answer, system_context, slim
            )
        except Exception as e:
            self._record_failed_call(e, "strong_grade", keep)
            if fast is not None:
                logger.warning(
                    "Strong grader failed, keeping borderline fast grade: %s", redact_secrets(e)
                )
                return self._result(fast, calls, api_ms, start_time, start)
            logger.warning("Both graders failed, using fallback grade: %s", redact_secrets(e))
            return self._fallback(calls, start_time, start)

        keep("strong_grade", strong.call)
        api_ms += strong.api_call_ms
        return self._result(strong, calls, api_ms, start_time, start)

    @staticmethod
    def _record_failed_call(
        error: Exception, key: str, keep: Callable[[str, GraderCall], None]
    ) -> None:
        if isinstance(error, GradingError) and error.call is not None:
            keep(key, error.call)

    # -----------------------------------------------------------------------
    # Results
    # -----------------------------------------------------------------------

    @staticmethod
    def _timing(start_time: float, start: float, api_ms: float) -> GradingTiming:
        duration_ms = (time.perf_counter() - start) * 1000
        return GradingTiming(
            duration_ms=duration_ms,
            start_time=start_time,
            end_time=start_time + duration_ms / 1000,
            api_call_ms=api_ms,
            classification_ms=0.0,
            evaluation_ms=api_ms,
        )

    def _result(
        self,
        scored: _Scored,
        calls: dict[str, GraderCall],
        api_ms: float,
        start_time: float,
        start: float,
    ) -> GradingResult:
        summary = ", ".join(f"{d.dimension}:{d.score:g}" for d in scored.dimension_scores)
        return GradingResult(
            score=scored.composite,
            passed=scored.passed,
            question_type=scored.question_type,
            dimension_scores=scored.dimension_scores,
            confidence=scored.confidence,
            variance=scored.variance,
            threshold=scored.rubric.threshold,
            cost=sum(c.cost for c in calls.values()),
            timing=self._timing(start_time, start, api_ms),
            cost_breakdown=dict(calls),
            grader=scored.grader,
            reasoning=f"{scored.grader} grading: {summary}",
        )

    def _auto_pass(self, start_time: float, start: float) -> GradingResult:
        reason = "Auto-pass for trivial factual question"
        return GradingResult(
            score=100.0,
            passed=True,
            question_type=QuestionType.FACTUAL,
            dimension_scores=tuple(
                DimensionScore(dimension=d, score=10, reasoning=reason, confidence=1.0)
                for d in ("accuracy", "completeness", "safety")
            ),
            confidence=1.0,
            variance=0.0,
            threshold=80.0,
            timing=self._timing(start_time, start, 0.0),
            grader=AUTO_PASS_GRADER,
            reasoning=reason,
        )

    def _fallback(
        self, calls: dict[str, GraderCall], start_time: float, start: float
    ) -> GradingResult:
        return GradingResult(
            score=FALLBACK_SCORE,
            passed=False,
            question_type=QuestionType.ANALYTICAL,
            confidence=0.0,
            variance=0.0,
            threshold=FALLBACK_THRESHOLD,
            cost=sum(c.cost for c in calls.values()),
            timing=self._timing(start_time, start, 0.0),
            cost_breakdown=dict(calls),
            grader=FALLBACK_GRADER,
            reasoning="Grading failed",
        )
