"""Per-question-type weights, pass thresholds and composite scoring."""

from __future__ import annotations

import statistics
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from llm_cascade.models import QuestionType

FULL_DIMENSIONS: tuple[str, ...] = ("accuracy", "completeness", "clarity", "depth", "safety")
SLIM_DIMENSIONS: tuple[str, ...] = ("accuracy", "completeness", "safety")

FACTUAL_HINTS: tuple[str, ...] = (
    "what is",
    "capital of",
    "when was",
    "who is",
    "where is",
    "how many",
)

MIN_SCORE = 1.0
MAX_SCORE = 10.0
DEFAULT_SCORE = 5.0


@dataclass(frozen=True)
class Rubric:
    question_type: QuestionType
    weights: Mapping[str, float] = field(hash=False)
    threshold: float
    slim: bool = False

    @property
    def dimensions(self) -> tuple[str, ...]:
        return tuple(self.weights)


RUBRICS: dict[QuestionType, Rubric] = {
    QuestionType.FACTUAL: Rubric(
        QuestionType.FACTUAL,
        {"accuracy": 0.40, "completeness": 0.30, "clarity": 0.20, "depth": 0.05, "safety": 0.05},
        threshold=85,
    ),
    QuestionType.ANALYTICAL: Rubric(
        QuestionType.ANALYTICAL,
        {"accuracy": 0.25, "completeness": 0.20, "clarity": 0.15, "depth": 0.35, "safety": 0.05},
        threshold=75,
    ),
    QuestionType.CREATIVE: Rubric(
        QuestionType.CREATIVE,
        {"accuracy": 0.15, "completeness": 0.25, "clarity": 0.25, "depth": 0.25, "safety": 0.10},
        threshold=70,
    ),
    QuestionType.TECHNICAL: Rubric(
        QuestionType.TECHNICAL,
        {"accuracy": 0.35, "completeness": 0.30, "clarity": 0.20, "depth": 0.10, "safety": 0.05},
        threshold=80,
    ),
    QuestionType.ETHICAL: Rubric(
        QuestionType.ETHICAL,
        {"accuracy": 0.20, "completeness": 0.20, "clarity": 0.20, "depth": 0.20, "safety": 0.20},
        threshold=75,
    ),
}

# Simple fact lookups are judged on three dimensions with a lower bar.
SLIM_FACTUAL = Rubric(
    QuestionType.FACTUAL,
    {"accuracy": 0.6, "completeness": 0.3, "safety": 0.1},
    threshold=80,
    slim=True,
)


def is_simple_factual(query: str) -> bool:
    lowered = query.lower()
    return any(hint in lowered for hint in FACTUAL_HINTS)


def rubric_for(question_type: QuestionType, *, slim: bool) -> Rubric:
    return SLIM_FACTUAL if slim else RUBRICS[question_type]


def clamp_score(value: float) -> float:
    return min(MAX_SCORE, max(MIN_SCORE, value))


def clamp_confidence(value: float) -> float:
    return min(1.0, max(0.0, value))


def composite_score(rubric: Rubric, scores: Mapping[str, float]) -> float:
    """Weighted sum of 1-10 dimension scores, scaled to 0-100 and rounded to 0.1."""
    weighted = sum(w * scores.get(d, DEFAULT_SCORE) for d, w in rubric.weights.items())
    return round(weighted * 10, 1)


def score_variance(scores: Sequence[float]) -> float:
    """Population variance of the dimension scores, rounded to 0.1."""
    if not scores:
        return 0.0
    return round(statistics.pvariance(scores), 1)


def needs_escalation(
    composite: float,
    threshold: float,
    confidence: float,
    *,
    margin: float = 3.0,
    min_confidence: float = 0.6,
) -> bool:
    """Low confidence or a composite too close to the threshold to call."""
    return confidence < min_confidence or abs(composite - threshold) <= margin
