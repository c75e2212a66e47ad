"""Tests for two-stage quality grading."""

from __future__ import annotations

import pytest
from conftest import FAST_GRADER, STRONG_GRADER, grader_json

from llm_cascade.exceptions import GradingError
from llm_cascade.grading.grader import (
    AUTO_PASS_GRADER,
    FALLBACK_GRADER,
    QualityGrader,
)
from llm_cascade.grading.prompts import build_grading_prompt, parse_grader_json
from llm_cascade.grading.rubric import (
    RUBRICS,
    SLIM_FACTUAL,
    composite_score,
    is_simple_factual,
    needs_escalation,
    score_variance,
)
from llm_cascade.models import QuestionType

SLIM_QUERY = "What is the capital of Australia, and why was it chosen over Sydney?"
FULL_QUERY = "Explain the trade-offs between optimistic and pessimistic locking in databases."
LONG_ANSWER = (
    "Canberra is the capital. It was purpose-built as a compromise between the rival "
    "cities of Sydney and Melbourne, neither of which would accept the other as capital, "
    "and construction began in 1913 after an international design competition."
)

SLIM_SCORES = ("accuracy", "completeness", "safety")
FULL_SCORES = ("accuracy", "completeness", "clarity", "depth", "safety")


def _scores(value: float, dims=SLIM_SCORES) -> dict[str, float]:
    return dict.fromkeys(dims, value)


@pytest.fixture
def grader(tmp_config, http, pricing, api_keys):
    return QualityGrader(tmp_config, http, pricing)


# ---------------------------------------------------------------------------
# Rubric math
# ---------------------------------------------------------------------------
class TestRubric:
    def test_composite_is_weighted_sum_times_ten(self):
        """Composite scales the weighted 1-10 sum to 0-100."""
        assert composite_score(RUBRICS[QuestionType.ANALYTICAL], _scores(8, FULL_SCORES)) == 80.0
        slim = {"accuracy": 10, "completeness": 5, "safety": 10}
        assert composite_score(SLIM_FACTUAL, slim) == 85.0

    def test_variance_is_population_variance(self):
        """Variance uses the population formula, rounded to one decimal."""
        assert score_variance([10, 5, 5]) == 5.6
        assert score_variance([7, 7, 7]) == 0.0

    def test_thresholds(self):
        """Per-type thresholds match the rubric table."""
        assert RUBRICS[QuestionType.FACTUAL].threshold == 85
        assert RUBRICS[QuestionType.ANALYTICAL].threshold == 75
        assert RUBRICS[QuestionType.CREATIVE].threshold == 70
        assert RUBRICS[QuestionType.TECHNICAL].threshold == 80
        assert RUBRICS[QuestionType.ETHICAL].threshold == 75
        assert SLIM_FACTUAL.threshold == 80

    def test_weights_sum_to_one(self):
        """Every rubric's weights sum to one."""
        for rubric in [*RUBRICS.values(), SLIM_FACTUAL]:
            assert sum(rubric.weights.values()) == pytest.approx(1.0)

    @pytest.mark.parametrize(
        ("composite", "escalate"),
        [(77.0, True), (83.0, True), (80.0, True), (76.0, False), (84.0, False)],
    )
    def test_escalation_margin_boundaries(self, composite, escalate):
        """Within three points of the threshold escalates, inclusive."""
        assert needs_escalation(composite, 80, 0.9) is escalate

    def test_low_confidence_escalates(self):
        """Confidence under 0.6 escalates even far from the threshold."""
        assert needs_escalation(95.0, 80, 0.59)
        assert not needs_escalation(95.0, 80, 0.6)

    def test_simple_factual_heuristic(self):
        """Fact lookups pick the slim rubric."""
        assert is_simple_factual("What is the boiling point of water?")
        assert is_simple_factual("how many moons does Mars have")
        assert not is_simple_factual(FULL_QUERY)


# ---------------------------------------------------------------------------
# Prompt and parsing
# ---------------------------------------------------------------------------
class TestPrompts:
    def test_prompt_embeds_inputs(self):
        """The grading prompt carries question, answer and system context."""
        prompt = build_grading_prompt("Q?", "A.", "Be kind", slim=True, strong=False)
        assert '"""Q?"""' in prompt
        assert '"""A."""' in prompt
        assert "System Context" in prompt
        assert '"accuracy"' in prompt

    def test_full_prompt_lists_types(self):
        """The full rubric prompt asks the grader to classify."""
        prompt = build_grading_prompt("Q?", "A.", slim=False, strong=True)
        assert "ANALYTICAL" in prompt
        assert "System Context" not in prompt

    def test_parse_plain_json(self):
        assert parse_grader_json('{"confidence": 0.5}') == {"confidence": 0.5}

    def test_parse_fenced_json(self):
        """Markdown fences are stripped."""
        assert parse_grader_json('```json\n{"type": "FACTUAL"}\n```') == {"type": "FACTUAL"}

    def test_parse_json_with_prose(self):
        """A JSON object surrounded by prose is recovered."""
        assert parse_grader_json('Here you go: {"a": 1} hope it helps') == {"a": 1}

    def test_parse_garbage_raises(self):
        with pytest.raises(GradingError):
            parse_grader_json("no json here")


# ---------------------------------------------------------------------------
# Grading state machine
# ---------------------------------------------------------------------------
class TestAutoPass:
    @pytest.mark.parametrize(
        ("query_chars", "answer_chars", "expected"),
        [(196, 160, True), (196, 156, True), (200, 160, False), (196, 164, False)],
    )
    async def test_auto_pass_limits(self, grader, query_chars, answer_chars, expected):
        """Query under 50 estimated tokens and answer of at most 40 auto-pass."""
        assert grader.should_auto_pass("q" * query_chars, "a" * answer_chars) is expected

    async def test_auto_pass_makes_no_call(self, grader, fake_provider):
        """A trivial exchange passes with a perfect score at zero cost."""
        result = await grader.grade("What is 2+2?", "4")
        assert result.grader == AUTO_PASS_GRADER
        assert result.score == 100.0
        assert result.passed
        assert result.cost == 0.0
        assert result.question_type == QuestionType.FACTUAL
        assert len(result.dimension_scores) == 3
        assert fake_provider.requests == []


class TestGrade:
    async def test_confident_fast_grade_is_final(self, grader, fake_provider, pricing):
        """A confident fast grade far from the threshold is not escalated."""
        fake_provider.reply(
            FAST_GRADER, grader_json(_scores(9, FULL_SCORES), question_type="ANALYTICAL")
        )
        result = await grader.grade(FULL_QUERY, LONG_ANSWER)

        assert result.grader == FAST_GRADER
        assert result.score == 90.0
        assert result.passed
        assert result.question_type == QuestionType.ANALYTICAL
        assert result.threshold == 75
        assert fake_provider.calls(STRONG_GRADER) == 0
        assert set(result.cost_breakdown) == {"fast_grade"}
        assert result.cost == pytest.approx(result.cost_breakdown["fast_grade"].cost)
        assert result.cost > 0

    async def test_grader_uses_json_mode(self, grader, fake_provider):
        """Grader calls request a JSON object response."""
        fake_provider.reply(FAST_GRADER, grader_json(_scores(9, FULL_SCORES), question_type=None))
        await grader.grade(FULL_QUERY, LONG_ANSWER)
        payload = fake_provider.payloads(FAST_GRADER)[0]
        assert payload["response_format"] == {"type": "json_object"}

    async def test_borderline_escalates_to_strong(self, grader, fake_provider):
        """A composite within the margin escalates; the strong grade wins and costs add."""
        fake_provider.reply(FAST_GRADER, grader_json(_scores(7.7)))
        fake_provider.reply(STRONG_GRADER, grader_json(_scores(9)))
        result = await grader.grade(SLIM_QUERY, LONG_ANSWER)

        assert result.grader == STRONG_GRADER
        assert result.score == 90.0
        assert result.passed
        assert set(result.cost_breakdown) == {"fast_grade", "strong_grade"}
        assert result.cost == pytest.approx(
            result.cost_breakdown["fast_grade"].cost + result.cost_breakdown["strong_grade"].cost
        )

    async def test_low_confidence_escalates(self, grader, fake_provider):
        """An unsure fast grader hands over to the strong grader."""
        fake_provider.reply(FAST_GRADER, grader_json(_scores(10), confidence=0.3))
        fake_provider.reply(STRONG_GRADER, grader_json(_scores(5)))
        result = await grader.grade(SLIM_QUERY, LONG_ANSWER)
        assert result.grader == STRONG_GRADER
        assert not result.passed

    async def test_fast_failure_goes_to_strong(self, grader, fake_provider):
        """A failing fast grader is replaced by the strong grader."""
        fake_provider.reply(FAST_GRADER, status=500)
        fake_provider.reply(STRONG_GRADER, grader_json(_scores(9)))
        result = await grader.grade(SLIM_QUERY, LONG_ANSWER)
        assert result.grader == STRONG_GRADER
        assert set(result.cost_breakdown) == {"strong_grade"}

    async def test_strong_failure_keeps_borderline_fast_grade(self, grader, fake_provider):
        """When the strong grader fails, the borderline fast verdict stands."""
        fake_provider.reply(FAST_GRADER, grader_json(_scores(8.2)))
        fake_provider.reply(STRONG_GRADER, status=503)
        result = await grader.grade(SLIM_QUERY, LONG_ANSWER)
        assert result.grader == FAST_GRADER
        assert result.score == 82.0
        assert result.passed

    async def test_both_fail_falls_back_with_costs_retained(self, grader, fake_provider):
        """Both graders failing yields the fallback grade, keeping the cost of calls made."""
        fake_provider.reply(FAST_GRADER, "this is not json")
        fake_provider.reply(STRONG_GRADER, status=500)
        result = await grader.grade(SLIM_QUERY, LONG_ANSWER)

        assert result.grader == FALLBACK_GRADER
        assert result.score == 50.0
        assert not result.passed
        assert result.threshold == 75.0
        assert result.question_type == QuestionType.ANALYTICAL
        assert set(result.cost_breakdown) == {"fast_grade"}
        assert result.cost > 0

    async def test_on_call_sees_each_completed_call(self, grader, fake_provider):
        """Every finished grader call, failed or not, is reported as it completes."""
        fake_provider.reply(FAST_GRADER, "this is not json")
        fake_provider.reply(STRONG_GRADER, grader_json(_scores(9)))
        seen = []
        result = await grader.grade(SLIM_QUERY, LONG_ANSWER, on_call=seen.append)

        assert [call.model for call in seen] == [FAST_GRADER, STRONG_GRADER]
        assert sum(call.cost for call in seen) == pytest.approx(result.cost)

    async def test_invalid_type_escalates(self, grader, fake_provider):
        """An unknown question type is a grader failure."""
        fake_provider.reply(
            FAST_GRADER, grader_json(_scores(9, FULL_SCORES), question_type="POETIC")
        )
        fake_provider.reply(
            STRONG_GRADER, grader_json(_scores(9, FULL_SCORES), question_type="TECHNICAL")
        )
        result = await grader.grade(FULL_QUERY, LONG_ANSWER)
        assert result.grader == STRONG_GRADER
        assert result.question_type == QuestionType.TECHNICAL

    async def test_scores_and_confidence_clamped(self, grader, fake_provider):
        """Out-of-range numbers are clamped, missing scores default to 5."""
        fake_provider.reply(
            FAST_GRADER,
            grader_json(
                {"accuracy": 15, "completeness": -2},
                confidence=1.7,
                question_type="ANALYTICAL",
            ),
        )
        result = await grader.grade(FULL_QUERY, LONG_ANSWER)

        assert result.grader == FAST_GRADER
        by_dim = {d.dimension: d.score for d in result.dimension_scores}
        assert by_dim["accuracy"] == 10
        assert by_dim["completeness"] == 1
        assert by_dim["depth"] == 5
        assert result.confidence == 1.0
        assert result.score == 54.5

    async def test_fenced_grader_output(self, grader, fake_provider):
        """Fenced JSON from the grader is accepted."""
        fenced = "```json\n" + grader_json(_scores(9, FULL_SCORES), question_type="CREATIVE")
        fake_provider.reply(FAST_GRADER, fenced + "\n```")
        result = await grader.grade(FULL_QUERY, LONG_ANSWER)
        assert result.grader == FAST_GRADER
        assert result.question_type == QuestionType.CREATIVE

    async def test_missing_grader_key_falls_back(self, tmp_config, http, pricing, monkeypatch):
        """With no keys at all grading never raises."""
        monkeypatch.delenv("GROQ_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        monkeypatch.delenv("OPENAI_GRADER_API_KEY", raising=False)
        result = await QualityGrader(tmp_config, http, pricing).grade(SLIM_QUERY, LONG_ANSWER)
        assert result.grader == FALLBACK_GRADER
        assert result.cost == 0.0
