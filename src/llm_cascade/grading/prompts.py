"""Grader prompt templates and tolerant parsing of grader JSON."""

from __future__ import annotations

import json
import logging
from typing import Any

from llm_cascade.exceptions import GradingError

logger = logging.getLogger(__name__)

_SLIM_SCHEMA = """\
{{
  "type": "FACTUAL",
  "scores": {{
    "accuracy": 1-10,
    "completeness": 1-10,
    "safety": 1-10
  }},
  "reasoning": {{
    "accuracy": "<brief explanation>",
    "completeness": "<brief explanation>",
    "safety": "<brief explanation>"
  }},
  "confidence": 0.0-1.0
}}"""

_FULL_SCHEMA = """\
{{
  "type": "FACTUAL | ANALYTICAL | CREATIVE | TECHNICAL | ETHICAL",
  "scores": {{
    "accuracy": 1-10,
    "completeness": 1-10,
    "clarity": 1-10,
    "depth": 1-10,
    "safety": 1-10
  }},
  "reasoning": {{
    "accuracy": "<brief>",
    "completeness": "<brief>",
    "clarity": "<brief>",
    "depth": "<brief>",
    "safety": "<brief>"
  }},
  "confidence": 0.0-1.0
}}"""

_EVALUATE = """
Question: \"\"\"{query}\"\"\"{system_context}
Response to Evaluate: \"\"\"{answer}\"\"\""""

FAST_SLIM_PROMPT = (
    "Return JSON only. Score this factual response with confidence.\n\n"
    + _SLIM_SCHEMA
    + "\n"
    + _EVALUATE
    + "\n\nBe confident (0.8+) for clear factual answers, less confident (<0.6) if unsure."
)

FAST_FULL_PROMPT = (
    "Return JSON only. Classify and score this response with confidence.\n\n"
    + _FULL_SCHEMA
    + "\n"
    + _EVALUATE
    + "\n\nBe confident (0.8+) for clear answers, less confident (<0.6) if complex/ambiguous."
)

STRONG_SLIM_PROMPT = (
    "Return JSON only. Score this factual response carefully.\n\n" + _SLIM_SCHEMA + "\n" + _EVALUATE
)

STRONG_FULL_PROMPT = (
    "Return JSON only. Classify and score this response thoroughly.\n\n"
    + _FULL_SCHEMA
    + "\n"
    + _EVALUATE
)


def build_grading_prompt(
    query: str, answer: str, system_context: str = "", *, slim: bool, strong: bool
) -> str:
    """Fill the grader template for the chosen rubric and grader strength."""
    if strong:
        template = STRONG_SLIM_PROMPT if slim else STRONG_FULL_PROMPT
    else:
        template = FAST_SLIM_PROMPT if slim else FAST_FULL_PROMPT
    context = f'\nSystem Context: "{system_context}"\n' if system_context else ""
    return template.format(query=query, answer=answer, system_context=context)


def parse_grader_json(text: str) -> dict[str, Any]:
    """Parse grader output, tolerating markdown fences and surrounding prose.

    Raises:
        GradingError: no JSON object can be recovered.
    """
    cleaned = text.strip()

    # Strip markdown fences
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[1] if "\n" in cleaned else cleaned[3:]
        if cleaned.endswith("```"):
            cleaned = cleaned[:-3]
        cleaned = cleaned.strip()

    try:
        result = json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    else:
        if isinstance(result, dict):
            return result

    # Find JSON object boundaries
    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start != -1 and end != -1 and end > start:
        try:
            result = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError:
            pass
        else:
            if isinstance(result, dict):
                return result

    logger.warning("Could not parse grader response as JSON: %s", text[:200])
    msg = f"Invalid JSON from grader: {text[:200]}"
    raise GradingError(msg)
