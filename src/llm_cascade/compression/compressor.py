"""Prompt compression: a lossless rewrite table plus an optional semantic stage."""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Iterable
from dataclasses import dataclass

from llm_cascade.compression.semantic import NoopSemanticCompressor, SemanticCompressor
from llm_cascade.models import (
    CompressionResult,
    CompressionStrategy,
    Message,
    Timing,
    render_prompt,
)
from llm_cascade.security import redact_secrets
from llm_cascade.tokens.counter import TokenCounter

logger = logging.getLogger(__name__)

LOSSLESS = "lossless_shorthand"
SEMANTIC = "semantic_summarize"
SEMANTIC_MIN_TOKENS = 1000

# Stage A is re-run until the text stops changing, so one rewrite exposing
# another is still caught in a single call.
_MAX_PASSES = 8


@dataclass(frozen=True)
class _Rule:
    pattern: re.Pattern[str]
    replacement: str
    desc: str
    counted: bool = True


def _phrase(phrase: str, replacement: str) -> _Rule:
    pattern = re.compile(rf"\b{re.escape(phrase)}\b", re.IGNORECASE)
    return _Rule(pattern, replacement, f"{phrase} → {replacement}")


PHRASE_RULES: list[_Rule] = [
    _phrase("for example", "e.g."),
    _phrase("that is", "i.e."),
    _phrase("in other words", "i.e."),
    _phrase("please note that", "note:"),
    _phrase("it is important to", "importantly,"),
    _phrase("can you please", "please"),
    _phrase("would you please", "please"),
    _phrase("could you please", "please"),
]


FILLER_RULES: list[_Rule] = [
    _Rule(
        re.compile(r"\b(hello|hi|hey)\s+(there|friend)?\s*[,!]?\s*", re.IGNORECASE),
        "",
        "removed greetings",
    ),
    _Rule(
        re.compile(r"\b(thank you|thanks)\s+(so much|very much)?\s*[,!]?\s*", re.IGNORECASE),
        "",
        "removed thanks",
    ),
    _Rule(
        re.compile(r"\b(please and thank you|thanks in advance)\s*[,!]?\s*", re.IGNORECASE),
        "",
        "removed pleasantries",
    ),
    _Rule(re.compile(r"\b(um|uh|hmm|well)\s+", re.IGNORECASE), "", "removed filler words"),
]

WHITESPACE_RULES: list[_Rule] = [
    _Rule(re.compile(r"\s{2,}"), " ", "normalized multiple spaces", counted=False),
    _Rule(re.compile(r"\n\s*\n\s*\n+"), "\n\n", "normalized multiple newlines", counted=False),
    _Rule(re.compile(r"^\s+|\s+$", re.MULTILINE), "", "trimmed line whitespace", counted=False),
    _Rule(re.compile(r"•\s*"), "• ", "normalized bullet points", counted=False),
    _Rule(re.compile(r"-\s{2,}"), "- ", "normalized dash bullets", counted=False),
]

STAGE_A_RULES: list[_Rule] = PHRASE_RULES + FILLER_RULES + WHITESPACE_RULES


def _single_pass(text: str, counts: dict[str, int]) -> str:
    for rule in STAGE_A_RULES:
        rewritten, n = rule.pattern.subn(rule.replacement, text)
        if rule.counted:
            if n:
                counts[rule.desc] = counts.get(rule.desc, 0) + n
        elif rewritten != text:
            counts.setdefault(rule.desc, 0)
        text = rewritten
    return text.strip()


def lossless_compress(text: str) -> tuple[str, dict[str, int]]:
    """Apply the Stage A table until the text is stable.

    Returns the rewritten text and per-rule occurrence counts, in rule order of
    first application. Whitespace rules carry a count of 0 (recorded, not counted).
    """
    counts: dict[str, int] = {}
    current = text
    for _ in range(_MAX_PASSES):
        rewritten = _single_pass(current, counts)
        if rewritten == current:
            break
        current = rewritten
    return current, counts


def describe_transformations(counts: dict[str, int]) -> tuple[str, ...]:
    return tuple(f"{desc} ({n}x)" if n else desc for desc, n in counts.items())


def _merge_counts(into: dict[str, int], counts: dict[str, int]) -> None:
    for desc, n in counts.items():
        into[desc] = into.get(desc, 0) + n


class PromptCompressor:
    """Shrinks prompts before they reach any model tier."""

    def __init__(
        self,
        counter: TokenCounter | None = None,
        semantic: SemanticCompressor | None = None,
        *,
        semantic_min_tokens: int = SEMANTIC_MIN_TOKENS,
    ) -> None:
        self.counter = counter or TokenCounter()
        self.semantic: SemanticCompressor = semantic or NoopSemanticCompressor()
        self.semantic_min_tokens = semantic_min_tokens

    async def _semantic_stage(
        self, text: str, tokens: int, aggressive: bool
    ) -> tuple[str, int, CompressionStrategy]:
        if not aggressive:
            return text, tokens, CompressionStrategy(
                name=SEMANTIC, applied=False, reason="aggressive_disabled"
            )
        if tokens <= self.semantic_min_tokens:
            return text, tokens, CompressionStrategy(
                name=SEMANTIC, applied=False, reason="text_too_short"
            )

        try:
            summary = await self.semantic.summarize(text)
        except Exception as e:
            logger.warning(
                "Semantic compression failed, keeping lossless output: %s", redact_secrets(e)
            )
            return text, tokens, CompressionStrategy(
                name=SEMANTIC, applied=False, reason="semantic_failed"
            )
        if summary is None:
            return text, tokens, CompressionStrategy(
                name=SEMANTIC, applied=False, reason="no_semantic_backend"
            )

        summary_tokens = self.counter.count(summary)
        if not summary.strip() or summary_tokens >= tokens:
            return text, tokens, CompressionStrategy(
                name=SEMANTIC, applied=False, reason="no_reduction"
            )
        return summary, summary_tokens, CompressionStrategy(
            name=SEMANTIC,
            applied=True,
            original_tokens=tokens,
            compressed_tokens=summary_tokens,
        )

    async def compress(self, text: str, aggressive: bool = False) -> CompressionResult:
        """Compress one block of text. Stage A always runs; Stage B only when allowed."""
        start_time = time.time()
        start = time.perf_counter()

        compressed, counts = lossless_compress(text)
        original_tokens = self.counter.count(text)
        lossless_tokens = self.counter.count(compressed)
        lossless = CompressionStrategy(
            name=LOSSLESS,
            applied=True,
            transformations=describe_transformations(counts),
            original_tokens=original_tokens,
            compressed_tokens=lossless_tokens,
        )

        final, final_tokens, semantic = await self._semantic_stage(
            compressed, lossless_tokens, aggressive
        )
        duration_ms = (time.perf_counter() - start) * 1000
        return CompressionResult(
            compressed=final,
            original_tokens=original_tokens,
            compressed_tokens=final_tokens,
            ratio=(original_tokens - final_tokens) / original_tokens if original_tokens else 0.0,
            strategies=(lossless, semantic),
            timing=Timing(
                duration_ms=duration_ms,
                start_time=start_time,
                end_time=start_time + duration_ms / 1000,
            ),
        )

    async def compress_messages(
        self, messages: Iterable[Message], aggressive: bool = False
    ) -> tuple[list[Message], CompressionResult]:
        """Compress each message in place of the rendered prompt.

        Both tiers receive the returned messages. The aggregate result is
        measured over the rendered ``role: content`` prompt. A message that
        would compress to nothing keeps its original content.
        """
        start_time = time.time()
        start = time.perf_counter()
        messages = list(messages)

        counts: dict[str, int] = {}
        lossless_messages: list[Message] = []
        compressed_messages: list[Message] = []
        semantic_results: list[tuple[int, CompressionStrategy]] = []
        for message in messages:
            content, message_counts = lossless_compress(message.content)
            if not content and message.content:
                content, message_counts = message.content, {}
            _merge_counts(counts, message_counts)
            lossless_messages.append(message.model_copy(update={"content": content}))

            tokens = self.counter.count(content)
            content, _, strategy = await self._semantic_stage(content, tokens, aggressive)
            semantic_results.append((tokens, strategy))
            compressed_messages.append(message.model_copy(update={"content": content}))

        original_tokens = self.counter.count(render_prompt(messages))
        lossless_tokens = self.counter.count(render_prompt(lossless_messages))
        final_tokens = self.counter.count(render_prompt(compressed_messages))

        if any(s.applied for _, s in semantic_results):
            semantic = CompressionStrategy(
                name=SEMANTIC,
                applied=True,
                original_tokens=lossless_tokens,
                compressed_tokens=final_tokens,
            )
        elif semantic_results:
            # Report the reason that held for the largest message.
            semantic = max(semantic_results, key=lambda r: r[0])[1]
        else:
            semantic = CompressionStrategy(name=SEMANTIC, applied=False, reason="text_too_short")

        duration_ms = (time.perf_counter() - start) * 1000
        result = CompressionResult(
            compressed=render_prompt(compressed_messages),
            original_tokens=original_tokens,
            compressed_tokens=final_tokens,
            ratio=(original_tokens - final_tokens) / original_tokens if original_tokens else 0.0,
            strategies=(
                CompressionStrategy(
                    name=LOSSLESS,
                    applied=True,
                    transformations=describe_transformations(counts),
                    original_tokens=original_tokens,
                    compressed_tokens=lossless_tokens,
                ),
                semantic,
            ),
            timing=Timing(
                duration_ms=duration_ms,
                start_time=start_time,
                end_time=start_time + duration_ms / 1000,
            ),
        )
        return compressed_messages, result
