"""Cascade orchestrator: try the cheap tier, grade it, escalate to premium when needed."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from llm_cascade.cascade.cache import CacheStore, NullCacheStore, prompt_hash
from llm_cascade.cascade.trace import (
    CACHE_CHECK,
    CHEAP_GENERATION,
    PREMIUM_GENERATION,
    PROMPT_COMPRESSION,
    QUALITY_GRADING,
    CascadeTrace,
)
from llm_cascade.compression.compressor import PromptCompressor
from llm_cascade.config import Config
from llm_cascade.exceptions import CascadeError, ProviderError
from llm_cascade.grading.grader import QualityGrader
from llm_cascade.models import (
    CacheStep,
    CascadeResult,
    CompressionResult,
    CompressionStrategy,
    CompressStep,
    FastPathStep,
    GenerateStep,
    GradeStep,
    Message,
    ProviderResponse,
    Role,
    Tier,
    Timing,
    coerce_messages,
    last_user_message,
    render_prompt,
    system_context,
)
from llm_cascade.net.client import ResilientClient
from llm_cascade.pricing.fallback import DEFAULT_PRICING
from llm_cascade.pricing.source import StaticPricingSource
from llm_cascade.pricing.table import PricingTable, calculate_cost
from llm_cascade.providers.cheap import CheapTierAdapter
from llm_cascade.providers.premium import PremiumTierAdapter
from llm_cascade.security import redact_secrets
from llm_cascade.tokens.counter import TokenCounter, estimate_tokens

if TYPE_CHECKING:
    from llm_cascade.logging.logger import RequestLogger

logger = logging.getLogger(__name__)

FAST_PATH_SCORE = 95.0
PREVIEW_CHARS = 200


def _timing_since(start_time: float, start: float) -> Timing:
    duration_ms = (time.perf_counter() - start) * 1000
    return Timing(
        duration_ms=duration_ms, start_time=start_time, end_time=start_time + duration_ms / 1000
    )


class CascadeOrchestrator:
    """Routes one conversation through cache, compression, cheap tier, grading and premium tier.

    Collaborators are built from ``config`` unless injected. The pricing table
    and HTTP client are meant to be shared across requests for the life of the
    process.
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        http: ResilientClient | None = None,
        pricing: PricingTable | None = None,
        counter: TokenCounter | None = None,
        cheap: CheapTierAdapter | None = None,
        premium: PremiumTierAdapter | None = None,
        grader: QualityGrader | None = None,
        compressor: PromptCompressor | None = None,
        cache: CacheStore | None = None,
        request_logger: RequestLogger | None = None,
    ) -> None:
        self.config = config or Config()
        self.http = http or ResilientClient()
        self.pricing = pricing or PricingTable(
            StaticPricingSource(DEFAULT_PRICING),
            ttl_s=self.config.pricing_ttl_s,
            max_entries=self.config.pricing_cache_size,
        )
        self.counter = counter or TokenCounter()
        self.cheap = cheap or CheapTierAdapter(self.config, self.http, self.pricing, self.counter)
        self.premium = premium or PremiumTierAdapter(
            self.config, self.http, self.pricing, self.counter
        )
        self.grader = grader or QualityGrader(self.config, self.http, self.pricing)
        self.compressor = compressor or PromptCompressor(self.counter)
        self.cache: CacheStore = cache or NullCacheStore()
        self.request_logger = request_logger

    async def load_tokenizer(self) -> bool:
        """Load the BPE encoding off the event loop. A cold load may download it."""
        return await asyncio.to_thread(self.counter.load)

    async def close(self) -> None:
        await self.http.close()

    # -----------------------------------------------------------------------
    # Entry point
    # -----------------------------------------------------------------------

    async def run_cascade(
        self,
        messages: Iterable[Message | Mapping[str, Any]],
        requested_model_ceiling: str | None = None,
        force_escalate: bool = False,
        override_credential: str | None = None,
        *,
        trace: CascadeTrace | None = None,
        request_id: str | None = None,
    ) -> CascadeResult:
        """Answer ``messages`` as cheaply as the quality bar allows.

        Raises:
            InvalidMessagesError: before any external call.
            ProviderError: a tier failed and no escalation was possible.
        """
        msgs = coerce_messages(messages)
        trace = trace if trace is not None else CascadeTrace()

        try:
            joined = " ".join(m.content for m in msgs)
            if len(joined) < self.config.fast_path_max_chars and not force_escalate:
                result = await self._fast_path(
                    msgs, len(joined), requested_model_ceiling, override_credential, trace
                )
            else:
                result = await self._full_pipeline(
                    msgs, requested_model_ceiling, force_escalate, override_credential, trace
                )
        except asyncio.CancelledError:
            logger.info(
                "Cascade cancelled after %d steps, cost so far $%.6f",
                len(trace.steps),
                trace.total_cost,
            )
            self._log_failure(trace, msgs, "cancelled", None, force_escalate, request_id)
            raise
        except CascadeError as e:
            self._log_failure(trace, msgs, "error", e, force_escalate, request_id)
            raise

        if self.request_logger is not None:
            self.request_logger.log_request(
                result, msgs, force_escalate=force_escalate, request_id=request_id
            )
        return result

    def _log_failure(
        self,
        trace: CascadeTrace,
        msgs: list[Message],
        outcome: str,
        error: Exception | None,
        force_escalate: bool,
        request_id: str | None,
    ) -> None:
        if self.request_logger is None:
            return
        self.request_logger.log_failure(
            trace,
            msgs,
            outcome=outcome,
            error=error,
            force_escalate=force_escalate,
            request_id=request_id,
        )

    # -----------------------------------------------------------------------
    # Tier calls
    # -----------------------------------------------------------------------

    async def _call_cheap(
        self, msgs: list[Message], trace: CascadeTrace, *, name: str = "Cheap Tier"
    ) -> ProviderResponse | None:
        """Cheap tier call. Returns None when the failure policy says to escalate."""
        start_time, start = time.time(), time.perf_counter()
        try:
            return await self.cheap.generate(msgs)
        except ProviderError as e:
            trace.record(
                GenerateStep(
                    step=trace.next_step,
                    name=name,
                    status="failed",
                    tier=Tier.CHEAP,
                    model=self.config.cheap_model,
                    timing=_timing_since(start_time, start),
                    details="Cheap tier call failed",
                    error=str(e),
                ),
                CHEAP_GENERATION,
            )
            if not self.config.escalate_on_cheap_failure:
                raise
            logger.warning("Cheap tier failed, escalating to premium: %s", redact_secrets(e))
            return None

    async def _call_premium(
        self,
        msgs: list[Message],
        requested_model_ceiling: str | None,
        override_credential: str | None,
        trace: CascadeTrace,
        *,
        details: str,
    ) -> ProviderResponse:
        start_time, start = time.time(), time.perf_counter()
        try:
            premium = await self.premium.generate(
                msgs, model=requested_model_ceiling, override_credential=override_credential
            )
        except ProviderError as e:
            trace.record(
                GenerateStep(
                    step=trace.next_step,
                    name="Premium Tier",
                    status="failed",
                    tier=Tier.PREMIUM,
                    model=self.premium.resolve_model(requested_model_ceiling),
                    timing=_timing_since(start_time, start),
                    details="Premium tier call failed",
                    error=str(e),
                ),
                PREMIUM_GENERATION,
            )
            raise

        trace.record(
            GenerateStep(
                step=trace.next_step,
                name="Premium Tier",
                status="complete",
                cost=premium.cost,
                timing=premium.timing,
                details=details,
                tier=Tier.PREMIUM,
                model=premium.model,
                prompt_tokens=premium.prompt_tokens,
                completion_tokens=premium.completion_tokens,
                cost_breakdown=premium.cost_breakdown,
                response_preview=premium.content[:PREVIEW_CHARS],
                key_source=premium.key_source,
            ),
            PREMIUM_GENERATION,
            duration_ms=premium.timing.duration_ms,
            model_api_ms=premium.timing.api_call_ms,
        )
        return premium

    async def _baseline_cost(self, response: ProviderResponse) -> float:
        """What the same exchange would have cost on the baseline premium model."""
        pricing = await self.pricing.price_for(
            self.config.baseline_provider, self.config.baseline_model
        )
        return calculate_cost(pricing, response.prompt_tokens, response.completion_tokens)

    # -----------------------------------------------------------------------
    # Fast path
    # -----------------------------------------------------------------------

    async def _fast_path(
        self,
        msgs: list[Message],
        chars: int,
        requested_model_ceiling: str | None,
        override_credential: str | None,
        trace: CascadeTrace,
    ) -> CascadeResult:
        logger.debug("Fast path: short conversation (%d chars)", chars)
        has_system = any(m.role == Role.SYSTEM for m in msgs)

        cheap = await self._call_cheap(msgs, trace, name="Fast Path")
        if cheap is None:
            premium = await self._call_premium(
                msgs,
                requested_model_ceiling,
                override_credential,
                trace,
                details="Escalated after cheap tier failure",
            )
            return trace.freeze(
                response=premium.content,
                model=premium.model,
                tier=Tier.PREMIUM,
                quality_score=0.0,
                baseline_cost=await self._baseline_cost(premium),
                prompt_tokens=premium.prompt_tokens,
                completion_tokens=premium.completion_tokens,
                tokens_processed=premium.prompt_tokens + premium.completion_tokens,
                system_context_applied=has_system,
                compression_applied=False,
                key_source=premium.key_source,
            )

        trace.record(
            FastPathStep(
                step=trace.next_step,
                name="Fast Path",
                status="complete",
                cost=cheap.cost,
                timing=cheap.timing,
                details=f"Short conversation ({chars} chars) - skipped cascade overhead",
                model=cheap.model,
                score=FAST_PATH_SCORE,
                prompt_tokens=cheap.prompt_tokens,
                completion_tokens=cheap.completion_tokens,
                cost_breakdown=cheap.cost_breakdown,
            ),
            CHEAP_GENERATION,
            duration_ms=cheap.timing.duration_ms,
            model_api_ms=cheap.timing.api_call_ms,
        )
        return trace.freeze(
            response=cheap.content,
            model=cheap.model,
            tier=Tier.CHEAP,
            quality_score=FAST_PATH_SCORE,
            baseline_cost=await self._baseline_cost(cheap),
            prompt_tokens=cheap.prompt_tokens,
            completion_tokens=cheap.completion_tokens,
            tokens_processed=cheap.prompt_tokens + cheap.completion_tokens,
            system_context_applied=has_system,
            compression_applied=False,
            key_source=cheap.key_source,
        )

    # -----------------------------------------------------------------------
    # Full pipeline
    # -----------------------------------------------------------------------

    async def _check_cache(self, msgs: list[Message], trace: CascadeTrace) -> str | None:
        start_time, start = time.time(), time.perf_counter()
        cached = await self.cache.get(prompt_hash(msgs))
        timing = _timing_since(start_time, start)
        trace.record(
            CacheStep(
                step=trace.next_step,
                name="Cache Check",
                status="hit" if cached is not None else "miss",
                timing=timing,
                details="Served from cache" if cached is not None else "No cached response found",
                hit=cached is not None,
            ),
            CACHE_CHECK,
            duration_ms=timing.duration_ms,
        )
        return cached

    async def _compress(
        self, msgs: list[Message], trace: CascadeTrace
    ) -> tuple[list[Message], CompressionResult, bool]:
        start_time, start = time.time(), time.perf_counter()
        rendered = render_prompt(msgs)
        estimated = estimate_tokens(rendered)

        if estimated < self.config.compression_min_tokens:
            compressed_msgs = msgs
            compression = CompressionResult(
                compressed=rendered,
                original_tokens=estimated,
                compressed_tokens=estimated,
                ratio=0.0,
                strategies=(
                    CompressionStrategy(
                        name="skip_compression", applied=False, reason="prompt_too_short"
                    ),
                ),
                timing=_timing_since(start_time, start),
            )
            status = "skipped"
            details = f"Prompt too short to compress ({estimated} tokens)"
        else:
            compressed_msgs, compression = await self.compressor.compress_messages(
                msgs, aggressive=self.config.aggressive_compression
            )
            status = "complete"
            details = (
                f"Reduced from {compression.original_tokens} to "
                f"{compression.compressed_tokens} tokens "
                f"({round(compression.ratio * 100)}% reduction)"
            )

        trace.record(
            CompressStep(
                step=trace.next_step,
                name="Prompt Compression",
                status=status,
                cost=compression.cost,
                timing=compression.timing,
                details=details,
                compression=compression,
            ),
            PROMPT_COMPRESSION,
            duration_ms=compression.timing.duration_ms,
        )
        return compressed_msgs, compression, status == "complete"

    async def _full_pipeline(
        self,
        msgs: list[Message],
        requested_model_ceiling: str | None,
        force_escalate: bool,
        override_credential: str | None,
        trace: CascadeTrace,
    ) -> CascadeResult:
        has_system = any(m.role == Role.SYSTEM for m in msgs)

        cached = await self._check_cache(msgs, trace)
        if cached is not None and not force_escalate:
            return trace.freeze(
                response=cached,
                model="cache",
                tier=Tier.CHEAP,
                quality_score=0.0,
                baseline_cost=0.0,
                prompt_tokens=0,
                completion_tokens=0,
                tokens_processed=0,
                system_context_applied=has_system,
                compression_applied=False,
                cached=True,
            )

        compressed_msgs, _, compression_applied = await self._compress(msgs, trace)

        cheap = await self._call_cheap(compressed_msgs, trace)
        quality_score = 0.0
        if cheap is not None:
            trace.record(
                GenerateStep(
                    step=trace.next_step,
                    name="Cheap Tier",
                    status="complete",
                    cost=cheap.cost,
                    timing=cheap.timing,
                    details=(
                        f"Generated response ({cheap.completion_tokens} tokens)"
                        + (" with system context" if has_system else "")
                    ),
                    tier=Tier.CHEAP,
                    model=cheap.model,
                    prompt_tokens=cheap.prompt_tokens,
                    completion_tokens=cheap.completion_tokens,
                    cost_breakdown=cheap.cost_breakdown,
                    response_preview=cheap.content[:PREVIEW_CHARS],
                    key_source=cheap.key_source,
                ),
                CHEAP_GENERATION,
                duration_ms=cheap.timing.duration_ms,
                model_api_ms=cheap.timing.api_call_ms,
            )

            context = system_context(msgs)
            grading = await self.grader.grade(
                last_user_message(msgs),
                cheap.content,
                context,
                on_call=lambda call: trace.book(QUALITY_GRADING, call.cost),
            )
            passed = grading.passed and not force_escalate
            quality_score = grading.score
            trace.record(
                GradeStep(
                    step=trace.next_step,
                    name="Quality Grading",
                    status="passed" if passed else "failed",
                    cost=grading.cost,
                    timing=grading.timing,
                    details=(
                        f"Score: {grading.score}/100 (threshold: {grading.threshold:g}) | "
                        f"Type: {grading.question_type} | Confidence: {grading.confidence} | "
                        f"Variance: {grading.variance}"
                        + (" - evaluated with system context" if context else "")
                        + (" (escalation forced)" if force_escalate else "")
                    ),
                    score=grading.score,
                    passed=passed,
                    question_type=grading.question_type,
                    dimension_scores=grading.dimension_scores,
                    confidence=grading.confidence,
                    variance=grading.variance,
                    threshold=grading.threshold,
                    grader=grading.grader,
                    cost_breakdown=grading.cost_breakdown,
                ),
                QUALITY_GRADING,
                duration_ms=grading.timing.duration_ms,
                grader_timing=grading.timing,
            )

            if passed:
                await self.cache.put(prompt_hash(msgs), cheap.content)
                return trace.freeze(
                    response=cheap.content,
                    model=cheap.model,
                    tier=Tier.CHEAP,
                    quality_score=grading.score,
                    baseline_cost=await self._baseline_cost(cheap),
                    prompt_tokens=cheap.prompt_tokens,
                    completion_tokens=cheap.completion_tokens,
                    tokens_processed=cheap.prompt_tokens + cheap.completion_tokens,
                    system_context_applied=has_system,
                    compression_applied=compression_applied,
                    key_source=cheap.key_source,
                )

        details = "Escalated with pre-compressed prompt"
        if cheap is None:
            details = "Escalated after cheap tier failure"
        if has_system:
            details += " (system context preserved)"
        premium = await self._call_premium(
            compressed_msgs, requested_model_ceiling, override_credential, trace, details=details
        )
        await self.cache.put(prompt_hash(msgs), premium.content)

        # Savings are measured against the cheap tier's token counts when it ran.
        reference = cheap or premium
        return trace.freeze(
            response=premium.content,
            model=premium.model,
            tier=Tier.PREMIUM,
            quality_score=quality_score,
            baseline_cost=await self._baseline_cost(reference),
            prompt_tokens=premium.prompt_tokens,
            completion_tokens=premium.completion_tokens,
            tokens_processed=reference.prompt_tokens + reference.completion_tokens,
            system_context_applied=has_system,
            compression_applied=compression_applied,
            key_source=premium.key_source,
        )


async def run_cascade(
    messages: Iterable[Message | Mapping[str, Any]],
    requested_model_ceiling: str | None = None,
    force_escalate: bool = False,
    override_credential: str | None = None,
    *,
    config: Config | None = None,
    trace: CascadeTrace | None = None,
) -> CascadeResult:
    """One-shot cascade with a throwaway orchestrator. Servers should reuse one instead."""
    msgs = coerce_messages(messages)
    orchestrator = CascadeOrchestrator(config)
    try:
        await orchestrator.load_tokenizer()
        return await orchestrator.run_cascade(
            msgs,
            requested_model_ceiling,
            force_escalate,
            override_credential,
            trace=trace,
        )
    finally:
        await orchestrator.close()
