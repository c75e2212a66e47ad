"""Token accounting: tiktoken when available, length/4 approximation otherwise."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from typing import Any

import tiktoken

from llm_cascade.models import Message, TokenUsage
from llm_cascade.security import redact_secrets

logger = logging.getLogger(__name__)

# <|start|>{role}\n{content}<|end|>\n
TOKENS_PER_MESSAGE = 3
# Every reply is primed with <|start|>assistant<|message|>
REPLY_PRIMING_TOKENS = 3


def estimate_tokens(text: str) -> int:
    """Approximate token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


class TokenCounter:
    """Counts tokens with a BPE encoding, degrading to an estimate on failure.

    Counts feed cost estimates and compression triggers, not billing, so the
    approximation is an acceptable fallback. Degradation is logged once.
    """

    def __init__(self, encoding_name: str = "cl100k_base") -> None:
        self.encoding_name = encoding_name
        self._encoding: Any = None
        self._loaded = False
        self._available = False

    def load(self) -> bool:
        """Load the encoding. Returns True on success, False on failure."""
        if self._loaded:
            return self._available
        self._loaded = True
        try:
            self._encoding = tiktoken.get_encoding(self.encoding_name)
            self._available = True
        except Exception as e:
            logger.warning(
                "Failed to load tokenizer %s, falling back to length/4 approximation: %s",
                self.encoding_name,
                redact_secrets(e),
            )
            self._encoding = None
            self._available = False
        return self._available

    @property
    def available(self) -> bool:
        """Whether exact counting is in use."""
        return self.load()

    def _encode_len(self, text: str) -> int:
        if not self.load():
            return estimate_tokens(text)
        try:
            return len(self._encoding.encode(text, disallowed_special=()))
        except Exception as e:
            logger.warning("Token counting failed, using approximation: %s", redact_secrets(e))
            return estimate_tokens(text)

    def count(self, text: str) -> int:
        return self._encode_len(text)

    def count_with_overhead(
        self,
        messages: Iterable[Message],
        response: str = "",
    ) -> TokenUsage:
        """Input tokens including per-message formatting overhead, plus output tokens."""
        messages = list(messages)
        if not self.load():
            return TokenUsage(
                input_tokens=sum(estimate_tokens(m.content) for m in messages),
                output_tokens=estimate_tokens(response),
            )

        input_tokens = 0
        for m in messages:
            input_tokens += TOKENS_PER_MESSAGE
            input_tokens += self._encode_len(m.content)
            input_tokens += self._encode_len(m.role.value)
        input_tokens += REPLY_PRIMING_TOKENS

        return TokenUsage(input_tokens=input_tokens, output_tokens=self._encode_len(response))
