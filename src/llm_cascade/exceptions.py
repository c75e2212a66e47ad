"""Custom exceptions for the cascade pipeline."""

from __future__ import annotations

from typing import TYPE_CHECKING

from llm_cascade.security import redact_secrets

if TYPE_CHECKING:
    from llm_cascade.models import GraderCall


class CascadeError(Exception):
    """Base class for every error raised by the cascade core."""


class InvalidMessagesError(CascadeError, ValueError):
    """Empty or malformed message list, rejected before any external call."""


class ProviderError(CascadeError):
    """Provider returned a non-2xx status or an unusable completion body."""

    def __init__(self, tier: str, message: str, *, status_code: int | None = None) -> None:
        self.tier = tier
        self.status_code = status_code
        super().__init__(f"[{tier}] {redact_secrets(message)}")


class ProviderUnreachableError(ProviderError):
    """Transport failure (timeout, connection) that outlived every retry."""


class MissingCredentialError(ProviderError):
    """No credential available for the provider."""


class GradingError(CascadeError):
    """Grader call failed or produced malformed output. Never leaves the grader.

    ``call`` carries the usage of a call that completed before parsing failed,
    so its cost is still accounted for.
    """

    def __init__(self, message: str, *, call: GraderCall | None = None) -> None:
        self.call = call
        super().__init__(redact_secrets(message))
