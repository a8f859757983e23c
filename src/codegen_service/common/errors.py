"""Error taxonomy shared by the completion client, orchestrator and API layer.

Only the completion client turns transport/provider failures into
``UpstreamError`` subclasses. The orchestrator wraps them in an
``OrchestrationError`` that records which call failed.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from codegen_service.common.schema import CompletionResult, Phase


class CodegenError(Exception):
    """Base class for every error raised by this package."""

    kind = "codegen_error"
    retryable = False


class InvalidRequest(CodegenError):
    """The caller supplied a request that fails a structural precondition."""

    kind = "invalid_request"


class UpstreamError(CodegenError):
    """The completion provider could not produce a usable completion.

    Used directly for failures outside the specific kinds below, such as
    connection errors or unexpected HTTP statuses.
    """

    kind = "upstream_error"

    def __init__(self, message: str, status_code: int | None = None, retryable: bool | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        if retryable is not None:
            self.retryable = retryable


class UpstreamAuthFailure(UpstreamError):
    """The provider rejected the configured credential."""

    kind = "upstream_auth_failure"
    retryable = False


class UpstreamRateLimited(UpstreamError):
    """The provider signalled quota exhaustion; retrying later may succeed."""

    kind = "upstream_rate_limited"
    retryable = True

    def __init__(
        self,
        message: str,
        status_code: int | None = 429,
        retry_after_seconds: float | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code)
        self.retry_after_seconds = retry_after_seconds


class UpstreamTimeout(UpstreamError):
    """The network call exceeded its bounded wait."""

    kind = "upstream_timeout"
    retryable = True


class UpstreamMalformedResponse(UpstreamError):
    """The provider answered, but without the fields we need."""

    kind = "upstream_malformed_response"
    retryable = True


class OrchestrationError(CodegenError):
    """An upstream failure tagged with the phase in which it happened."""

    kind = "orchestration_error"

    def __init__(self, phase: "Phase", error: UpstreamError) -> None:
        super().__init__(f"{phase.value} call failed: {error}")
        self.phase = phase
        self.error = error

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.error.retryable


class GenerationFailed(OrchestrationError):
    """The generation call failed; no code was produced."""


class ExplanationFailed(OrchestrationError):
    """Code was generated but the explanation call failed.

    The generated code stays available on ``code`` so callers can still use it.
    """

    def __init__(self, phase: "Phase", error: UpstreamError, code: str, generation: "CompletionResult") -> None:
        super().__init__(phase, error)
        self.code = code
        self.generation = generation
