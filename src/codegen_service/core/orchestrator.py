"""Generate-then-explain orchestration.

Each request runs two dependent completion calls:

    GENERATING -> EXPLAINING -> DONE
         \\            \\
          +-> FAILED    +-> FAILED

A failure in either call stops the sequence. There is no retry here: the
explanation depends on one specific generation result, so callers resubmit
the whole request if they want another attempt.
"""
from __future__ import annotations
import asyncio
import logging

from codegen_service.common.errors import (
    ExplanationFailed,
    GenerationFailed,
    InvalidRequest,
    UpstreamError,
)
from codegen_service.common.prompts import build_explanation_prompt, build_generation_prompt
from codegen_service.common.schema import (
    MIN_PROMPT_LENGTH,
    CompletionOptions,
    GenerationRequest,
    GenerationResponse,
    Language,
    Phase,
)
from codegen_service.common.settings import Settings
from codegen_service.core.assembler import assemble, extract_code
from codegen_service.llm.completion_client import CompletionBackend, CompletionClient

LOGGER = logging.getLogger("codegen.orchestrator")


def validate_request(request: GenerationRequest) -> None:
    """Fail loudly on requests the routing layer should already have rejected."""
    if not isinstance(request.language, Language):
        raise InvalidRequest(f"Unsupported language {request.language!r}")
    prompt = request.prompt.strip() if isinstance(request.prompt, str) else ""
    if not prompt:
        raise InvalidRequest("Prompt must not be empty")
    if len(prompt) < MIN_PROMPT_LENGTH:
        raise InvalidRequest(f"Prompt must be at least {MIN_PROMPT_LENGTH} characters")


class GenerationOrchestrator:
    """
    Sequences the generation and explanation calls for one request at a time.

    The instance only holds immutable configuration and the shared client,
    so one orchestrator serves any number of concurrent requests.
    """

    def __init__(
        self,
        client: CompletionBackend,
        generation_options: CompletionOptions,
        explanation_options: CompletionOptions,
        context_max_chars: int | None = None,
    ) -> None:
        self.client = client
        self.generation_options = generation_options
        self.explanation_options = explanation_options
        self.context_max_chars = context_max_chars

    @classmethod
    def from_settings(cls, settings: Settings, client: CompletionBackend | None = None) -> "GenerationOrchestrator":
        return cls(
            client=client or CompletionClient.from_settings(settings),
            generation_options=settings.generation.options(settings.model_id),
            explanation_options=settings.explanation.options(settings.model_id),
            context_max_chars=settings.context_max_chars,
        )

    @property
    def model_id(self) -> str:
        return self.generation_options.model

    async def aclose(self) -> None:
        aclose = getattr(self.client, "aclose", None)
        if aclose is not None:
            await aclose()

    async def generate_code(self, request: GenerationRequest) -> GenerationResponse:
        """
        Generate code for the request, then explain it.

        Args:
            request: Prompt, target language and optional prior context.

        Returns:
            Code, explanation and the generation call's token/time metrics.

        Raises:
            InvalidRequest: Empty prompt or unknown language; no call is made.
            GenerationFailed: The first call failed; no code exists.
            ExplanationFailed: The second call failed; ``code`` holds the result.
        """
        validate_request(request)

        phase = Phase.GENERATING
        LOGGER.debug("phase=%s language=%s", phase.value, request.language.value)
        prompt = build_generation_prompt(
            request.language,
            request.prompt,
            request.context,
            max_context_chars=self.context_max_chars,
        )
        try:
            generation = await self.client.complete(prompt.system, prompt.user, self.generation_options)
        except UpstreamError as e:
            LOGGER.warning("phase=%s -> %s: %s", phase.value, Phase.FAILED.value, e.kind)
            raise GenerationFailed(phase, e) from e
        except asyncio.CancelledError:
            LOGGER.info("Generation cancelled during phase=%s", phase.value)
            raise
        code = extract_code(generation)

        phase = Phase.EXPLAINING
        LOGGER.debug("phase=%s tokens=%d", phase.value, generation.tokens_used)
        prompt = build_explanation_prompt(request.language, code)
        try:
            explanation = await self.client.complete(prompt.system, prompt.user, self.explanation_options)
        except UpstreamError as e:
            LOGGER.warning("phase=%s -> %s: %s", phase.value, Phase.FAILED.value, e.kind)
            raise ExplanationFailed(phase, e, code=code, generation=generation) from e
        except asyncio.CancelledError:
            LOGGER.info("Generation cancelled during phase=%s", phase.value)
            raise

        response = assemble(generation, explanation.text, request, code=code)
        LOGGER.info(
            "phase=%s language=%s tokens=%d generation_time=%.3fs explanation_tokens=%d",
            Phase.DONE.value,
            response.language.value,
            response.tokens_used,
            response.generation_time_seconds,
            explanation.tokens_used,
        )
        return response
