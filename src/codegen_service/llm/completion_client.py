"""Async client for OpenAI-compatible chat completion servers.

Translates transport, auth and rate-limit failures into the local error
taxonomy so httpx exceptions never reach callers.
"""
from __future__ import annotations
import asyncio
import logging
import time
from typing import Any, Protocol, runtime_checkable

import httpx

from codegen_service.common.errors import (
    UpstreamAuthFailure,
    UpstreamError,
    UpstreamMalformedResponse,
    UpstreamRateLimited,
    UpstreamTimeout,
)
from codegen_service.common.schema import CompletionOptions, CompletionResult
from codegen_service.common.settings import Settings

LOGGER = logging.getLogger("codegen.llm.client")


@runtime_checkable
class CompletionBackend(Protocol):
    """Anything that can turn a system/user prompt pair into a completion."""

    async def complete(self, system_prompt: str, user_prompt: str, options: CompletionOptions) -> CompletionResult:
        ...


def describe_shape(value: Any, depth: int = 0) -> Any:
    """Describe a decoded JSON value by keys and types only, never content."""
    if depth > 3:
        return type(value).__name__
    if isinstance(value, dict):
        return {key: describe_shape(item, depth + 1) for key, item in value.items()}
    if isinstance(value, list):
        return [describe_shape(value[0], depth + 1)] if value else []
    return type(value).__name__


def _retry_after(response: httpx.Response) -> float | None:
    raw = response.headers.get("retry-after")
    if raw is None:
        return None
    try:
        return max(float(raw), 0.0)
    except ValueError:
        # HTTP-date form is not worth parsing here
        return None


class CompletionClient:
    """
    Chat completion client sharing one connection pool across all calls.

    Construct once at startup and reuse; nothing on the instance changes
    after construction, so concurrent calls need no locking.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_s: float = 60.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._headers = {"Authorization": f"Bearer {api_key}"}
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(timeout_s))

    @classmethod
    def from_settings(cls, settings: Settings, http_client: httpx.AsyncClient | None = None) -> "CompletionClient":
        return cls(settings.base_url, settings.api_key, settings.timeout_s, http_client=http_client)

    async def aclose(self) -> None:
        await self._http.aclose()

    async def complete(self, system_prompt: str, user_prompt: str, options: CompletionOptions) -> CompletionResult:
        """
        Run one non-streaming chat completion.

        Args:
            system_prompt: System instruction.
            user_prompt: User instruction.
            options: Model and sampling parameters.

        Returns:
            The completion text, token usage, wall-clock latency and model id.

        Raises:
            UpstreamAuthFailure: Credential rejected (401/403).
            UpstreamRateLimited: Quota exhausted (429).
            UpstreamTimeout: No response within timeout_s.
            UpstreamMalformedResponse: Response lacks text or usage.
            UpstreamError: Any other transport or HTTP failure.
        """
        url = f"{self.base_url}/chat/completions"
        payload = {
            "model": options.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": options.temperature,
            "max_tokens": options.max_output_tokens,
            "stream": False,
        }

        start = time.monotonic()
        try:
            r = await asyncio.wait_for(
                self._http.post(url, headers=self._headers, json=payload),
                timeout=self.timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            elapsed = time.monotonic() - start
            LOGGER.warning("Completion request timed out after %.2fs (model=%s)", elapsed, options.model)
            raise UpstreamTimeout(f"Completion request timed out after {self.timeout_s}s") from e
        except httpx.HTTPError as e:
            LOGGER.error("Completion request failed: %s", type(e).__name__)
            raise UpstreamError(f"Completion request failed: {type(e).__name__}", retryable=True) from e
        elapsed = time.monotonic() - start

        self._raise_for_status(r)
        result = self._parse(r, options.model, elapsed)
        LOGGER.debug(
            "Completion ok model=%s tokens=%d elapsed=%.3fs",
            result.model_id,
            result.tokens_used,
            result.elapsed_seconds,
        )
        return result

    def _raise_for_status(self, r: httpx.Response) -> None:
        status = r.status_code
        if status in (401, 403):
            LOGGER.error("Provider rejected credentials (HTTP %s)", status)
            raise UpstreamAuthFailure(f"Authentication failed (HTTP {status})", status_code=status)
        if status == 429:
            retry_after = _retry_after(r)
            LOGGER.warning("Provider rate limit hit (retry_after=%s)", retry_after)
            raise UpstreamRateLimited(
                "Rate limit exceeded; retry later",
                status_code=status,
                retry_after_seconds=retry_after,
            )
        if status in (408, 504):
            raise UpstreamTimeout(f"Provider timed out (HTTP {status})", status_code=status)
        if status >= 400:
            LOGGER.error("Provider returned HTTP %s", status)
            raise UpstreamError(
                f"Provider returned HTTP {status}",
                status_code=status,
                retryable=status >= 500,
            )

    def _parse(self, r: httpx.Response, requested_model: str, elapsed: float) -> CompletionResult:
        try:
            data = r.json()
        except ValueError as e:
            LOGGER.error("Malformed response: body is not JSON (content-type=%s)", r.headers.get("content-type"))
            raise UpstreamMalformedResponse("Provider response is not JSON", status_code=r.status_code) from e

        try:
            text = data["choices"][0]["message"]["content"]
            usage = data["usage"]
            total = usage.get("total_tokens")
            if total is None:
                total = usage["prompt_tokens"] + usage["completion_tokens"]
            tokens_used = int(total)
        except (KeyError, IndexError, TypeError, ValueError, AttributeError) as e:
            LOGGER.error("Malformed response shape: %s", describe_shape(data))
            raise UpstreamMalformedResponse("Provider response missing completion text or usage") from e

        if not isinstance(text, str) or tokens_used < 0:
            LOGGER.error("Malformed response shape: %s", describe_shape(data))
            raise UpstreamMalformedResponse("Provider response has invalid completion text or usage")

        return CompletionResult(
            text=text,
            tokens_used=tokens_used,
            elapsed_seconds=max(elapsed, 0.0),
            model_id=str(data.get("model") or requested_model),
        )
