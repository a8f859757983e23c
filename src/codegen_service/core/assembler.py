"""Turn completion results into the response contract."""
from __future__ import annotations
import re

from codegen_service.common.schema import CompletionResult, GenerationRequest, GenerationResponse

# Opening fence line, optionally tagged (```python, ```c++, ...)
_OPEN_FENCE_RE = re.compile(r"\A```[^\n`]*(?:\n|\Z)")
_CLOSE_FENCE_RE = re.compile(r"\n?```\Z")
# ```print(1)``` on a single line
_INLINE_FENCE_RE = re.compile(r"\A```([^\n]*?)```\Z")


def normalize_code(text: str) -> str:
    """Strip surrounding whitespace and enclosing code fence markers.

    The opening and closing markers are removed independently, so output cut
    off at the token limit (no closing fence) is cleaned as well.
    """
    stripped = text.strip()
    inline = _INLINE_FENCE_RE.match(stripped)
    if inline:
        return inline.group(1).strip()
    if stripped.startswith("```"):
        stripped = _OPEN_FENCE_RE.sub("", stripped, count=1)
    stripped = _CLOSE_FENCE_RE.sub("", stripped, count=1)
    return stripped.strip()


def extract_code(result: CompletionResult) -> str:
    return normalize_code(result.text)


def assemble(
    generation: CompletionResult,
    explanation_text: str,
    request: GenerationRequest,
    code: str | None = None,
) -> GenerationResponse:
    """
    Merge generated code, explanation and metrics.

    Language always comes from the request, never from the model output.
    Metrics are the generation call's own. Pass ``code`` when it was already
    extracted from ``generation``; otherwise it is extracted here.
    """
    if code is None:
        code = extract_code(generation)
    return GenerationResponse(
        code=code,
        language=request.language,
        explanation=explanation_text.strip(),
        tokens_used=generation.tokens_used,
        generation_time_seconds=generation.elapsed_seconds,
    )
