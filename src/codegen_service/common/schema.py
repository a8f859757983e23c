"""Dataclasses and enums for request/response types."""
from __future__ import annotations
from dataclasses import dataclass
from enum import Enum

from codegen_service.common.errors import InvalidRequest

MIN_PROMPT_LENGTH = 3


class Language(str, Enum):
    """Target languages the service generates code for."""

    PYTHON = "python"
    C = "c"
    JAVASCRIPT = "javascript"
    JAVA = "java"

    @classmethod
    def parse(cls, value: "str | Language") -> "Language":
        """Resolve a language name, failing with InvalidRequest if unknown."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            supported = ", ".join(lang.value for lang in cls)
            raise InvalidRequest(f"Unsupported language {value!r}; expected one of: {supported}") from None


class Phase(str, Enum):
    """States a single orchestration passes through."""

    GENERATING = "generation"
    EXPLAINING = "explanation"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class GenerationRequest:
    """A natural-language task plus its target language."""
    prompt: str
    language: Language
    context: str | None = None

    @classmethod
    def create(cls, prompt: str, language: "str | Language", context: str | None = None) -> "GenerationRequest":
        return cls(prompt=prompt, language=Language.parse(language), context=context)


@dataclass(frozen=True)
class CompletionOptions:
    """Per-call sampling options sent to the completion provider."""
    model: str
    temperature: float
    max_output_tokens: int
    stream: bool = False


@dataclass(frozen=True)
class CompletionResult:
    """One provider call's output and measured cost."""
    text: str
    tokens_used: int
    elapsed_seconds: float
    model_id: str


@dataclass(frozen=True)
class GenerationResponse:
    """Generated code, its explanation and the generation call's metrics."""
    code: str
    language: Language
    explanation: str
    tokens_used: int
    generation_time_seconds: float

    def to_dict(self) -> dict[str, object]:
        return {
            "code": self.code,
            "language": self.language.value,
            "explanation": self.explanation,
            "tokens_used": self.tokens_used,
            "generation_time_seconds": self.generation_time_seconds,
        }
