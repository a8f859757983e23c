"""Prompt templating helpers.

Builders here are pure: the same inputs always render the same text.
"""
from __future__ import annotations
from dataclasses import dataclass

from codegen_service.common.schema import Language

LANGUAGE_NAMES: dict[Language, str] = {
    Language.PYTHON: "Python",
    Language.C: "C",
    Language.JAVASCRIPT: "JavaScript",
    Language.JAVA: "Java",
}

GENERATION_SYSTEM_TEMPLATE = (
    "You are an expert {{language}} programmer. "
    "Write clean, well-documented, idiomatic {{language}} code that solves the user's task. "
    "Include appropriate error handling. "
    "Return only the code, without any explanation or text before or after it."
)

GENERATION_USER_TEMPLATE = "Task: {{task}}"

CONTEXT_SECTION_TEMPLATE = (
    "\n\n### Previous context\n"
    "The following is earlier conversation, provided as background only. "
    "The task above is the instruction to follow.\n"
    "<<<\n{{context}}\n>>>"
)

EXPLANATION_SYSTEM_TEMPLATE = (
    "You are a patient programming teacher. "
    "Explain {{language}} code to a beginner in plain language. "
    "Describe what the code does overall, then walk through any non-trivial logic step by step."
)

EXPLANATION_USER_TEMPLATE = "Explain the following {{language}} code:\n\n{{code}}"

ELISION_MARKER = "[...earlier context omitted...]\n"


@dataclass(frozen=True)
class Prompt:
    """A system instruction and a user instruction."""
    system: str
    user: str

    def messages(self) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]


def render_prompt(template: str, **values: str) -> str:
    """
    Render values into the template.

    Args:
        template: Template content containing {{name}} placeholders.
        values: Replacement text per placeholder name.

    Returns:
        Rendered prompt.
    """
    out = template
    for name, value in values.items():
        out = out.replace("{{" + name + "}}", value)
    return out


def trim_context(context: str | None, max_chars: int | None = None) -> str | None:
    """Drop blank context and keep only the most recent max_chars characters."""
    if max_chars is not None and max_chars < 0:
        raise ValueError(f"max_chars must not be negative, got {max_chars}")
    if context is None or not context.strip() or max_chars == 0:
        return None
    context = context.strip()
    if max_chars is not None and len(context) > max_chars:
        context = ELISION_MARKER + context[-max_chars:].lstrip()
    return context


def build_generation_prompt(
    language: Language,
    task: str,
    context: str | None = None,
    max_context_chars: int | None = None,
) -> Prompt:
    """
    Build the prompt for the code generation call.

    Args:
        language: Target language.
        task: The user's instruction.
        context: Optional earlier conversation, appended as background.
        max_context_chars: Keep only this many trailing characters of context.
    """
    name = LANGUAGE_NAMES[language]
    system = render_prompt(GENERATION_SYSTEM_TEMPLATE, language=name)
    user = render_prompt(GENERATION_USER_TEMPLATE, task=task.strip())

    context = trim_context(context, max_context_chars)
    if context is not None:
        user += render_prompt(CONTEXT_SECTION_TEMPLATE, context=context)
    return Prompt(system=system, user=user)


def build_explanation_prompt(language: Language, code: str) -> Prompt:
    """Build the prompt asking for a beginner-level explanation of generated code."""
    name = LANGUAGE_NAMES[language]
    return Prompt(
        system=render_prompt(EXPLANATION_SYSTEM_TEMPLATE, language=name),
        user=render_prompt(EXPLANATION_USER_TEMPLATE, language=name, code=code),
    )
