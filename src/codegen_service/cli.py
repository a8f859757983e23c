"""One-shot code generation from the command line."""
from __future__ import annotations
import argparse
import asyncio
import logging
import sys

from codegen_service.common.errors import CodegenError, ExplanationFailed
from codegen_service.common.logging_setup import setup_logging
from codegen_service.common.schema import GenerationRequest, GenerationResponse, Language
from codegen_service.common.settings import load_settings
from codegen_service.core.orchestrator import GenerationOrchestrator

LOGGER = logging.getLogger("codegen.cli")


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="codegen", description="Generate and explain code with an LLM")
    ap.add_argument("--prompt", required=True, help="What the code should do")
    ap.add_argument("--language", required=True, choices=[lang.value for lang in Language])
    ap.add_argument("--context", default=None, help="Earlier conversation to use as background")
    ap.add_argument("--config", default=None, help="Config path (default: configs/service.yaml)")
    ap.add_argument("--log-level", default=None, help="Logging level (default: $LOG_LEVEL or INFO)")
    return ap


async def run(orchestrator: GenerationOrchestrator, request: GenerationRequest) -> GenerationResponse:
    try:
        return await orchestrator.generate_code(request)
    finally:
        await orchestrator.aclose()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        settings = load_settings(args.config)
    except (OSError, ValueError) as e:
        LOGGER.error("Invalid configuration: %s", e)
        return 1

    request = GenerationRequest.create(args.prompt, args.language, args.context)
    orchestrator = GenerationOrchestrator.from_settings(settings)
    try:
        resp = asyncio.run(run(orchestrator, request))
    except ExplanationFailed as e:
        LOGGER.error("Explanation failed (%s); printing generated code only", e.error.kind)
        print(e.code)
        return 1
    except CodegenError as e:
        LOGGER.error("Generation failed: %s", e)
        return 1

    LOGGER.info("Tokens: %d | generation time: %.2fs", resp.tokens_used, resp.generation_time_seconds)
    print(resp.code)
    print()
    print(resp.explanation)
    return 0


if __name__ == "__main__":
    sys.exit(main())
