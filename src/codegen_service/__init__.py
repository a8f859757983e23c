"""
Code generation service package.

Provides:
- Prompt building for code generation and code explanation
- An async client for OpenAI-compatible chat completion endpoints
- The generate-then-explain orchestrator
- A FastAPI surface and a command line entry point
"""
