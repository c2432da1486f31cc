"""Execution backend implementations."""

from orpheus.orchestrator.backend.anthropic_backend import AnthropicBackend
from orpheus.orchestrator.backend.base import Backend
from orpheus.orchestrator.backend.echo_backend import EchoBackend
from orpheus.orchestrator.backend.factory import build_backends
from orpheus.orchestrator.backend.gemini_backend import GeminiBackend
from orpheus.orchestrator.backend.openai_backend import OpenAIBackend

__all__ = [
    "AnthropicBackend",
    "Backend",
    "EchoBackend",
    "GeminiBackend",
    "OpenAIBackend",
    "build_backends",
]
