"""
SDK for AI Chat Guard.

Provides the remote generation backends used by the orchestrator.
"""

from .openai_backend import OpenAIBackend

__all__ = ["OpenAIBackend"]
