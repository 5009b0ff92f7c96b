# test_imports.py
import importlib

import pytest


@pytest.mark.parametrize("module", [
    "ai_chat_guard.config.loader",
    "ai_chat_guard.core.assistant",
    "ai_chat_guard.core.orchestrator",
    "ai_chat_guard.sdk",
    "ai_chat_guard.storage.repository",
    "ai_chat_guard.cli.main",
])
def test_module_imports(module):
    assert importlib.import_module(module) is not None


def test_sdk_exports_backend():
    from ai_chat_guard.sdk import OpenAIBackend
    assert OpenAIBackend.__name__ == "OpenAIBackend"
