"""Shared pytest fixtures: fake model client and agent contexts."""

import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from agent_context import AgentConfig, AgentContext  # noqa: E402


class FakeCompletions:
    """Stands in for client.chat.completions; replies are consumed in order."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        message = SimpleNamespace(content=reply)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def make_client(replies):
    completions = FakeCompletions(replies)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


@pytest.fixture
def config(tmp_path):
    return AgentConfig(
        api_key="test-key",
        base_url="http://llm.invalid/v1",
        model_name="test-model",
        shell="bash",
        context_file=tmp_path / "context.txt",
    )


@pytest.fixture
def basic_context(config):
    """Context with no model client, as after a failed initialization."""
    context = AgentContext(config)
    context.init_error = "No API key found"
    return context


@pytest.fixture
def llm_context(config):
    """Factory for an initialized context whose client returns the given replies."""
    def _make(replies):
        client, completions = make_client(replies)
        return AgentContext(config, client=client), completions
    return _make
