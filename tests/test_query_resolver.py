import json
import re

import pytest

from errors import ExecutionError, GenerationError
from fallback_table import FallbackTable
from query_resolver import (
    BUILTIN_LABEL,
    FALLBACK_LABEL,
    STRUCTURED_LABEL,
    QueryResolver,
    is_usage_query,
    match_structured,
)
from system_info import SystemInfoProvider


class FakeGenerator:
    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def generate(self, query, previous_error=None, previous_command=None):
        self.calls.append((query, previous_error, previous_command))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeExecutor:
    def __init__(self, results):
        self.results = list(results)
        self.commands = []

    def execute(self, command):
        self.commands.append(command)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


class FakeInterpreter:
    def __init__(self):
        self.calls = []

    def interpret(self, query, command, raw_output):
        self.calls.append((query, command, raw_output))
        return f"explained: {raw_output}"


class FakeProvider:
    def __init__(self, failing=()):
        self.failing = set(failing)
        self.called = []

    def get(self, name):
        def accessor():
            self.called.append(name)
            if name in self.failing:
                raise RuntimeError(f"{name} unavailable")
            return {"accessor": name}
        return accessor


def _resolver(context, generator=None, executor=None, provider=None, fallback=None):
    return QueryResolver(
        context,
        provider=provider or FakeProvider(),
        fallback=fallback or FallbackTable(entries=[]),
        generator=generator or FakeGenerator([]),
        executor=executor or FakeExecutor([]),
        interpreter=FakeInterpreter(),
    )


@pytest.mark.parametrize(
    "query",
    [
        "what's my CPU usage?",
        "which services are running",
        "list processes",
        "current memory",
        "what is my memory currently at?",
        "cpu load currently",
    ],
)
def test_usage_queries_detected(query):
    assert is_usage_query(query)


def test_static_fact_query_is_not_usage():
    assert not is_usage_query("what cpu do I have?")


def test_structured_priority_storage_before_disk():
    assert match_structured("how much disk space is left?") == "storage"
    assert match_structured("what disks are installed?") == "disk"
    assert match_structured("what is my hostname?") is None


def test_structured_shortcut_returns_fixed_label(llm_context):
    context, _ = llm_context([])
    provider = FakeProvider()
    generator = FakeGenerator([])
    resolver = _resolver(context, generator=generator, provider=provider)

    envelope = resolver.resolve("what cpu do I have?")

    assert provider.called == ["cpu"]
    assert generator.calls == []
    assert envelope.command == STRUCTURED_LABEL
    assert json.loads(envelope.raw_output) == {"accessor": "cpu"}
    assert envelope.interpretation.startswith("explained:")


@pytest.mark.parametrize("query", ["what's my CPU usage?", "what is my memory currently at?"])
def test_usage_query_bypasses_structured_accessor(llm_context, query):
    context, _ = llm_context([])
    provider = FakeProvider()
    generator = FakeGenerator(["top -bn1 | head"])
    executor = FakeExecutor(["%Cpu(s): 3.0 us"])
    resolver = _resolver(context, generator=generator, executor=executor, provider=provider)

    envelope = resolver.resolve(query)

    assert provider.called == []
    assert len(generator.calls) == 1
    assert envelope.command == "top -bn1 | head"
    assert envelope.raw_output == "%Cpu(s): 3.0 us"


def test_failing_accessor_falls_through_to_generation(llm_context):
    context, _ = llm_context([])
    provider = FakeProvider(failing={"memory"})
    generator = FakeGenerator(["free -b"])
    executor = FakeExecutor(["Mem: 100"])
    resolver = _resolver(context, generator=generator, executor=executor, provider=provider)

    envelope = resolver.resolve("how much memory do I have?")

    assert provider.called == ["memory"]
    assert envelope.command == "free -b"


def test_retry_feeds_previous_error_and_command(llm_context):
    context, _ = llm_context([])
    generator = FakeGenerator(["bad-one", "bad-two", "good"])
    executor = FakeExecutor([
        ExecutionError("error one", "bad-one"),
        ExecutionError("error two", "bad-two"),
        "ok",
    ])
    resolver = _resolver(context, generator=generator, executor=executor)

    envelope = resolver.resolve("what is my kernel version?")

    assert generator.calls == [
        ("what is my kernel version?", None, None),
        ("what is my kernel version?", "error one", "bad-one"),
        ("what is my kernel version?", "error two", "bad-two"),
    ]
    assert envelope.command == "good"
    assert envelope.raw_output == "ok"


def test_generation_error_is_retried_without_command(llm_context):
    context, _ = llm_context([])
    generator = FakeGenerator([GenerationError("LLM request failed: timeout"), "uname -r"])
    executor = FakeExecutor(["6.8.0"])
    resolver = _resolver(context, generator=generator, executor=executor)

    envelope = resolver.resolve("kernel version?")

    assert generator.calls[1] == ("kernel version?", "LLM request failed: timeout", None)
    assert envelope.command == "uname -r"


def test_loop_is_bounded_by_max_retries(llm_context):
    context, _ = llm_context([])
    generator = FakeGenerator(["a", "b", "c", "d", "e"])
    executor = FakeExecutor([ExecutionError(f"fail {i}") for i in range(5)])
    resolver = _resolver(context, generator=generator, executor=executor)

    envelope = resolver.resolve("what is my kernel version?", max_retries=2)

    assert len(generator.calls) == 3
    assert "Last error: fail 2" in envelope.interpretation
    assert envelope.command == "c"
    assert envelope.raw_output == ""


def test_exhausted_loop_uses_fallback_with_prefix(llm_context):
    context, _ = llm_context([])
    generator = FakeGenerator(["a", "b", "c"])
    executor = FakeExecutor([ExecutionError("nope")] * 3)
    fallback = FallbackTable(entries=[("kernel", re.compile("kernel"), lambda: "6.8.0")])
    resolver = _resolver(context, generator=generator, executor=executor, fallback=fallback)

    envelope = resolver.resolve("kernel version?")

    assert envelope.interpretation.startswith("⚡ After several attempts, I found another way!")
    assert "Using built-in method: 6.8.0" in envelope.interpretation
    assert envelope.command == FALLBACK_LABEL
    assert envelope.raw_output == ""


def test_unknown_reply_exits_early_with_fallback(llm_context):
    context, _ = llm_context([])
    generator = FakeGenerator(["I don't know", "never used"])
    fallback = FallbackTable(entries=[("arch", re.compile("arch"), lambda: "x86_64")])
    resolver = _resolver(context, generator=generator, fallback=fallback)

    envelope = resolver.resolve("what is my arch?")

    assert len(generator.calls) == 1
    assert envelope.command == BUILTIN_LABEL
    assert "x86_64" in envelope.interpretation


def test_empty_reply_without_fallback_apologises(llm_context):
    context, _ = llm_context([])
    generator = FakeGenerator(["", "never used"])
    resolver = _resolver(context, generator=generator)

    envelope = resolver.resolve("what is the meaning of life?")

    assert len(generator.calls) == 1
    assert "couldn't find a way to answer" in envelope.interpretation
    assert envelope.command == ""
    assert envelope.raw_output == ""


def test_cores_question_in_basic_mode(basic_context):
    resolver = QueryResolver(basic_context, interpreter=FakeInterpreter())

    envelope = resolver.resolve("how many cores do I have?")

    assert "Using built-in method" in envelope.interpretation
    assert re.search(r"\d+", envelope.interpretation)
    assert envelope.command == BUILTIN_LABEL
    assert envelope.raw_output == ""


def test_cores_question_when_completion_calls_fail(llm_context):
    context, completions = llm_context([RuntimeError("503")] * 3)
    resolver = QueryResolver(context, provider=SystemInfoProvider())

    envelope = resolver.resolve("how many cores do I have?")

    assert len(completions.calls) == 3
    assert "Using built-in method" in envelope.interpretation
    assert envelope.command == FALLBACK_LABEL
    assert envelope.raw_output == ""


def test_basic_mode_without_fallback_explains(basic_context):
    resolver = _resolver(basic_context)

    envelope = resolver.resolve("who am I?")

    assert "AI backend is unavailable" in envelope.interpretation
    assert "No API key found" in envelope.interpretation


def test_unexpected_errors_become_envelopes(llm_context):
    context, _ = llm_context([])

    class BrokenGenerator:
        def generate(self, *args):
            raise KeyError("boom")

    resolver = _resolver(context, generator=BrokenGenerator())

    envelope = resolver.resolve("uptime please")

    assert envelope.interpretation.startswith("Error:")
    assert set(envelope.to_dict()) == {"interpretation", "command", "rawOutput"}


def test_every_dependency_failing_still_answers(llm_context):
    context, _ = llm_context([])
    generator = FakeGenerator([GenerationError("down")] * 3)
    provider = FakeProvider(failing=set(SystemInfoProvider.ACCESSORS))
    resolver = _resolver(context, generator=generator, provider=provider)

    for query in ("cpu model?", "network?", "anything"):
        generator.replies = [GenerationError("down")] * 3
        envelope = resolver.resolve(query)
        assert envelope.interpretation


def test_blank_query_gets_prompt(basic_context):
    envelope = _resolver(basic_context).resolve("   ")
    assert envelope.interpretation
