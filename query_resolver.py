#!/usr/bin/env python3
"""
Query Resolver - turns one free-text question into one ResponseEnvelope

Resolution order
────────────────
1. Classify: usage-style questions ("cpu usage", "running services") never
   use the structured shortcut; snapshots answer static facts only.
2. Structured lookup via SystemInfoProvider (first matching accessor).
3. Bounded generate → execute loop; each retry sees the previous error and
   command.
4. Static fallback table, then a plain-language apology.

resolve() never raises: every exit path returns a well-formed envelope with a
non-empty interpretation.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from agent_context import AgentContext, DEFAULT_MAX_RETRIES
from command_executor import CommandExecutor
from command_generator import CommandGenerator, is_unknown_reply
from errors import ExecutionError, GenerationError
from fallback_table import FallbackTable
from result_interpreter import ResultInterpreter
from system_info import SystemInfoProvider

logger = logging.getLogger(__name__)

STRUCTURED_LABEL = "Used built-in system information"
BUILTIN_LABEL = "Used built-in method"
FALLBACK_LABEL = "Used fallback method"

USAGE_KEYWORDS = ("usage", "running", "processes", "services", "current")

# Evaluated top to bottom; the first matching predicate wins.
STRUCTURED_PATTERNS: List[Tuple[str, re.Pattern]] = [
    ("cpu", re.compile(r"\bcpus?\b|\bprocessors?\b")),
    ("memory", re.compile(r"\bmemory\b|\bram\b")),
    ("storage", re.compile(r"\bstorage\b|\b(disk|free) space\b|\bpartitions?\b|\bmount(s| points?)?\b")),
    ("disk", re.compile(r"\bdisks?\b|\bdrives?\b|\bssds?\b|\bhdds?\b")),
    ("network", re.compile(r"\bnetwork\b|\bip( address(es)?)?\b|\bmac address\b|\bwi-?fi\b|\binterfaces?\b")),
    ("battery", re.compile(r"\bbattery\b|\bcharging\b")),
    ("os", re.compile(r"\bos\b|\boperating system\b|\bdistro\b|\bos version\b")),
    ("graphics", re.compile(r"\bgraphics\b|\bgpus?\b|\bvideo card\b")),
    ("processes", re.compile(r"\bprocess(es)?\b|\bprocess count\b")),
]


class ResolutionState(Enum):
    CLASSIFYING = "classifying"
    FETCHING_STRUCTURED = "fetching_structured"
    GENERATING = "generating"
    EXECUTING = "executing"
    INTERPRETING = "interpreting"
    DONE = "done"
    EXHAUSTED = "exhausted"


@dataclass
class ResponseEnvelope:
    """The single artifact returned for a query."""

    interpretation: str
    command: str = ""
    raw_output: str = ""

    def to_dict(self) -> Dict[str, str]:
        return {
            "interpretation": self.interpretation,
            "command": self.command,
            "rawOutput": self.raw_output,
        }


@dataclass
class ExecutionAttempt:
    command: Optional[str]
    outcome: str = "failure"
    error: str = ""
    raw_output: str = ""


@dataclass
class Resolution:
    """Per-query working state; discarded once the envelope is built."""

    query: str
    state: ResolutionState = ResolutionState.CLASSIFYING
    attempts: List[ExecutionAttempt] = field(default_factory=list)

    def move(self, state: ResolutionState) -> None:
        logger.debug(f"{self.state.value} → {state.value}: {self.query[:60]!r}")
        self.state = state

    @property
    def last_attempt(self) -> Optional[ExecutionAttempt]:
        return self.attempts[-1] if self.attempts else None


def is_usage_query(query: str) -> bool:
    text = query.lower()
    return any(keyword in text for keyword in USAGE_KEYWORDS)


def match_structured(query: str) -> Optional[str]:
    """Name of the first structured accessor whose pattern matches, if any."""
    text = query.lower()
    for name, pattern in STRUCTURED_PATTERNS:
        if pattern.search(text):
            return name
    return None


class QueryResolver:
    """Ties provider, generator, executor and interpreter together per query."""

    def __init__(
        self,
        context: AgentContext,
        provider: Optional[SystemInfoProvider] = None,
        fallback: Optional[FallbackTable] = None,
        generator: Optional[CommandGenerator] = None,
        executor: Optional[CommandExecutor] = None,
        interpreter: Optional[ResultInterpreter] = None,
    ):
        self.context = context
        self.provider = provider or SystemInfoProvider()
        self.fallback = fallback or FallbackTable()
        self.generator = generator or CommandGenerator(context)
        self.executor = executor or CommandExecutor(shell=context.config.shell)
        self.interpreter = interpreter or ResultInterpreter(context)
        self.structured_handlers: List[Tuple[str, Callable[[str], bool], Callable[[], object]]] = [
            (name, pattern.search, self.provider.get(name))
            for name, pattern in STRUCTURED_PATTERNS
        ]

    def resolve(self, query: str, max_retries: int = DEFAULT_MAX_RETRIES) -> ResponseEnvelope:
        """Resolve a query; never raises."""
        query = (query or "").strip()
        if not query:
            return ResponseEnvelope(interpretation="Please ask a question about your system.")
        try:
            return self._resolve(Resolution(query=query), max(0, max_retries))
        except Exception as e:
            logger.error(f"Unexpected error resolving {query!r}: {e}", exc_info=True)
            return ResponseEnvelope(interpretation=f"Error: {e}")

    # ── pipeline ───────────────────────────────────────────────────────────────

    def _resolve(self, res: Resolution, max_retries: int) -> ResponseEnvelope:
        usage = is_usage_query(res.query)

        if not usage:
            envelope = self._try_structured(res)
            if envelope is not None:
                return envelope

        if not self.context.llm_available:
            return self._basic_mode(res)

        for attempt in range(max_retries + 1):
            previous = res.last_attempt
            res.move(ResolutionState.GENERATING)
            try:
                command = self.generator.generate(
                    res.query,
                    previous.error if previous else None,
                    previous.command if previous else None,
                )
            except GenerationError as e:
                logger.warning(f"Attempt {attempt + 1} failed: {e}")
                res.attempts.append(ExecutionAttempt(command=None, error=str(e)))
                continue

            if is_unknown_reply(command):
                res.move(ResolutionState.DONE)
                return self._unknown(res)

            res.move(ResolutionState.EXECUTING)
            try:
                raw_output = self.executor.execute(command)
            except ExecutionError as e:
                logger.warning(f"Attempt {attempt + 1} failed: {e}")
                res.attempts.append(ExecutionAttempt(command=command, error=str(e)))
                continue

            res.attempts.append(ExecutionAttempt(command=command, outcome="success", raw_output=raw_output))
            res.move(ResolutionState.INTERPRETING)
            interpretation = self.interpreter.interpret(res.query, command, raw_output)
            res.move(ResolutionState.DONE)
            return ResponseEnvelope(interpretation=interpretation, command=command, raw_output=raw_output)

        res.move(ResolutionState.EXHAUSTED)
        return self._exhausted(res)

    def _try_structured(self, res: Resolution) -> Optional[ResponseEnvelope]:
        text = res.query.lower()
        for name, predicate, accessor in self.structured_handlers:
            if not predicate(text):
                continue
            res.move(ResolutionState.FETCHING_STRUCTURED)
            try:
                data = accessor()
            except Exception as e:
                logger.warning(f"Structured lookup '{name}' failed: {e}")
                return None
            raw_output = json.dumps(data, indent=2, default=str)
            res.move(ResolutionState.INTERPRETING)
            interpretation = self.interpreter.interpret(res.query, STRUCTURED_LABEL, raw_output)
            res.move(ResolutionState.DONE)
            return ResponseEnvelope(
                interpretation=interpretation, command=STRUCTURED_LABEL, raw_output=raw_output
            )
        return None

    # ── terminal envelopes ─────────────────────────────────────────────────────

    def _unknown(self, res: Resolution) -> ResponseEnvelope:
        builtin = self.fallback.lookup(res.query)
        if builtin:
            return ResponseEnvelope(interpretation=builtin, command=BUILTIN_LABEL)
        return ResponseEnvelope(
            interpretation=(
                f"I couldn't find a way to answer \"{res.query}\". Try asking about "
                "specific system components like CPU, memory, disk, etc."
            )
        )

    def _exhausted(self, res: Resolution) -> ResponseEnvelope:
        builtin = self.fallback.lookup(res.query)
        if builtin:
            return ResponseEnvelope(
                interpretation=f"⚡ After several attempts, I found another way!\n\n{builtin}",
                command=FALLBACK_LABEL,
            )
        last = res.last_attempt
        error = last.error if last else "unknown error"
        return ResponseEnvelope(
            interpretation=(
                f"I couldn't retrieve the information for \"{res.query}\".\n\n"
                f"Last error: {error}\n\n"
                "Try asking differently or about a specific component."
            ),
            command=(last.command if last and last.command else ""),
        )

    def _basic_mode(self, res: Resolution) -> ResponseEnvelope:
        builtin = self.fallback.lookup(res.query)
        if builtin:
            return ResponseEnvelope(interpretation=builtin, command=BUILTIN_LABEL)
        reason = f" ({self.context.init_error})" if self.context.init_error else ""
        return ResponseEnvelope(
            interpretation=(
                f"The AI backend is unavailable{reason}, so I can only answer basic "
                "questions right now. Try asking about CPU, memory, disk, network, "
                "battery, OS or graphics."
            )
        )
