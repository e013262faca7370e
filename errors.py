#!/usr/bin/env python3
"""
Errors raised inside the query pipeline.

None of these reach a caller of QueryResolver.resolve(); they are caught at
the resolver boundary (or inside the interpreter) and turned into plain
language.
"""


class AgentError(Exception):
    """Base class for all pipeline errors."""


class InitializationError(AgentError):
    """Missing credential or unreachable model provider."""


class GenerationError(AgentError):
    """The completion call for a shell command failed or timed out."""


class ExecutionError(AgentError):
    """A generated command could not be run successfully."""

    def __init__(self, message: str, command: str = ""):
        super().__init__(message)
        self.command = command


class InterpretationError(AgentError):
    """The completion call for an explanation failed."""
