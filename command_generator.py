#!/usr/bin/env python3
"""
Command Generator - asks the language model for one diagnostic shell command
"""

import logging
import re
from typing import Dict, List, Optional

from agent_context import AgentContext
from errors import GenerationError

logger = logging.getLogger(__name__)

FIRST_ATTEMPT_TEMPERATURE = 0.1
RETRY_TEMPERATURE = 0.3
TOP_P = 0.9
MAX_TOKENS = 300

UNKNOWN_REPLY = "I don't know"

SHELL_PROFILES = {
    "powershell": {
        "os_name": "Windows",
        "shell_name": "PowerShell",
        "hints": (
            "Prefer Get-CimInstance / Get-Process / Get-ComputerInfo style cmdlets and "
            "select only the properties needed. Do not add ConvertTo-Json yourself; "
            "the output is converted automatically."
        ),
    },
    "bash": {
        "os_name": "Linux",
        "shell_name": "bash",
        "hints": (
            "Prefer standard tools (lscpu, free, df, lsblk, ip, ps, uptime, cat /proc/...). "
            "When a tool offers JSON output (lsblk -J, ip -j), use it."
        ),
    },
}

SYSTEM_PROMPT_TEMPLATE = """You are an expert {os_name} system administrator. Generate the most appropriate {shell_name} command to answer user questions about their system.

Rules:
- Reply with exactly one {shell_name} command and nothing else: no explanation, no markdown, no code fences.
- The command must only read system state; it is run as-is and its output is shown to the user.
- {hints}
- If no command can answer the question, reply exactly: {unknown}"""

RETRY_CLAUSE_TEMPLATE = """

Previous attempt failed with error: {error}
Previous command: {command}
Please generate a different command that avoids this error."""

_FENCE_RE = re.compile(r"^```[\w-]*\s*\n?(.*?)\n?```$", re.DOTALL)
_PROMPT_MARKER_RE = re.compile(r"^(\$|PS>|PS [^>]*>)\s+")


def clean_command(text: str) -> str:
    """Strip code fences, a leading prompt marker and stray backticks from a reply."""
    command = (text or "").strip()
    fenced = _FENCE_RE.match(command)
    if fenced:
        command = fenced.group(1).strip()
    if command.startswith("`") and command.endswith("`"):
        command = command.strip("`").strip()
    command = _PROMPT_MARKER_RE.sub("", command)
    return command


def is_unknown_reply(command: str) -> bool:
    """True for an empty reply or the model's explicit 'cannot answer' signal."""
    normalized = (command or "").strip().lower().rstrip(".!")
    if not normalized:
        return True
    if normalized == "unknown":
        return True
    return "i don't know" in normalized or "i do not know" in normalized


class CommandGenerator:
    """Builds the generation prompt and calls the completion service."""

    def __init__(self, context: AgentContext):
        self.context = context

    def build_messages(
        self,
        query: str,
        previous_error: Optional[str] = None,
        previous_command: Optional[str] = None,
    ) -> List[Dict[str, str]]:
        profile = SHELL_PROFILES.get(self.context.config.shell, SHELL_PROFILES["bash"])
        system_prompt = SYSTEM_PROMPT_TEMPLATE.format(unknown=UNKNOWN_REPLY, **profile)

        if self.context.static_context:
            system_prompt = f"# Additional context:\n{self.context.static_context}\n\n{system_prompt}"

        if previous_error is not None:
            system_prompt += RETRY_CLAUSE_TEMPLATE.format(
                error=previous_error,
                command=previous_command or "(none)",
            )

        return [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": f'Now answer: "{query}"'},
        ]

    def generate(
        self,
        query: str,
        previous_error: Optional[str] = None,
        previous_command: Optional[str] = None,
    ) -> str:
        """Return cleaned command text; raises GenerationError on any call failure."""
        client = self.context.client
        if client is None:
            raise GenerationError("Language model is not available")

        messages = self.build_messages(query, previous_error, previous_command)
        retrying = previous_error is not None

        try:
            response = client.chat.completions.create(
                model=self.context.config.model_name,
                messages=messages,
                temperature=RETRY_TEMPERATURE if retrying else FIRST_ATTEMPT_TEMPERATURE,
                top_p=TOP_P,
                max_tokens=MAX_TOKENS,
                stream=False,
                timeout=self.context.config.llm_timeout,
            )
            content = response.choices[0].message.content or ""
        except Exception as e:
            raise GenerationError(f"LLM request failed: {e}") from e

        command = clean_command(content)
        logger.debug(f"Generated command (retry={retrying}): {command!r}")
        return command
