#!/usr/bin/env python3
"""
Result Interpreter - turns raw command output into an answer for the user

The language model writes the explanation when it is reachable. Otherwise a
LocalFormatter renders the raw data deterministically; that strategy is
passed in so it can be swapped without touching the model path.
"""

import json
import logging
from typing import Iterable, List, Optional

from agent_context import AgentContext
from errors import InterpretationError

logger = logging.getLogger(__name__)

INTERPRET_TEMPERATURE = 0.2
INTERPRET_MAX_TOKENS = 500
MAX_LIST_ITEMS = 10

BYTE_UNITS = ["B", "KB", "MB", "GB", "TB", "PB"]

INTERPRET_PROMPT_TEMPLATE = """The user asked: "{query}"
The following command was executed:
{command}

It produced this output:
{output}

Please explain this technical system information in simple, non-technical terms that a regular user would understand. Answer the user's original question directly first, then add relevant details if available. Keep the response concise but helpful.

Formatting:
- Use a bulleted list when the output contains several items.
- Use **bold** labels for single values (e.g. **Total memory**: 16 GB).
- Use a Markdown table when the output is tabular.
- Convert raw byte counts into KB/MB/GB."""

NAME_FIELDS = (
    "Name", "ProcessName", "DeviceID", "DisplayName", "name", "model", "mount",
    "interface", "iface", "Caption", "Description", "command", "pid",
)
SIZE_FIELDS = (
    "Size", "WorkingSet", "WorkingSet64", "FreeSpace", "Capacity", "size", "used",
    "memory", "rss", "CPU", "cpu_percent", "memory_percent", "level", "speed",
)
BYTE_KEY_HINTS = ("size", "bytes", "memory", "workingset", "freespace", "capacity", "ram", "rss", "vram")
PERCENT_KEY_HINTS = ("percent", "pct", "usage", "load")


def format_bytes(num_bytes) -> str:
    """1024-based human size with at most two decimals: 2048 → '2 KB'."""
    value = float(num_bytes)
    if value == 0:
        return "0 B"
    i = 0
    while abs(value) >= 1024 and i < len(BYTE_UNITS) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {BYTE_UNITS[i]}"


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _matches(key: str, hints: Iterable[str]) -> bool:
    lowered = key.lower()
    return any(h in lowered for h in hints)


def is_empty_output(raw_output: Optional[str]) -> bool:
    text = (raw_output or "").strip()
    return text in ("", "{}", "[]", "null")


class LocalFormatter:
    """Best-effort Markdown rendering of structured output, no model involved."""

    def format(self, query: str, raw_output: str) -> str:
        try:
            data = json.loads(raw_output)
        except (TypeError, ValueError):
            data = None

        if isinstance(data, list):
            body = self._format_list(data)
        elif isinstance(data, dict):
            body = self._format_mapping(data)
        else:
            body = raw_output.strip()
        return f"Here's the technical information about your system:\n\n{body}"

    def format_value(self, key: str, value) -> str:
        if _is_number(value) and _matches(key, BYTE_KEY_HINTS):
            return format_bytes(value)
        if _is_number(value) and _matches(key, PERCENT_KEY_HINTS):
            return f"{round(value, 1):g}%"
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False)
        return str(value)

    def _format_list(self, items: list) -> str:
        lines: List[str] = []
        for item in items[:MAX_LIST_ITEMS]:
            if not isinstance(item, dict):
                lines.append(f"- {item}")
                continue
            name_key = next((k for k in NAME_FIELDS if item.get(k) not in (None, "")), None)
            size_key = next((k for k in SIZE_FIELDS if item.get(k) not in (None, "")), None)
            name = item[name_key] if name_key else next(iter(item.values()), "item")
            line = f"- **{name}**"
            if size_key and size_key != name_key:
                line += f": {self.format_value(size_key, item[size_key])}"
            lines.append(line)
        if len(items) > MAX_LIST_ITEMS:
            lines.append(f"- …and {len(items) - MAX_LIST_ITEMS} more")
        return "\n".join(lines)

    def _format_mapping(self, data: dict) -> str:
        return "\n".join(
            f"- **{key}**: {self.format_value(key, value)}" for key, value in data.items()
        )


class ResultInterpreter:
    """Explains command output via the model, falling back to LocalFormatter."""

    def __init__(self, context: AgentContext, formatter: Optional[LocalFormatter] = None):
        self.context = context
        self.formatter = formatter or LocalFormatter()

    def interpret(self, query: str, command: str, raw_output: str) -> str:
        if is_empty_output(raw_output):
            return (
                f"I couldn't find any information about \"{query}\". "
                "The command didn't return any data."
            )

        if not self.context.llm_available:
            return self.formatter.format(query, raw_output)

        try:
            return self._ask_model(query, command, raw_output)
        except InterpretationError as e:
            logger.warning(f"Interpretation failed, using local formatter: {e}")
            return self.formatter.format(query, raw_output)

    def _ask_model(self, query: str, command: str, raw_output: str) -> str:
        prompt = INTERPRET_PROMPT_TEMPLATE.format(query=query, command=command, output=raw_output)
        try:
            response = self.context.client.chat.completions.create(
                model=self.context.config.model_name,
                messages=[{"role": "user", "content": prompt}],
                temperature=INTERPRET_TEMPERATURE,
                max_tokens=INTERPRET_MAX_TOKENS,
                stream=False,
                timeout=self.context.config.llm_timeout,
            )
            text = response.choices[0].message.content or ""
        except Exception as e:
            raise InterpretationError(str(e)) from e

        text = text.strip().strip('"').strip()
        if not text:
            raise InterpretationError("Model returned an empty explanation")
        return text
