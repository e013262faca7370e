#!/usr/bin/env python3
"""
Fallback Table - scalar facts computable without a model or a shell

Used when the language model is unavailable or gives up. Entries are checked
in order and the first match whose fact computes wins, so more specific
patterns ("free memory") sit before broader ones ("memory").
"""

import logging
import platform
import re
import socket
import time
from typing import Callable, List, Optional, Tuple

import psutil

from system_info import cpu_model_name

logger = logging.getLogger(__name__)

GB = 1024 ** 3

FALLBACK_PREFIX = "📋 Using built-in method:"

FallbackEntry = Tuple[str, re.Pattern, Callable[[], object]]


def _cores() -> int:
    return psutil.cpu_count(logical=True)


def _total_memory() -> str:
    return f"{round(psutil.virtual_memory().total / GB)} GB"


def _free_memory() -> str:
    return f"{round(psutil.virtual_memory().available / GB)} GB"


def _uptime() -> str:
    return f"{round((time.time() - psutil.boot_time()) / 3600)} hours"


FALLBACK_ENTRIES: List[FallbackEntry] = [
    ("cores", re.compile(r"\bcores?\b"), _cores),
    ("cpu", re.compile(r"\bcpu\b|\bprocessor\b"), cpu_model_name),
    ("platform", re.compile(r"\bplatform\b"), platform.system),
    ("freemem", re.compile(r"\bfree\s*mem(ory)?\b|\bavailable (memory|ram)\b"), _free_memory),
    ("memory", re.compile(r"\bmemory\b|\bram\b"), _total_memory),
    ("uptime", re.compile(r"\buptime\b|\bhow long\b.*\b(up|on|running)\b"), _uptime),
    ("hostname", re.compile(r"\bhost\s*name\b|\bcomputer name\b"), socket.gethostname),
    ("arch", re.compile(r"\barch(itecture)?\b"), platform.machine),
]


class FallbackTable:
    """Keyword → local fact lookup."""

    def __init__(self, entries: Optional[List[FallbackEntry]] = None):
        self.entries = list(entries if entries is not None else FALLBACK_ENTRIES)

    def lookup(self, query: str) -> Optional[str]:
        """Return the built-in answer for the query, or None when nothing matches."""
        text = query.lower()
        for key, pattern, fact in self.entries:
            if not pattern.search(text):
                continue
            try:
                value = fact()
            except Exception as e:
                logger.warning(f"Fallback method failed for {key}: {e}")
                continue
            return f"{FALLBACK_PREFIX} {value}"
        return None
