#!/usr/bin/env python3
"""
Command Executor - runs a generated command and normalizes its output

Primary strategy
────────────────
The command (plus a JSON conversion directive for PowerShell) is base64
encoded so no quoting survives into the launcher's argv:
• PowerShell → -EncodedCommand <base64 of UTF-16LE>
• bash       → eval "$(echo <base64> | base64 -d)"
Output that parses as JSON is re-serialized pretty-printed.

Degraded strategy
─────────────────
Only when the primary launcher itself cannot start: double quotes become
single quotes and the text is passed through a plain -Command / bash -c call,
without the JSON directive.
"""

import base64
import json
import locale
import logging
import os
import shutil
import signal
import subprocess
import threading
from typing import List, Optional

from errors import ExecutionError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
MAX_OUTPUT_BYTES = 10 * 1024 * 1024
READ_CHUNK_BYTES = 64 * 1024

POWERSHELL_JSON_DIRECTIVE = " | ConvertTo-Json -Depth 10"


def _default_powershell() -> str:
    if shutil.which("pwsh"):
        return "pwsh"
    return "powershell.exe"


def _decode(payload) -> str:
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload
    for encoding in ("utf-8", "utf-8-sig", locale.getpreferredencoding(False)):
        try:
            return payload.decode(encoding)
        except (LookupError, UnicodeDecodeError):
            continue
    return payload.decode("utf-8", errors="replace")


def _kill(process: subprocess.Popen) -> None:
    """Kill the process and, on POSIX, every child in its session."""
    if os.name == "posix":
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass
    else:
        try:
            process.kill()
        except OSError:
            pass


def pretty_json_or_raw(output: str) -> str:
    """Re-serialize JSON output with indentation; return other text stripped."""
    text = output.strip()
    if not text:
        return ""
    try:
        return json.dumps(json.loads(text), indent=2, ensure_ascii=False)
    except ValueError:
        return text


class CommandExecutor:
    """Runs externally supplied command text through the configured shell."""

    def __init__(
        self,
        shell: str = "bash",
        timeout: float = DEFAULT_TIMEOUT,
        max_output_bytes: int = MAX_OUTPUT_BYTES,
        executable: Optional[str] = None,
    ):
        if shell not in ("bash", "powershell"):
            raise ValueError(f"Unsupported shell: {shell}")
        self.shell = shell
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes
        if executable:
            self.executable = executable
        elif shell == "powershell":
            self.executable = _default_powershell()
        else:
            self.executable = shutil.which("bash") or "bash"

    # ── argv builders ──────────────────────────────────────────────────────────

    def primary_argv(self, command: str) -> List[str]:
        if self.shell == "powershell":
            script = command + POWERSHELL_JSON_DIRECTIVE
            encoded = base64.b64encode(script.encode("utf-16-le")).decode("ascii")
            return [self.executable, "-NoProfile", "-NonInteractive", "-EncodedCommand", encoded]

        if not shutil.which("base64"):
            raise ValueError("base64 utility not found")
        encoded = base64.b64encode(command.encode("utf-8")).decode("ascii")
        return [self.executable, "-c", f'eval "$(echo {encoded} | base64 -d)"']

    def degraded_command(self, command: str):
        """argv list (PowerShell) or plain text run by the configured bash."""
        simplified = command.replace('"', "'")
        if self.shell == "powershell":
            return [self.executable, "-NoProfile", "-Command", simplified]
        return simplified

    # ── execution ──────────────────────────────────────────────────────────────

    def execute(self, command: str) -> str:
        """
        Run the command and return its (possibly pretty-printed JSON) stdout.
        Raises ExecutionError with the text that should be fed back to the
        command generator.
        """
        logger.info(f"Executing command via {self.shell}: {command}")
        try:
            process = self._spawn(self.primary_argv(command))
        except (OSError, ValueError) as e:
            logger.warning(f"Primary execution failed ({e}); retrying with simple invocation")
            return self._execute_degraded(command, primary_error=str(e))
        return self._collect(process, command)

    def _execute_degraded(self, command: str, primary_error: str) -> str:
        target = self.degraded_command(command)
        try:
            process = self._spawn(target)
        except (OSError, ValueError) as e:
            raise ExecutionError(
                f"Command execution failed: {primary_error}; fallback also failed: {e}",
                command,
            )
        return self._collect(process, command)

    def _spawn(self, target) -> subprocess.Popen:
        use_shell = isinstance(target, str)
        return subprocess.Popen(
            target,
            shell=use_shell,
            executable=self.executable if use_shell else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            start_new_session=(os.name == "posix"),
        )

    def _collect(self, process: subprocess.Popen, command: str) -> str:
        """
        Read stdout as it arrives, stopping the process once it passes the
        output limit or the timeout.
        """
        stderr_chunks: List[bytes] = []
        drain = threading.Thread(
            target=lambda: stderr_chunks.append(process.stderr.read()), daemon=True
        )
        drain.start()

        timed_out = threading.Event()

        def expire():
            timed_out.set()
            _kill(process)

        timer = threading.Timer(self.timeout, expire)
        timer.daemon = True
        timer.start()

        stdout = bytearray()
        try:
            while True:
                chunk = process.stdout.read1(READ_CHUNK_BYTES)
                if not chunk:
                    break
                stdout.extend(chunk)
                if len(stdout) > self.max_output_bytes:
                    _kill(process)
                    raise ExecutionError(
                        f"Command execution failed: output exceeded {self.max_output_bytes} bytes",
                        command,
                    )
            returncode = process.wait()
        finally:
            timer.cancel()
            if process.poll() is None:
                _kill(process)
                process.wait()
            drain.join(timeout=1)
            process.stdout.close()
            process.stderr.close()

        if timed_out.is_set():
            raise ExecutionError(
                f"Command execution failed: timed out after {self.timeout}s", command
            )

        output = _decode(bytes(stdout))
        if returncode != 0:
            stderr = _decode(b"".join(stderr_chunks)).strip()
            detail = stderr or output.strip() or "no error output"
            raise ExecutionError(
                f"Command execution failed (exit code {returncode}): {detail}",
                command,
            )
        return pretty_json_or_raw(output)
