import base64
import shutil
import subprocess
import time

import pytest

from command_executor import (
    POWERSHELL_JSON_DIRECTIVE,
    CommandExecutor,
    pretty_json_or_raw,
)
from errors import ExecutionError

needs_bash = pytest.mark.skipif(
    not (shutil.which("bash") and shutil.which("base64")), reason="bash with base64 required"
)


def test_powershell_primary_argv_is_encoded():
    executor = CommandExecutor(shell="powershell", executable="pwsh")

    argv = executor.primary_argv('Get-CimInstance Win32_Processor | Select-Object Name')

    assert argv[:4] == ["pwsh", "-NoProfile", "-NonInteractive", "-EncodedCommand"]
    decoded = base64.b64decode(argv[4]).decode("utf-16-le")
    assert decoded == 'Get-CimInstance Win32_Processor | Select-Object Name' + POWERSHELL_JSON_DIRECTIVE


@needs_bash
def test_bash_primary_argv_is_encoded():
    executor = CommandExecutor(shell="bash", executable="/bin/bash")

    argv = executor.primary_argv("echo \"it's\" | wc -c")

    assert argv[:2] == ["/bin/bash", "-c"]
    encoded = base64.b64encode("echo \"it's\" | wc -c".encode("utf-8")).decode("ascii")
    assert argv[2] == f'eval "$(echo {encoded} | base64 -d)"'


def test_bash_primary_needs_base64_utility(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(shutil, "which", lambda name: None)

    with pytest.raises(ValueError, match="base64"):
        CommandExecutor(shell="bash", executable="/bin/bash").primary_argv("uptime")


@needs_bash
def test_quotes_survive_the_encoded_transport():
    output = CommandExecutor(shell="bash").execute("echo \"it's\" 'quoted \"twice\"'")

    assert output == "it's quoted \"twice\""


@needs_bash
def test_json_output_is_pretty_printed():
    output = CommandExecutor(shell="bash").execute("""echo '{"Name":"Intel","Cores":8}'""")

    assert output == '{\n  "Name": "Intel",\n  "Cores": 8\n}'


@needs_bash
def test_plain_output_is_returned_stripped():
    output = CommandExecutor(shell="bash").execute("printf '  6.8.0-45-generic\\n'")

    assert output == "6.8.0-45-generic"


@needs_bash
def test_nonzero_exit_raises_with_stderr(monkeypatch: pytest.MonkeyPatch):
    real_popen = subprocess.Popen
    launches = []

    def counting_popen(*args, **kwargs):
        launches.append(args[0])
        return real_popen(*args, **kwargs)

    monkeypatch.setattr(subprocess, "Popen", counting_popen)

    with pytest.raises(ExecutionError) as excinfo:
        CommandExecutor(shell="bash").execute("echo 'lsblkk: command not found' >&2; exit 127")

    assert "exit code 127" in str(excinfo.value)
    assert "lsblkk: command not found" in str(excinfo.value)
    assert excinfo.value.command == "echo 'lsblkk: command not found' >&2; exit 127"
    # A failing command is not re-run through the degraded path
    assert len(launches) == 1


@needs_bash
def test_timeout_stops_the_command():
    started = time.monotonic()

    with pytest.raises(ExecutionError, match="timed out after 0.5s"):
        CommandExecutor(shell="bash", timeout=0.5).execute("sleep 20")

    assert time.monotonic() - started < 5


@needs_bash
def test_endless_output_is_cut_off_at_the_limit():
    started = time.monotonic()

    with pytest.raises(ExecutionError, match="output exceeded 1024 bytes"):
        CommandExecutor(shell="bash", timeout=10, max_output_bytes=1024).execute("yes")

    assert time.monotonic() - started < 5


@needs_bash
def test_launcher_failure_uses_degraded_path(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(
        CommandExecutor, "primary_argv", lambda self, command: ["/nonexistent/launcher"]
    )

    output = CommandExecutor(shell="bash").execute('echo "hello"')

    assert output == "hello"


@needs_bash
def test_degraded_path_runs_configured_bash(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(
        CommandExecutor, "primary_argv", lambda self, command: ["/nonexistent/launcher"]
    )

    # [[ ]] is a bash builtin that /bin/sh on many systems lacks
    output = CommandExecutor(shell="bash").execute('[[ -n "x" ]] && echo bash')

    assert output == "bash"


def test_powershell_degraded_command_has_no_json_directive():
    executor = CommandExecutor(shell="powershell", executable="pwsh")

    assert executor.degraded_command('Get-Item "C:\\"') == [
        "pwsh", "-NoProfile", "-Command", "Get-Item 'C:\\'",
    ]


def test_both_strategies_failing_raises(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(
        CommandExecutor, "primary_argv", lambda self, command: ["/nonexistent/launcher"]
    )

    with pytest.raises(ExecutionError, match="fallback also failed"):
        CommandExecutor(shell="bash", executable="/nonexistent/bash").execute("uptime")


def test_unsupported_shell():
    with pytest.raises(ValueError):
        CommandExecutor(shell="zsh")


def test_pretty_json_or_raw_handles_empty():
    assert pretty_json_or_raw("  \n") == ""
    assert pretty_json_or_raw("[]") == "[]"
