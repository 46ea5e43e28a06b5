"""Shell command execution for the bash_execute tool."""

import os
import re
import shutil
import subprocess
import sys
import threading

# CSI sequences (colors, cursor movement), OSC sequences (titles, links)
# and the remaining two-byte escapes.
_ANSI_RE = re.compile(
    r"\x1b\[[0-?]*[ -/]*[@-~]"
    r"|\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)"
    r"|\x1b[@-Z\\-_]"
    r"|\x9b[0-?]*[ -/]*[@-~]"
)

_KILL_WAIT_TIMEOUT = 5  # seconds to wait for process to die after kill signals


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def shell_argv(command: str) -> list[str]:
    """Wrap a command string for the host's command interpreter."""
    if sys.platform == "win32":
        return ["cmd.exe", "/c", command]
    bash = shutil.which("bash")
    if bash:
        return [bash, "-c", command]
    return ["/bin/sh", "-c", command]


def _kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill a process and its descendants, then wait for exit.

    On Unix, uses process groups (via start_new_session=True) to kill the
    entire tree. On Windows, uses taskkill /T /F to kill the process tree.
    """
    if sys.platform != "win32":
        import signal

        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except OSError:
            pass  # already exited
    else:
        try:
            subprocess.run(
                ["taskkill", "/T", "/F", "/PID", str(proc.pid)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired):
            pass  # best-effort
    try:
        proc.kill()
    except OSError:
        pass  # already dead
    try:
        proc.wait(timeout=_KILL_WAIT_TIMEOUT)
    except subprocess.TimeoutExpired:
        pass  # process is unkillable


def _capture_process(
    proc: subprocess.Popen, timeout: float | None, max_output: int | None
) -> tuple[bytes, bool, bool]:
    """Drain merged output until the process exits.

    Returns (output, timed_out, truncated).
    """
    chunks: list[bytes] = []
    total = 0
    truncated = False

    def _reader():
        nonlocal total, truncated
        try:
            while True:
                chunk = proc.stdout.read(4096)
                if not chunk:
                    break
                if truncated:
                    continue  # keep draining to prevent pipe backpressure
                if max_output is not None:
                    chunk = chunk[: max_output - total]
                    if total + len(chunk) >= max_output:
                        truncated = True
                chunks.append(chunk)
                total += len(chunk)
        except (OSError, ValueError):
            pass  # pipe closed after kill

    reader_thread = threading.Thread(target=_reader, daemon=True)
    reader_thread.start()

    timed_out = False
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_process_tree(proc)

    reader_thread.join(timeout=2 if timed_out else None)
    proc.stdout.close()
    return b"".join(chunks), timed_out, truncated


def execute(
    command: str,
    cwd: str | None = None,
    *,
    timeout: float | None = None,
    max_output: int | None = None,
) -> dict:
    """Run a command through the shell and capture stdout+stderr together.

    Never raises for spawn failures: they come back as an ``error`` key
    with exitCode 1.
    """
    cwd = cwd or os.getcwd()
    popen_kwargs: dict = dict(
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        stdin=subprocess.DEVNULL,
        cwd=cwd,
    )
    if sys.platform != "win32":
        popen_kwargs["start_new_session"] = True

    try:
        proc = subprocess.Popen(shell_argv(command), **popen_kwargs)
    except OSError as e:
        return {"command": command, "cwd": cwd, "error": str(e), "exitCode": 1}

    raw, timed_out, truncated = _capture_process(proc, timeout, max_output)
    output = strip_ansi(raw.decode("utf-8", errors="replace").strip())
    if truncated:
        output += f"\n[output truncated at {max_output} bytes]"

    if timed_out:
        return {
            "command": command,
            "cwd": cwd,
            "error": f"command timed out after {timeout}s",
            "output": output,
            "exitCode": 1,
        }
    return {"command": command, "cwd": cwd, "output": output, "exitCode": proc.returncode}
