"""ripgrep-backed search tool."""

import subprocess

RG_BINARY = "rg"


def build_rg_args(
    pattern: str,
    path: str = ".",
    file_type: str | None = None,
    ignore_case: bool | None = None,
    context_lines: int | None = None,
    max_count: int | None = None,
) -> list[str]:
    """Translate search options into an rg argument vector."""
    args = [RG_BINARY, "--line-number", "--color", "never"]
    if ignore_case:
        args.append("-i")
    if context_lines:
        args += ["-C", str(context_lines)]
    if max_count:
        args += ["-m", str(max_count)]
    if file_type:
        args += ["-t", file_type]
    # -e keeps patterns starting with "-" from being read as flags
    args += ["-e", pattern, "--", path]
    return args


def search(
    pattern: str,
    path: str = ".",
    file_type: str | None = None,
    ignore_case: bool | None = None,
    context_lines: int | None = None,
    max_count: int | None = None,
    *,
    base_dir: str = ".",
    timeout: float | None = None,
) -> dict:
    """Run rg and normalize its result.

    rg exits 0 when something matched and 1 when nothing did; both are
    successes. Any other exit status returns an ``error`` key with rg's
    stderr.
    """
    args = build_rg_args(
        pattern,
        path,
        file_type=file_type,
        ignore_case=ignore_case,
        context_lines=context_lines,
        max_count=max_count,
    )
    try:
        proc = subprocess.run(
            args,
            capture_output=True,
            stdin=subprocess.DEVNULL,
            cwd=base_dir,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired:
        return {
            "error": f"ripgrep timed out after {timeout}s",
            "pattern": pattern,
            "path": path,
        }
    except OSError as e:
        return {
            "error": f"Failed to run ripgrep: {e}",
            "pattern": pattern,
            "path": path,
        }

    stdout = proc.stdout.decode("utf-8", errors="replace")
    stderr = proc.stderr.decode("utf-8", errors="replace")

    if proc.returncode not in (0, 1):
        return {
            "error": stderr.strip() or "Ripgrep command failed",
            "pattern": pattern,
            "path": path,
        }

    matches = stdout.strip()
    return {
        "matches": matches,
        "pattern": pattern,
        "path": path,
        "matchCount": len(matches.split("\n")) if matches else 0,
    }
