"""Line-addressed file editor behind the text_editor_tool.

Every verb re-reads the file from disk, applies one change and writes it
back; nothing is cached between calls. Verbs never raise for expected
failures: they return an EditResult whose ``message`` is the text shown to
the model and whose ``kind`` names the failure.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path


class EditErrorKind(enum.Enum):
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    NO_MATCH = "no_match"
    RANGE_ERROR = "range_error"
    INVALID_INPUT = "invalid_input"
    IO_ERROR = "io_error"


@dataclass(frozen=True)
class EditResult:
    message: str
    kind: EditErrorKind | None = None

    @property
    def ok(self) -> bool:
        return self.kind is None


def _ok(message: str) -> EditResult:
    return EditResult(message)


def _fail(kind: EditErrorKind, message: str) -> EditResult:
    return EditResult(f"Error: {message}", kind)


COMMANDS = ("view", "create", "str_replace", "insert")


# ---------------------------------------------------------------------------
# Line model
# ---------------------------------------------------------------------------


def detect_newline(content: str) -> str:
    """Return the file's line separator, judged by its first line break."""
    i = content.find("\n")
    if i > 0 and content[i - 1] == "\r":
        return "\r\n"
    return "\n"


def split_lines(content: str, eol: str = "\n") -> tuple[list[str], bool]:
    """Split content into lines; a trailing newline ends the last line.

    Returns (lines, had_trailing_newline).
    """
    if content == "":
        return [], False
    trailing = content.endswith(eol)
    if trailing:
        content = content[: -len(eol)]
    return content.split(eol), trailing


def join_lines(lines: list[str], trailing: bool, eol: str = "\n") -> str:
    text = eol.join(lines)
    if trailing and lines:
        text += eol
    return text


def number_lines(lines: list[str], start: int = 1) -> str:
    return "\n".join(f"{i}: {line}" for i, line in enumerate(lines, start=start))


# ---------------------------------------------------------------------------
# Verbs
# ---------------------------------------------------------------------------


def view(
    path: str, base_dir: str = ".", view_range: tuple[int, int] | None = None
) -> EditResult:
    """List a directory one level deep, or show a file with line numbers.

    view_range is an inclusive 1-based [start, end] pair; both ends are
    clamped to the file instead of failing.
    """
    target = resolve_path(path, base_dir)
    if not target.exists():
        return _fail(
            EditErrorKind.NOT_FOUND, f"File or directory '{path}' does not exist."
        )

    if target.is_dir():
        entries = []
        for child in sorted(target.iterdir(), key=lambda p: p.name):
            marker = "d" if child.is_dir() else "-"
            entries.append(f"{marker} {child.name}")
        return _ok(f"Directory listing for '{path}':\n" + "\n".join(entries))

    try:
        content = _read(target)
    except (UnicodeDecodeError, OSError) as exc:
        return _fail(EditErrorKind.IO_ERROR, str(exc))
    lines, _ = split_lines(content, detect_newline(content))

    if view_range is None:
        return _ok(number_lines(lines))

    start, end = view_range
    if start is None or end is None:
        return _fail(
            EditErrorKind.INVALID_INPUT, "view_range must provide start and end numbers."
        )
    start = max(1, start)
    end = min(len(lines), end)
    if start > end:
        return _ok("")
    return _ok(number_lines(lines[start - 1 : end], start=start))


def create(path: str, file_text: str | None, base_dir: str = ".") -> EditResult:
    """Write a new file; never overwrites."""
    target = resolve_path(path, base_dir)
    if target.exists():
        return _fail(EditErrorKind.ALREADY_EXISTS, f"File '{path}' already exists.")
    if file_text is None:
        return _fail(
            EditErrorKind.INVALID_INPUT, "file_text is required for create command."
        )
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        _write(target, file_text)
    except OSError as exc:
        return _fail(EditErrorKind.IO_ERROR, str(exc))
    return _ok(f"File '{path}' created successfully.")


def str_replace(
    path: str, old_str: str | None, new_str: str | None, base_dir: str = "."
) -> EditResult:
    """Replace the first literal occurrence of old_str."""
    if not old_str or new_str is None:
        return _fail(
            EditErrorKind.INVALID_INPUT,
            "Both old_str and new_str are required for str_replace command.",
        )
    target = resolve_path(path, base_dir)
    if not target.is_file():
        return _fail(EditErrorKind.NOT_FOUND, f"File '{path}' does not exist.")
    try:
        content = _read(target)
    except (UnicodeDecodeError, OSError) as exc:
        return _fail(EditErrorKind.IO_ERROR, str(exc))

    if old_str not in content:
        return _fail(
            EditErrorKind.NO_MATCH, f"String '{old_str}' not found in file '{path}'."
        )

    try:
        _write(target, content.replace(old_str, new_str, 1))
    except OSError as exc:
        return _fail(EditErrorKind.IO_ERROR, str(exc))
    return _ok(f"String replacement completed in '{path}'.")


def insert(
    path: str, insert_line: int | None, new_str: str | None, base_dir: str = "."
) -> EditResult:
    """Insert new_str as a line after line insert_line (0 prepends)."""
    if new_str is None or insert_line is None:
        return _fail(
            EditErrorKind.INVALID_INPUT,
            "Both new_str and insert_line are required for insert command.",
        )
    target = resolve_path(path, base_dir)
    if not target.is_file():
        return _fail(EditErrorKind.NOT_FOUND, f"File '{path}' does not exist.")
    try:
        content = _read(target)
    except (UnicodeDecodeError, OSError) as exc:
        return _fail(EditErrorKind.IO_ERROR, str(exc))

    eol = detect_newline(content)
    lines, trailing = split_lines(content, eol)
    if insert_line < 0 or insert_line > len(lines):
        return _fail(
            EditErrorKind.RANGE_ERROR,
            f"insert_line {insert_line} is out of range. File has {len(lines)} lines.",
        )

    lines[insert_line:insert_line] = new_str.replace("\r\n", "\n").split("\n")
    try:
        _write(target, join_lines(lines, trailing, eol))
    except OSError as exc:
        return _fail(EditErrorKind.IO_ERROR, str(exc))
    return _ok(f"Line inserted at line {insert_line + 1} in '{path}'.")


def run_command(
    command: str,
    path: str,
    base_dir: str = ".",
    *,
    file_text: str | None = None,
    old_str: str | None = None,
    new_str: str | None = None,
    insert_line: int | None = None,
    view_range: tuple[int, int] | None = None,
) -> EditResult:
    """Route one editor command to its verb."""
    if command == "view":
        return view(path, base_dir, view_range=view_range)
    if command == "create":
        return create(path, file_text, base_dir)
    if command == "str_replace":
        return str_replace(path, old_str, new_str, base_dir)
    if command == "insert":
        return insert(path, insert_line, new_str, base_dir)
    return _fail(
        EditErrorKind.INVALID_INPUT,
        f"Unknown command '{command}'. Supported commands: {', '.join(COMMANDS)}.",
    )


def resolve_path(path: str, base_dir: str) -> Path:
    """Expand ~ and anchor relative paths at base_dir."""
    p = Path(path).expanduser()
    if p.is_absolute():
        return p
    return Path(base_dir) / p


# newline="" keeps \r\n as-is on read and write, so bytes outside an edit
# round-trip unchanged.
def _read(target: Path) -> str:
    with open(target, encoding="utf-8", newline="") as f:
        return f.read()


def _write(target: Path, content: str) -> None:
    with open(target, "w", encoding="utf-8", newline="") as f:
        f.write(content)
