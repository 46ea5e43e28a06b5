"""Tool definitions, argument validation and dispatch for the agent."""

import json
import sys
from dataclasses import dataclass
from functools import partial
from typing import Any, Callable

from . import edit, search, shell
from .edit import resolve_path
from .report import ToolInputError
from .transcript import ToolOutcome

_MISSING = object()


@dataclass(frozen=True)
class ToolField:
    type: str
    doc: str
    required: bool = False
    default: Any = None
    enum: tuple[str, ...] | None = None

    def schema(self) -> dict:
        prop: dict = {"type": self.type, "description": self.doc}
        if self.enum:
            prop["enum"] = list(self.enum)
        if self.default is not None:
            prop["default"] = self.default
        return prop


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    fields: dict[str, ToolField]
    executor: Callable[..., ToolOutcome]

    def declaration(self) -> dict:
        """Function-tool declaration in the format litellm forwards to the model."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": {
                    "type": "object",
                    "properties": {k: f.schema() for k, f in self.fields.items()},
                    "required": [k for k, f in self.fields.items() if f.required],
                },
            },
        }


def _coerce(name: str, fdef: ToolField, value: Any) -> Any:
    """Coerce a JSON value to the declared field type, or raise ToolInputError."""
    if fdef.type == "boolean":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
    elif fdef.type == "integer":
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, str):
            try:
                return int(value.strip())
            except ValueError:
                pass
    elif fdef.type == "number":
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            try:
                return float(value.strip())
            except ValueError:
                pass
    elif fdef.type == "string":
        if isinstance(value, str):
            if fdef.enum and value not in fdef.enum:
                raise ToolInputError(
                    f"{name!r} must be one of {', '.join(fdef.enum)}, got {value!r}"
                )
            return value
    raise ToolInputError(
        f"{name!r} expected {fdef.type}, got {type(value).__name__}"
    )


def validate_arguments(definition: ToolDefinition, args: dict) -> dict:
    """Check args against the tool's fields and fill in declared defaults.

    Unknown keys are dropped. A missing required field raises ToolInputError.
    Optional fields without a default and without a value are passed as None.
    """
    if not isinstance(args, dict):
        raise ToolInputError(
            f"arguments must be a JSON object, got {type(args).__name__}"
        )
    clean: dict = {}
    for name, fdef in definition.fields.items():
        value = args.get(name, _MISSING)
        if value is _MISSING or value is None:
            if fdef.default is not None:
                clean[name] = fdef.default
            elif fdef.required:
                raise ToolInputError(f"missing required field {name!r}")
            else:
                clean[name] = None
            continue
        clean[name] = _coerce(name, fdef, value)
    return clean


def parse_arguments(raw: str | dict | None) -> dict:
    if isinstance(raw, dict):
        return raw
    if raw is None:
        return {}
    if not isinstance(raw, str):
        raise ToolInputError(f"arguments must be a JSON object, got {type(raw).__name__}")
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError) as e:
        raise ToolInputError(f"invalid JSON in tool arguments: {e}")


class ToolRegistry:
    """Name-keyed table of tool definitions, fixed once built."""

    def __init__(self, definitions: list[ToolDefinition] = ()):
        self._tools: dict[str, ToolDefinition] = {}
        for d in definitions:
            self.register(d)

    def register(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            raise ValueError(f"tool {definition.name!r} is already registered")
        self._tools[definition.name] = definition

    def get(self, name: str) -> ToolDefinition | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def declarations(self) -> list[dict]:
        return [d.declaration() for d in self._tools.values()]

    def invoke(self, name: str, raw_arguments: str | dict | None) -> tuple[Any, ToolOutcome]:
        """Validate and run one tool call.

        Returns (input, outcome). Nothing raised by lookup, validation or
        the executor escapes: every failure becomes a failed ToolOutcome.
        """
        definition = self.get(name)
        if definition is None:
            known = ", ".join(self.names()) or "(none)"
            return raw_arguments, ToolOutcome.failure(
                f"unknown tool {name!r}. Available tools: {known}"
            )
        try:
            args = parse_arguments(raw_arguments)
        except ToolInputError as e:
            return raw_arguments, ToolOutcome.failure(str(e))
        try:
            clean = validate_arguments(definition, args)
        except ToolInputError as e:
            return args, ToolOutcome.failure(f"invalid input: {e}")
        try:
            outcome = definition.executor(**clean)
        except Exception as e:
            return clean, ToolOutcome.failure(f"{name} failed: {e}")
        return clean, outcome


# ---------------------------------------------------------------------------
# Executors
# ---------------------------------------------------------------------------


def _list_files(path: str, *, base_dir: str) -> ToolOutcome:
    try:
        root = resolve_path(path, base_dir)
        entries = []
        for child in sorted(root.iterdir(), key=lambda p: p.name):
            entries.append(
                {
                    "name": child.name,
                    "path": f"{path}/{child.name}",
                    "type": "directory" if child.is_dir() else "file",
                }
            )
    except OSError as e:
        return ToolOutcome.failure(f"Failed to list directory: {e}", path=path)
    return ToolOutcome.success({"path": path, "entries": entries})


def _read_file(path: str, *, base_dir: str) -> ToolOutcome:
    try:
        content = resolve_path(path, base_dir).read_text(encoding="utf-8")
    except (UnicodeDecodeError, OSError) as e:
        return ToolOutcome.failure(f"Failed to read file: {e}", path=path)
    return ToolOutcome.success({"content": content, "path": path})


def _ripgrep(
    pattern: str,
    path: str,
    fileType: str | None,
    ignoreCase: bool | None,
    contextLines: int | None,
    maxCount: int | None,
    *,
    base_dir: str,
    timeout: float | None,
) -> ToolOutcome:
    result = search.search(
        pattern,
        path,
        file_type=fileType,
        ignore_case=ignoreCase,
        context_lines=contextLines,
        max_count=maxCount,
        base_dir=base_dir,
        timeout=timeout,
    )
    if "error" in result:
        return ToolOutcome(False, result)
    return ToolOutcome.success(result)


def _text_editor(
    command: str,
    path: str,
    file_text: str | None,
    old_str: str | None,
    new_str: str | None,
    insert_line: int | None,
    view_start: int | None,
    view_end: int | None,
    *,
    base_dir: str,
) -> ToolOutcome:
    view_range = None
    if view_start is not None or view_end is not None:
        end = sys.maxsize if view_end is None or view_end == -1 else view_end
        view_range = (1 if view_start is None else view_start, end)
    result = edit.run_command(
        command,
        path,
        base_dir,
        file_text=file_text,
        old_str=old_str,
        new_str=new_str,
        insert_line=insert_line,
        view_range=view_range,
    )
    if result.ok:
        return ToolOutcome.success(result.message)
    return ToolOutcome.failure(result.message, kind=result.kind.value)


def _bash_execute(
    command: str,
    cwd: str | None,
    *,
    base_dir: str,
    timeout: float | None,
    max_output: int | None,
) -> ToolOutcome:
    workdir = str(resolve_path(cwd, base_dir)) if cwd else base_dir
    result = shell.execute(command, workdir, timeout=timeout, max_output=max_output)
    if "error" in result:
        return ToolOutcome(False, result)
    return ToolOutcome.success(result)


def build_registry(
    base_dir: str = ".",
    *,
    shell_timeout: float | None = None,
    max_tool_output: int | None = None,
) -> ToolRegistry:
    """Build the fixed tool table for one session."""
    return ToolRegistry(
        [
            ToolDefinition(
                name="list_files",
                description=(
                    "List files and directories in a given directory path. "
                    "Use this to explore the file structure."
                ),
                fields={
                    "path": ToolField(
                        "string",
                        "The directory path to list. Defaults to current directory if not provided.",
                        default=".",
                    ),
                },
                executor=partial(_list_files, base_dir=base_dir),
            ),
            ToolDefinition(
                name="read_file",
                description=(
                    "Read the contents of a given relative file path. Use this when you "
                    "want to see what's inside a file. Do not use this with directory names."
                ),
                fields={
                    "path": ToolField(
                        "string",
                        "The relative path of a file in the working directory.",
                        required=True,
                    ),
                },
                executor=partial(_read_file, base_dir=base_dir),
            ),
            ToolDefinition(
                name="ripgrep",
                description=(
                    "Search for patterns in files using ripgrep. "
                    "Use this to find code, text, or patterns across files."
                ),
                fields={
                    "pattern": ToolField(
                        "string",
                        "The pattern to search for (supports regex)",
                        required=True,
                    ),
                    "path": ToolField(
                        "string",
                        "The directory or file path to search in. Defaults to current directory.",
                        default=".",
                    ),
                    "fileType": ToolField(
                        "string", 'File type filter (e.g., "js", "ts", "py", "md")'
                    ),
                    "ignoreCase": ToolField("boolean", "Ignore case when searching"),
                    "contextLines": ToolField(
                        "integer", "Number of context lines to show around matches"
                    ),
                    "maxCount": ToolField(
                        "integer", "Maximum number of matches to return"
                    ),
                },
                executor=partial(_ripgrep, base_dir=base_dir, timeout=shell_timeout),
            ),
            ToolDefinition(
                name="text_editor_tool",
                description=(
                    "View, create and edit files. Commands: "
                    "`view` shows a file with 1-based line numbers (or lists a directory), "
                    "optionally limited to view_start..view_end; "
                    "`create` writes a new file (fails if it exists); "
                    "`str_replace` replaces the first exact occurrence of old_str with new_str; "
                    "`insert` inserts new_str after line insert_line (0 inserts at the top)."
                ),
                fields={
                    "command": ToolField(
                        "string",
                        "The editor command to run.",
                        required=True,
                        enum=edit.COMMANDS,
                    ),
                    "path": ToolField(
                        "string", "Path to the file or directory.", required=True
                    ),
                    "file_text": ToolField(
                        "string", "Full content of the new file (create)."
                    ),
                    "old_str": ToolField(
                        "string", "Exact text to replace (str_replace)."
                    ),
                    "new_str": ToolField(
                        "string", "Replacement text (str_replace) or line(s) to insert (insert)."
                    ),
                    "insert_line": ToolField(
                        "integer", "Line number after which to insert; 0 inserts at the top (insert)."
                    ),
                    "view_start": ToolField(
                        "integer", "First line to show, 1-based (view)."
                    ),
                    "view_end": ToolField(
                        "integer", "Last line to show, inclusive; -1 means end of file (view)."
                    ),
                },
                executor=partial(_text_editor, base_dir=base_dir),
            ),
            ToolDefinition(
                name="bash_execute",
                description="Execute a bash/shell command and return the output.",
                fields={
                    "command": ToolField(
                        "string", "The bash command to execute", required=True
                    ),
                    "cwd": ToolField(
                        "string",
                        "Working directory to execute the command in. Defaults to current directory.",
                    ),
                },
                executor=partial(
                    _bash_execute,
                    base_dir=base_dir,
                    timeout=shell_timeout,
                    max_output=max_tool_output,
                ),
            ),
        ]
    )
