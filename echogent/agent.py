import argparse
from datetime import datetime
import json
import os
import sys
from dataclasses import dataclass
from pathlib import Path

from importlib import metadata

import tiktoken

from . import fmt
from .billing import EchoClient, ensure_balance
from .config import (
    _UNSET,
    ConfigError,
    apply_config_to_args,
    generate_config,
    global_config_dir,
    load_config,
)
from .credentials import get_or_create_api_key
from .report import AgentError, TransportError
from .stream import TextDelta, ToolCallChunk, stream_llm
from .tools import ToolRegistry, build_registry
from .transcript import (
    AssistantMessage,
    ToolCall,
    ToolOutcome,
    ToolResultMessage,
    Transcript,
    UserMessage,
)

DEFAULT_SYSTEM_PROMPT_FILE = Path(__file__).parent / "system_prompt.txt"
DEFAULT_STEP_CEILING = 15
MAX_TRACE_JSON = 2000

_encoder = tiktoken.get_encoding("cl100k_base")


@dataclass
class TurnResult:
    """How a user turn ended.

    exhausted is True when the step ceiling cut the turn short; error holds
    the transport failure message when the model call broke mid-turn.
    output_seen is False only when the model produced nothing at all.
    """

    steps: int
    exhausted: bool
    error: str | None = None
    output_seen: bool = True


def estimate_tokens(messages: list[dict]) -> int:
    """Count tokens across wire messages using tiktoken."""
    total = 0
    for m in messages:
        content = m.get("content") or ""
        for tc in m.get("tool_calls") or ():
            fn = tc.get("function", {})
            content += fn.get("name", "") + (fn.get("arguments") or "")
        total += len(_encoder.encode(content))
    # Per-message overhead (role, separators), ~4 tokens each
    total += 4 * len(messages)
    return total


def _trace_json(value) -> str:
    text = json.dumps(value, ensure_ascii=False)
    if len(text) > MAX_TRACE_JSON:
        text = text[:MAX_TRACE_JSON] + "...(truncated)"
    return text


def handle_tool_call(tool_call: ToolCall, registry: ToolRegistry) -> ToolResultMessage:
    """Run one model-requested tool call and wrap its outcome for the transcript."""
    fmt.tool_call(tool_call.name)
    tool_input, outcome = registry.invoke(tool_call.name, tool_call.arguments)
    if isinstance(tool_input, str):
        # Unknown tool or unvalidated input: show the arguments as sent.
        try:
            tool_input = json.loads(tool_input)
        except json.JSONDecodeError:
            pass
    fmt.trace(tool_call.name, _trace_json(tool_input), _trace_json(outcome.payload))
    return ToolResultMessage(tool_call.id, tool_call.name, outcome)


def run_step(
    transcript: Transcript,
    registry: ToolRegistry,
    *,
    system_prompt: str | None,
    llm_kwargs: dict,
) -> AssistantMessage:
    """Stream one model response, echoing text as it arrives."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    chunks = stream_llm(
        transcript.to_wire(system_prompt), registry.declarations(), **llm_kwargs
    )
    try:
        for chunk in chunks:
            if isinstance(chunk, TextDelta):
                fmt.stream_text(chunk.text)
                text_parts.append(chunk.text)
            elif isinstance(chunk, ToolCallChunk):
                tool_calls.append(chunk.call)
    except TransportError as e:
        e.partial_text = "".join(text_parts)
        raise
    finally:
        chunks.close()
        if text_parts:
            fmt.end_stream()
    return AssistantMessage("".join(text_parts), tuple(tool_calls))


def run_turn(
    transcript: Transcript,
    user_text: str,
    registry: ToolRegistry,
    step_ceiling: int = DEFAULT_STEP_CEILING,
    *,
    system_prompt: str | None = None,
    llm_kwargs: dict,
    fatal_before_output: bool = False,
) -> TurnResult:
    """Run one user turn: model steps interleaved with tool calls.

    Appends to `transcript` in place. The turn ends on the first step
    without tool calls, when `step_ceiling` steps have run, or when the
    model call fails; in every case the messages appended so far stay.

    With `fatal_before_output`, a model failure that happens before any
    output arrived is re-raised instead of ending the turn.
    """
    transcript.append(UserMessage(user_text))

    steps = 0
    while steps < step_ceiling:
        steps += 1
        try:
            msg = run_step(
                transcript, registry, system_prompt=system_prompt, llm_kwargs=llm_kwargs
            )
        except TransportError as e:
            output_seen = steps > 1 or bool(e.partial_text)
            if fatal_before_output and not output_seen:
                raise
            fmt.error(str(e))
            return TurnResult(steps, False, str(e), output_seen)
        transcript.append(msg)

        if not msg.tool_calls:
            return TurnResult(steps, False)

        for i, tool_call in enumerate(msg.tool_calls):
            try:
                transcript.append(handle_tool_call(tool_call, registry))
            except KeyboardInterrupt:
                # Every tool call needs a result or the next request is rejected.
                for pending in msg.tool_calls[i:]:
                    transcript.append(
                        ToolResultMessage(
                            pending.id,
                            pending.name,
                            ToolOutcome.failure("interrupted by user"),
                        )
                    )
                raise

    return TurnResult(steps, True)


# ---------------------------------------------------------------------------
# REPL
# ---------------------------------------------------------------------------


def _repl_help() -> None:
    """Print available REPL commands."""
    fmt.info(
        "Available commands:\n"
        "  /help              Show this help message\n"
        "  /clear             Start a new conversation\n"
        "  /exit, /quit       Exit"
    )


def _report_turn(transcript: Transcript, before_chars: int, before_tokens: int, result: TurnResult) -> None:
    wire = transcript.to_wire()
    fmt.context_stats(
        transcript.char_count() - before_chars, estimate_tokens(wire) - before_tokens
    )
    if result.exhausted:
        fmt.turn_exhausted(result.steps)


def repl_loop(
    transcript: Transcript,
    registry: ToolRegistry,
    *,
    step_ceiling: int,
    system_prompt: str | None,
    llm_kwargs: dict,
    history_path: Path | None = None,
) -> Transcript:
    """Interactive read-eval-print loop. Returns the final transcript on exit."""
    from prompt_toolkit import PromptSession
    from prompt_toolkit.formatted_text import FormattedText
    from prompt_toolkit.history import FileHistory, InMemoryHistory

    if history_path is not None:
        history_path.parent.mkdir(parents=True, exist_ok=True)
        history = FileHistory(str(history_path))
    else:
        history = InMemoryHistory()
    session = PromptSession(history=history, enable_history_search=True)
    prompt_text = FormattedText([("fg:ansigreen", "What would you like to do?\n> ")])

    fmt.repl_banner()

    # Until the model has answered once, an unreachable endpoint ends the session.
    model_responded = False
    while True:
        try:
            line = session.prompt(prompt_text)
        except (EOFError, KeyboardInterrupt):
            print(file=sys.stderr)  # newline after ^D / ^C
            break

        line = line.strip()
        if not line:
            continue

        # Only known commands are intercepted; unknown /foo goes to the model
        if line in ("/exit", "/quit"):
            break
        if line == "/help":
            _repl_help()
            continue
        if line == "/clear":
            dropped = len(transcript)
            transcript = Transcript()
            fmt.info(f"conversation cleared ({dropped} messages dropped)")
            continue

        before_chars = transcript.char_count()
        before_tokens = estimate_tokens(transcript.to_wire())
        try:
            result = run_turn(
                transcript,
                line,
                registry,
                step_ceiling,
                system_prompt=system_prompt,
                llm_kwargs=llm_kwargs,
                fatal_before_output=not model_responded,
            )
        except KeyboardInterrupt:
            fmt.warning("interrupted, turn aborted.")
            continue
        model_responded = model_responded or result.output_seen
        _report_turn(transcript, before_chars, before_tokens, result)

    return transcript


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def build_parser():
    """Build and return the argument parser."""
    parser = argparse.ArgumentParser(
        prog="echogent",
        description="An interactive coding assistant with file, search and shell tools.",
    )
    parser.add_argument(
        "--version",
        action="store_true",
        help="Print the version and exit.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Print a commented configuration template and exit.",
    )
    parser.add_argument(
        "--base-dir",
        type=str,
        default=".",
        help="Working directory for tools (default: current directory).",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=_UNSET,
        help="LiteLLM model identifier (default: anthropic/claude-sonnet-4-20250514).",
    )
    parser.add_argument(
        "--api-base",
        type=str,
        default=_UNSET,
        help="Model endpoint base URL (default: the Echo router).",
    )
    parser.add_argument(
        "--max-steps",
        type=int,
        default=_UNSET,
        help="Maximum model steps per user turn (default: 15).",
    )
    parser.add_argument(
        "--max-output-tokens",
        type=int,
        default=_UNSET,
        help="Maximum output tokens per step (default: 8192).",
    )
    parser.add_argument(
        "--temperature",
        type=float,
        default=_UNSET,
        help="Sampling temperature (default: provider default).",
    )
    parser.add_argument(
        "--system-prompt",
        type=str,
        default=_UNSET,
        help="Replace the built-in system prompt.",
    )
    parser.add_argument(
        "--shell-timeout",
        type=float,
        default=_UNSET,
        help="Kill shell and search commands after this many seconds (default: no limit).",
    )
    parser.add_argument(
        "--skip-balance-check",
        action="store_true",
        default=_UNSET,
        help="Don't query the account balance at startup.",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        default=_UNSET,
        help="Hide the banner and tool trace lines.",
    )

    color_group = parser.add_mutually_exclusive_group()
    color_group.add_argument(
        "--color",
        action="store_true",
        default=_UNSET,
        help="Force ANSI color even when output is not a TTY.",
    )
    color_group.add_argument(
        "--no-color",
        action="store_true",
        default=_UNSET,
        help="Disable ANSI color.",
    )

    return parser


def build_system_prompt(custom: str | None, base_dir: str) -> str:
    if custom:
        content = custom
    else:
        content = DEFAULT_SYSTEM_PROMPT_FILE.read_text(encoding="utf-8")
    now = datetime.now().astimezone()
    content += f"\n\nCurrent date and time: {now.strftime('%Y-%m-%d %H:%M %Z')}"
    content += f"\nWorking directory: {Path(base_dir).resolve()}"
    return content


def main():
    parser = build_parser()
    args = parser.parse_args()

    if args.version:
        try:
            version = metadata.version("echogent")
        except metadata.PackageNotFoundError:
            version = "unknown"
        print(version)
        sys.exit(0)

    if args.init_config:
        print(generate_config())
        sys.exit(0)

    try:
        _run_main(args)
    except AgentError as e:
        fmt.error(str(e))
        sys.exit(1)


def _run_main(args):
    base_dir = args.base_dir
    if not os.path.isdir(base_dir):
        raise ConfigError(f"base directory does not exist: {base_dir}")

    apply_config_to_args(args, load_config(Path(base_dir)))
    if args.max_steps < 1:
        raise ConfigError("--max-steps must be at least 1")

    fmt.init(color=args.color, no_color=args.no_color, quiet=args.quiet)
    fmt.banner()

    config_dir = global_config_dir()
    api_key = get_or_create_api_key(config_dir, args.app_id, args.echo_url)

    if not args.skip_balance_check:
        ensure_balance(
            EchoClient(api_key, args.echo_url), args.min_balance, args.top_up_amount
        )

    registry = build_registry(
        base_dir,
        shell_timeout=args.shell_timeout,
        max_tool_output=args.max_tool_output,
    )
    llm_kwargs = dict(
        model=args.model,
        api_base=args.api_base,
        api_key=api_key,
        max_output_tokens=args.max_output_tokens,
        temperature=args.temperature,
    )

    repl_loop(
        Transcript(),
        registry,
        step_ceiling=args.max_steps,
        system_prompt=build_system_prompt(args.system_prompt, base_dir),
        llm_kwargs=llm_kwargs,
        history_path=config_dir / "repl_history",
    )


if __name__ == "__main__":
    main()
