"""Terminal output using Rich.

The streamed answer goes to stdout; everything else (trace lines, warnings,
banner) goes to stderr so the two channels can be separated.
"""

from rich.console import Console
from rich.text import Text

_console = Console(stderr=True)
_out = Console(highlight=False)
_quiet = False

BANNER = r"""
           _                             _
  ___  ___| |__   ___   __ _  ___ _ __ | |_
 / _ \/ __| '_ \ / _ \ / _` |/ _ \ '_ \| __|
|  __/ (__| | | | (_) | (_| |  __/ | | | |_
 \___|\___|_| |_|\___/ \__, |\___|_| |_|\__|
                       |___/
"""


def init(*, color: bool = False, no_color: bool = False, quiet: bool = False) -> None:
    """Reconfigure the module-level consoles from CLI flags.

    Call once at startup, before any output.
    """
    global _console, _out, _quiet
    kwargs: dict = {}
    if color:
        kwargs["force_terminal"] = True
        kwargs["no_color"] = False
    if no_color:
        kwargs["no_color"] = True
    _console = Console(stderr=True, **kwargs)
    _out = Console(highlight=False, **kwargs)
    _quiet = quiet


# -- Answer channel ----------------------------------------------------------


def stream_text(text: str) -> None:
    """Write a text delta to stdout as soon as it arrives."""
    _out.print(text, end="", markup=False, emoji=False, highlight=False, soft_wrap=True)


def end_stream() -> None:
    _out.print()


# -- Trace channel -----------------------------------------------------------


def tool_call(name: str) -> None:
    if _quiet:
        return
    _console.print(Text(f"Calling {name}", style="dim"))


def trace(name: str, input_json: str, output_json: str) -> None:
    """One `name(input) -> output` line per executed tool call."""
    if _quiet:
        return
    _console.print(Text(f"{name}({input_json}) -> {output_json}", style="dim"))


def context_stats(chars: int, tokens: int) -> None:
    if _quiet:
        return
    _console.print(
        Text(f"Context delta: {chars} chars (~{tokens} tokens)", style="dim")
    )


def turn_exhausted(steps: int) -> None:
    line = Text()
    line.append("  \u26a0 ", style="yellow")
    line.append(
        f"step limit reached ({steps} steps), turn stopped. "
        "Send another message to continue.",
        style="yellow",
    )
    _console.print(line)


# -- Session -----------------------------------------------------------------


def banner() -> None:
    if _quiet:
        return
    _console.print(Text(BANNER, style="bold cyan"))


def balance(amount: float) -> None:
    _console.print(Text(f"Balance: {amount}", style="dim"))


def repl_banner() -> None:
    if _quiet:
        return
    _console.print(Text("Type /help for commands, /exit or Ctrl-D to quit.", style="dim"))


# -- Diagnostics -------------------------------------------------------------


def info(msg: str) -> None:
    if _quiet:
        return
    _console.print(Text(f"  {msg}", style="dim"))


def warning(msg: str) -> None:
    line = Text()
    line.append("  \u26a0 Warning: ", style="yellow")
    line.append(msg, style="yellow")
    _console.print(line)


def error(msg: str) -> None:
    line = Text()
    line.append("Error: ", style="bold red")
    line.append(msg, style="red")
    _console.print(line)
