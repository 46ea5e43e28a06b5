"""Configuration file loading and merging for echogent.

Reads TOML config from ~/.config/echogent/config.toml (global) and
<base_dir>/echogent.toml (project). Precedence: CLI > project > global > defaults.
"""

import argparse
import os
import sys
import tomllib
from pathlib import Path
from typing import Any

from .report import ConfigError  # noqa: F401 re-exported

_UNSET = object()  # Sentinel for "not set by CLI"

DEFAULT_MODEL = "anthropic/claude-sonnet-4-20250514"
DEFAULT_API_BASE = "https://echo.router.merit.systems"
DEFAULT_ECHO_URL = "https://echo.merit.systems"
DEFAULT_APP_ID = "d4db70fb-4df9-4161-a89b-9ec53125088b"


# --- Schema ---

CONFIG_KEYS: dict[str, type | tuple[type, ...]] = {
    "model": str,
    "api_base": str,
    "echo_url": str,
    "app_id": str,
    "max_steps": int,
    "max_output_tokens": int,
    "temperature": (int, float),
    "system_prompt": str,
    "min_balance": (int, float),
    "top_up_amount": (int, float),
    "skip_balance_check": bool,
    "shell_timeout": (int, float),
    "max_tool_output": int,
    "color": bool,
    "quiet": bool,
}

_POSITIVE_KEYS = {"max_steps", "max_output_tokens", "shell_timeout", "max_tool_output"}

# Argparse dest -> hardcoded default
_ARGPARSE_DEFAULTS: dict[str, Any] = {
    "model": DEFAULT_MODEL,
    "api_base": DEFAULT_API_BASE,
    "echo_url": DEFAULT_ECHO_URL,
    "app_id": DEFAULT_APP_ID,
    "max_steps": 15,
    "max_output_tokens": 8192,
    "temperature": None,
    "system_prompt": None,
    "min_balance": 1,
    "top_up_amount": 10,
    "skip_balance_check": False,
    "shell_timeout": None,
    "max_tool_output": None,
    "color": False,
    "no_color": False,
    "quiet": False,
}


# --- Internal helpers ---


def global_config_dir() -> Path:
    """Return the global config directory, respecting XDG_CONFIG_HOME."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg) / "echogent"
    return Path.home() / ".config" / "echogent"


def _type_name(expected: type | tuple[type, ...]) -> str:
    """Format an expected type as a human-readable string."""
    if isinstance(expected, tuple):
        return " or ".join(t.__name__ for t in expected)
    return expected.__name__


def _validate_config(config: dict, source: str) -> None:
    """Validate types and ranges in a parsed config dict.

    Raises ConfigError for type mismatches. Prints warnings for unknown keys.
    """
    for key, value in config.items():
        if key not in CONFIG_KEYS:
            print(f"warning: {source}: unknown config key {key!r}", file=sys.stderr)
            continue

        expected = CONFIG_KEYS[key]
        # bool is a subclass of int in Python, so isinstance(True, int) is True.
        # Reject bools for non-bool fields explicitly.
        if isinstance(value, bool) and expected is not bool:
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got bool"
            )
        if not isinstance(value, expected):
            raise ConfigError(
                f"{source}: {key!r} expected {_type_name(expected)}, got {type(value).__name__}"
            )
        if key in _POSITIVE_KEYS and value <= 0:
            raise ConfigError(f"{source}: {key!r} must be positive, got {value}")


def _load_single(path: Path, label: str) -> dict:
    """Load and validate a single TOML config file. Returns empty dict if missing."""
    if not path.is_file():
        return {}
    try:
        with open(path, "rb") as f:
            config = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"{label}: invalid TOML: {e}") from e

    _validate_config(config, label)
    return {k: v for k, v in config.items() if k in CONFIG_KEYS}


# --- Public API ---


def load_config(base_dir: Path) -> dict:
    """Load and merge global + project config.

    Returns a flat dict with config-canonical keys. Only keys that were
    actually set in config files are included (no defaults injected).
    """
    global_path = global_config_dir() / "config.toml"
    global_config = _load_single(global_path, str(global_path))

    project_path = Path(base_dir).resolve() / "echogent.toml"
    project_config = _load_single(project_path, str(project_path))

    return {**global_config, **project_config}


def apply_config_to_args(args: argparse.Namespace, config: dict) -> None:
    """Apply config values to argparse namespace where CLI didn't set a value.

    After processing all config keys, sweeps remaining _UNSET sentinels and
    replaces them with hardcoded defaults from _ARGPARSE_DEFAULTS.
    """

    def _is_unset(dest: str) -> bool:
        return getattr(args, dest, _UNSET) is _UNSET

    # Special handling for color: single config key controls mutual-exclusive pair
    if "color" in config:
        color_val = config["color"]
        if _is_unset("color") and _is_unset("no_color"):
            args.color = color_val
            args.no_color = not color_val

    for key, value in config.items():
        if key == "color":
            continue
        if _is_unset(key):
            setattr(args, key, value)

    for dest, default in _ARGPARSE_DEFAULTS.items():
        if _is_unset(dest):
            setattr(args, dest, default)


def generate_config(project: bool = False) -> str:
    """Return a commented-out template config string."""
    lines = [
        "# echogent configuration file",
        f"# {'Project' if project else 'Global'} config: "
        f"{'<project>/echogent.toml' if project else '~/.config/echogent/config.toml'}",
        "#",
        "# CLI flags override these values. Only uncomment what you need.",
        "",
        "# --- Model ---",
        f'# model = "{DEFAULT_MODEL}"',
        f'# api_base = "{DEFAULT_API_BASE}"',
        "# max_output_tokens = 8192",
        "# temperature = 0.7",
        '# system_prompt = "You are a helpful assistant."',
        "",
        "# --- Agent behaviour ---",
        "# max_steps = 15",
        "# shell_timeout = 120          # seconds; unset = no limit",
        "# max_tool_output = 1048576    # bytes; unset = no limit",
        "",
        "# --- Billing ---",
        f'# echo_url = "{DEFAULT_ECHO_URL}"',
        f'# app_id = "{DEFAULT_APP_ID}"',
        "# min_balance = 1",
        "# top_up_amount = 10",
        "# skip_balance_check = false",
        "",
        "# --- UI ---",
        "# color = true       # true = force color, false = force no-color, absent = auto",
        "# quiet = false",
        "",
    ]
    return "\n".join(lines)
