"""API key lookup, interactive creation and storage."""

import os
import webbrowser
from pathlib import Path

from . import fmt
from .report import BootstrapError

API_KEY_FILENAME = "api-key.txt"
API_KEY_ENV = "ECHO_API_KEY"


def api_key_path(config_dir: Path) -> Path:
    return Path(config_dir) / API_KEY_FILENAME


def read_saved_api_key(config_dir: Path) -> str | None:
    """Return the stored key, or None if there is no usable key file."""
    try:
        key = api_key_path(config_dir).read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        return None
    except OSError as e:
        raise BootstrapError(f"cannot read API key file: {e}")
    return key or None


def save_api_key(config_dir: Path, key: str) -> Path:
    """Write the key readable by its owner only."""
    config_dir = Path(config_dir)
    config_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
    path = api_key_path(config_dir)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(f"{key}\n")
    os.chmod(path, 0o600)
    return path


def key_creation_url(echo_url: str, app_id: str) -> str:
    return f"{echo_url.rstrip('/')}/app/{app_id}/keys"


def _prompt_for_key() -> str:
    from prompt_toolkit import prompt

    return prompt("Enter your API key: ", is_password=True)


def get_or_create_api_key(config_dir: Path, app_id: str, echo_url: str) -> str:
    """Resolve the API key: environment, then key file, then ask the user.

    When no key is stored yet, the key-creation page is opened in a browser
    and the pasted key is persisted for the next launch.
    """
    env_key = os.environ.get(API_KEY_ENV, "").strip()
    if env_key:
        fmt.info(f"Using API key from ${API_KEY_ENV}")
        return env_key

    saved = read_saved_api_key(config_dir)
    if saved:
        fmt.info(f"Using saved API key from {api_key_path(config_dir)}")
        return saved

    url = key_creation_url(echo_url, app_id)
    fmt.info("Opening Echo to create your API key...")
    if not webbrowser.open(url):
        fmt.info(f"Open this page to create a key: {url}")

    try:
        key = _prompt_for_key().strip()
    except (EOFError, KeyboardInterrupt):
        raise BootstrapError("No API key provided")
    if not key:
        raise BootstrapError("No API key provided")

    try:
        path = save_api_key(config_dir, key)
    except OSError as e:
        raise BootstrapError(f"failed to save API key: {e}")
    fmt.info(f"Saved API key to {path}")
    return key
