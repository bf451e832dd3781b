"""Logging utilities for Entityverse worlds.

Provides color-coded output to distinguish deterministic kernel work from
calls into optional collaborators (language backends, external scorers).
"""

import os
from enum import Enum


class Color(Enum):
    """ANSI color codes for terminal output."""

    # Colors for operation types
    BLUE = "\033[94m"      # Deterministic operations (phases, crystallization)
    YELLOW = "\033[93m"    # Language backend calls
    RED = "\033[91m"       # Errors and fallbacks
    GREEN = "\033[92m"     # Success/completion
    CYAN = "\033[96m"      # Info/metadata

    # Formatting
    BOLD = "\033[1m"
    RESET = "\033[0m"


def colored(text: str, color: Color, bold: bool = False) -> str:
    """Wrap text in ANSI color codes if colors are enabled.

    Args:
        text: Text to colorize
        color: Color to apply
        bold: Whether to make text bold

    Returns:
        Colorized text if ENTITYVERSE_NO_COLOR is not set, otherwise plain text
    """
    if os.getenv("ENTITYVERSE_NO_COLOR"):
        return text

    prefix = color.value
    if bold:
        prefix = Color.BOLD.value + prefix

    return f"{prefix}{text}{Color.RESET.value}"


def log_deterministic(message: str) -> None:
    """Log a deterministic operation (blue)."""
    print(colored(message, Color.BLUE))


def log_llm(message: str) -> None:
    """Log a language backend operation (yellow)."""
    print(colored(message, Color.YELLOW))


def log_error(message: str) -> None:
    """Log an error or fallback (red)."""
    print(colored(message, Color.RED))


def log_success(message: str) -> None:
    """Log a success (green)."""
    print(colored(message, Color.GREEN))


def log_info(message: str) -> None:
    """Log metadata/info (cyan)."""
    print(colored(message, Color.CYAN))


_EMITTED_ONCE: set[str] = set()


def log_once(key: str, message: str, *, color: Color = Color.CYAN) -> bool:
    """Print ``message`` the first time ``key`` is seen in this process.

    Returns:
        True if the message was printed, False if it was suppressed
    """
    if key in _EMITTED_ONCE:
        return False
    _EMITTED_ONCE.add(key)
    print(colored(message, color))
    return True


def reset_log_once() -> None:
    """Forget which one-time messages were emitted (used by tests)."""
    _EMITTED_ONCE.clear()


# Markers for operation types (color-blind accessible)
LOG_TAG_DETERMINISTIC = "[•]"  # Deterministic operation
LOG_TAG_LLM = "[AI]"           # Language backend call
LOG_TAG_ERROR = "[!]"          # Error/fallback
LOG_TAG_SUCCESS = "[✓]"        # Success
LOG_TAG_INFO = "[i]"           # Information
