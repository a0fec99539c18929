"""Coloured terminal output shared by the command-line tools."""

import sys

# Global debug flag
_DEBUG_MODE = False


def set_debug(enabled: bool):
    global _DEBUG_MODE
    _DEBUG_MODE = enabled


def is_debug() -> bool:
    return _DEBUG_MODE


def error(msg: str):
    """Print error message in red."""
    print(f"\033[0;31m{msg}\033[0m", file=sys.stderr)


def warning(msg: str):
    """Print warning message in yellow."""
    print(f"\033[1;33m{msg}\033[0m")


def success(msg: str):
    """Print success message in green."""
    print(f"\033[0;32m{msg}\033[0m")


def info(msg: str):
    """Print info message"""
    print(f"{msg}")


def dim(msg: str):
    """Print dimmed message"""
    print(f"\033[2m{msg}\033[0m")


def debug(msg: str):
    """Print debug message in grey (only if debug mode is enabled)."""
    if _DEBUG_MODE:
        print(f"\033[0;90m{msg}\033[0m")
