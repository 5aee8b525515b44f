"""Common utility functions for Maestro."""

import uuid
from datetime import (
    datetime,
    timezone,
)
from enum import Enum
from typing import Any


class AnsiColors(Enum):
    """
    ANSI color codes for terminal output.
    """

    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[33m"
    BLUE = "\033[94m"
    GREY = "\033[90m"


def colored_print(text: str, color: AnsiColors, *args: Any, **kwargs: Any) -> None:
    """
    Print text in color.

    Args:
        text: The text to print
        color: The color to use (AnsiColors enum)
        args: Additional positional arguments for print
        kwargs: Additional keyword arguments for print
    """
    print(f"{color.value}{text}\033[0m", *args, **kwargs)  # ANSI reset at the end


def new_id(prefix: str | None = None) -> str:
    """Return a fresh random identifier, optionally prefixed (``tc-1f3a...``)."""
    value = uuid.uuid4().hex if prefix else str(uuid.uuid4())
    return f"{prefix}-{value}" if prefix else value


def utc_now() -> datetime:
    """Timezone-aware current time, used for ``created_at`` stamps."""
    return datetime.now(timezone.utc)
