"""Input parsing utilities for CLI commands."""

import json
from pathlib import Path
from typing import Any


def parse_identity(value: str) -> Any:
    """Parse an identity argument.

    JSON values are decoded so ``42`` is an int and ``[1, "a"]`` a composite
    key; anything else is kept as a string.

    Examples:
        "42" → 42
        "[1, 2]" → (1, 2)
        "0b7e..." → "0b7e..."
    """
    try:
        parsed = json.loads(value)
    except json.JSONDecodeError:
        return value
    if isinstance(parsed, list):
        return tuple(parsed)
    return parsed


def read_json_file(path: str) -> Any:
    """Read a JSON document (object or array) from file.

    Args:
        path: Path to JSON file

    Returns:
        Parsed JSON value

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If file contains invalid JSON
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {path}")

    with file_path.open("r") as f:
        return json.load(f)
