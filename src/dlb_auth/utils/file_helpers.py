"""File helpers shared by configuration loading."""

from __future__ import annotations

__all__ = [
    "load_validated_json",
    "require_file_exists",
]

import json
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def require_file_exists(path: Path, *, file_type: str) -> None:
    """Raise FileNotFoundError with a readable message if path is missing.

    Args:
        path: File that must exist.
        file_type: Human-readable description for the message.

    Raises:
        FileNotFoundError: If the file does not exist.
    """
    if not path.is_file():
        raise FileNotFoundError(f"{file_type.capitalize()} file not found: {path}")


def load_validated_json(
    path: Path,
    model: type[ModelT],
    *,
    file_type: str,
    recovery_hint: str | None = None,
    encoding: str = "utf-8",
) -> ModelT:
    """Read a JSON file and validate it against a pydantic model.

    Args:
        path: JSON file to read.
        model: Pydantic model class to validate against.
        file_type: Human-readable description for error messages.
        recovery_hint: Appended to error messages when set.
        encoding: File encoding.

    Returns:
        Validated model instance.

    Raises:
        ValueError: If the file is not valid JSON or fails validation.
    """
    hint = f" {recovery_hint}" if recovery_hint else ""
    try:
        with open(path, encoding=encoding) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {file_type} file {path}: {e}.{hint}") from e

    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ValueError(f"Invalid {file_type} file {path}:\n{e}{hint}") from e
