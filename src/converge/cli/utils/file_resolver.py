"""File path resolution utilities for CLI."""

from pathlib import Path

DEFAULT_CONFIG_FILE = "converge.yaml"


def resolve_file_path(file_path: str) -> Path:
    """
    Resolve an environment configuration path.

    Relative paths are taken from the current directory.

    Raises:
        FileNotFoundError: If the file does not exist or is not a file
    """
    path = Path(file_path)
    resolved_path = path.resolve() if path.is_absolute() else (Path.cwd() / path).resolve()

    if not resolved_path.exists():
        hint = " Pass --config to point at your environment file." if file_path == DEFAULT_CONFIG_FILE else ""
        raise FileNotFoundError(f"File not found: {file_path}.{hint}")

    if not resolved_path.is_file():
        raise FileNotFoundError(
            f"Path is not a file: {file_path}. Please provide a valid file path."
        )

    return resolved_path
