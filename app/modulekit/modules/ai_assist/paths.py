from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ALLOWED_EXTENSIONS = (".js", ".cjs", ".jsx", ".ts", ".tsx", ".json", ".css", ".py")
SENSITIVE_NAMES = (".env", "credentials", "secrets", "password", "token", "key", ".pem")
ALLOWED_DIRECTORIES = ("app", "backend", "frontend", "templates", "lib", "generated-projects")


@dataclass(frozen=True)
class PathCheck:
    valid: bool
    resolved: Path | None = None
    relative: str | None = None
    error: str | None = None


def validate_file_path(file_path: str | None, root: str | Path) -> PathCheck:
    """Accepts paths relative to `root` or absolute paths inside it."""
    if file_path is not None and not isinstance(file_path, str):
        return PathCheck(False, error="filePath must be a string")
    raw = (file_path or "").strip()
    if not raw:
        return PathCheck(False, error="filePath is required")
    if ".." in Path(raw.replace("\\", "/")).parts:
        return PathCheck(False, error="Path traversal not allowed")

    base = Path(root).resolve()
    candidate = Path(raw)
    resolved = (candidate if candidate.is_absolute() else base / candidate).resolve()
    if not resolved.is_relative_to(base):
        return PathCheck(False, error="Path must be within the project directory")

    relative = resolved.relative_to(base)
    if not relative.parts or relative.parts[0] not in ALLOWED_DIRECTORIES:
        return PathCheck(False, error=f"File must be in allowed directories: {', '.join(ALLOWED_DIRECTORIES)}")

    if resolved.suffix.lower() not in ALLOWED_EXTENSIONS:
        return PathCheck(False, error=f"File extension not allowed. Allowed: {', '.join(ALLOWED_EXTENSIONS)}")

    name = resolved.name.lower()
    if any(s in name for s in SENSITIVE_NAMES):
        return PathCheck(False, error="Cannot modify sensitive files")

    return PathCheck(True, resolved=resolved, relative=relative.as_posix())


def read_text(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def write_text(path: Path, content: str) -> None:
    """Write via a temp file in the same directory, then rename over the target."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.ai-assist.tmp")
    tmp.write_text(content, encoding="utf-8")
    os.replace(tmp, path)
