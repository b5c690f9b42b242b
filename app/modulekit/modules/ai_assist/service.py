from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

from flask import Flask, current_app

from app.modulekit.errors import ApiError, NotFoundError, ValidationError
from app.modulekit.modules.ai_assist.backups import BackupStore, backup_store_from_config
from app.modulekit.modules.ai_assist.client import AIServiceError, AnthropicClient
from app.modulekit.modules.ai_assist.paths import PathCheck, read_text, validate_file_path, write_text
from app.modulekit.utils import clean_str

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """You are a debugging expert. Analyze this file that has an error and provide a fix.

## File Information
- **Path**: {relative}
- **Name**: {name}
- **Extension**: {ext}
{exports}
## Error Details
**Error Message**: {error}
{stack}
## Current File Content
```{lang}
{content}
```

## Your Task
1. Analyze the error and identify the root cause
2. Provide a clear explanation of what's wrong
3. Provide the COMPLETE fixed file content (not just the changed parts)

## Response Format
Respond with a JSON object (no markdown code blocks around it):
{{
  "analysis": "Clear explanation of what's wrong and why",
  "rootCause": "The specific issue causing the error",
  "suggestedFix": "The COMPLETE fixed file content",
  "explanation": "Step-by-step explanation of the changes made",
  "confidence": "high|medium|low",
  "additionalNotes": "Any warnings or additional context"
}}
"""


def get_backup_store(app: Flask | None = None) -> BackupStore:
    app = app or current_app._get_current_object()  # type: ignore[attr-defined]
    store = app.extensions.get("ai_assist_backups")
    if store is None:
        store = backup_store_from_config(app.config)
        app.extensions["ai_assist_backups"] = store
    return store


def _root() -> Path:
    return Path(current_app.config.get("AI_ASSIST_ROOT") or ".")


def _checked(file_path: str) -> PathCheck:
    check = validate_file_path(file_path, _root())
    if not check.valid:
        raise ValidationError(check.error or "Invalid file path")
    return check


def extract_json_object(text: str) -> dict[str, Any] | None:
    """First decodable JSON object in `text`, ignoring any prose around it."""
    decoder = json.JSONDecoder()
    idx = text.find("{")
    while idx != -1:
        try:
            obj, _ = decoder.raw_decode(text, idx)
        except ValueError:
            idx = text.find("{", idx + 1)
            continue
        if isinstance(obj, dict):
            return obj
        idx = text.find("{", idx + 1)
    return None


def build_prompt(relative: str, path: Path, content: str, error_message: str | None, stack_trace: str | None, exports: Any) -> str:
    return PROMPT_TEMPLATE.format(
        relative=relative,
        name=path.name,
        ext=path.suffix,
        exports=f"- **Expected Exports**: {json.dumps(exports)}\n" if exports else "",
        error=error_message or "Unknown error during module load",
        stack=f"**Stack Trace**:\n```\n{stack_trace}\n```\n" if stack_trace else "",
        lang=path.suffix.lstrip("."),
        content=content,
    )


def make_client() -> AnthropicClient:
    api_key = (current_app.config.get("ANTHROPIC_API_KEY") or "").strip()
    if not api_key:
        raise ApiError("AI service not configured (missing API key)", status=500)
    return AnthropicClient(api_key, current_app.config.get("AI_ASSIST_MODEL") or "claude-sonnet-4-20250514")


def analyze(file_path: str, error_message: str | None = None, stack_trace: str | None = None, exports: Any = None) -> dict[str, Any]:
    check = _checked(file_path)
    assert check.resolved is not None and check.relative is not None
    if not check.resolved.is_file():
        raise NotFoundError("File not found")

    started = time.monotonic()
    original = read_text(check.resolved)
    client = make_client()
    prompt = build_prompt(check.relative, check.resolved, original, error_message, stack_trace, exports)
    try:
        completion = client.create_message(prompt)
    except AIServiceError as e:
        raise ApiError(f"Analysis failed: {e}", status=502)

    result = extract_json_object(completion.text)
    if result is None:
        logger.error("Failed to parse AI response for %s", check.relative)
        raise ApiError("Failed to parse AI response", status=500, extra={"rawResponse": completion.text[:500]})

    backup = get_backup_store().add(check.relative, original)
    logger.info("AI analysis for %s stored as backup %s", check.relative, backup.id)
    return {
        "analysis": result.get("analysis"),
        "rootCause": result.get("rootCause"),
        "suggestedFix": result.get("suggestedFix"),
        "explanation": result.get("explanation"),
        "confidence": result.get("confidence") or "medium",
        "additionalNotes": result.get("additionalNotes"),
        "originalContent": original,
        "filePath": check.relative,
        "backupId": backup.id,
        "usage": {
            "inputTokens": completion.input_tokens,
            "outputTokens": completion.output_tokens,
            "durationMs": int((time.monotonic() - started) * 1000),
        },
    }


def apply_fix(file_path: str, suggested_fix: str, backup_id: str | None = None) -> dict[str, Any]:
    if not isinstance(suggested_fix, str) or not suggested_fix:
        raise ValidationError("filePath and suggestedFix are required")
    check = _checked(file_path)
    assert check.resolved is not None and check.relative is not None

    backup_id = clean_str(backup_id, "backupId")
    store = get_backup_store()
    existing = store.get(backup_id) if backup_id else None
    if existing is not None and existing.file_path != check.relative:
        raise ValidationError("File path does not match backup")
    if existing is None:
        original = read_text(check.resolved) if check.resolved.is_file() else ""
        existing = store.add(check.relative, original)

    write_text(check.resolved, suggested_fix)
    logger.info("AI Assist: applied fix to %s (backup %s)", check.relative, existing.id)
    return {"message": "Fix applied successfully", "filePath": check.relative, "backupId": existing.id, "canRollback": True}


def rollback(backup_id: str | None, file_path: str | None = None) -> dict[str, Any]:
    backup_id = clean_str(backup_id, "backupId")
    if not backup_id:
        raise ValidationError("backupId is required")
    store = get_backup_store()
    backup = store.get(backup_id)
    if backup is None:
        raise NotFoundError("Backup not found or expired")
    if file_path:
        check = _checked(file_path)
        if check.relative != backup.file_path:
            raise ValidationError("File path does not match backup")

    target = validate_file_path(backup.file_path, _root())
    if not target.valid or target.resolved is None:
        raise ValidationError(target.error or "Invalid file path")
    write_text(target.resolved, backup.original_content)
    store.pop(backup_id)
    logger.info("AI Assist: rolled back %s", backup.file_path)
    return {"message": "Rollback successful", "filePath": backup.file_path}


def list_backups() -> list[dict[str, Any]]:
    return [b.summary() for b in get_backup_store().list()]
