from __future__ import annotations

import logging
import time

from celery import shared_task
from flask import current_app

from app.modulekit.modules.assembler.service import ProjectRequest, assemble_project
from app.modulekit.storage import StorageError, storage_from_config

logger = logging.getLogger(__name__)


@shared_task(
    bind=True,
    name="modulekit.assemble_project",
    autoretry_for=(StorageError, OSError),
    max_retries=1,
    retry_backoff=5,
    retry_jitter=False,
)
def assemble_project_task(self, job_data: dict) -> dict:
    """Worker side of POST /api/queue/jobs. Runs inside a Flask app context."""
    started = time.monotonic()
    request = ProjectRequest.from_payload(job_data)
    logger.info("Job %s: assembling %s (%s)", self.request.id, request.name, request.industry)

    def progress(pct: int, stage: str) -> None:
        self.update_state(state="PROGRESS", meta={"progress": pct, "stage": stage})

    result = assemble_project(
        request,
        storage_from_config(current_app.config),
        output_prefix=current_app.config.get("ASSEMBLER_OUTPUT_PREFIX") or "generated-projects",
        progress=progress,
    )
    duration_ms = int((time.monotonic() - started) * 1000)
    logger.info("Job %s: done in %sms", self.request.id, duration_ms)
    return {**result.to_dict(), "durationMs": duration_ms}
