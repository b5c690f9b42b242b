"""
QueueService wraps the Celery app for the API process: a startup broker check,
enqueueing, status lookups, a polling event relay and cancellation.
"""
from __future__ import annotations

import logging
import socket
import time
from collections.abc import Iterator
from typing import Any
from urllib.parse import urlparse

from celery import Celery
from celery.result import AsyncResult
from flask import Flask, current_app
from kombu.exceptions import KombuError

from app.modulekit.modules.assembler.service import slugify
from app.modulekit.modules.queue.registry import JobRegistry, MemoryJobRegistry, RedisJobRegistry

logger = logging.getLogger(__name__)

TASK_NAME = "modulekit.assemble_project"
CONNECT_TIMEOUT_SECONDS = 2.0
JOB_STATES = ("waiting", "active", "completed", "failed", "delayed")

_STATE_MAP = {
    "PENDING": "waiting",
    "RECEIVED": "waiting",
    "STARTED": "active",
    "PROGRESS": "active",
    "SUCCESS": "completed",
    "FAILURE": "failed",
    "RETRY": "delayed",
}


class QueueUnavailable(RuntimeError):
    pass


def check_redis(url: str, timeout: float = CONNECT_TIMEOUT_SECONDS) -> None:
    """Plain TCP connect to the broker host. Raises OSError when unreachable."""
    parsed = urlparse(url)
    host = parsed.hostname or "localhost"
    port = parsed.port or 6379
    with socket.create_connection((host, port), timeout=timeout):
        pass


class QueueService:
    def __init__(self, celery: Celery, *, redis_url: str, queue_name: str = "assembly-queue") -> None:
        self.celery = celery
        self.redis_url = redis_url
        self.queue_name = queue_name
        self.registry: JobRegistry | None = None
        self._available = False
        self._init_error: str | None = None

    # -- lifecycle ---------------------------------------------------------

    def initialize(self) -> bool:
        if self._available:
            return True
        if self.celery.conf.task_always_eager:
            # Tasks run in-process; nothing to connect to.
            self.registry = MemoryJobRegistry()
            self._available = True
            logger.info("Queue service running in eager mode")
            return True
        try:
            check_redis(self.redis_url)
            self.registry = RedisJobRegistry.from_url(self.redis_url, self.queue_name)
        except OSError as e:
            self._init_error = f"Redis not reachable: {e}"
            logger.warning("Redis not available - queue disabled (sync fallback active)")
            return False
        self._available = True
        self._init_error = None
        logger.info("Queue service initialized (queue=%s)", self.queue_name)
        return True

    def is_available(self) -> bool:
        return self._available and self.registry is not None

    def get_init_error(self) -> str | None:
        return self._init_error

    def close(self) -> None:
        if self.registry is not None:
            self.registry.close()
        self.registry = None
        self._available = False
        logger.info("Queue service closed")

    # -- jobs --------------------------------------------------------------

    def add_assembly_job(self, data: dict[str, Any]) -> str:
        if not self.is_available():
            raise QueueUnavailable("Queue service not available - Redis may be down")
        assert self.registry is not None
        job_id = f"{slugify(data.get('name') or 'project') or 'project'}-{int(time.time() * 1000)}"
        self.registry.add(job_id, data)
        try:
            self.celery.tasks[TASK_NAME].apply_async(args=[data], task_id=job_id, queue=self.queue_name)
        except KombuError:
            self.registry.remove(job_id)
            raise
        logger.info("Job %s added to queue: %s", job_id, data.get("name"))
        return job_id

    def _result(self, job_id: str) -> AsyncResult:
        return AsyncResult(job_id, app=self.celery)

    def get_job_status(self, job_id: str) -> dict[str, Any]:
        if not self.is_available():
            return {"status": "error", "error": "Queue service not available"}
        assert self.registry is not None
        entry = self.registry.get(job_id)
        if entry is None:
            return {"status": "not_found", "jobId": job_id}

        res = self._result(job_id)
        state = res.state
        status = _STATE_MAP.get(state, "waiting")
        info = res.info if isinstance(res.info, dict) else {}
        data = entry.get("data") or {}

        out: dict[str, Any] = {
            "jobId": job_id,
            "status": status,
            "progress": 100 if status == "completed" else int(info.get("progress") or 0),
            "stage": info.get("stage"),
            "data": {"name": data.get("name"), "industry": data.get("industry"), "testMode": bool(data.get("testMode"))},
            "timestamps": {
                "created": entry.get("created"),
                "finished": res.date_done.isoformat() if res.date_done else None,
            },
        }
        if status == "completed":
            out["result"] = res.result
        elif status == "failed":
            out["error"] = str(res.result) if res.result is not None else "Job failed"
            out["attemptsMade"] = int(res.retries or 0) + 1
        return out

    def get_queue_status(self, start: int = 0, end: int = 50) -> dict[str, Any]:
        if not self.is_available():
            return {"available": False, "error": "Queue service not available"}
        assert self.registry is not None
        jobs: dict[str, list[dict]] = {s: [] for s in JOB_STATES}
        for entry in self.registry.list(start, end):
            st = self.get_job_status(entry["id"])
            bucket = st.get("status")
            if bucket not in jobs:
                continue
            jobs[bucket].append(
                {
                    "id": entry["id"],
                    "name": (entry.get("data") or {}).get("name") or "Unknown",
                    "industry": (entry.get("data") or {}).get("industry") or "Unknown",
                    "progress": st.get("progress", 0),
                    "created": entry.get("created"),
                }
            )
        return {"available": True, "counts": {k: len(v) for k, v in jobs.items()}, "jobs": jobs}

    def listen_to_job(
        self,
        job_id: str,
        *,
        poll_interval: float = 0.5,
        heartbeat: float = 15.0,
        timeout: float | None = None,
    ) -> Iterator[dict[str, Any]]:
        """
        Yield {event, data} dicts until the job completes or fails. A
        `heartbeat` event is yielded after `heartbeat` seconds without change.
        """
        started = last_emit = time.monotonic()
        last_progress: int | None = None
        while True:
            st = self.get_job_status(job_id)
            status = st.get("status")
            if status in ("not_found", "error"):
                yield {"event": "error", "data": {"message": st.get("error") or "Job not found"}}
                return
            if status == "completed":
                yield {"event": "completed", "data": st.get("result")}
                return
            if status == "failed":
                yield {"event": "failed", "data": {"error": st.get("error")}}
                return

            now = time.monotonic()
            progress = int(st.get("progress") or 0)
            if progress != last_progress:
                last_progress = progress
                last_emit = now
                yield {"event": "progress", "data": {"progress": progress, "stage": st.get("stage"), "status": status}}
            elif now - last_emit >= heartbeat:
                last_emit = now
                yield {"event": "heartbeat", "data": None}
            if timeout is not None and now - started >= timeout:
                yield {"event": "timeout", "data": {"status": status}}
                return
            time.sleep(poll_interval)

    def cancel_job(self, job_id: str) -> dict[str, Any]:
        """Waiting or delayed jobs are revoked and forgotten. Active jobs are left alone."""
        if not self.is_available():
            return {"success": False, "error": "Queue service not available"}
        assert self.registry is not None
        st = self.get_job_status(job_id)
        if st["status"] == "not_found":
            return {"success": False, "error": "Job not found"}
        if st["status"] == "active":
            return {"success": False, "error": "Cannot cancel an active job"}
        if st["status"] in ("waiting", "delayed"):
            self.celery.control.revoke(job_id)
        self._result(job_id).forget()
        self.registry.remove(job_id)
        logger.info("Job %s cancelled (was %s)", job_id, st["status"])
        return {"success": True}


def init_queue_service(app: Flask) -> QueueService:
    svc = QueueService(
        app.extensions["celery"],
        redis_url=app.config.get("REDIS_URL") or "redis://localhost:6379/0",
        queue_name=app.config.get("QUEUE_NAME") or "assembly-queue",
    )
    svc.initialize()
    app.extensions["queue_service"] = svc
    return svc


def get_queue_service(app: Flask | None = None) -> QueueService:
    app = app or current_app._get_current_object()  # type: ignore[attr-defined]
    return app.extensions["queue_service"]
