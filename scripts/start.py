#!/usr/bin/env python3
"""
Production startup script.

Web process (default):
1. Runs migrations + seed (release.py)
2. Starts gunicorn (replaces this process via os.execvp)

Worker process (PROCESS_TYPE=worker):
  Starts a Celery worker consuming the assembly queue. No migrations.

Usage:
    python scripts/start.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _start_worker() -> None:
    queue = (os.environ.get("QUEUE_NAME") or "assembly-queue").strip()
    concurrency = (os.environ.get("WORKER_CONCURRENCY") or "2").strip()
    print(f"=== Starting celery worker (queue={queue}, concurrency={concurrency}) ===", flush=True)
    os.execvp(
        "celery",
        [
            "celery",
            "-A", "app.modulekit.modules.queue.worker:celery_app",
            "worker",
            "--queues", queue,
            "--concurrency", concurrency,
            "--loglevel", (os.environ.get("LOG_LEVEL") or "INFO").upper(),
        ],
    )


def main() -> None:
    if (os.environ.get("PROCESS_TYPE") or "").strip().lower() == "worker":
        _start_worker()
        return

    # Step 0: Validate PORT environment variable
    port = os.environ.get("PORT", "").strip()
    if not port:
        print("WARNING: PORT not set, using default 8080", flush=True)
        port = "8080"

    try:
        port_int = int(port)
        if port_int < 1 or port_int > 65535:
            raise ValueError("Port out of range")
    except ValueError:
        print(f"ERROR: Invalid PORT value '{port}'. Must be integer 1-65535.", flush=True)
        sys.exit(1)

    print(f"PORT={port} validated", flush=True)

    # Step 1: Run release (migrations + seed)
    print("=== Running release phase ===", flush=True)
    from scripts.release import run_release
    try:
        run_release()
    except Exception as e:
        print(f"Release failed: {e}", flush=True)
        sys.exit(1)

    # Step 2: Start gunicorn (exec replaces this process)
    print("=== Starting gunicorn ===", flush=True)
    print(f"Gunicorn binding to 0.0.0.0:{port}", flush=True)
    print("Health check endpoint ready at /healthz", flush=True)

    # SSE streams hold a worker thread each, so run threaded workers.
    os.execvp(
        "gunicorn",
        [
            "gunicorn",
            "app.wsgi:app",
            "--bind", f"0.0.0.0:{port}",
            "--workers", "2",
            "--threads", "8",
            "--timeout", "120",
            "--preload",
            "--access-logfile", "-",
            "--error-logfile", "-",
        ],
    )


if __name__ == "__main__":
    main()
