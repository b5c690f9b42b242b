"""
Release-phase helper, run before the web process starts.

- Refuse SQLite in production.
- Upgrade the schema to alembic head.
- Seed permissions, roles and the admin user (idempotent).
- Report whether the job broker answers; assembly jobs run inline when it does not.

Usage:
  python scripts/release.py
"""

from __future__ import annotations

import os
import sys
from pathlib import Path


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _require_env(name: str) -> str:
    v = (os.environ.get(name) or "").strip()
    if not v:
        raise RuntimeError(f"Missing required environment variable {name}.")
    return v


def migrate(db_url: str) -> None:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    cfg.set_main_option("sqlalchemy.url", db_url)
    command.upgrade(cfg, "head")


def broker_status(environ=os.environ) -> str:
    """'eager', 'reachable' or 'unreachable: <reason>' for the configured REDIS_URL."""
    if (environ.get("CELERY_TASK_ALWAYS_EAGER") or "").strip().lower() in ("1", "true", "yes", "on"):
        return "eager"
    from app.modulekit.modules.queue.service import check_redis

    url = (environ.get("REDIS_URL") or "redis://localhost:6379/0").strip()
    try:
        check_redis(url)
    except OSError as e:
        return f"unreachable: {e}"
    return "reachable"


def run_release() -> None:
    db_url = _require_env("DATABASE_URL")
    env = (os.environ.get("ENV") or "").strip().lower()
    if env in ("prod", "production") and db_url.startswith("sqlite"):
        raise RuntimeError("Refusing to run release on sqlite DATABASE_URL in production. Set DATABASE_URL to Postgres.")

    print("=== ModuleKit release start ===", flush=True)
    print(f"ENV={env or '(unset)'}", flush=True)
    print("Running Alembic migrations...", flush=True)
    migrate(db_url)
    print("Migrations complete.", flush=True)

    print("Seeding permissions/admin (idempotent)...", flush=True)
    from scripts import init_db

    init_db.seed_only(database_url=db_url)
    print("Seed complete.", flush=True)

    status = broker_status()
    print(f"Job broker: {status}", flush=True)
    if status.startswith("unreachable"):
        print("WARNING: assembly jobs will run synchronously until Redis is reachable.", flush=True)
    print("=== ModuleKit release done ===", flush=True)


def main() -> None:
    run_release()


if __name__ == "__main__":
    main()
