from flask import Blueprint, current_app

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON, including whether the job queue is live."""
    svc = current_app.extensions.get("queue_service")
    return {"ok": True, "queue": bool(svc and svc.is_available())}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for container health checks. No DB or Redis access.
    """
    return "ok", 200
