from __future__ import annotations

from flask import Blueprint, Response, current_app, g, jsonify, request
from kombu.exceptions import KombuError

from app.modulekit.audit import record_event
from app.modulekit.db import db_session
from app.modulekit.errors import error_response
from app.modulekit.modules.assembler.service import ProjectRequest, assemble_project
from app.modulekit.modules.queue.service import QueueUnavailable, get_queue_service
from app.modulekit.rbac import require_permission
from app.modulekit.sse import HEARTBEAT, SSE_HEADERS, format_sse
from app.modulekit.storage import storage_from_config

bp = Blueprint("queue", __name__)


def _run_sync(req: ProjectRequest):
    result = assemble_project(
        req,
        storage_from_config(current_app.config),
        output_prefix=current_app.config.get("ASSEMBLER_OUTPUT_PREFIX") or "generated-projects",
    )
    s = db_session()
    record_event(
        s,
        actor=g.current_user,
        action="assembler.project.create",
        entity_type="Project",
        entity_id=result.slug,
        metadata={"industry": req.industry, "mode": "sync"},
    )
    s.commit()
    return jsonify({"success": True, "mode": "sync", "project": result.to_dict()}), 201


@bp.post("/jobs")
@require_permission("assembler.run")
def jobs_create():
    data = request.get_json(silent=True)
    req = ProjectRequest.from_payload(data if isinstance(data, dict) else {})
    svc = get_queue_service()
    if not svc.is_available():
        current_app.logger.info("Queue unavailable (%s); assembling %s synchronously", svc.get_init_error(), req.slug)
        return _run_sync(req)

    try:
        job_id = svc.add_assembly_job(req.to_job_data())
    except (QueueUnavailable, KombuError) as e:
        current_app.logger.warning("Enqueue failed (%s); assembling %s synchronously", e, req.slug)
        return _run_sync(req)

    s = db_session()
    record_event(
        s,
        actor=g.current_user,
        action="queue.job.create",
        entity_type="Job",
        entity_id=job_id,
        metadata={"industry": req.industry},
    )
    s.commit()
    return (
        jsonify(
            {
                "success": True,
                "mode": "queue",
                "jobId": job_id,
                "statusUrl": f"/api/queue/jobs/{job_id}",
                "eventsUrl": f"/api/queue/jobs/{job_id}/events",
            }
        ),
        202,
    )


@bp.get("/jobs/<job_id>")
@require_permission("assembler.run")
def jobs_status(job_id: str):
    st = get_queue_service().get_job_status(job_id)
    if st["status"] == "error":
        return error_response(st["error"], 503, "QUEUE_UNAVAILABLE")
    if st["status"] == "not_found":
        return error_response("Job not found", 404, "NOT_FOUND", jobId=job_id)
    return jsonify({"success": True, "job": st})


@bp.delete("/jobs/<job_id>")
@require_permission("assembler.run")
def jobs_cancel(job_id: str):
    svc = get_queue_service()
    if not svc.is_available():
        return error_response("Queue service not available", 503, "QUEUE_UNAVAILABLE")
    outcome = svc.cancel_job(job_id)
    if not outcome["success"]:
        status = 404 if outcome["error"] == "Job not found" else 409
        return error_response(outcome["error"], status)
    return jsonify({"success": True, "jobId": job_id})


@bp.get("")
@require_permission("queue.view")
def queue_status():
    start = max(0, request.args.get("start", 0, type=int))
    end = max(start + 1, min(request.args.get("end", 50, type=int), start + 200))
    return jsonify({"success": True, **get_queue_service().get_queue_status(start, end)})


@bp.get("/jobs/<job_id>/events")
@require_permission("assembler.run")
def jobs_events(job_id: str):
    svc = get_queue_service()
    if not svc.is_available():
        return error_response("Queue service not available", 503, "QUEUE_UNAVAILABLE")
    heartbeat = float(current_app.config.get("QUEUE_SSE_HEARTBEAT_SECONDS") or 15)

    def stream():
        for message in svc.listen_to_job(job_id, heartbeat=heartbeat):
            if message["event"] == "heartbeat":
                yield HEARTBEAT
            else:
                yield format_sse(message["data"], event=message["event"])

    return Response(stream(), mimetype="text/event-stream", headers=SSE_HEADERS)
