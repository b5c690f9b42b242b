from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.modulekit.audit import record_event
from app.modulekit.db import db_session
from app.modulekit.modules.assembler.industries import industry_catalog
from app.modulekit.modules.assembler.service import ProjectRequest, assemble_project, list_projects, load_manifest
from app.modulekit.rbac import require_permission
from app.modulekit.storage import storage_from_config

bp = Blueprint("assembler", __name__)


def _output_prefix() -> str:
    return current_app.config.get("ASSEMBLER_OUTPUT_PREFIX") or "generated-projects"


@bp.get("/industries")
def industries():
    return jsonify({"success": True, "industries": industry_catalog()})


@bp.post("/projects")
@require_permission("assembler.run")
def projects_create():
    data = request.get_json(silent=True)
    req = ProjectRequest.from_payload(data if isinstance(data, dict) else {})
    result = assemble_project(req, storage_from_config(current_app.config), output_prefix=_output_prefix())

    s = db_session()
    record_event(
        s,
        actor=g.current_user,
        action="assembler.project.create",
        entity_type="Project",
        entity_id=result.slug,
        metadata={"industry": req.industry, "modules": [m["name"] for m in result.modules]},
    )
    s.commit()
    return jsonify({"success": True, "project": result.to_dict()}), 201


@bp.get("/projects")
@require_permission("assembler.run")
def projects_list():
    projects = list_projects(storage_from_config(current_app.config), output_prefix=_output_prefix())
    return jsonify({"success": True, "projects": projects, "total": len(projects)})


@bp.get("/projects/<slug>/manifest")
@require_permission("assembler.run")
def projects_manifest(slug: str):
    manifest = load_manifest(storage_from_config(current_app.config), slug, output_prefix=_output_prefix())
    return jsonify({"success": True, "manifest": manifest})
