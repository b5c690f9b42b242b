"""
Project assembly.

`assemble_project` renders every file in memory first, validates the set and
only then writes it through storage, so a failed render never leaves a
half-written project behind.
"""
from __future__ import annotations

import json
import logging
import math
import re
import unicodedata
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from jinja2 import Environment, FileSystemLoader, StrictUndefined, TemplateError

from app.modulekit.errors import ApiError, NotFoundError, ValidationError
from app.modulekit.modules.assembler.industries import (
    MODULE_TYPES,
    get_industry_modules,
    industry_names,
    is_known_industry,
    module_label,
    module_type,
)
from app.modulekit.storage import Storage, StorageError
from app.modulekit.utils import clean_str, str_field

logger = logging.getLogger(__name__)

TEMPLATE_DIR = Path(__file__).parent / "templates"

REQUIRED_FILES = (
    "backend/server.js",
    "backend/package.json",
    "backend/.env.example",
    "frontend/src/App.jsx",
    "frontend/src/theme.css",
    "frontend/package.json",
    "README.md",
    "manifest.json",
)

ADMIN_TIERS = ("lite", "standard", "pro")

DEFAULT_THEME = {
    "primary": "#1f2937",
    "secondary": "#2563eb",
    "accent": "#f59e0b",
    "text": "#111827",
    "background": "#ffffff",
}

DEFAULT_LOYALTY_TIERS = [
    {"name": "Bronze", "threshold": 0, "multiplier": 1.0},
    {"name": "Silver", "threshold": 500, "multiplier": 1.25},
    {"name": "Gold", "threshold": 2000, "multiplier": 1.5},
    {"name": "Platinum", "threshold": 5000, "multiplier": 2.0},
]

_HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")
_MODULE_NAME = re.compile(r"^[a-z][a-z0-9-]{1,30}$")

ProgressCallback = Callable[[int, str], None]


_TEMPLATE_MARKERS = ("{{", "{%", "{#")
_LINE_BREAKS = frozenset("\n\r\t")
MAX_TEXT = 200
MAX_DESCRIPTION = 1000


def _plain_text(value: Any, field: str, *, max_length: int = MAX_TEXT, multiline: bool = False) -> str:
    """
    A user string that is safe to drop into generated source. Line breaks would
    let a value escape a `//` comment; template markers would survive rendering.
    """
    text = clean_str(value, field)
    for ch in text:
        if unicodedata.category(ch) == "Cc" and not (multiline and ch in _LINE_BREAKS):
            raise ValidationError(f"{field} must not contain control characters or line breaks")
    if any(marker in text for marker in _TEMPLATE_MARKERS):
        raise ValidationError(f"{field} must not contain template markers")
    if len(text) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return text


def _number(value: Any, field: str, *, default: float) -> float:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"{field} must be a number")
    if not math.isfinite(number):
        raise ValidationError(f"{field} must be a number")
    return number


def _menu_item(raw: dict, i: int) -> dict:
    field = f"menuItems[{i}]"
    price = _number(raw.get("price"), f"{field}.price", default=0.0)
    if price < 0:
        raise ValidationError(f"{field}.price must not be negative")
    available = raw.get("available", True)
    if not isinstance(available, bool):
        raise ValidationError(f"{field}.available must be true or false")
    return {
        "name": _plain_text(raw.get("name"), f"{field}.name"),
        "price": round(price, 2),
        "category": _plain_text(raw.get("category"), f"{field}.category"),
        "description": _plain_text(raw.get("description"), f"{field}.description", max_length=MAX_DESCRIPTION, multiline=True),
        "available": available,
    }


def _loyalty_tier(raw: dict, i: int) -> dict:
    field = f"loyaltyTiers[{i}]"
    name = _plain_text(raw.get("name"), f"{field}.name")
    if not name:
        raise ValidationError(f"{field}.name is required")
    threshold = _number(raw.get("threshold"), f"{field}.threshold", default=0.0)
    multiplier = _number(raw.get("multiplier"), f"{field}.multiplier", default=1.0)
    if threshold < 0 or multiplier <= 0:
        raise ValidationError(f"{field} needs threshold >= 0 and multiplier > 0")
    return {"name": name, "threshold": int(threshold) if threshold.is_integer() else threshold, "multiplier": multiplier}


def slugify(name: str) -> str:
    text = unicodedata.normalize("NFKD", name or "").encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^a-zA-Z0-9]+", "-", text).strip("-").lower()
    return text[:60].strip("-")


@dataclass
class ProjectRequest:
    name: str
    industry: str
    tagline: str = ""
    phone: str = ""
    address: str = ""
    hours: list[str] = field(default_factory=list)
    menu_items: list[dict] = field(default_factory=list)
    loyalty_tiers: list[dict] = field(default_factory=list)
    theme: dict[str, str] = field(default_factory=dict)
    admin_tier: str = "standard"
    modules: list[str] | None = None
    test_mode: bool = False

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ProjectRequest":
        name = _plain_text(payload.get("name"), "name", max_length=120)
        if not name or not slugify(name):
            raise ValidationError("Project name is required")

        industry = str_field(payload, "industry").lower()
        if not is_known_industry(industry):
            raise ApiError(
                f"Unknown industry: {industry or '(none)'}",
                status=400,
                code="VALIDATION_ERROR",
                extra={"validIndustries": industry_names()},
            )

        business = payload.get("business") if isinstance(payload.get("business"), dict) else payload
        hours = business.get("hours") or []
        if isinstance(hours, str):
            hours = [hours]
        if not isinstance(hours, list):
            raise ValidationError("hours must be a list")
        hours = [_plain_text(h, f"hours[{i}]") for i, h in enumerate(hours)]

        menu_items = business.get("menuItems") or business.get("menu_items") or []
        if not isinstance(menu_items, list) or not all(isinstance(i, dict) for i in menu_items):
            raise ValidationError("menuItems must be a list of objects")
        menu_items = [_menu_item(raw, i) for i, raw in enumerate(menu_items)]

        tiers = business.get("loyaltyTiers") or business.get("loyalty_tiers") or []
        if not isinstance(tiers, list) or not all(isinstance(t, dict) for t in tiers):
            raise ValidationError("loyaltyTiers must be a list of objects")
        tiers = [_loyalty_tier(raw, i) for i, raw in enumerate(tiers)]

        theme = payload.get("theme") or {}
        if not isinstance(theme, dict):
            raise ValidationError("theme must be an object")
        for key, value in theme.items():
            if key in DEFAULT_THEME and not (isinstance(value, str) and _HEX_COLOR.match(value)):
                raise ValidationError(f"theme.{key} must be a hex colour")

        admin_tier = str_field(payload, "adminTier", "admin_tier", default="standard").lower()
        if admin_tier not in ADMIN_TIERS:
            raise ValidationError(f"adminTier must be one of: {', '.join(ADMIN_TIERS)}")

        modules = payload.get("modules")
        if modules is not None:
            if not isinstance(modules, list) or not modules or not all(isinstance(m, str) and _MODULE_NAME.match(m) for m in modules):
                raise ValidationError("modules must be a non-empty list of lowercase module names")

        return cls(
            name=name,
            industry=industry,
            tagline=_plain_text(business.get("tagline"), "tagline"),
            phone=_plain_text(business.get("phone"), "phone", max_length=40),
            address=_plain_text(business.get("address"), "address"),
            hours=hours,
            menu_items=menu_items,
            loyalty_tiers=tiers,
            theme={k: v for k, v in theme.items() if k in DEFAULT_THEME},
            admin_tier=admin_tier,
            modules=list(dict.fromkeys(modules)) if modules else None,
            test_mode=bool(payload.get("testMode")),
        )

    @property
    def slug(self) -> str:
        return slugify(self.name)

    def to_job_data(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "industry": self.industry,
            "business": {
                "tagline": self.tagline,
                "phone": self.phone,
                "address": self.address,
                "hours": self.hours,
                "menuItems": self.menu_items,
                "loyaltyTiers": self.loyalty_tiers,
            },
            "theme": self.theme,
            "adminTier": self.admin_tier,
            "modules": self.modules,
            "testMode": self.test_mode,
        }


@dataclass
class AssemblyResult:
    slug: str
    files: list[str]
    modules: list[dict]
    warnings: list[str] = field(default_factory=list)
    output_prefix: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "slug": self.slug,
            "files": list(self.files),
            "modules": list(self.modules),
            "warnings": list(self.warnings),
            "outputPath": self.output_prefix,
        }


@dataclass
class ValidationReport:
    issues: list[str]
    warnings: list[str]

    @property
    def valid(self) -> bool:
        return not self.issues


_JSX_ENTITIES = str.maketrans(
    {"{": "&#123;", "}": "&#125;", "(": "&#40;", ")": "&#41;", "<": "&lt;", ">": "&gt;", "\"": "&quot;"}
)


def jsx_text(value: Any) -> str:
    """Escape a value for use as JSX text or a JSX string attribute."""
    return str(value).translate(_JSX_ENTITIES)


def env_quote(value: Any) -> str:
    """Double-quoted dotenv value."""
    return json.dumps(str(value), ensure_ascii=False)


def _environment() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
        autoescape=False,
    )
    env.filters["jsx"] = jsx_text
    env.filters["env_quote"] = env_quote
    return env


def _component_name(module_name: str) -> str:
    return "".join(part.capitalize() for part in module_name.split("-")) + "Page"


def resolve_modules(request: ProjectRequest) -> list[dict]:
    names = request.modules or list(get_industry_modules(request.industry))
    out = []
    for name in names:
        mtype = module_type(name, request.industry)
        label = module_label(name)
        out.append(
            {
                "name": name,
                "type": mtype,
                "label": label.label,
                "singular": label.singular,
                "plural": label.plural,
                "component": _component_name(name),
                "has_sse": bool(MODULE_TYPES[mtype]["has_sse"]),
            }
        )
    return out


def _seed_items(request: ProjectRequest) -> list[dict]:
    items = []
    for i, raw in enumerate(request.menu_items, start=1):
        items.append(
            {
                "id": i,
                "name": raw.get("name") or f"Item {i}",
                "price": raw.get("price", 0.0),
                "category": raw.get("category") or "General",
                "description": raw.get("description") or "",
                "available": raw.get("available", True),
            }
        )
    return items


def render_project(request: ProjectRequest, modules: list[dict]) -> dict[str, str]:
    """Render every file of the project. Keys are paths relative to the project root."""
    env = _environment()
    project = {
        "name": request.name,
        "slug": request.slug,
        "industry": request.industry,
        "tagline": request.tagline or f"Welcome to {request.name}",
        "phone": request.phone,
        "address": request.address,
        "hours": request.hours,
        "admin_tier": request.admin_tier,
    }
    theme = {**DEFAULT_THEME, **request.theme}
    loyalty_tiers = request.loyalty_tiers or DEFAULT_LOYALTY_TIERS
    items = _seed_items(request)
    ctx = {"project": project, "modules": modules, "theme": theme}

    files: dict[str, str] = {
        "backend/server.js": env.get_template("backend/server.js.j2").render(**ctx),
        "backend/package.json": env.get_template("backend/package.json.j2").render(**ctx),
        "backend/.env.example": env.get_template("backend/env.example.j2").render(**ctx),
        "frontend/src/App.jsx": env.get_template("frontend/App.jsx.j2").render(**ctx),
        "frontend/src/theme.css": env.get_template("frontend/theme.css.j2").render(**ctx),
        "frontend/package.json": env.get_template("frontend/package.json.j2").render(**ctx),
        "README.md": env.get_template("README.md.j2").render(**ctx),
    }
    for m in modules:
        mctx = {**ctx, "module": m, "items": items if m["type"] == "catalog" else [], "loyalty_tiers": loyalty_tiers}
        files[f"backend/routes/{m['name']}.js"] = env.get_template(f"backend/route_{m['type']}.js.j2").render(**mctx)
        files[f"frontend/src/pages/{m['component']}.jsx"] = env.get_template(f"frontend/page_{m['type']}.jsx.j2").render(**mctx)

    manifest = {
        "name": request.name,
        "slug": request.slug,
        "industry": request.industry,
        "adminTier": request.admin_tier,
        "modules": [{"name": m["name"], "type": m["type"], "label": m["label"]} for m in modules],
        "files": sorted([*files, "manifest.json"]),
        "generatedAt": datetime.now(timezone.utc).isoformat(),
        "testMode": request.test_mode,
    }
    files["manifest.json"] = json.dumps(manifest, indent=2) + "\n"
    return files


def _balanced(content: str, open_ch: str, close_ch: str) -> bool:
    return content.count(open_ch) == content.count(close_ch)


def validate_generated_project(files: dict[str, str], modules: list[dict] | None = None) -> ValidationReport:
    issues: list[str] = []
    warnings: list[str] = []

    for required in REQUIRED_FILES:
        if required not in files:
            issues.append(f"Missing required file: {required}")

    for m in modules or []:
        if f"backend/routes/{m['name']}.js" not in files:
            issues.append(f"{m['name']}: missing backend route")
        if f"frontend/src/pages/{m['component']}.jsx" not in files:
            issues.append(f"{m['name']}: missing frontend page")

    for path, content in files.items():
        if "{{" in content or "{%" in content:
            issues.append(f"{path}: unrendered template placeholder")
        if path.endswith(".jsx"):
            if not _balanced(content, "{", "}"):
                issues.append(f"{path}: unbalanced braces")
            if not _balanced(content, "(", ")"):
                issues.append(f"{path}: unbalanced parentheses")
            if "export default" not in content:
                issues.append(f"{path}: missing export default")
        if path.endswith("package.json"):
            try:
                json.loads(content)
            except ValueError:
                issues.append(f"{path}: invalid JSON")
        if not content.strip():
            warnings.append(f"{path}: empty file")

    return ValidationReport(issues=issues, warnings=warnings)


def _content_type(path: str) -> str:
    if path.endswith(".json"):
        return "application/json"
    if path.endswith(".css"):
        return "text/css"
    if path.endswith(".md"):
        return "text/markdown"
    return "text/plain"


def assemble_project(
    request: ProjectRequest,
    storage: Storage,
    *,
    output_prefix: str = "generated-projects",
    progress: ProgressCallback | None = None,
) -> AssemblyResult:
    def report(pct: int, stage: str) -> None:
        if progress is not None:
            progress(pct, stage)

    slug = request.slug
    report(5, "resolving modules")
    modules = resolve_modules(request)

    report(20, "rendering templates")
    try:
        files = render_project(request, modules)
    except TemplateError as e:
        logger.exception("Template rendering failed for %s", slug)
        raise ApiError(f"Template rendering failed: {e}", status=500)

    report(60, "validating")
    validation = validate_generated_project(files, modules)
    if not validation.valid:
        raise ApiError("Generated project failed validation", status=500, extra={"issues": validation.issues})

    report(70, "writing files")
    base = f"{output_prefix.strip('/')}/{slug}"
    for path, content in sorted(files.items()):
        storage.put_text(f"{base}/{path}", content, content_type=_content_type(path))

    report(100, "done")
    logger.info("Assembled %s (%s) with %s file(s) under %s", slug, request.industry, len(files), base)
    return AssemblyResult(
        slug=slug,
        files=sorted(files),
        modules=[{"name": m["name"], "type": m["type"], "label": m["label"]} for m in modules],
        warnings=validation.warnings,
        output_prefix=base,
    )


def load_manifest(storage: Storage, slug: str, *, output_prefix: str = "generated-projects") -> dict:
    if slugify(slug) != slug:
        raise NotFoundError("Project not found")
    key = f"{output_prefix.strip('/')}/{slug}/manifest.json"
    try:
        if not storage.exists(key):
            raise NotFoundError("Project not found")
        return json.loads(storage.read_text(key))
    except StorageError:
        raise NotFoundError("Project not found")


def list_projects(storage: Storage, *, output_prefix: str = "generated-projects") -> list[dict]:
    """Summaries of every assembled project under `output_prefix`, newest first."""
    base = output_prefix.strip("/")
    projects = []
    for key in storage.list_keys(f"{base}/"):
        parts = key[len(base) + 1:].split("/")
        if len(parts) != 2 or parts[1] != "manifest.json":
            continue
        try:
            manifest = json.loads(storage.read_text(key))
        except (StorageError, ValueError):
            logger.warning("Skipping unreadable manifest %s", key)
            continue
        projects.append(
            {
                "slug": parts[0],
                "name": manifest.get("name"),
                "industry": manifest.get("industry"),
                "modules": [m.get("name") for m in manifest.get("modules") or []],
                "generatedAt": manifest.get("generatedAt"),
            }
        )
    projects.sort(key=lambda p: p["generatedAt"] or "", reverse=True)
    return projects
