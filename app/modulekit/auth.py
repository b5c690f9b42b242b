from __future__ import annotations

import re
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, g, jsonify, request, session
from werkzeug.security import check_password_hash, generate_password_hash

from app.modulekit.audit import record_event
from app.modulekit.db import db_session
from app.modulekit.errors import ValidationError, error_response
from app.modulekit.models import User
from app.modulekit.rbac import require_login
from app.modulekit.security import bearer_token, decode_access_token, ensure_csrf_token, issue_access_token
from app.modulekit.utils import optional_str, str_field

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{3,32}$")


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _skip_user_loading() -> bool:
    return request.path.startswith(("/static/", "/health", "/healthz"))


def load_current_user() -> None:
    """
    Loads g.current_user from a bearer token or the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
    g.auth_via_token = False
    g.current_user = None
    if _skip_user_loading():
        return

    token = bearer_token(request)
    if token:
        user_id = decode_access_token(token)
        g.auth_via_token = True
    else:
        user_id = session.get("user_id")
    if not user_id:
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        return
    if not user or not user.is_active:
        session.pop("user_id", None)
        return
    g.current_user = user


def _payload() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _user_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "displayName": user.public_name,
        "roles": sorted({r.key for r in user.roles or []}),
        "permissions": sorted({p.key for r in user.roles or [] for p in r.permissions or []}),
    }


def _password(data: dict) -> str:
    password = data.get("password") or ""
    if not isinstance(password, str):
        raise ValidationError("password must be a string")
    return password

@bp.post("/register")
def register():
    data = _payload()
    email = str_field(data, "email").lower()
    password = _password(data)
    username = optional_str(data, "username")
    display_name = optional_str(data, "displayName", "display_name")

    if not _EMAIL_RE.match(email):
        raise ValidationError("A valid email is required.")
    if len(password) < 8:
        raise ValidationError("Password must be at least 8 characters.")
    if username and not _USERNAME_RE.match(username):
        raise ValidationError("Username must be 3-32 letters, digits or underscores.")

    s = db_session()
    if s.query(User).filter(User.email == email).one_or_none():
        raise ValidationError("Email already registered.")
    if username and s.query(User).filter(User.username == username).one_or_none():
        raise ValidationError("Username already taken.")

    user = User(
        email=email,
        password_hash=generate_password_hash(password),
        username=username,
        display_name=display_name,
        is_active=True,
    )
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="auth.register", entity_type="User", entity_id=str(user.id))
    s.commit()
    current_app.logger.info("User registered id=%s request_id=%s", user.id, g.request_id)
    return jsonify({"success": True, "user": _user_dict(user), "token": issue_access_token(user.id)}), 201


@bp.post("/login")
def login_post():
    data = _payload()
    email = str_field(data, "email").lower()
    password = _password(data)
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        return error_response("Too many login attempts. Please wait 5 minutes.", 429, "TOO_MANY_ATTEMPTS")

    _record_attempt(ip)

    try:
        s = db_session()
        user = s.query(User).filter(User.email == email).one_or_none()
        if not user or not user.is_active or not check_password_hash(user.password_hash, password):
            record_event(
                s,
                actor=None,
                action="auth.login_failed",
                entity_type="User",
                entity_id=email,
                reason="Invalid credentials",
                metadata={"email": email},
            )
            s.commit()
            return error_response("Invalid credentials.", 401, "UNAUTHENTICATED")

        session["user_id"] = user.id
        _login_attempts[ip].clear()
        record_event(s, actor=user, action="auth.login", entity_type="User", entity_id=str(user.id))
        s.commit()
        return jsonify(
            {
                "success": True,
                "user": _user_dict(user),
                "token": issue_access_token(user.id),
                "csrfToken": ensure_csrf_token(),
            }
        )
    except Exception:
        current_app.logger.exception("Login POST crashed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        raise


@bp.get("/me")
@require_login
def me():
    return jsonify({"success": True, "user": _user_dict(g.current_user)})


@bp.get("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action="auth.logout", entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    return jsonify({"success": True})
