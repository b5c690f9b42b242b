import logging
from datetime import timedelta

from flask import Flask, g, request, session
from dotenv import load_dotenv

from app.modulekit.config import load_config
from app.modulekit.db import init_db, teardown_db_session
from app.modulekit.errors import error_response, register_error_handlers
from app.modulekit.routes import bp as routes_bp
from app.modulekit.auth import bp as auth_bp, load_current_user
from app.modulekit.modules.loyalty.routes import bp as loyalty_bp
from app.modulekit.modules.payouts.routes import payouts_bp, verification_bp, wallet_bp
from app.modulekit.modules.social.routes import notifications_bp, posts_bp
from app.modulekit.modules.queue.celery_app import celery_init_app
from app.modulekit.modules.queue.routes import bp as queue_bp
from app.modulekit.modules.queue.service import init_queue_service
from app.modulekit.modules.assembler.routes import bp as assembler_bp
from app.modulekit.modules.ai_assist.routes import bp as ai_assist_bp
from app.modulekit.modules.menu.routes import bp as menu_bp
from app.modulekit.modules.reservations.routes import bp as reservations_bp

_UNGUARDED_PREFIXES = ("/static/", "/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # CSRF protection (session-cookie clients only; bearer-token clients are exempt)
    from app.modulekit.security import bearer_token, ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            return None
        if bearer_token(request):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Allow login/register/logout to pass through
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return error_response("CSRF token missing or invalid.", 400, "CSRF_INVALID")
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("JWT_SECRET") or str(app.config["JWT_SECRET"]) in ("", "change-me"):
            raise RuntimeError("JWT_SECRET must be set to a strong value in production (not default).")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os

        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            from botocore.exceptions import BotoCoreError, ClientError

            from app.modulekit.storage import S3Storage, storage_from_config

            try:
                storage = storage_from_config(app.config)
                if isinstance(storage, S3Storage):
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except (BotoCoreError, ClientError) as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    celery_init_app(app)
    init_queue_service(app)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(loyalty_bp, url_prefix="/api/loyalty")
    app.register_blueprint(verification_bp, url_prefix="/api/verification")
    app.register_blueprint(payouts_bp, url_prefix="/api/payouts")
    app.register_blueprint(wallet_bp, url_prefix="/api/wallet")
    app.register_blueprint(posts_bp, url_prefix="/api/posts")
    app.register_blueprint(notifications_bp, url_prefix="/api/notifications")
    app.register_blueprint(queue_bp, url_prefix="/api/queue")
    app.register_blueprint(assembler_bp, url_prefix="/api/assembler")
    app.register_blueprint(ai_assist_bp, url_prefix="/api/ai-assist")
    app.register_blueprint(menu_bp, url_prefix="/api/menu")
    app.register_blueprint(reservations_bp, url_prefix="/api/reservations")

    def _load_user_wrapper():
        if request.path.startswith(_UNGUARDED_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    register_error_handlers(app)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
