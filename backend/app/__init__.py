import json
import os
import subprocess
import click
from pathlib import Path
from flask import Flask, jsonify, request, g
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from app.extensions import db, migrate, cors
from app.integrations.common import IntegrationDisabledError, IntegrationMisconfiguredError
from app.models import User
from app.services.errors import ServiceError
from app.segments.segment_09_users_auth_routes import auth_bp
from app.segments.segment_catalog import catalog_bp
from app.segments.segment_orders_api import orders_bp
from app.segments.segment_payments import payments_bp
from app.segments.segment_payment_webhooks import webhooks_bp
from app.segments.segment_vendor import vendor_bp
from app.segments.segment_disputes import disputes_bp
from app.segments.segment_notifications import notifications_bp
from app.segments.segment_admin_ops import admin_ops_bp
from app.segments.segment_share import share_bp
from app.utils.jwt_utils import decode_token, get_bearer_token
from app.utils.observability import init_sentry, init_otel, install_request_observers
from app.utils.rate_limit import check_limit, rate_limit_enabled, resolve_client_ip, trust_proxy_headers


def _resolve_alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
        cfg = Config(str(migrations_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(migrations_dir))
        script = ScriptDirectory.from_config(cfg)
        heads = script.get_heads()
        return heads[0] if heads else "unknown"
    except Exception:
        return "unknown"


def _resolve_git_sha() -> str:
    for env_key in ("RENDER_GIT_COMMIT", "GIT_SHA", "SOURCE_VERSION"):
        val = (os.getenv(env_key) or "").strip()
        if val:
            return val
    try:
        repo_root = Path(__file__).resolve().parents[1]
        out = subprocess.check_output(
            ["git", "rev-parse", "HEAD"],
            cwd=str(repo_root),
            stderr=subprocess.DEVNULL,
        )
        return out.decode().strip()
    except (OSError, subprocess.CalledProcessError):
        return "unknown"


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except ValueError:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def _trace_id() -> str:
    return (getattr(g, "request_id", "") or "").strip()


def create_app(config: dict | None = None):
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("SOLELY_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")

    # Basic config
    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # Ensure instance dir exists for SQLite paths
    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)

    # Database config
    database_url = (config or {}).get("SQLALCHEMY_DATABASE_URI") or os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        database_url = "sqlite:///instance/solely.db"
    # Heroku-style URLs still use the removed postgres:// scheme.
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    if database_url.startswith("sqlite://") and database_url != "sqlite:///:memory:":
        canonical_path = os.path.join(instance_dir, os.path.basename(database_url.split("///", 1)[-1]) or "solely.db")
        database_url = f"sqlite:///{canonical_path.replace(os.sep, '/')}"
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    engine_options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_size": _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s pool_recycle=%s",
            int(engine_options.get("pool_size", 0) or 0),
            int(engine_options.get("max_overflow", 0) or 0),
            int(engine_options.get("pool_timeout", 0) or 0),
            int(engine_options.get("pool_recycle", 0) or 0),
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options
    if config:
        app.config.update({k: v for k, v in config.items() if k != "SQLALCHEMY_DATABASE_URI"})

    # CORS configuration
    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)
    init_otel(app, enabled=(os.getenv("OTEL_ENABLED") or "").strip() == "1")

    @app.errorhandler(ServiceError)
    def _service_error(error: ServiceError):
        db.session.rollback()
        payload = error.to_dict()
        rid = _trace_id()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), int(error.status)

    @app.errorhandler(IntegrationDisabledError)
    @app.errorhandler(IntegrationMisconfiguredError)
    def _integration_unavailable(error: Exception):
        db.session.rollback()
        code, _, detail = str(error).partition(":")
        app.logger.warning(json.dumps({"event": "integration_unavailable", "error": code, "detail": detail, "path": request.path}))
        payload = {"ok": False, "error": code or "INTEGRATION_UNAVAILABLE", "message": detail or "Integration unavailable"}
        rid = _trace_id()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), 503

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        # Keep API failures JSON-only for predictable frontend handling.
        if not request.path.startswith("/api/"):
            return error
        payload = {
            "ok": False,
            "error": error.name,
            "message": error.description or error.name,
            "status": int(error.code or 500),
        }
        rid = _trace_id()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), int(error.code or 500)

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        db.session.rollback()
        app.logger.exception("unhandled_exception path=%s", request.path)
        payload = {
            "ok": False,
            "error": "InternalServerError",
            "message": "Internal server error",
            "status": 500,
        }
        rid = _trace_id()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), 500

    # Register API routes
    app.register_blueprint(auth_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(vendor_bp)
    app.register_blueprint(disputes_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(admin_ops_bp)
    app.register_blueprint(share_bp)

    # Health check
    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            db_state = "fail"
            msg = str(e)
            if msg:
                db_error = (msg[:300] + "...") if len(msg) > 300 else msg
        payload = {
            "ok": True,
            "service": "solely-backend",
            "env": env,
            "db": db_state,
            "git_sha": _resolve_git_sha(),
            "alembic_head": _resolve_alembic_head(),
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.get("/")
    def root():
        return jsonify({
            "ok": True,
            "service": "solely-backend",
            "env": env,
        })

    @app.get("/api/version")
    def version():
        return jsonify({
            "ok": True,
            "alembic_head": _resolve_alembic_head(),
            "git_sha": _resolve_git_sha(),
        })

    @app.before_request
    def _capture_auth_context():
        g.auth_user_id = None
        g.auth_role = None
        token = get_bearer_token(request.headers.get("Authorization", ""))
        if not token:
            return
        payload = decode_token(token)
        if not payload:
            return
        try:
            g.auth_user_id = int(payload.get("sub"))
        except (TypeError, ValueError):
            return
        g.auth_role = (payload.get("role") or "buyer").strip().lower()

    def _rate_limited_response(retry_after_seconds: int):
        retry_after = int(max(1, retry_after_seconds or 1))
        payload = {
            "ok": False,
            "error": "RATE_LIMITED",
            "message": "Too many requests. Please retry later.",
            "retry_after": retry_after,
        }
        rid = _trace_id()
        if rid:
            payload["trace_id"] = rid
        resp = jsonify(payload)
        resp.status_code = 429
        resp.headers["Retry-After"] = str(retry_after)
        return resp

    @app.before_request
    def _auth_rate_limit_guard():
        if bool(app.config.get("TESTING")):
            allow_in_tests = (os.getenv("RATE_LIMIT_IN_TESTS") or "").strip().lower() in ("1", "true", "yes", "on")
            if not allow_in_tests:
                return None
        if not rate_limit_enabled(True):
            return None
        if (request.method or "GET").upper() == "OPTIONS":
            return None
        if not (request.path or "").startswith("/api/auth"):
            return None
        subject = resolve_client_ip(request, trusted_proxy=trust_proxy_headers(False))
        ok_minute, retry_minute = check_limit(f"tier:auth:minute:{subject}", limit=10, window_seconds=60)
        if not ok_minute:
            return _rate_limited_response(retry_minute)
        ok_hour, retry_hour = check_limit(f"tier:auth:hour:{subject}", limit=30, window_seconds=3600)
        if not ok_hour:
            return _rate_limited_response(retry_hour)
        return None

    @app.before_request
    def _reset_db_session():
        db.session.rollback()

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    @app.cli.command("bootstrap-admin")
    def bootstrap_admin():
        env = (os.getenv("SOLELY_ENV") or os.getenv("FLASK_ENV") or "dev").strip().lower()
        allow = (os.getenv("ALLOW_ADMIN_BOOTSTRAP") or "").strip() == "1"
        if env not in ("dev", "development", "local", "test") and not allow:
            raise click.ClickException("Admin bootstrap disabled. Set ALLOW_ADMIN_BOOTSTRAP=1 or SOLELY_ENV=dev.")

        email = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
        password = (os.getenv("ADMIN_PASSWORD") or "").strip()
        if not email or not password:
            raise click.ClickException("ADMIN_EMAIL and ADMIN_PASSWORD must be set.")

        u = User.query.filter_by(email=email).first()
        try:
            if u:
                u.set_password(password)
                u.role = "admin"
            else:
                u = User(name=email.split("@")[0], email=email, role="admin")
                u.set_password(password)
                db.session.add(u)
            db.session.commit()
            click.echo(f"admin_bootstrap_ok {u.email}")
        except Exception as e:
            db.session.rollback()
            raise click.ClickException(f"Failed to bootstrap admin: {e}")

    @app.cli.command("admin-reset-password")
    @click.option("--email", "email", required=False, help="Admin email to reset")
    @click.option("--password", "password", required=False, help="New password")
    def admin_reset_password(email: str | None, password: str | None):
        email = (email or os.getenv("ADMIN_EMAIL") or "").strip().lower()
        password = (password or os.getenv("ADMIN_PASSWORD") or "").strip()
        if not email or not password:
            raise click.ClickException("Provide --email/--password or set ADMIN_EMAIL and ADMIN_PASSWORD.")

        u = User.query.filter_by(email=email).first()
        if not u:
            raise click.ClickException("Admin user not found.")
        if (getattr(u, "role", "") or "").lower() != "admin":
            raise click.ClickException("Target user is not admin.")

        u.set_password(password)
        db.session.commit()
        click.echo(f"admin_password_reset_ok {u.email}")

    @app.cli.command("run-job")
    @click.argument("job_name")
    def run_job_command(job_name: str):
        from app.jobs.registry import JOBS, run_job

        if job_name not in JOBS:
            raise click.ClickException(f"Unknown job {job_name}. Known jobs: {', '.join(sorted(JOBS))}")
        click.echo(json.dumps(run_job(job_name), default=str))

    return app
