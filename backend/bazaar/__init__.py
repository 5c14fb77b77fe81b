import os
from pathlib import Path

from flask import Flask, g, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from bazaar.extensions import cors, db, migrate
from bazaar.models import User
from bazaar.segments.segment_admin_escrow import admin_escrow_bp
from bazaar.segments.segment_orders_api import orders_bp
from bazaar.segments.segment_seller_orders import seller_orders_bp
from bazaar.settings import env_bool, env_int, env_name, is_production
from bazaar.utils.jwt_utils import decode_token, get_bearer_token
from bazaar.utils.observability import init_sentry, install_request_observers
from bazaar.utils.rate_limit import build_rate_limit_subject, check_limit, rate_limit_enabled


def _resolve_alembic_head() -> str:
    from alembic.config import Config
    from alembic.script import ScriptDirectory

    migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
    cfg = Config(str(migrations_dir / "alembic.ini"))
    cfg.set_main_option("script_location", str(migrations_dir))
    heads = ScriptDirectory.from_config(cfg).get_heads()
    return heads[0] if heads else "unknown"


def _database_url(env: str, instance_dir: str) -> str:
    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        if env in ("prod", "production"):
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        database_url = f"sqlite:///{os.path.join(instance_dir, 'bazaar.db').replace(os.sep, '/')}"
    # Heroku-style URLs are rejected by SQLAlchemy 1.4+.
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    return database_url


def create_app(config: dict | None = None):
    app = Flask(__name__)
    init_sentry(app)

    env = env_name()

    # Production safety checks
    if is_production():
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)

    database_url = _database_url(env, instance_dir)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url
    engine_options = {
        "pool_pre_ping": True,
        "pool_reset_on_return": "rollback",
        "pool_recycle": env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_size": env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s pool_recycle=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
            engine_options["pool_timeout"],
            engine_options["pool_recycle"],
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options
    if config:
        app.config.update(config)

    # CORS configuration
    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    if not origins and not is_production():
        origins = ["*"]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)

    if env_bool("BAZAAR_AUTO_CREATE_TABLES", False):
        with app.app_context():
            db.create_all()
            app.logger.info("schema_auto_created env=%s", env)

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
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), int(error.code or 500)

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        app.logger.exception("unhandled_exception path=%s", request.path)
        db.session.rollback()
        payload = {
            "ok": False,
            "error": "InternalServerError",
            "message": "Internal server error",
            "status": 500,
        }
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        return jsonify(payload), 500

    app.register_blueprint(orders_bp)
    app.register_blueprint(seller_orders_bp)
    app.register_blueprint(admin_escrow_bp)

    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            db_state = "fail"
            db_error = str(e)[:300]
        payload = {
            "ok": True,
            "service": "bazaar-backend",
            "env": env,
            "db": db_state,
            "alembic_head": _resolve_alembic_head(),
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

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
            uid = int(payload.get("sub"))
        except (TypeError, ValueError):
            return
        g.auth_user_id = uid
        user = db.session.get(User, uid)
        if user:
            g.auth_role = (getattr(user, "role", None) or "buyer").strip().lower()

    def _rate_limited_response(retry_after_seconds: int):
        retry_after = int(max(1, retry_after_seconds or 1))
        payload = {
            "ok": False,
            "error": "RATE_LIMITED",
            "message": "Too many requests. Please retry later.",
            "status": 429,
            "retry_after_seconds": retry_after,
        }
        rid = (getattr(g, "request_id", "") or "").strip()
        if rid:
            payload["trace_id"] = rid
        resp = jsonify(payload)
        resp.status_code = 429
        resp.headers["Retry-After"] = str(retry_after)
        return resp

    @app.before_request
    def _global_rate_limit_guard():
        if bool(app.config.get("TESTING")) and not env_bool("RATE_LIMIT_IN_TESTS", False):
            return None
        if not rate_limit_enabled(True):
            return None
        method = (request.method or "GET").strip().upper()
        path = (request.path or "").strip()
        if method == "OPTIONS" or not path.startswith("/api/"):
            return None

        user_id = getattr(g, "auth_user_id", None)
        subject = build_rate_limit_subject(
            scope="user" if user_id is not None else "ip",
            user_id=int(user_id) if user_id is not None else None,
            request_obj=request,
        )
        if method == "GET":
            limit, tier = 120, "browse"
        else:
            limit, tier = 60, "write"
        ok, retry_after = check_limit(f"tier:{tier}:{method}:{path}:{subject}", limit=limit, window_seconds=60)
        if not ok:
            return _rate_limited_response(retry_after)
        return None

    @app.teardown_request
    def _cleanup_session(exc):
        if exc is not None:
            db.session.rollback()

    return app
