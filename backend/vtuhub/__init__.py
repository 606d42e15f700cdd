import os

from flask import Flask, jsonify
from sqlalchemy import text

from vtuhub.config import Config, _normalize_database_url
from vtuhub.errors import VtuError
from vtuhub.extensions import db, migrate, cors
from vtuhub.providers.registry import load_registry
from vtuhub.auth import auth_bp
from vtuhub.segments.segment_purchases import purchases_bp
from vtuhub.segments.segment_wallets import wallets_bp
from vtuhub.segments.segment_spin import spin_bp
from vtuhub.segments.segment_admin import admin_bp


def create_app(config_overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    env = (os.getenv("VTU_ENV", "dev") or "dev").strip().lower()
    app.config["VTU_ENV"] = env

    # Production safety checks
    if env in ("prod", "production"):
        secret = (app.config.get("SECRET_KEY") or "").strip()
        if not secret or secret == "dev-secret" or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
        if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        if not (app.config.get("VTU_PROVIDERS") or app.config.get("VTU_PROVIDERS_FILE") or app.config.get("VTU_PROVIDERS_JSON")):
            raise RuntimeError("VTU_PROVIDERS_FILE (or VTU_PROVIDERS_JSON) must be set in production")

    # Ensure instance dir exists for SQLite paths and the scheduler lock
    os.makedirs(Config.INSTANCE_DIR, exist_ok=True)

    app.config["SQLALCHEMY_DATABASE_URI"] = _normalize_database_url(app.config["SQLALCHEMY_DATABASE_URI"])

    # CORS configuration
    origins = app.config.get("CORS_ORIGINS") or []
    if not origins and env not in ("prod", "production"):
        origins = ["*"]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=os.path.join(Config.BACKEND_DIR, "migrations"))

    # Provider config is validated here so a bad entry stops startup
    load_registry(app)

    app.register_blueprint(auth_bp)
    app.register_blueprint(purchases_bp)
    app.register_blueprint(wallets_bp)
    app.register_blueprint(spin_bp)
    app.register_blueprint(admin_bp)

    @app.errorhandler(VtuError)
    def _vtu_error(e):
        db.session.rollback()
        if e.http_status >= 500:
            app.logger.error("request failed: %s", e.message)
        return jsonify(e.to_dict()), e.http_status

    # Health check
    @app.get("/api/health")
    def health():
        db_state = "ok"
        try:
            db.session.execute(text("SELECT 1"))
        except Exception:
            db.session.rollback()
            db_state = "fail"
        return jsonify({
            "ok": True,
            "service": "vtuhub-backend",
            "env": env,
            "db": db_state,
        })

    return app
