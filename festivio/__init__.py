import os
from flask import Flask

# Load .env only for local/dev. In prod, env vars come from the platform.
if os.getenv("APP_ENV", "development") != "production":
    from dotenv import load_dotenv
    load_dotenv(".env", override=True)


from .config import get_config
from .extensions import limiter
from .observability import init_logging, init_sentry
from .billing.catalog import CatalogError, CatalogRegistry, CatalogWatcher


def _init_catalog(app):
    registry = CatalogRegistry()
    app.extensions["catalog"] = registry

    path = app.config.get("CATALOG_PATH")
    if path and os.path.exists(path):
        try:
            registry.reload_from(path)
        except CatalogError:
            app.logger.exception("Catalog %s could not be loaded; starting with an empty catalog", path)
    else:
        app.logger.warning("Catalog file %s not found; every grant will fail until it exists", path)

    if path and app.config.get("CATALOG_WATCH") and not app.config.get("TESTING"):
        watcher = CatalogWatcher(registry, path, interval=float(app.config.get("CATALOG_POLL_SECONDS", 2)))
        watcher.start()
        app.extensions["catalog_watcher"] = watcher


def create_app():
    app = Flask(__name__)

    # ---- Rate limiting storage configuration ----
    app_env = (os.getenv("APP_ENV", "development") or "development").lower()
    use_redis = app_env in ("staging", "production")
    storage_uri = os.environ.get("REDIS_URL") if use_redis else "memory://"
    if use_redis and not storage_uri:
        # Hard fail in stage/prod so we never silently run without RL storage
        raise RuntimeError("REDIS_URL is required in staging/production for rate limiting")
    app.config["RATELIMIT_STORAGE_URI"] = storage_uri
    app.config.setdefault("RATELIMIT_HEADERS_ENABLED", True)

    # Config: clean, explicit, class-based
    app.config.from_object(get_config())

    def _require(name: str):
        val = os.getenv(name) or app.config.get(name)
        if not val:
            raise RuntimeError(f"Missing required environment variable: {name}")
        return val

    if app_env in ("staging", "production"):
        # Enforce hard requirements at startup (not at import time)
        _require("SECRET_KEY")
        _require("SHOPIFY_STORE")
        _require("SHOPIFY_ADMIN_TOKEN")

    init_logging(app)
    init_sentry(app)

    limiter.init_app(app)
    _init_catalog(app)

    from .blueprints.webhooks import bp as webhooks_bp
    app.register_blueprint(webhooks_bp, url_prefix="/webhooks")

    # Manual grant / inspection routes surface errors instead of acknowledging
    if app.config.get("DEBUG_ROUTES_ENABLED"):
        from .blueprints.debug import bp as debug_bp
        app.register_blueprint(debug_bp)

    @limiter.exempt
    @app.get("/healthz")
    def healthz():
        return {"status": "ok"}, 200

    @app.errorhandler(404)
    def not_found(e):
        return ("Not Found", 404)

    @app.errorhandler(429)
    def too_many_requests(e):
        retry_after = getattr(e, "retry_after", None)
        headers = {}
        payload = {"error": "rate_limited", "code": 429}
        if retry_after is not None:
            headers["Retry-After"] = str(int(retry_after))
            payload["retry_after"] = int(retry_after)
        return (payload, 429, headers)

    from .cli import register_cli
    register_cli(app)

    return app
