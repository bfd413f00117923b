import os


def _flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or default).lower() == "true"


class BaseConfig:
    # Secrets (env in prod; dev/test may use defaults)
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-not-secure")

    # Logging / misc
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Flask-Limiter default: off globally; prefer per-route limits
    RATELIMIT_DEFAULT = None

    # --- Shopify (record store) ---
    SHOPIFY_STORE = os.getenv("SHOPIFY_STORE")
    SHOPIFY_ADMIN_TOKEN = os.getenv("SHOPIFY_ADMIN_TOKEN")
    SHOPIFY_API_VERSION = os.getenv("SHOPIFY_API_VERSION", "2024-10")
    SHOPIFY_HTTP_TIMEOUT = float(os.getenv("SHOPIFY_HTTP_TIMEOUT", "30"))
    SHOPIFY_MAX_RETRIES = int(os.getenv("SHOPIFY_MAX_RETRIES", "2"))

    # Metafield namespace owned by this service on customers and products
    METAFIELD_NAMESPACE = os.getenv("METAFIELD_NAMESPACE", "festivio")

    # --- Subscriptions ---
    NUM_DEFAULT_AGE = os.getenv("NUM_DEFAULT_AGE", "6-9")
    DEFAULT_DISPLAY_NAME = os.getenv("DEFAULT_DISPLAY_NAME", "Enfant")

    # --- Issue catalog ---
    CATALOG_PATH = os.getenv("CATALOG_PATH", "data/catalog.json")
    CATALOG_WATCH = _flag("CATALOG_WATCH", "true")
    CATALOG_POLL_SECONDS = float(os.getenv("CATALOG_POLL_SECONDS", "2"))

    # /grant, /debug/*, /simulate-seal
    DEBUG_ROUTES_ENABLED = _flag("DEBUG_ROUTES_ENABLED", "true")


class DevelopmentConfig(BaseConfig):
    DEBUG = True
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "DEBUG")


class ProductionConfig(BaseConfig):
    DEBUG = False
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "WARNING")
    # Manual grant/debug routes stay off unless explicitly enabled
    DEBUG_ROUTES_ENABLED = _flag("DEBUG_ROUTES_ENABLED", "false")


class TestingConfig(BaseConfig):
    TESTING = True
    DEBUG = True
    CATALOG_WATCH = False
    RATELIMIT_ENABLED = False
    DEBUG_ROUTES_ENABLED = True
    SHOPIFY_STORE = "test-shop.myshopify.com"
    SHOPIFY_ADMIN_TOKEN = "shpat_test"


_ENV_MAP = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}


def get_config():
    env = os.environ.get("APP_ENV", "development").lower()
    return _ENV_MAP.get(env, DevelopmentConfig)
