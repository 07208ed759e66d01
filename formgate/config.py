import os
import tempfile


def _env_flag(name, default=""):
    return os.environ.get(name, default).lower() in ("1", "true", "yes", "on")


def _env_list(name, default=""):
    raw = os.environ.get(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# Cloudflare's published IPv4 edge ranges. Only peers inside these ranges may
# supply a forwarded client IP when TRUST_PROXY_HEADERS is enabled.
CLOUDFLARE_IPV4_RANGES = [
    "173.245.48.0/20", "103.21.244.0/22", "103.22.200.0/22",
    "103.31.4.0/22", "141.101.64.0/18", "108.162.192.0/18",
    "190.93.240.0/20", "188.114.96.0/20", "197.234.240.0/22",
    "198.41.128.0/17", "162.158.0.0/15", "104.16.0.0/13",
    "104.24.0.0/14", "172.64.0.0/13", "131.0.72.0/22",
]


class Config:
    """Base configuration. Shared across all environments."""

    # --- Required ---
    SECRET_KEY = os.environ.get("SECRET_KEY")

    # --- Origin allow-list ---
    VALID_DOMAINS = _env_list(
        "VALID_DOMAINS", "business-consulting.de,www.business-consulting.de"
    )
    ALLOWED_ORIGINS = _env_list(
        "ALLOWED_ORIGINS",
        "https://business-consulting.de,https://www.business-consulting.de,"
        "http://localhost,http://127.0.0.1",
    )

    # --- reCAPTCHA ---
    RECAPTCHA_SITE_KEY = os.environ.get("RECAPTCHA_SITE_KEY", "")
    RECAPTCHA_SECRET_KEY = os.environ.get("RECAPTCHA_SECRET_KEY")
    RECAPTCHA_VERIFY_URL = os.environ.get(
        "RECAPTCHA_VERIFY_URL", "https://www.google.com/recaptcha/api/siteverify"
    )
    RECAPTCHA_TIMEOUT = float(os.environ.get("RECAPTCHA_TIMEOUT", 10))

    GOOGLE_ANALYTICS_ID = os.environ.get("GOOGLE_ANALYTICS_ID", "")

    # --- Email (SMTP) ---
    MAIL_SMTP_HOST = os.environ.get("SMTP_HOST")
    MAIL_SMTP_PORT = int(os.environ.get("SMTP_PORT", 587))
    MAIL_SMTP_SECURE = os.environ.get("SMTP_SECURE", "tls").lower()  # ssl | tls (STARTTLS)
    MAIL_SMTP_TIMEOUT = float(os.environ.get("SMTP_TIMEOUT", 30))
    MAIL_USERNAME = os.environ.get("SMTP_USERNAME")
    MAIL_PASSWORD = os.environ.get("SMTP_PASSWORD")
    MAIL_FROM_ADDRESS = os.environ.get("ABSENDER_EMAIL")
    MAIL_CONTACT_TO = os.environ.get("EMPFAENGER_EMAIL")       # organization inbox
    MAIL_NOTIFICATION_FROM_NAME = "Kontaktformular"

    # --- HubSpot CRM (optional) ---
    HUBSPOT_API_KEY = os.environ.get("HUBSPOT_API_KEY")
    HUBSPOT_CONTACTS_URL = os.environ.get(
        "HUBSPOT_CONTACTS_URL", "https://api.hubapi.com/crm/v3/objects/contacts"
    )
    HUBSPOT_TIMEOUT = float(os.environ.get("HUBSPOT_TIMEOUT", 5))

    # --- Rate limiting (contact form) ---
    RATE_LIMIT_DIR = os.environ.get(
        "RATE_LIMIT_DIR", os.path.join(tempfile.gettempdir(), "ibc_rate_limit")
    )
    RATE_LIMIT_SALT = os.environ.get("RATE_LIMIT_SALT", "ibc_rate_limit_v1")
    RATE_LIMIT_MAX_REQUESTS = int(os.environ.get("RATE_LIMIT_MAX_REQUESTS", 5))
    RATE_LIMIT_WINDOW = int(os.environ.get("RATE_LIMIT_WINDOW", 3600))
    RATE_LIMIT_MIN_INTERVAL = int(os.environ.get("RATE_LIMIT_MIN_INTERVAL", 30))
    RATE_LIMIT_GC_PROBABILITY = float(os.environ.get("RATE_LIMIT_GC_PROBABILITY", 0.01))
    RATE_LIMIT_GC_MAX_AGE = int(os.environ.get("RATE_LIMIT_GC_MAX_AGE", 86400))

    TRUST_PROXY_HEADERS = _env_flag("TRUST_PROXY_HEADERS")
    TRUSTED_PROXY_RANGES = _env_list("TRUSTED_PROXY_RANGES") or CLOUDFLARE_IPV4_RANGES

    # --- Token endpoint throttling (Flask-Limiter) ---
    CSRF_TOKEN_RATE_LIMIT = os.environ.get("CSRF_TOKEN_RATE_LIMIT", "60 per minute")

    # --- Messages / content ---
    SUPPORTED_LANGUAGES = ("de", "en", "fr")
    DEFAULT_LANGUAGE = "de"

    # --- Uptime monitor ---
    UPTIME_CHECK_TOKEN = os.environ.get("UPTIME_CHECK_TOKEN")
    UPTIME_URL_TO_CHECK = os.environ.get("UPTIME_URL_TO_CHECK")
    UPTIME_ALERT_EMAIL = os.environ.get("UPTIME_ALERT_EMAIL")
    UPTIME_TIMEOUT = float(os.environ.get("UPTIME_TIMEOUT", 10))

    # --- Session / cookies ---
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = "Lax"

    # Settings the contact form cannot work without, mapped to the env var
    # that supplies each one.
    REQUIRED_MAIL_SETTINGS = {
        "MAIL_USERNAME": "SMTP_USERNAME",
        "MAIL_PASSWORD": "SMTP_PASSWORD",
        "MAIL_SMTP_HOST": "SMTP_HOST",
        "RECAPTCHA_SECRET_KEY": "RECAPTCHA_SECRET_KEY",
        "MAIL_CONTACT_TO": "EMPFAENGER_EMAIL",
        "MAIL_FROM_ADDRESS": "ABSENDER_EMAIL",
    }

    @staticmethod
    def validate():
        """Fail fast if required env vars are missing."""
        required = ["SECRET_KEY"] + list(Config.REQUIRED_MAIL_SETTINGS.values())
        missing = [v for v in required if not os.environ.get(v)]
        if missing:
            raise RuntimeError(
                f"Missing required environment variables: {', '.join(missing)}"
            )


class DevConfig(Config):
    """Local development."""

    DEBUG = True
    SESSION_COOKIE_SECURE = False


class TestConfig(Config):
    """Testing: fake secrets, no random sweeps, Flask-Limiter off."""

    TESTING = True
    DEBUG = True
    SECRET_KEY = "test-secret-key-not-for-production"
    RECAPTCHA_SITE_KEY = "site-key-test"
    RECAPTCHA_SECRET_KEY = "recaptcha-secret-test"
    MAIL_SMTP_HOST = "smtp.test.local"
    MAIL_SMTP_PORT = 587
    MAIL_SMTP_SECURE = "tls"
    MAIL_USERNAME = "kontakt@business-consulting.de"
    MAIL_PASSWORD = "smtp-password-test"
    MAIL_FROM_ADDRESS = "kontakt@business-consulting.de"
    MAIL_CONTACT_TO = "vorstand@business-consulting.de"
    HUBSPOT_API_KEY = None
    TRUST_PROXY_HEADERS = False
    RATE_LIMIT_GC_PROBABILITY = 0.0  # sweep only when a test asks for it
    UPTIME_CHECK_TOKEN = "uptime-token-test"
    UPTIME_URL_TO_CHECK = "https://business-consulting.de/"
    UPTIME_ALERT_EMAIL = "it@business-consulting.de"
    RATELIMIT_ENABLED = False  # disable Flask-Limiter in tests
    SESSION_COOKIE_SECURE = False
    SERVER_NAME = "localhost"

    @staticmethod
    def validate():
        """Skip validation in test mode; everything is hardcoded."""
        pass


class ProdConfig(Config):
    """Production."""

    DEBUG = False
    SESSION_COOKIE_SECURE = True


config_by_name = {
    "development": DevConfig,
    "production": ProdConfig,
    "testing": TestConfig,
}
