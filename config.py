import os

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _env_list(name: str):
    raw = os.getenv(name, "")
    return tuple(item.strip() for item in raw.split(",") if item.strip())


class Config:
    # Secrets
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-only-change-me")

    # Token required by the admin-only security endpoints
    SECURITY_ADMIN_TOKEN = os.getenv("SECURITY_ADMIN_TOKEN")

    # SQLite database file stored next to this file as authshield.db
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///" + os.path.join(BASE_DIR, "authshield.db")
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Persist every recorded threat event to the security_events table
    SECURITY_PERSIST_EVENTS = os.getenv("SECURITY_PERSIST_EVENTS", "true").lower() == "true"
    SECURITY_EVENT_RETENTION_DAYS = int(os.getenv("SECURITY_EVENT_RETENTION_DAYS", "30"))

    # Login: 5 attempts per 15 minutes, 1 hour block
    LOGIN_MAX_ATTEMPTS = int(os.getenv("LOGIN_MAX_ATTEMPTS", "5"))
    LOGIN_WINDOW_SECONDS = 15 * 60
    LOGIN_BLOCK_SECONDS = 60 * 60

    # Signup: 3 attempts per hour, 24 hour block
    SIGNUP_MAX_ATTEMPTS = int(os.getenv("SIGNUP_MAX_ATTEMPTS", "3"))
    SIGNUP_WINDOW_SECONDS = 60 * 60
    SIGNUP_BLOCK_SECONDS = 24 * 60 * 60

    # Password reset: 3 attempts per hour, 2 hour block
    PASSWORD_RESET_MAX_ATTEMPTS = int(os.getenv("PASSWORD_RESET_MAX_ATTEMPTS", "3"))
    PASSWORD_RESET_WINDOW_SECONDS = 60 * 60
    PASSWORD_RESET_BLOCK_SECONDS = 2 * 60 * 60

    RATE_LIMIT_SWEEP_SECONDS = 10 * 60

    # Bot protection
    BOT_MIN_INTERACTION_MS = 2000
    BOT_MAX_TYPING_SPEED = 10           # characters per second
    BOT_CONFIDENCE_THRESHOLD = float(os.getenv("BOT_CONFIDENCE_THRESHOLD", "0.6"))
    BOT_SOFT_SIGNAL_THRESHOLD = 0.3
    HONEYPOT_FIELD = os.getenv("HONEYPOT_FIELD", "website_url")

    # Email reputation
    EMAIL_MIN_REPUTATION = 0.3          # below: deny
    EMAIL_VERIFICATION_REPUTATION = 0.7  # below: require verification
    EXTRA_DISPOSABLE_DOMAINS = _env_list("EXTRA_DISPOSABLE_DOMAINS")

    # IP reputation
    IP_CACHE_TTL_SECONDS = 60 * 60
    IP_MIN_REPUTATION = 30
    IP_VPN_CONFIDENCE_FACTOR = 0.7
    IP_MEDIUM_RISK_CONFIDENCE_FACTOR = 0.8
    IP_MALICIOUS_RANGES = (
        ("192.168.0.0", "192.168.255.255", "Private network"),
        ("10.0.0.0", "10.255.255.255", "Private network"),
        ("172.16.0.0", "172.31.255.255", "Private network"),
    )
    TOR_EXIT_NODES = _env_list("TOR_EXIT_NODES")

    # Threat analysis
    THREAT_HISTORY_SECONDS = 24 * 60 * 60
    THREAT_ANALYSIS_WINDOW_SECONDS = 60 * 60
    THREAT_MAX_EVENTS_PER_IP = 100
    THREAT_DENY_SCORE = int(os.getenv("THREAT_DENY_SCORE", "80"))
    THREAT_CHALLENGE_SCORE = int(os.getenv("THREAT_CHALLENGE_SCORE", "60"))
    THREAT_REPORT_SCORE = 30
    THREAT_CHALLENGE_CONFIDENCE = 0.4
    THREAT_SWEEP_SECONDS = 10 * 60

    # Verdict combination
    COMBINED_CAPTCHA_CONFIDENCE = 0.6
    TRUSTED_CONFIDENCE = 0.8

    # CAPTCHA answers live server-side for 5 minutes
    CAPTCHA_TTL_SECONDS = int(os.getenv("CAPTCHA_TTL_SECONDS", "300"))
    CAPTCHA_HASH_ROUNDS = 4
    CAPTCHA_MAX_PENDING = int(os.getenv("CAPTCHA_MAX_PENDING", "10000"))

    # Email verification links
    VERIFICATION_TOKEN_TTL_SECONDS = int(os.getenv("VERIFICATION_TOKEN_TTL_SECONDS", str(24 * 60 * 60)))
    VERIFICATION_URL = os.getenv("VERIFICATION_URL", "http://localhost:3000/verify-email")

    # Email (SMTP)
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USERNAME = os.getenv("SMTP_USERNAME")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD")
    SMTP_FROM_EMAIL = os.getenv("SMTP_FROM_EMAIL")
    SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"

    # Basic app settings
    DEBUG = False
