from typing import Any, Mapping, Optional

from flask import current_app

_DEFAULTS = {
    # Rate limiting, per action
    "LOGIN_MAX_ATTEMPTS": 5,
    "LOGIN_WINDOW_SECONDS": 15 * 60,
    "LOGIN_BLOCK_SECONDS": 60 * 60,
    "SIGNUP_MAX_ATTEMPTS": 3,
    "SIGNUP_WINDOW_SECONDS": 60 * 60,
    "SIGNUP_BLOCK_SECONDS": 24 * 60 * 60,
    "PASSWORD_RESET_MAX_ATTEMPTS": 3,
    "PASSWORD_RESET_WINDOW_SECONDS": 60 * 60,
    "PASSWORD_RESET_BLOCK_SECONDS": 2 * 60 * 60,
    "RATE_LIMIT_SWEEP_SECONDS": 10 * 60,

    # Bot protection
    "BOT_MIN_INTERACTION_MS": 2000,
    "BOT_MAX_TYPING_SPEED": 10,
    "BOT_CONFIDENCE_THRESHOLD": 0.6,
    "BOT_SOFT_SIGNAL_THRESHOLD": 0.3,
    "HONEYPOT_FIELD": "website_url",

    # Email
    "EMAIL_MIN_REPUTATION": 0.3,
    "EMAIL_VERIFICATION_REPUTATION": 0.7,
    "EXTRA_DISPOSABLE_DOMAINS": (),

    # IP reputation
    "IP_CACHE_TTL_SECONDS": 60 * 60,
    "IP_MIN_REPUTATION": 30,
    "IP_VPN_CONFIDENCE_FACTOR": 0.7,
    "IP_MEDIUM_RISK_CONFIDENCE_FACTOR": 0.8,
    "IP_MALICIOUS_RANGES": (
        ("192.168.0.0", "192.168.255.255", "Private network"),
        ("10.0.0.0", "10.255.255.255", "Private network"),
        ("172.16.0.0", "172.31.255.255", "Private network"),
    ),
    "TOR_EXIT_NODES": (),

    # Threat analysis
    "THREAT_HISTORY_SECONDS": 24 * 60 * 60,
    "THREAT_ANALYSIS_WINDOW_SECONDS": 60 * 60,
    "THREAT_MAX_EVENTS_PER_IP": 100,
    "THREAT_DENY_SCORE": 80,
    "THREAT_CHALLENGE_SCORE": 60,
    "THREAT_REPORT_SCORE": 30,
    "THREAT_CHALLENGE_CONFIDENCE": 0.4,
    "THREAT_SWEEP_SECONDS": 10 * 60,

    # Verdict combination
    "COMBINED_CAPTCHA_CONFIDENCE": 0.6,
    "TRUSTED_CONFIDENCE": 0.8,

    # CAPTCHA
    "CAPTCHA_TTL_SECONDS": 5 * 60,
    "CAPTCHA_HASH_ROUNDS": 4,
    "CAPTCHA_MAX_PENDING": 10000,
}


def setting(name: str, config: Optional[Mapping[str, Any]] = None):
    """
    Resolve a policy value: explicit mapping first, then the active Flask
    app config, then the built-in default.
    """
    if config is not None:
        return config.get(name, _DEFAULTS[name])
    try:
        return current_app.config.get(name, _DEFAULTS[name])
    except RuntimeError:
        return _DEFAULTS[name]
