from flask import current_app, request

from security.context import SecurityContext

_FORWARDED_HEADERS = ("X-Forwarded-For", "X-Real-IP", "X-Client-IP", "CF-Connecting-IP")


def client_ip() -> str:
    for header in _FORWARDED_HEADERS:
        value = request.headers.get(header)
        if value:
            # X-Forwarded-For can carry a chain; the first hop is the client
            return value.split(",")[0].strip()
    return request.remote_addr or "unknown"


def client_user_agent() -> str:
    return request.headers.get("User-Agent", "")


def get_security_service():
    return current_app.extensions["security_service"]


def security_context_from_request() -> SecurityContext:
    """
    Raises InvalidSecurityContext when the body is malformed.
    """
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    return SecurityContext.from_payload(data, ip=client_ip(), user_agent=client_user_agent())
