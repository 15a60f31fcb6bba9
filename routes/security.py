from flask import Blueprint, current_app, jsonify, request

from models.user import User
from security.admin import require_admin_token
from security.context import DenialKind, InvalidSecurityContext
from security.verification import (
    VerificationEmailError,
    confirm_email_verification,
    send_verification_email,
)
from utils.audit import purge_security_events
from utils.blocklist import normalize_domain, normalize_email
from utils.request_context import get_security_service, security_context_from_request

security_bp = Blueprint("security", __name__, url_prefix="/security")


@security_bp.post("/check")
def check():
    try:
        context = security_context_from_request()
    except InvalidSecurityContext as exc:
        return jsonify(error="Invalid security context", details=exc.errors), 400

    result = get_security_service().perform_security_check(context)
    body = jsonify(result.to_dict())

    if result.allowed:
        return body, 200

    if result.denial == DenialKind.RATE_LIMITED:
        body.headers["Retry-After"] = str(result.retry_after or 1)
        return body, 429
    if result.denial == DenialKind.SYSTEM_FAILURE:
        return body, 503
    return body, 403


@security_bp.get("/honeypot")
def honeypot():
    return jsonify(get_security_service().create_honeypot().to_dict()), 200


@security_bp.post("/captcha")
def new_captcha():
    return jsonify(get_security_service().generate_captcha().to_dict()), 201


@security_bp.post("/captcha/verify")
def verify_captcha():
    data = request.get_json(silent=True) or {}
    challenge_id = data.get("id")
    answer = data.get("answer")

    if not isinstance(challenge_id, str) or not isinstance(answer, str):
        return jsonify(error="id and answer are required"), 400

    ok = get_security_service().verify_captcha(challenge_id, answer)
    return jsonify(verified=ok), (200 if ok else 400)


@security_bp.post("/verification/send")
def send_verification():
    data = request.get_json(silent=True) or {}
    email = normalize_email(data.get("email") if isinstance(data.get("email"), str) else "")
    if not email:
        return jsonify(error="email is required"), 400

    user = User.query.filter_by(email=email).first()
    if not user:
        return jsonify(error="User not found"), 404
    if user.email_verified:
        return jsonify(message="Email already verified"), 200

    try:
        send_verification_email(user)
    except VerificationEmailError as exc:
        return jsonify(error=str(exc)), 502

    return jsonify(message="Verification email sent"), 202


@security_bp.get("/verification/confirm")
def confirm_verification():
    user = confirm_email_verification(request.args.get("token", ""))
    if not user:
        return jsonify(error="Invalid or expired token"), 400
    return jsonify(message="Email verified", email=user.email), 200


@security_bp.get("/stats")
@require_admin_token
def stats():
    return jsonify(get_security_service().get_threat_stats()), 200


@security_bp.route("/disposable-domains", methods=["POST", "DELETE"])
@require_admin_token
def disposable_domains():
    data = request.get_json(silent=True) or {}
    domain = normalize_domain(data.get("domain") if isinstance(data.get("domain"), str) else "")
    if not domain or "." not in domain:
        return jsonify(error="A valid domain is required"), 400

    validator = get_security_service().email_validator
    if request.method == "POST":
        validator.add_disposable_domain(domain)
    else:
        validator.remove_disposable_domain(domain)

    return jsonify(domain=domain, blocked=validator.is_domain_blacklisted(domain)), 200


@security_bp.post("/sweep")
@require_admin_token
def sweep():
    removed = get_security_service().sweep()
    days = current_app.config.get("SECURITY_EVENT_RETENTION_DAYS", 30)
    removed["persisted_events"] = purge_security_events(days)
    return jsonify(removed=removed), 200
