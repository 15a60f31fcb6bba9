"""
Admission pipeline for login, signup and password-reset attempts.

Stages run in a fixed order (rate limit, bot protection, email, IP, threat)
and the first hard denial wins. If every stage allows, their confidences are
merged into one verdict. Every verdict is recorded back into the threat
history and the action's rate limiter.
"""
import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from security.bot_detection import BotDetector, HoneypotSpec, HoneypotTrap
from security.captcha import CaptchaChallenge, CaptchaStore
from security.context import DenialKind, SecurityAction, SecurityCheckResult, SecurityContext
from security.email_validation import EmailValidator, calculate_reputation_score
from security.ip_reputation import HeuristicAnonymizerDetector, IPReputationAnalyzer
from security.rate_limit import RateLimiter, build_rate_limiters
from security.settings import setting
from security.threat_analysis import ThreatAnalyzer, ThreatEvent

logger = logging.getLogger(__name__)

SYSTEM_FAILURE_REASON = "Security system temporarily unavailable"
SOFT_FAIL_CONFIDENCE = 0.5


class SecurityService:
    def __init__(
        self,
        rate_limiters: Dict[str, RateLimiter],
        bot_detector: BotDetector,
        honeypot: HoneypotTrap,
        email_validator: EmailValidator,
        ip_analyzer: IPReputationAnalyzer,
        threat_analyzer: ThreatAnalyzer,
        captcha_store: CaptchaStore,
        event_sink: Optional[Callable[[ThreatEvent], None]] = None,
        config=None,
        clock: Callable[[], float] = time.time,
    ):
        self.rate_limiters = rate_limiters
        self.bot_detector = bot_detector
        self.honeypot = honeypot
        self.email_validator = email_validator
        self.ip_analyzer = ip_analyzer
        self.threat_analyzer = threat_analyzer
        self.captcha_store = captcha_store
        self.event_sink = event_sink
        self._clock = clock

        self.bot_soft_threshold = float(setting("BOT_SOFT_SIGNAL_THRESHOLD", config))
        self.email_min_reputation = float(setting("EMAIL_MIN_REPUTATION", config))
        self.email_verification_reputation = float(setting("EMAIL_VERIFICATION_REPUTATION", config))
        self.ip_min_reputation = float(setting("IP_MIN_REPUTATION", config))
        self.ip_vpn_factor = float(setting("IP_VPN_CONFIDENCE_FACTOR", config))
        self.ip_medium_factor = float(setting("IP_MEDIUM_RISK_CONFIDENCE_FACTOR", config))
        self.threat_deny_score = float(setting("THREAT_DENY_SCORE", config))
        self.threat_challenge_score = float(setting("THREAT_CHALLENGE_SCORE", config))
        self.threat_report_score = float(setting("THREAT_REPORT_SCORE", config))
        self.threat_challenge_confidence = float(setting("THREAT_CHALLENGE_CONFIDENCE", config))
        self.combined_captcha_confidence = float(setting("COMBINED_CAPTCHA_CONFIDENCE", config))
        self.trusted_confidence = float(setting("TRUSTED_CONFIDENCE", config))

        self._sweep_intervals = {
            "rate_limits": float(setting("RATE_LIMIT_SWEEP_SECONDS", config)),
            "threats": float(setting("THREAT_SWEEP_SECONDS", config)),
            "ip_cache": float(setting("IP_CACHE_TTL_SECONDS", config)),
            "captcha": float(setting("CAPTCHA_TTL_SECONDS", config)),
        }
        self._last_sweep = {name: clock() for name in self._sweep_intervals}
        self._sweep_lock = threading.Lock()

    @classmethod
    def from_config(cls, config=None, event_sink=None, clock: Callable[[], float] = time.time):
        validator = EmailValidator()
        for domain in setting("EXTRA_DISPOSABLE_DOMAINS", config) or ():
            validator.add_disposable_domain(domain)

        return cls(
            rate_limiters=build_rate_limiters(config, clock=clock),
            bot_detector=BotDetector(
                min_interaction_ms=float(setting("BOT_MIN_INTERACTION_MS", config)),
                max_typing_speed=float(setting("BOT_MAX_TYPING_SPEED", config)),
                bot_threshold=float(setting("BOT_CONFIDENCE_THRESHOLD", config)),
            ),
            honeypot=HoneypotTrap(setting("HONEYPOT_FIELD", config)),
            email_validator=validator,
            ip_analyzer=IPReputationAnalyzer(
                malicious_ranges=setting("IP_MALICIOUS_RANGES", config),
                cache_ttl_seconds=float(setting("IP_CACHE_TTL_SECONDS", config)),
                anonymizer_detector=HeuristicAnonymizerDetector(setting("TOR_EXIT_NODES", config) or ()),
                clock=clock,
            ),
            threat_analyzer=ThreatAnalyzer(
                history_seconds=float(setting("THREAT_HISTORY_SECONDS", config)),
                analysis_window_seconds=float(setting("THREAT_ANALYSIS_WINDOW_SECONDS", config)),
                max_events_per_ip=int(setting("THREAT_MAX_EVENTS_PER_IP", config)),
                clock=clock,
            ),
            captcha_store=CaptchaStore(
                ttl_seconds=float(setting("CAPTCHA_TTL_SECONDS", config)),
                hash_rounds=int(setting("CAPTCHA_HASH_ROUNDS", config)),
                max_pending=int(setting("CAPTCHA_MAX_PENDING", config)),
                clock=clock,
            ),
            event_sink=event_sink,
            config=config,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def perform_security_check(self, context: SecurityContext) -> SecurityCheckResult:
        try:
            self.maybe_sweep()
            result = self._run_pipeline(context)
        except Exception:
            logger.exception("Security check failed for %s (%s)", context.ip, context.action)
            return SecurityCheckResult.deny(
                DenialKind.SYSTEM_FAILURE,
                [SYSTEM_FAILURE_REASON],
                confidence=0.0,
                actions=["Please try again later"],
            )

        self._record(context, result)
        return result

    def _run_pipeline(self, context: SecurityContext) -> SecurityCheckResult:
        results: List[SecurityCheckResult] = []

        rate = self.check_rate_limit(context)
        if not rate.allowed:
            return rate
        results.append(rate)

        bot = self._guarded("Bot analysis", self.check_bot_protection, context)
        if not bot.allowed:
            return bot
        results.append(bot)

        if context.email:
            email = self._guarded("Email analysis", self.check_email, context)
            if not email.allowed:
                return email
            results.append(email)

        ip = self._guarded("IP analysis", self.check_ip_reputation, context)
        if not ip.allowed:
            return ip
        results.append(ip)

        threat = self._guarded("Threat analysis", self.check_threat, context)
        if not threat.allowed:
            return threat
        results.append(threat)

        return self.combine(results)

    def _guarded(self, label: str, stage, context: SecurityContext) -> SecurityCheckResult:
        try:
            return stage(context)
        except Exception:
            logger.exception("%s failed for %s; continuing with reduced confidence", label, context.ip)
            return SecurityCheckResult.allow(
                SOFT_FAIL_CONFIDENCE,
                [f"{label} unavailable"],
                requires_captcha=True,
            )

    def check_rate_limit(self, context: SecurityContext) -> SecurityCheckResult:
        limiter = self._limiter_for(context.action)
        decision = limiter.check_limit(context.identifier)
        if not decision.allowed:
            return SecurityCheckResult.deny(
                DenialKind.RATE_LIMITED,
                ["Too many attempts"],
                confidence=1.0,
                actions=["Please wait before trying again"],
                retry_after=decision.retry_after,
            )
        return SecurityCheckResult.allow(1.0)

    def check_bot_protection(self, context: SecurityContext) -> SecurityCheckResult:
        if self.honeypot.is_trapped(context.form_data):
            logger.warning("Honeypot field filled from %s", context.ip)
            return SecurityCheckResult.deny(
                DenialKind.BOT_DETECTED,
                ["Bot detected via honeypot"],
                confidence=1.0,
                actions=["Access denied"],
            )

        if context.interaction is None:
            return SecurityCheckResult.allow(1.0)

        detection = self.bot_detector.detect_bot(context.user_agent, context.interaction)
        if detection.is_bot:
            return SecurityCheckResult.deny(
                DenialKind.BOT_DETECTED,
                detection.reasons,
                confidence=detection.confidence,
                actions=["Complete CAPTCHA verification"],
                requires_captcha=True,
            )

        confidence = 1.0
        reasons = []
        if detection.confidence > self.bot_soft_threshold:
            confidence -= detection.confidence * 0.3
            reasons.append("Suspicious interaction patterns detected")
        return SecurityCheckResult.allow(max(confidence, 0.1), reasons)

    def check_email(self, context: SecurityContext) -> SecurityCheckResult:
        validation = self.email_validator.validate_email(context.email)
        if not validation.is_valid:
            kind = DenialKind.DISPOSABLE_EMAIL if validation.disposable else DenialKind.INVALID_EMAIL
            return SecurityCheckResult.deny(
                kind,
                validation.errors,
                confidence=1.0,
                actions=["Please use a valid email address"],
            )

        reputation = calculate_reputation_score(context.email)
        if reputation < self.email_min_reputation:
            return SecurityCheckResult.deny(
                DenialKind.LOW_REPUTATION_EMAIL,
                ["Email domain has low reputation"],
                confidence=0.8,
                actions=["Please use a different email address"],
            )

        result = SecurityCheckResult.allow(validation.score)
        if reputation < self.email_verification_reputation:
            result.requires_email_verification = True
            result.actions.append("Email verification will be required")
        return result

    def check_ip_reputation(self, context: SecurityContext) -> SecurityCheckResult:
        info = self.ip_analyzer.analyze_ip(context.ip, context.user_agent)

        if info.threat_level == "high":
            return SecurityCheckResult.deny(
                DenialKind.HIGH_RISK_IP,
                ["IP address flagged as high risk"],
                confidence=0.9,
                actions=["Access denied from this IP address"],
            )
        if info.reputation < self.ip_min_reputation:
            return SecurityCheckResult.deny(
                DenialKind.HIGH_RISK_IP,
                ["IP address has poor reputation"],
                confidence=0.8,
                actions=["Access restricted from this IP address"],
            )

        result = SecurityCheckResult.allow(info.reputation / 100)
        if info.is_vpn or info.is_proxy:
            result.confidence *= self.ip_vpn_factor
            result.reasons.append("VPN/Proxy detected")
            result.requires_captcha = True
        if info.threat_level == "medium":
            result.confidence *= self.ip_medium_factor
            result.reasons.append("IP address flagged as medium risk")
        return result

    def check_threat(self, context: SecurityContext) -> SecurityCheckResult:
        score = self.threat_analyzer.analyze_threat(
            context.email,
            context.ip,
            context.user_agent,
            context.action.event_type,
        )

        if score.overall > self.threat_deny_score:
            return SecurityCheckResult.deny(
                DenialKind.HIGH_THREAT_SCORE,
                score.risks,
                confidence=0.9,
                actions=["Access denied due to high threat level"],
            )
        if score.overall > self.threat_challenge_score:
            return SecurityCheckResult.allow(
                self.threat_challenge_confidence,
                score.risks,
                actions=["Complete additional verification"],
                requires_captcha=True,
            )
        return SecurityCheckResult.allow(
            max(0.1, 1.0 - score.overall / 100),
            score.risks if score.overall > self.threat_report_score else [],
        )

    def combine(self, results: List[SecurityCheckResult]) -> SecurityCheckResult:
        """
        Merge allowed stage results: the average of the mean and the minimum
        confidence, so one weak signal drags the verdict down.
        """
        confidences = [min(max(r.confidence, 0.0), 1.0) for r in results]
        mean = sum(confidences) / len(confidences)
        combined = (mean + min(confidences)) / 2

        reasons: List[str] = []
        for r in results:
            for reason in r.reasons:
                if reason not in reasons:
                    reasons.append(reason)

        requires_captcha = any(r.requires_captcha for r in results) or combined < self.combined_captcha_confidence
        requires_email_verification = any(r.requires_email_verification for r in results)

        actions = []
        if requires_captcha:
            actions.append("Complete CAPTCHA verification")
        if requires_email_verification:
            actions.append("Email verification required")

        return SecurityCheckResult.allow(
            combined,
            reasons,
            actions=actions,
            requires_captcha=requires_captcha,
            requires_email_verification=requires_email_verification,
        )

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def _severity(self, result: SecurityCheckResult) -> str:
        if result.allowed and result.confidence > self.trusted_confidence:
            return "low"
        if not result.allowed and result.confidence > self.trusted_confidence:
            return "critical"
        return "medium"

    def _record(self, context: SecurityContext, result: SecurityCheckResult) -> None:
        try:
            event = self.threat_analyzer.record_event(
                type=context.action.event_type,
                severity=self._severity(result),
                source=context.ip,
                user_agent=context.user_agent,
                email=context.email,
                details={
                    "allowed": result.allowed,
                    "confidence": result.confidence,
                    "reasons": list(result.reasons),
                    "requires_captcha": result.requires_captcha,
                    "denial": result.denial.value if result.denial else None,
                },
            )
            success = result.allowed and result.confidence > self.trusted_confidence
            self._limiter_for(context.action).record_attempt(context.identifier, success)
        except Exception:
            logger.exception("Failed to record security event for %s", context.ip)
            return

        if self.event_sink is not None:
            try:
                self.event_sink(event)
            except Exception:
                logger.exception("Security event sink failed for event %s", event.id)

    def _limiter_for(self, action: SecurityAction) -> RateLimiter:
        return self.rate_limiters[SecurityAction(action).value]

    # ------------------------------------------------------------------
    # Challenge utilities and housekeeping
    # ------------------------------------------------------------------

    def create_honeypot(self) -> HoneypotSpec:
        return self.honeypot.create_honeypot()

    def generate_captcha(self) -> CaptchaChallenge:
        return self.captcha_store.generate_challenge()

    def verify_captcha(self, challenge_id: str, answer: str) -> bool:
        return self.captcha_store.verify(challenge_id, answer)

    def get_threat_stats(self) -> Dict[str, int]:
        return self.threat_analyzer.get_threat_stats()

    def sweep(self) -> Dict[str, int]:
        removed = {
            "rate_limits": sum(limiter.sweep() for limiter in self.rate_limiters.values()),
            "threats": self.threat_analyzer.sweep(),
            "ip_cache": self.ip_analyzer.sweep(),
            "captcha": self.captcha_store.sweep(),
        }
        now = self._clock()
        with self._sweep_lock:
            for name in self._last_sweep:
                self._last_sweep[name] = now
        logger.debug("Security sweep removed %s", removed)
        return removed

    def maybe_sweep(self) -> None:
        """
        Run whichever sweeps are due. Called at the start of every check so
        no background timer is needed.
        """
        now = self._clock()
        with self._sweep_lock:
            due = [name for name, last in self._last_sweep.items() if now - last >= self._sweep_intervals[name]]
            for name in due:
                self._last_sweep[name] = now

        for name in due:
            if name == "rate_limits":
                for limiter in self.rate_limiters.values():
                    limiter.sweep()
            elif name == "threats":
                self.threat_analyzer.sweep()
            elif name == "ip_cache":
                self.ip_analyzer.sweep()
            elif name == "captcha":
                self.captcha_store.sweep()

    def reset(self) -> None:
        for limiter in self.rate_limiters.values():
            limiter.reset_all()
        self.threat_analyzer.reset()
        self.ip_analyzer.reset()
        self.captcha_store.reset()
