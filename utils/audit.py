import json
from datetime import datetime, timedelta

from models import db
from models.security_event import SecurityEvent


def persist_security_event(event) -> SecurityEvent:
    """
    Event sink for SecurityService: writes one ThreatEvent to security_events.
    Must run inside an app context.
    """
    row = SecurityEvent(
        event_id=event.id,
        event_type=event.type,
        severity=event.severity,
        ip=event.source[:64],
        user_agent=event.user_agent[:255] if event.user_agent else None,
        email=event.email,
        details_json=json.dumps(event.details, default=str) if event.details else None,
        occurred_at=datetime.utcfromtimestamp(event.timestamp),
    )
    db.session.add(row)
    db.session.commit()
    return row


def purge_security_events(older_than_days: int) -> int:
    cutoff = datetime.utcnow() - timedelta(days=older_than_days)
    count = SecurityEvent.query.filter(SecurityEvent.occurred_at < cutoff).delete(synchronize_session=False)
    db.session.commit()
    return count
