from datetime import datetime
from models.db import db


class SecurityEvent(db.Model):
    __tablename__ = "security_events"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(db.String(32), unique=True, nullable=False, index=True)

    event_type = db.Column(db.String(40), nullable=False)  # e.g. login_attempt, signup_attempt
    severity = db.Column(db.String(16), nullable=False, index=True)  # low | medium | high | critical

    ip = db.Column(db.String(64), nullable=False, index=True)
    user_agent = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True, index=True)
    details_json = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
