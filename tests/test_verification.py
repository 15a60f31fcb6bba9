from datetime import datetime, timedelta

import pytest

from models import db
from models.user import User
from security import verification
from security.verification import (
    EmailNotVerified,
    VerificationEmailError,
    confirm_email_verification,
    require_email_verification,
    send_verification_email,
)


@pytest.fixture
def user(app):
    user = User(email="dev@acme.io")
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def sent(monkeypatch):
    outbox = []
    monkeypatch.setattr(verification, "send_email", lambda to, subject, body: (outbox.append(body) or (True, None)))
    return outbox


class TestVerification:

    def test_unverified_user_is_rejected(self, user):
        with pytest.raises(EmailNotVerified):
            require_email_verification(user)

    def test_only_token_hash_is_stored(self, user, sent):
        token = send_verification_email(user)
        assert user.verification_token_hash
        assert user.verification_token_hash != token
        assert token in sent[0]

    def test_confirm(self, user, sent):
        token = send_verification_email(user)
        assert confirm_email_verification(token) is user
        assert user.email_verified is True
        assert user.email_verified_at is not None
        require_email_verification(user)

    def test_expired_token(self, user, sent):
        token = send_verification_email(user)
        user.verification_expires_at = datetime.utcnow() - timedelta(seconds=1)
        db.session.commit()

        assert confirm_email_verification(token) is None
        assert user.email_verified is False
        assert user.verification_token_hash is None

    def test_mail_failure_raises(self, user):
        with pytest.raises(VerificationEmailError):
            send_verification_email(user)
