import pytest

from app import create_app
from config import Config
from models import db
from security.context import InteractionSample, PointerSample, SecurityContext
from security.orchestrator import SecurityService

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
HEADLESS_UA = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) HeadlessChrome/120.0.0.0 Safari/537.36"
)


class FakeClock:
    def __init__(self, start=1_700_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def human_interaction():
    """Eight seconds of form filling with a wandering pointer."""
    path = [(10, 10), (40, 22), (55, 70), (120, 64), (130, 140), (210, 150), (215, 220)]
    return InteractionSample(
        start_time=0,
        end_time=8000,
        text_length=20,
        mouse_movements=tuple(PointerSample(x, y, i * 100) for i, (x, y) in enumerate(path)),
    )


def make_context(**overrides):
    values = dict(
        ip="8.8.8.8",
        user_agent=CHROME_UA,
        action="login",
        email="user@gmail.com",
        form_data={"website_url": ""},
        interaction=human_interaction(),
    )
    values.update(overrides)
    return SecurityContext(**values)


class ConfigForTests(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SECURITY_ADMIN_TOKEN = "test-admin-token"
    SECURITY_PERSIST_EVENTS = True
    SMTP_HOST = None
    VERIFICATION_URL = "https://example.test/verify"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(clock):
    """A fresh SecurityService on default policy with a manual clock."""
    return SecurityService.from_config(clock=clock)


@pytest.fixture
def app():
    app = create_app(ConfigForTests)
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": "test-admin-token"}
