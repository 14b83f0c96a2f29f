"""
Pytest fixtures for Authenticas backend tests.

Provides test database setup, party/user factories, auth headers, and a
recording stand-in for outbound webhook HTTP.
"""

import json
import threading

import httpx
import pytest

from authenticas import create_app
from authenticas.extensions import db, webhooks
from authenticas.models import Company, CompanyRetailerLink, Retailer, Transaction, User
from authenticas.models.ledger import TRANSACTION_APPROVED
from authenticas.permissions import Role
from authenticas.services import session_service
from authenticas.time_utils import utcnow


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'WEBHOOK_MAX_WORKERS': 2,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        webhooks.shutdown()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


# =============================================================================
# WEBHOOK HTTP
# =============================================================================


class WebhookRecorder:
    """
    Serves canned responses to the dispatcher through httpx.MockTransport.

    statuses queued with respond_with() are used in order, then default_status.
    Exceptions queued with fail_with() are raised instead of responding.
    """

    def __init__(self):
        self.requests = []
        self.sleeps = []
        self.default_status = 200
        self._script = []
        self._lock = threading.Lock()

    def respond_with(self, *outcomes):
        with self._lock:
            self._script.extend(outcomes)

    def fail_with(self, exc):
        self.respond_with(exc)

    def handler(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.requests.append({
                "url": str(request.url),
                "headers": dict(request.headers),
                "json": json.loads(request.content.decode("utf-8")),
            })
            outcome = self._script.pop(0) if self._script else self.default_status
        if isinstance(outcome, Exception):
            raise outcome
        return httpx.Response(outcome, text="ok" if outcome < 300 else "nope")

    def sleep(self, seconds):
        self.sleeps.append(seconds)

    def wait(self):
        assert webhooks.wait_idle(timeout=5), "webhook deliveries did not finish"

    def events(self):
        self.wait()
        return [r["json"]["event"] for r in self.requests]

    def for_url(self, url):
        self.wait()
        return [r for r in self.requests if r["url"] == url]


@pytest.fixture(autouse=True)
def webhook_recorder():
    recorder = WebhookRecorder()
    webhooks.configure(transport=httpx.MockTransport(recorder.handler), sleep=recorder.sleep)
    yield recorder
    webhooks.wait_idle(timeout=5)
    webhooks.configure()


# =============================================================================
# FACTORIES
# =============================================================================


RETAILER_A_HOOK = "https://hooks.retailer-a.test/events"
RETAILER_B_HOOK = "https://hooks.retailer-b.test/events"
COMPANY_HOOK = "https://hooks.company.test/events"


def make_retailer(name, webhook_url=None, is_active=True):
    now = utcnow()
    retailer = Retailer(
        name=name,
        api_key=f"rk_{name.lower().replace(' ', '_')}",
        webhook_url=webhook_url,
        is_active=is_active,
        created_at=now,
        updated_at=now,
    )
    db.session.add(retailer)
    db.session.commit()
    return retailer


def make_company(name, webhook_url=None, is_active=True):
    now = utcnow()
    company = Company(
        name=name,
        api_key=f"ck_{name.lower().replace(' ', '_')}",
        webhook_url=webhook_url,
        is_active=is_active,
        created_at=now,
        updated_at=now,
    )
    db.session.add(company)
    db.session.commit()
    return company


def make_link(company, retailer, status="active"):
    link = CompanyRetailerLink(
        company_id=company.id,
        retailer_id=retailer.id,
        status=status,
        created_at=utcnow(),
    )
    db.session.add(link)
    db.session.commit()
    return link


def make_user(email, role=Role.COMPANY_MEMBER, company=None, retailer=None, limit_cents=0, is_active=True, last_reset_at=None):
    now = utcnow()
    user = User(
        email=email,
        first_name=email.split("@")[0].title(),
        last_name="Test",
        role=role.value,
        company_id=company.id if company else None,
        retailer_id=retailer.id if retailer else None,
        spending_limit_cents=limit_cents,
        spent_this_month_cents=0,
        last_reset_at=last_reset_at or now,
        is_active=is_active,
        created_at=now,
    )
    db.session.add(user)
    db.session.commit()
    return user


def record_spend(user, retailer, amount_cents, timestamp=None):
    """Insert an approved purchase directly into the ledger and keep the cache in step."""
    timestamp = timestamp or utcnow()
    before = user.spent_this_month_cents
    transaction = Transaction(
        user_id=user.id,
        company_id=user.company_id,
        retailer_id=retailer.id,
        amount_cents=amount_cents,
        status=TRANSACTION_APPROVED,
        timestamp=timestamp,
        balance_before_cents=before,
        balance_after_cents=before + amount_cents,
    )
    db.session.add(transaction)
    user.spent_this_month_cents = before + amount_cents
    db.session.commit()
    return transaction


@pytest.fixture(scope='function')
def retailer_a(db_session):
    return make_retailer("Retailer A", webhook_url=RETAILER_A_HOOK)


@pytest.fixture(scope='function')
def retailer_b(db_session):
    return make_retailer("Retailer B", webhook_url=RETAILER_B_HOOK)


@pytest.fixture(scope='function')
def company(db_session):
    return make_company("Acme", webhook_url=COMPANY_HOOK)


@pytest.fixture(scope='function')
def linked(company, retailer_a, retailer_b):
    """Company linked to both retailers; returns the two links."""
    return make_link(company, retailer_a), make_link(company, retailer_b)


@pytest.fixture(scope='function')
def member(company):
    """Company member with a 1000.00 monthly limit."""
    return make_user("member@acme.test", Role.COMPANY_MEMBER, company=company, limit_cents=100_000)


@pytest.fixture(scope='function')
def company_admin(company):
    return make_user("admin@acme.test", Role.COMPANY_ADMIN, company=company)


@pytest.fixture(scope='function')
def operator_a(retailer_a):
    return make_user("ops@retailer-a.test", Role.RETAILER_OPERATOR, retailer=retailer_a)


@pytest.fixture(scope='function')
def operator_b(retailer_b):
    return make_user("ops@retailer-b.test", Role.RETAILER_OPERATOR, retailer=retailer_b)


@pytest.fixture(scope='function')
def platform_operator(db_session):
    return make_user("root@authenticas.test", Role.PLATFORM_OPERATOR)


@pytest.fixture(scope='function')
def auth_headers(db_session):
    """Return a function issuing a bearer session for a user."""
    def _headers(user):
        _session, token = session_service.issue_session(user.id)
        return {"Authorization": f"Bearer {token}"}
    return _headers


def api_key_headers(entity):
    return {"X-API-Key": entity.api_key}


def principal_for(user):
    return session_service.principal_for_user(user)
