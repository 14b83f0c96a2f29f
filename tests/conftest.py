# Authenticas System Test Suite - Shared Configuration and Fixtures
#
# This module provides:
# - A live backend server per test run (ephemeral SQLite database)
# - Seeded parties: one company linked to two retailers, users per role
# - Authentication helpers (bearer sessions and entity API keys)
# - Failure message formatting
#
# These tests exercise the real HTTP stack. The in-process unit tests live in
# backend/tests and run by default; this suite is run with:
#     python -m tests.run smoke

import os
import sys
import time
import tempfile
import subprocess
import shutil
from pathlib import Path
from typing import Generator, Optional, Dict, Any
from dataclasses import dataclass, field

import pytest
import httpx

# Add backend to path for imports
REPO_ROOT = Path(__file__).parent.parent
BACKEND_DIR = REPO_ROOT / "backend"
sys.path.insert(0, str(BACKEND_DIR))


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class TestConfig:
    """Test configuration with environment variable overrides."""
    backend_base_url: str = os.environ.get("TEST_BACKEND_URL", "http://127.0.0.1:5001")

    # Timeouts
    request_timeout: float = float(os.environ.get("TEST_REQUEST_TIMEOUT", "30"))
    server_startup_timeout: float = float(os.environ.get("TEST_SERVER_STARTUP_TIMEOUT", "30"))

    # Concurrency (for stress tests)
    stress_users: int = int(os.environ.get("TEST_STRESS_USERS", "10"))
    stress_duration: int = int(os.environ.get("TEST_STRESS_DURATION", "60"))


@dataclass
class SeedData:
    """Ids and credentials created by ServerManager.initialize_db."""
    company_id: int = 0
    company_key: str = ""
    retailer_ids: Dict[str, int] = field(default_factory=dict)
    retailer_keys: Dict[str, str] = field(default_factory=dict)
    user_ids: Dict[str, int] = field(default_factory=dict)
    tokens: Dict[str, str] = field(default_factory=dict)


# =============================================================================
# FAILURE MESSAGE HELPER
# =============================================================================

class TestFailure(Exception):
    """
    Custom exception with detailed, human-readable failure messages.

    Structure:
    1. Scenario: What was being tested
    2. Expected: What should have happened
    3. Actual: What actually happened
    4. Likely Cause: Most probable reason for failure
    5. Code Location: Where to look in the codebase
    """

    def __init__(
        self,
        scenario: str,
        expected: str,
        actual: str,
        likely_cause: str,
        code_location: str,
        response: Optional[httpx.Response] = None,
        extra_context: Optional[Dict[str, Any]] = None
    ):
        self.scenario = scenario
        self.expected = expected
        self.actual = actual
        self.likely_cause = likely_cause
        self.code_location = code_location
        self.response = response
        self.extra_context = extra_context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        lines = [
            "",
            "=" * 80,
            "TEST FAILURE DETAILS",
            "=" * 80,
            f"SCENARIO: {self.scenario}",
            "-" * 80,
            f"EXPECTED: {self.expected}",
            f"ACTUAL: {self.actual}",
            "-" * 80,
            f"LIKELY CAUSE: {self.likely_cause}",
            f"CODE LOCATION: {self.code_location}",
        ]

        if self.response is not None:
            lines.extend([
                "-" * 80,
                f"HTTP STATUS: {self.response.status_code}",
                f"RESPONSE BODY: {self.response.text[:1000]}",
            ])

        if self.extra_context:
            lines.append("-" * 80)
            lines.append("EXTRA CONTEXT:")
            for key, value in self.extra_context.items():
                lines.append(f"  {key}: {value}")

        lines.append("=" * 80)
        return "\n".join(lines)


def assert_response(
    response: httpx.Response,
    expected_status: int,
    scenario: str,
    code_location: str,
    expected_body_contains: Optional[str] = None
):
    """
    Assert HTTP response status and optionally body content.
    Raises TestFailure with detailed message on failure.
    """
    if response.status_code != expected_status:
        raise TestFailure(
            scenario=scenario,
            expected=f"HTTP {expected_status}",
            actual=f"HTTP {response.status_code}",
            likely_cause=_infer_cause(response),
            code_location=code_location,
            response=response
        )

    if expected_body_contains and expected_body_contains not in response.text:
        raise TestFailure(
            scenario=scenario,
            expected=f"Response body contains: {expected_body_contains}",
            actual=f"Response body: {response.text[:500]}",
            likely_cause="Response format changed or wrong endpoint hit",
            code_location=code_location,
            response=response
        )


def _infer_cause(response: httpx.Response) -> str:
    """Infer likely cause from response status/body."""
    if response.status_code == 401:
        return "Authentication failed - token or API key invalid, revoked or expired"
    elif response.status_code == 403:
        try:
            reason = response.json().get("reason")
        except ValueError:
            reason = None
        if reason:
            return f"Purchase denied by policy ({reason})"
        return "Permission denied - caller lacks the capability or is out of scope"
    elif response.status_code == 404:
        return "Resource not found - wrong ID, or verification referenced a missing party"
    elif response.status_code == 400:
        return "Invalid request - missing required field or validation failed"
    elif response.status_code == 409:
        return "Conflict - duplicate link or user email"
    elif response.status_code == 500:
        return "Server error - check backend logs for stack trace"
    else:
        return f"Unexpected status code {response.status_code}"


# =============================================================================
# HTTP CLIENT WITH AUTH HELPERS
# =============================================================================

class APIClient:
    """
    HTTP client wrapper with authentication and convenience methods.

    A bearer token wins over an API key when both are set, matching the server.
    """

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(timeout=timeout)
        self.token: Optional[str] = None
        self.api_key: Optional[str] = None

    def _headers(self, extra: Optional[Dict] = None) -> Dict:
        """Build request headers with optional auth."""
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        if extra:
            headers.update(extra)
        return headers

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.get(
            f"{self.base_url}{path}",
            headers=self._headers(),
            params=params,
            **kwargs
        )

    def post(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.post(
            f"{self.base_url}{path}",
            headers=self._headers(),
            json=json,
            **kwargs
        )

    def put(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.put(
            f"{self.base_url}{path}",
            headers=self._headers(),
            json=json,
            **kwargs
        )

    def delete(self, path: str, **kwargs) -> httpx.Response:
        return self.client.delete(
            f"{self.base_url}{path}",
            headers=self._headers(),
            **kwargs
        )

    def use_token(self, token: Optional[str]) -> "APIClient":
        self.token = token
        self.api_key = None
        return self

    def use_api_key(self, api_key: Optional[str]) -> "APIClient":
        self.api_key = api_key
        self.token = None
        return self

    def verify(self, user_id: int, company_id: int, retailer_id: int, amount) -> httpx.Response:
        return self.post("/api/transactions/verify", json={
            "userId": user_id,
            "companyId": company_id,
            "retailerId": retailer_id,
            "amount": amount,
        })

    def close(self):
        """Close the HTTP client."""
        self.client.close()


# =============================================================================
# SERVER MANAGEMENT
# =============================================================================

class ServerManager:
    """
    Manages Flask backend server lifecycle for tests.
    """

    def __init__(self, config: TestConfig):
        self.config = config
        self.process: Optional[subprocess.Popen] = None
        self.db_file: Optional[Path] = None

    def start(self) -> bool:
        """Start the Flask server with test database."""
        temp_dir = tempfile.mkdtemp(prefix="authenticas_test_")
        self.db_file = Path(temp_dir) / "test_authenticas.sqlite3"

        env = os.environ.copy()
        env["DATABASE_URL"] = f"sqlite:///{self.db_file}"
        env["FLASK_APP"] = "wsgi.py"
        env["LOG_LEVEL"] = "WARNING"

        self.process = subprocess.Popen(
            [sys.executable, "-m", "flask", "run", "--port", "5001", "--with-threads"],
            cwd=str(BACKEND_DIR),
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

        return self._wait_for_server()

    def _wait_for_server(self) -> bool:
        """Wait for server to be responsive."""
        start_time = time.time()
        while time.time() - start_time < self.config.server_startup_timeout:
            try:
                response = httpx.get(f"{self.config.backend_base_url}/health", timeout=2.0)
                if response.status_code in (200, 503):  # 503 means degraded but running
                    return True
            except (httpx.ConnectError, httpx.TimeoutException):
                pass
            time.sleep(0.5)
        return False

    def stop(self):
        """Stop the Flask server and cleanup."""
        if self.process:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()
            self.process = None

        if self.db_file and self.db_file.parent.exists():
            shutil.rmtree(self.db_file.parent, ignore_errors=True)

    def initialize_db(self) -> SeedData:
        """
        Create the schema and seed parties directly through the service layer.

        Layout:
        - Company "System Co" linked to retailers "north" and "south"
        - platform operator, company admin, member (limit 1000.00),
          and one operator per retailer
        """
        from authenticas import create_app
        from authenticas.extensions import db
        from authenticas.models import Company, Retailer, User
        from authenticas.permissions import Role
        from authenticas.services import directory_service, link_service, session_service
        from authenticas.time_utils import utcnow

        app = create_app({"SQLALCHEMY_DATABASE_URI": f"sqlite:///{self.db_file}"})
        seed = SeedData()

        with app.app_context():
            db.create_all()

            now = utcnow()
            operator = User(
                email="operator@system.test",
                role=Role.PLATFORM_OPERATOR.value,
                last_reset_at=now,
                created_at=now,
            )
            db.session.add(operator)
            db.session.commit()
            actor = session_service.principal_for_user(operator)
            seed.user_ids["operator"] = operator.id

            company, seed.company_key = directory_service.create_party(Company, {"name": "System Co"}, actor.actor_id)
            seed.company_id = company.id

            for label in ("north", "south"):
                retailer, key = directory_service.create_party(Retailer, {"name": f"{label.title()} Store"}, actor.actor_id)
                seed.retailer_ids[label] = retailer.id
                seed.retailer_keys[label] = key
                link_service.create_link(company.id, retailer.id, actor.actor_id)
                retailer_operator = directory_service.create_user(actor, {
                    "email": f"ops@{label}.test",
                    "role": Role.RETAILER_OPERATOR.value,
                    "retailerId": retailer.id,
                })
                seed.user_ids[f"{label}_operator"] = retailer_operator.id

            for label, role, limit in (
                ("admin", Role.COMPANY_ADMIN, 0),
                ("member", Role.COMPANY_MEMBER, 1000),
            ):
                user = directory_service.create_user(actor, {
                    "email": f"{label}@system.test",
                    "role": role.value,
                    "companyId": company.id,
                    "spendingLimit": limit,
                })
                seed.user_ids[label] = user.id

            for label, user_id in seed.user_ids.items():
                _session, token = session_service.issue_session(user_id, ttl_hours=4)
                seed.tokens[label] = token

            db.session.remove()
            db.engine.dispose()

        return seed


# =============================================================================
# PYTEST FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration."""
    return TestConfig()


@pytest.fixture(scope="session")
def server_manager(test_config: TestConfig) -> Generator[ServerManager, None, None]:
    """
    Manage test server lifecycle.
    Server is started once per test session.
    """
    manager = ServerManager(test_config)
    if not manager.start():
        manager.stop()
        pytest.fail("Failed to start test server")
    yield manager
    manager.stop()


@pytest.fixture(scope="session")
def seed(server_manager: ServerManager) -> SeedData:
    """Seed the live server's database once per session."""
    return server_manager.initialize_db()


@pytest.fixture(scope="session")
def api_client(test_config: TestConfig, seed: SeedData) -> Generator[APIClient, None, None]:
    client = APIClient(test_config.backend_base_url, timeout=test_config.request_timeout)
    yield client
    client.close()


@pytest.fixture
def client(api_client: APIClient) -> APIClient:
    """
    Provide API client for each test.
    Clears any existing auth state.
    """
    return api_client.use_token(None)


@pytest.fixture
def north_client(client: APIClient, seed: SeedData) -> APIClient:
    """Retailer 'north' authenticated with its API key."""
    return client.use_api_key(seed.retailer_keys["north"])


@pytest.fixture
def session_client(client: APIClient, seed: SeedData):
    """Return a function switching the client to a seeded user's bearer token."""
    def _as(label: str) -> APIClient:
        return client.use_token(seed.tokens[label])
    return _as


# =============================================================================
# TEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "smoke: Quick smoke tests for critical paths")
    config.addinivalue_line("markers", "verify: Purchase verification tests")
    config.addinivalue_line("markers", "disconnect: Disconnect workflow tests")
    config.addinivalue_line("markers", "rbac: Role-based access control tests")
    config.addinivalue_line("markers", "stress: Load/stress tests")
