"""Shared fixtures: a throwaway SQLite database per test and wired services."""

import sys
from pathlib import Path

import bcrypt
import pytest
import pytest_asyncio

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from api.services.credentials import CredentialService  # noqa: E402
from api.services.notifier import Notifier  # noqa: E402
from database import Database  # noqa: E402
from processor.errors import DeliveryError  # noqa: E402
from processor.identity import IdentityService  # noqa: E402
from processor.lifecycle import PublisherRequestService  # noqa: E402


class FastCredentials(CredentialService):
    """Low bcrypt cost so hashing does not dominate the suite."""

    @staticmethod
    def hash_password(password: str) -> str:
        return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=4)).decode("utf-8")


class FakeNotifier(Notifier):
    def __init__(self, fail: bool = False):
        self.sent: list[tuple[str, str, str]] = []
        self.fail = fail

    async def send(self, to: str, subject: str, body: str):
        if self.fail:
            raise DeliveryError("smtp down")
        self.sent.append((to, subject, body))


def listing_payload(**overrides) -> dict:
    payload = {
        "full_name": "Jane Writer",
        "email": "jane@example.com",
        "company_name": "Example Media",
        "website": "https://example.com",
        "category": "Technology",
        "standard_post_price": 50,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def credentials():
    return FastCredentials(secret_key="test-secret", expire_hours=1)


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await db.connect()
    yield db
    await db.dispose()


@pytest.fixture
def identity(database, credentials, notifier):
    return IdentityService(database, credentials, notifier=notifier, client_url="http://app.test")


@pytest.fixture
def lifecycle(database, credentials):
    return PublisherRequestService(database, credentials=credentials)


@pytest_asyncio.fixture
async def owner(identity):
    return await identity.create_user("Jane Writer", "jane@example.com", "secret123")


@pytest_asyncio.fixture
async def admin(identity):
    return await identity.create_user(
        "Site Admin", "admin@example.com", "secret123", role="admin", allow_any_role=True,
    )
