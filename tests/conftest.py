"""
Global pytest fixtures for the sandbox pool test suite.

Provides:
- An in-memory DynamoDB client and a session that hands it out
- A LeaseStore wired to both, with a controllable clock
- Seed helpers for accounts and leases
"""
import os

import pytest

# Set test environment BEFORE any package imports
os.environ["ACCOUNT_DB"] = "Accounts"
os.environ["LEASE_DB"] = "Leases"
os.environ["AWS_CURRENT_REGION"] = "us-east-1"

from sandbox_pool.core.config import StoreConfig, get_settings  # noqa: E402
from sandbox_pool.db.serialization import marshal  # noqa: E402
from sandbox_pool.db.store import LeaseStore  # noqa: E402
from sandbox_pool.models.account import Account  # noqa: E402
from sandbox_pool.models.lease import Lease  # noqa: E402
from tests.utils import ACCOUNT_TABLE, LEASE_TABLE, FakeDynamoDB, FakeSession  # noqa: E402

FIXED_NOW = 1_700_000_000


class Clock:
    def __init__(self, now: int = FIXED_NOW):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def dynamodb() -> FakeDynamoDB:
    return FakeDynamoDB()


@pytest.fixture
def session(dynamodb: FakeDynamoDB) -> FakeSession:
    return FakeSession(dynamodb)


@pytest.fixture
def store_config() -> StoreConfig:
    return StoreConfig(
        region="us-east-1",
        account_table_name=ACCOUNT_TABLE,
        lease_table_name=LEASE_TABLE,
    )


@pytest.fixture
def store(store_config: StoreConfig, session: FakeSession, clock: Clock) -> LeaseStore:
    return LeaseStore(store_config, session=session, clock=clock)


@pytest.fixture
def seed_account(dynamodb: FakeDynamoDB):
    def _seed(account_id: str = "111", status: str = "Ready", **fields) -> Account:
        account = Account(id=account_id, status=status, **fields)
        dynamodb.seed(ACCOUNT_TABLE, marshal(account))
        return account

    return _seed


@pytest.fixture
def seed_lease(dynamodb: FakeDynamoDB):
    def _seed(
        account_id: str = "111",
        principal_id: str = "u1",
        lease_id: str = "lease-1",
        status: str = "Active",
        **fields,
    ) -> Lease:
        fields.setdefault("expires_on", FIXED_NOW + 86400)
        lease = Lease(
            account_id=account_id,
            principal_id=principal_id,
            id=lease_id,
            status=status,
            **fields,
        )
        dynamodb.seed(LEASE_TABLE, marshal(lease))
        return lease

    return _seed
