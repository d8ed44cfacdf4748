"""
Pytest configuration and shared fixtures for the data-access tests.

Provides:
- An in-memory engine per test
- Stores and repositories for every entity type, with immediate batch retries
"""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]

# Add the project root to path for imports
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest  # noqa: E402 (import after path setup)

from tablestore.core.config import TableConfig  # noqa: E402
from tablestore.db.memory import InMemoryEngine  # noqa: E402
from tablestore.db.models import Transaction, User, Wallet  # noqa: E402
from tablestore.repos.store import Store  # noqa: E402
from tablestore.repos.transaction_repo import TransactionRepository  # noqa: E402
from tablestore.repos.user_repo import UserRepository  # noqa: E402
from tablestore.repos.wallet_repo import WalletRepository  # noqa: E402


# This fixture ensures async tests run on AnyIO's pytest plugin with asyncio.
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def table_config() -> TableConfig:
    """Default limits, but batch retries happen immediately."""
    return TableConfig(batch_retry_base_delay=0)


@pytest.fixture
def engine() -> InMemoryEngine:
    return InMemoryEngine()


@pytest.fixture
def user_store(engine: InMemoryEngine, table_config: TableConfig) -> Store[User]:
    return Store(engine, User, table_config)


@pytest.fixture
def wallet_store(engine: InMemoryEngine, table_config: TableConfig) -> Store[Wallet]:
    return Store(engine, Wallet, table_config)


@pytest.fixture
def transaction_store(engine: InMemoryEngine, table_config: TableConfig) -> Store[Transaction]:
    return Store(engine, Transaction, table_config)


@pytest.fixture
def users(user_store: Store[User]) -> UserRepository:
    return UserRepository(user_store)


@pytest.fixture
def wallets(wallet_store: Store[Wallet]) -> WalletRepository:
    return WalletRepository(wallet_store)


@pytest.fixture
def transactions(
    transaction_store: Store[Transaction], wallet_store: Store[Wallet]
) -> TransactionRepository:
    return TransactionRepository(transaction_store, wallet_store)
