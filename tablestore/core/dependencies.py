"""
Composition helpers for the data-access layer.

The caller's composition root builds one engine and one set of
repositories at startup and shares them across requests. The engine
handle is stateless and safe for concurrent use.
"""

import logging
from dataclasses import dataclass
from functools import lru_cache

import boto3

from tablestore.core.cache import TTLCache
from tablestore.core.config import Settings
from tablestore.db.dynamodb import DynamoDBEngine
from tablestore.db.engine import Engine
from tablestore.db.models import Transaction, User, Wallet
from tablestore.repos.store import Store
from tablestore.repos.transaction_repo import TransactionRepository
from tablestore.repos.user_repo import UserRepository
from tablestore.repos.wallet_repo import WalletRepository
from tablestore.services.cached_lookup import CachedUserLookup

logger = logging.getLogger(__name__)


@lru_cache
def get_settings() -> Settings:
    """Process-wide settings, read from the environment once."""
    return Settings()


def create_dynamodb_client(settings: Settings):
    """
    Build the boto3 DynamoDB client.

    botocore's own retries are limited to a single attempt: single-item
    failures surface to the caller, and batch retries belong to the Store.
    """
    config = {
        "service_name": "dynamodb",
        "region_name": settings.aws_region,
        "config": boto3.session.Config(retries={"max_attempts": 1, "mode": "standard"}),
    }

    # Local DynamoDB or another compatible endpoint
    if settings.dynamodb_endpoint_url:
        config["endpoint_url"] = settings.dynamodb_endpoint_url

    if settings.aws_access_key_id and settings.aws_secret_access_key:
        config["aws_access_key_id"] = settings.aws_access_key_id
        config["aws_secret_access_key"] = settings.aws_secret_access_key

    return boto3.client(**config)


def create_engine(settings: Settings | None = None) -> DynamoDBEngine:
    settings = settings or get_settings()
    engine = DynamoDBEngine(create_dynamodb_client(settings), settings.table_name)
    logger.info(
        f"DynamoDB engine ready for table {settings.table_name}",
        extra={"region": settings.aws_region, "endpoint": settings.dynamodb_endpoint_url},
    )
    return engine


@dataclass(frozen=True)
class Repositories:
    users: UserRepository
    wallets: WalletRepository
    transactions: TransactionRepository


def create_repositories(engine: Engine, settings: Settings | None = None) -> Repositories:
    """Wire one repository per entity type over a shared engine."""
    config = (settings or get_settings()).table_config()
    wallet_store = Store(engine, Wallet, config)
    return Repositories(
        users=UserRepository(Store(engine, User, config)),
        wallets=WalletRepository(wallet_store),
        transactions=TransactionRepository(Store(engine, Transaction, config), wallet_store),
    )


def create_user_lookup(users: UserRepository, settings: Settings | None = None) -> CachedUserLookup:
    """Cached read-side user lookups sized from settings."""
    settings = settings or get_settings()
    cache: TTLCache[tuple[str, str], User] = TTLCache(
        "users",
        max_entries=settings.cache_max_entries,
        ttl_seconds=settings.cache_ttl_seconds,
    )
    return CachedUserLookup(users, cache)
