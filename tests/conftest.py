"""
Shared fixtures for the payment gateway tests

1. On-disk SQLite database (aiosqlite) with SERIALIZABLE isolation, fresh per test
2. Address service on a well-known development mnemonic
3. fakeredis-backed job queue
4. Gateway service wired like the server does it
"""

import os

# Quiet SQL echo and keep configuration deterministic before config is imported
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DB_ECHO", "false")

import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis
from unittest.mock import patch

from config import Config
from database import Database
from services.address_service import AddressService
from services.gateway_service import GatewayService
from services.job_queue import RedisJobQueue

# Development mnemonic; account n is derived at m/44'/60'/0'/0/n
TEST_MNEMONIC = "test test test test test test test test test test test junk"
ACCOUNT_0_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
ACCOUNT_0_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
ACCOUNT_1_ADDRESS = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

HOT_ADDRESS = ACCOUNT_0_ADDRESS
EXTERNAL_SENDER = "0x3C44CdDdB6a900fa2b585dd299e03d12FA4293BC"


@pytest.fixture(autouse=True)
def fast_retries():
    """No backoff sleeps between transaction attempts"""
    with patch.object(Config, "DB_RETRY_BACKOFF_SECONDS", 0):
        yield


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(
        f"sqlite+aiosqlite:///{tmp_path / 'gateway.db'}",
        isolation_level="SERIALIZABLE",
        echo=False,
    )
    await db.create_tables()
    yield db
    await db.dispose()


@pytest.fixture
def address_service():
    return AddressService(
        cold_mnemonic=TEST_MNEMONIC,
        hot_address="",
        hot_private_key=ACCOUNT_0_PRIVATE_KEY,
    )


@pytest_asyncio.fixture
async def redis_client():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def job_queue(redis_client):
    return RedisJobQueue(redis_client, "PaymentGateway")


@pytest.fixture
def gateway_service(database, job_queue, address_service):
    return GatewayService.build(database, job_queue, address_service)


def make_tx(**fields):
    """Transfer leg body with sensible defaults"""
    tx = {
        "coin": "ETH.USDT",
        "tx_id": None,
        "amount": "125.50",
        "created_at": "2023-01-15T10:30:00Z",
        "error": "",
        "confirmations": 0,
        "max_confirmations": 0,
    }
    tx.update(fields)
    return tx


def make_in_order(order_id, to_address, **overrides):
    """new_in_order body: USDT arrives on Ethereum, leaves as a Bitshares asset"""
    body = {
        "order_id": order_id,
        "order_type": "TRUSTED",
        "in_tx": make_tx(
            tx_id="0x5f1c2d",
            from_address=EXTERNAL_SENDER.lower(),
            to_address=to_address,
            confirmations=3,
            max_confirmations=12,
        ),
        "out_tx": make_tx(
            coin="FINTEH.USDT",
            from_address="gateway-account",
            to_address="user-account",
        ),
    }
    body.update(overrides)
    return body


def make_out_order(order_id, **overrides):
    """new_out_order body: Bitshares asset in, USDT paid out on Ethereum"""
    body = {
        "order_id": order_id,
        "order_type": "TRUSTED",
        "in_tx": make_tx(
            coin="FINTEH.USDT",
            tx_id="1.11.4211",
            from_address="user-account",
            to_address="gateway-account",
        ),
        "out_tx": make_tx(to_address=EXTERNAL_SENDER.lower()),
    }
    body.update(overrides)
    return body
