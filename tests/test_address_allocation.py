"""
Test Deposit Address Allocation
Checksum helpers, cold/hot addresses and idempotent wallet allocation
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from eth_account import Account
from sqlalchemy import func, select

from conftest import ACCOUNT_0_ADDRESS, ACCOUNT_0_PRIVATE_KEY, ACCOUNT_1_ADDRESS, TEST_MNEMONIC
from models import DerivedWallet, Wallet
from services.address_allocator import AddressAllocator
from services.address_service import AddressService
from utils.exception_handler import AddressDerivationError, InvalidRequestError


async def count_rows(database, model, **filters):
    async with database.transaction() as session:
        query = select(func.count()).select_from(model)
        for name, value in filters.items():
            query = query.where(getattr(model, name) == value)
        return (await session.execute(query)).scalar_one()


class TestAddressService:
    """Checksum normalisation and hot/cold address lookup"""

    def test_checksum_of_lowercase_address(self):
        assert AddressService.to_checksum_address(ACCOUNT_1_ADDRESS.lower()) == ACCOUNT_1_ADDRESS

    def test_checksum_of_uppercase_address(self):
        upper = "0x" + ACCOUNT_1_ADDRESS[2:].upper()
        assert AddressService.to_checksum_address(upper) == ACCOUNT_1_ADDRESS

    @pytest.mark.parametrize("value", ["0x1234", "not-an-address", "", None])
    def test_malformed_address_rejected(self, value):
        with pytest.raises(InvalidRequestError):
            AddressService.to_checksum_address(value)

    def test_hot_address_from_private_key(self, address_service):
        assert address_service.get_hot_address() == ACCOUNT_0_ADDRESS

    def test_hot_key_is_first_mnemonic_account(self):
        account = Account.from_mnemonic(TEST_MNEMONIC, account_path="m/44'/60'/0'/0/0")
        assert account.key == bytes.fromhex(ACCOUNT_0_PRIVATE_KEY[2:])
        assert Account.from_key(ACCOUNT_0_PRIVATE_KEY).address == ACCOUNT_0_ADDRESS

    def test_explicit_hot_address_is_checksummed(self):
        service = AddressService(cold_mnemonic=TEST_MNEMONIC, hot_address=ACCOUNT_1_ADDRESS.lower())
        assert service.get_hot_address() == ACCOUNT_1_ADDRESS

    def test_missing_hot_address(self):
        service = AddressService(cold_mnemonic=TEST_MNEMONIC, hot_address="", hot_private_key="")
        with pytest.raises(AddressDerivationError):
            service.get_hot_address()

    @pytest.mark.asyncio
    async def test_cold_address_derived_at_wallet_id(self, address_service):
        assert await address_service.get_cold_address(Wallet(id=0)) == ACCOUNT_0_ADDRESS
        assert await address_service.get_cold_address(Wallet(id=1)) == ACCOUNT_1_ADDRESS

    @pytest.mark.asyncio
    async def test_cold_address_needs_persisted_wallet(self, address_service):
        with pytest.raises(AddressDerivationError):
            await address_service.get_cold_address(Wallet(payment="bitshares", invoice="alice"))

    @pytest.mark.asyncio
    async def test_cold_address_needs_mnemonic(self):
        service = AddressService(cold_mnemonic="", hot_address=ACCOUNT_0_ADDRESS)
        with pytest.raises(AddressDerivationError):
            await service.get_cold_address(Wallet(id=1))


class TestAddressAllocator:
    """Find-or-create of wallet and derived wallet"""

    @pytest.mark.asyncio
    async def test_first_call_creates_wallet_and_derived_wallet(self, database, address_service):
        allocator = AddressAllocator(database, address_service)

        address = await allocator.get_deposit_address("alice")

        # First wallet gets id 1, so account 1 of the mnemonic
        assert address == ACCOUNT_1_ADDRESS
        assert await count_rows(database, Wallet, payment="bitshares", invoice="alice") == 1
        assert await count_rows(database, DerivedWallet, payment="ethereum", invoice=address) == 1

    @pytest.mark.asyncio
    async def test_repeated_calls_return_same_address(self, database, address_service):
        allocator = AddressAllocator(database, address_service)

        first = await allocator.get_deposit_address("alice")
        with patch.object(address_service, "get_cold_address", wraps=address_service.get_cold_address) as derive:
            second = await allocator.get_deposit_address("alice")

        assert first == second
        derive.assert_not_called()
        assert await count_rows(database, Wallet) == 1
        assert await count_rows(database, DerivedWallet) == 1

    @pytest.mark.asyncio
    async def test_distinct_users_get_distinct_addresses(self, database, address_service):
        allocator = AddressAllocator(database, address_service)

        alice = await allocator.get_deposit_address("alice")
        bob = await allocator.get_deposit_address("bob")

        assert alice != bob
        assert await count_rows(database, Wallet) == 2
        assert await count_rows(database, DerivedWallet) == 2

    @pytest.mark.asyncio
    async def test_concurrent_first_calls_allocate_once(self, database, address_service):
        """Concurrent first-time requests for one user agree on a single address"""
        allocator = AddressAllocator(database, address_service)

        addresses = await asyncio.gather(*[allocator.get_deposit_address("carol") for _ in range(5)])

        assert len(set(addresses)) == 1
        assert await count_rows(database, Wallet, invoice="carol") == 1
        assert await count_rows(database, DerivedWallet) == 1

    @pytest.mark.asyncio
    async def test_derivation_failure_commits_nothing(self, database, address_service):
        allocator = AddressAllocator(database, address_service)

        with patch.object(address_service, "get_cold_address", AsyncMock(side_effect=RuntimeError("hsm offline"))):
            with pytest.raises(AddressDerivationError) as exc_info:
                await allocator.get_deposit_address("dave")

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert await count_rows(database, Wallet) == 0
        assert await count_rows(database, DerivedWallet) == 0

        # A later call completes the allocation
        assert await allocator.get_deposit_address("dave")
        assert await count_rows(database, DerivedWallet) == 1

    @pytest.mark.asyncio
    async def test_gateway_errors_from_derivation_pass_through(self, database, address_service):
        allocator = AddressAllocator(database, address_service)
        error = AddressDerivationError("Cold wallet mnemonic is not configured")

        with patch.object(address_service, "get_cold_address", AsyncMock(side_effect=error)):
            with pytest.raises(AddressDerivationError) as exc_info:
                await allocator.get_deposit_address("erin")

        assert exc_info.value is error
