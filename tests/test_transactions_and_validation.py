"""
Test Serializable Transaction Runner and Request Validation
"""

import sqlite3
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from utils.atomic_transactions import is_serialization_failure, is_unique_violation, read_only, run_serializable
from utils.exception_handler import InvalidRequestError, TransientStoreError
from utils.normalizers import (
    MAX_COUNT,
    normalize_amount,
    normalize_count,
    normalize_identifier,
    normalize_optional_string,
    normalize_timestamp,
)
from utils.request_validation import DepositAddressRequest, OrderRequest, TxPayload


class PgError(Exception):
    """Driver error carrying a PostgreSQL SQLSTATE"""

    def __init__(self, message, sqlstate):
        super().__init__(message)
        self.sqlstate = sqlstate


def locked():
    return OperationalError("INSERT", {}, sqlite3.OperationalError("database is locked"))


class TestErrorClassification:

    def test_postgres_serialization_failure(self):
        error = OperationalError("COMMIT", {}, PgError("could not serialize access", "40001"))
        assert is_serialization_failure(error)

    def test_postgres_deadlock(self):
        assert is_serialization_failure(OperationalError("UPDATE", {}, PgError("deadlock detected", "40P01")))

    def test_sqlite_locked_database(self):
        assert is_serialization_failure(locked())

    def test_other_errors_are_not_retryable(self):
        assert not is_serialization_failure(OperationalError("SELECT", {}, sqlite3.OperationalError("disk I/O error")))
        assert not is_serialization_failure(ValueError("nope"))

    def test_unique_violation(self):
        assert is_unique_violation(IntegrityError("INSERT", {}, PgError("duplicate key", "23505")))
        assert is_unique_violation(
            IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed: orders.id"))
        )
        assert not is_unique_violation(IntegrityError("INSERT", {}, PgError("fk violation", "23503")))


class TestRunSerializable:

    @pytest.mark.asyncio
    async def test_retries_serialization_failures(self, database):
        calls = []

        async def work(session):
            calls.append(session)
            if len(calls) < 3:
                raise locked()
            return "done"

        assert await run_serializable(database, work, operation="test") == "done"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries_are_transient(self, database):
        async def work(session):
            raise locked()

        with pytest.raises(TransientStoreError):
            await run_serializable(database, work, operation="test", max_attempts=2)

    @pytest.mark.asyncio
    async def test_unreachable_store_is_transient_without_retry(self, database):
        calls = []

        async def work(session):
            calls.append(session)
            raise OperationalError("SELECT", {}, sqlite3.OperationalError("unable to open database file"))

        with pytest.raises(TransientStoreError):
            await run_serializable(database, work, operation="test")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_unique_violation_retried_by_default(self, database):
        calls = []

        async def work(session):
            calls.append(session)
            if len(calls) == 1:
                raise IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed: wallets.invoice"))
            return "re-read"

        assert await run_serializable(database, work, operation="test") == "re-read"

    @pytest.mark.asyncio
    async def test_unique_violation_left_to_caller(self, database):
        async def work(session):
            raise IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed: orders.id"))

        with pytest.raises(IntegrityError):
            await run_serializable(database, work, operation="test", retry_on_unique_violation=False)

    @pytest.mark.asyncio
    async def test_read_only_maps_connectivity_errors(self, database):
        async def work(session):
            raise ConnectionResetError("connection reset")

        with pytest.raises(TransientStoreError):
            await read_only(database, work, operation="test")


class TestNormalizers:

    def test_identifier(self):
        assert normalize_identifier(" abc123 ", "order_id") == "abc123"
        assert normalize_identifier(42, "user") == "42"
        for bad in (None, "", "   ", True, {"id": 1}):
            with pytest.raises(ValueError):
                normalize_identifier(bad, "order_id")

    def test_length_limits(self):
        assert normalize_identifier("a" * 32, "coin", 32) == "a" * 32
        with pytest.raises(ValueError, match="at most 32 characters"):
            normalize_identifier("a" * 33, "coin", 32)
        assert normalize_optional_string("   ", "tx_id", 4) is None
        with pytest.raises(ValueError):
            normalize_optional_string("0x5f1c2d", "tx_id", 4)

    def test_amount(self):
        assert normalize_amount("125.50") == Decimal("125.50")
        assert normalize_amount(0.1) == Decimal("0.1")
        assert normalize_amount(None) is None
        for bad in ("-1", "abc", "NaN", True):
            with pytest.raises(ValueError):
                normalize_amount(bad)
        assert normalize_amount("9" * 20) == Decimal("9" * 20)
        with pytest.raises(ValueError):
            normalize_amount("1" + "0" * 20)

    def test_count(self):
        assert normalize_count(None, "confirmations") == 0
        assert normalize_count("12", "confirmations") == 12
        assert normalize_count(3.0, "confirmations") == 3
        for bad in (-1, "1.5", 2.5, False):
            with pytest.raises(ValueError):
                normalize_count(bad, "confirmations")

    def test_count_fits_integer_column(self):
        assert normalize_count(MAX_COUNT, "confirmations") == MAX_COUNT
        for bad in (MAX_COUNT + 1, 2**64, str(2**64), float(2**40)):
            with pytest.raises(ValueError, match="too large"):
                normalize_count(bad, "confirmations")

    def test_timestamp(self):
        expected = datetime(2023, 1, 15, 10, 30, tzinfo=timezone.utc)
        assert normalize_timestamp("2023-01-15T10:30:00Z") == expected
        assert normalize_timestamp("2023-01-15T12:30:00+02:00") == expected
        assert normalize_timestamp(int(expected.timestamp())) == expected
        assert normalize_timestamp(int(expected.timestamp()) * 1000) == expected
        assert normalize_timestamp("") is None
        with pytest.raises(ValueError):
            normalize_timestamp("yesterday")

    def test_timestamp_out_of_range(self):
        for bad in (10**30, "9" * 40, -(10**15)):
            with pytest.raises(ValueError, match="out of range"):
                normalize_timestamp(bad, "out_tx.created_at")


class TestRequestValidation:

    def test_deposit_address_request(self):
        assert DepositAddressRequest.from_dict({"user": 1001}).user == "1001"
        with pytest.raises(InvalidRequestError):
            DepositAddressRequest.from_dict({"user": ""})
        with pytest.raises(InvalidRequestError):
            DepositAddressRequest.from_dict(["user"])

    def test_tx_payload(self):
        tx = TxPayload.from_dict(
            {"coin": "ETH.USDT", "amount": "1.5", "error": "", "confirmations": "2", "to_address": " 0xabc "},
            "in_tx",
        )
        assert tx.amount == Decimal("1.5")
        assert tx.error is None
        assert tx.confirmations == 2
        assert tx.to_address == "0xabc"
        assert tx.from_address is None

    def test_tx_payload_errors_name_the_leg(self):
        with pytest.raises(InvalidRequestError) as exc_info:
            TxPayload.from_dict({"coin": "ETH.USDT", "amount": "-5"}, "out_tx")
        assert "out_tx.amount" in exc_info.value.message

        with pytest.raises(InvalidRequestError):
            TxPayload.from_dict("not an object", "in_tx")

    def test_overlong_fields_rejected(self):
        body = {
            "order_id": "abc123",
            "order_type": "TRUSTED",
            "in_tx": {"coin": "ETH.USDT"},
            "out_tx": {"coin": "FINTEH.USDT"},
        }
        for key, value in (("order_id", "x" * 256), ("order_type", "T" * 65)):
            with pytest.raises(InvalidRequestError):
                OrderRequest.from_dict({**body, key: value})

        with pytest.raises(InvalidRequestError) as exc_info:
            OrderRequest.from_dict({**body, "in_tx": {"coin": "C" * 33}})
        assert exc_info.value.details == {"field": "in_tx"}

        with pytest.raises(InvalidRequestError):
            DepositAddressRequest.from_dict({"user": "u" * 256})

    def test_order_request_requires_both_legs(self):
        with pytest.raises(InvalidRequestError):
            OrderRequest.from_dict({"order_id": "abc123", "order_type": "TRUSTED", "in_tx": {"coin": "ETH"}})

    def test_require_lists_missing_fields(self):
        tx = TxPayload(coin="ETH.USDT")
        with pytest.raises(InvalidRequestError) as exc_info:
            tx.require("in_tx", "from_address", "to_address")
        assert exc_info.value.details == {"missing": ["in_tx.from_address", "in_tx.to_address"]}
