"""
Tests for the account, order and activity repositories and the credential cipher.

The database is mocked; tests check the SQL parameters sent and the
mapping of returned rows onto models.
"""

import json
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from custody.models import AccountStatus
from database.credential_cipher import CredentialCipher
from database.repositories import AccountRepository, ActivityRepository, OrderRepository
from database.scripts.init_db import split_statements
from execution.models import OrderStatus
from tests.fakes import make_request


class MockDatabase:
    """Stand-in for ``databases.Database`` that records queries."""

    def __init__(self, row=None, rows=None):
        self.fetch_one = AsyncMock(return_value=row)
        self.fetch_all = AsyncMock(return_value=rows or [])
        self.execute = AsyncMock(return_value=None)

    def last_call(self, method="fetch_one"):
        query, params = getattr(self, method).await_args.args
        return " ".join(query.split()), params


def account_row(**overrides):
    row = {
        "id": "6f1c0a52-4a4e-4c33-9d1b-1e2f3a4b5c6d",
        "external_id": "user-1",
        "owner_address": "0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1",
        "encrypted_private_key": "enc",
        "status": "CREATED",
        "safe_address": None,
        "safe_deployed": False,
        "usdc_approved": False,
        "ctf_approved": False,
        "neg_risk_approved": False,
    }
    row.update(overrides)
    return row


def order_row(**overrides):
    row = {
        "id": "ord-1",
        "account_id": "acc-1",
        "market_id": "market-1",
        "token_id": "12345",
        "side": "BUY",
        "price": Decimal("0.55"),
        "size": Decimal("10"),
        "order_type": "GTC",
        "status": "PENDING",
        "filled_size": None,
    }
    row.update(overrides)
    return row


class TestAccountRepository:
    @pytest.mark.asyncio
    async def test_create_inserts_created_account(self):
        db = MockDatabase(row=account_row())
        repo = AccountRepository(db)

        account = await repo.create("user-1", "0xowner", "enc")

        query, params = db.last_call()
        assert query.startswith("INSERT INTO accounts")
        assert params["status"] == "CREATED"
        assert account.status == AccountStatus.CREATED
        assert account.id == "6f1c0a52-4a4e-4c33-9d1b-1e2f3a4b5c6d"

    @pytest.mark.asyncio
    async def test_create_duplicate_raises_value_error(self):
        db = MockDatabase()
        db.fetch_one.side_effect = Exception("duplicate key value violates unique constraint")

        with pytest.raises(ValueError, match="already exists"):
            await AccountRepository(db).create("user-1", "0xowner", "enc")

    @pytest.mark.asyncio
    async def test_mark_deployed_sets_status(self):
        db = MockDatabase(row=account_row(status="DEPLOYED", safe_address="0xsafe", safe_deployed=True))

        account = await AccountRepository(db).mark_deployed("acc", "0xsafe")

        query, params = db.last_call()
        assert "safe_deployed = TRUE" in query
        assert params["status"] == "DEPLOYED"
        assert account.safe_deployed

    @pytest.mark.asyncio
    async def test_mark_deployed_keeps_given_status(self):
        db = MockDatabase(row=account_row(status="READY", safe_address="0xsafe", safe_deployed=True))

        await AccountRepository(db).mark_deployed("acc", "0xsafe", AccountStatus.READY)

        _, params = db.last_call()
        assert params["status"] == "READY"

    @pytest.mark.asyncio
    async def test_set_approvals_with_and_without_status(self):
        db = MockDatabase(row=account_row(usdc_approved=True, ctf_approved=True, neg_risk_approved=True))
        repo = AccountRepository(db)

        await repo.set_approvals("acc", True, True, True)
        query, params = db.last_call()
        assert "status = :status" not in query
        assert "status" not in params

        account = await repo.set_approvals("acc", True, True, True, status=AccountStatus.READY)
        query, params = db.last_call()
        assert params["status"] == "READY"
        assert account.approvals_complete

    @pytest.mark.asyncio
    async def test_update_missing_account_raises_lookup_error(self):
        db = MockDatabase(row=None)

        with pytest.raises(LookupError):
            await AccountRepository(db).update_status("missing", AccountStatus.READY)

    @pytest.mark.asyncio
    async def test_clear_credentials_nulls_all_three(self):
        db = MockDatabase(row=account_row(status="DEPLOYED"))

        account = await AccountRepository(db).clear_credentials("acc", AccountStatus.DEPLOYED)

        query, _ = db.last_call()
        assert "encrypted_api_key = NULL" in query
        assert "encrypted_api_secret = NULL" in query
        assert "encrypted_api_passphrase = NULL" in query
        assert not account.has_credentials


class TestOrderRepository:
    @pytest.mark.asyncio
    async def test_create_persists_pending_order(self):
        db = MockDatabase(row=order_row())

        order = await OrderRepository(db).create("acc-1", make_request())

        _, params = db.last_call()
        assert params["status"] == "PENDING"
        assert params["side"] == "BUY"
        assert params["price"] == Decimal("0.55")
        assert order.status == OrderStatus.PENDING
        assert order.filled_size == Decimal("0")

    @pytest.mark.asyncio
    async def test_list_by_account_filters_statuses(self):
        db = MockDatabase(rows=[order_row(status="LIVE")])

        orders = await OrderRepository(db).list_by_account(
            "acc-1", [OrderStatus.LIVE, OrderStatus.MATCHED]
        )

        query, params = db.last_call("fetch_all")
        assert "status IN (:status_0, :status_1)" in query
        assert params["status_0"] == "LIVE"
        assert params["status_1"] == "MATCHED"
        assert orders[0].status == OrderStatus.LIVE

    @pytest.mark.asyncio
    async def test_update_converts_status_and_returns_order(self):
        db = MockDatabase(row=order_row(status="LIVE", remote_order_id="0xabc"))

        order = await OrderRepository(db).update("ord-1", status=OrderStatus.LIVE, remote_order_id="0xabc")

        query, params = db.last_call()
        assert "status = :status" in query
        assert params["status"] == "LIVE"
        assert order.remote_order_id == "0xabc"

    @pytest.mark.asyncio
    async def test_update_rejects_unknown_columns(self):
        db = MockDatabase(row=order_row())

        with pytest.raises(ValueError):
            await OrderRepository(db).update("ord-1", price=Decimal("0.9"))

        db.fetch_one.assert_not_awaited()


class TestActivityRepository:
    @pytest.mark.asyncio
    async def test_record_serializes_details(self):
        db = MockDatabase()

        await ActivityRepository(db).record(
            "acc-1", "ORDER_PLACED", resource="order", resource_id="ord-1",
            details={"price": Decimal("0.5")},
        )

        query, params = db.last_call("execute")
        assert query.startswith("INSERT INTO activity_log")
        assert json.loads(params["details"]) == {"price": "0.5"}
        assert params["success"] is True


class TestCredentialCipher:
    def test_round_trip(self):
        cipher = CredentialCipher(CredentialCipher.generate_key())

        token = cipher.encrypt("secret-value")

        assert token != "secret-value"
        assert cipher.decrypt(token) == "secret-value"

    def test_wrong_key_raises_value_error(self):
        token = CredentialCipher(CredentialCipher.generate_key()).encrypt("x")

        with pytest.raises(ValueError):
            CredentialCipher(CredentialCipher.generate_key()).decrypt(token)

    def test_invalid_key_format(self):
        with pytest.raises(ValueError):
            CredentialCipher("not-a-fernet-key")


def test_split_statements_drops_comments():
    sql = """
    -- accounts
    CREATE TABLE a (id INT);
    -- only a comment;
    CREATE INDEX idx ON a (id);
    """

    statements = split_statements(sql)

    assert statements == ["CREATE TABLE a (id INT)", "CREATE INDEX idx ON a (id)"]
