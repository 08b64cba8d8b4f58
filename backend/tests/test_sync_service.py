"""
Aggregator import: idempotent upserts, encrypted payloads, pruning and
best-effort resource families.
"""
from decimal import Decimal

import pytest

from fintrack.errors import ConfigurationError, NotFoundError
from fintrack.integrations import base
from fintrack.models import Account, PLUGGY_PROVIDER, ProviderResource, Transaction
from fintrack.schemas import ManualAccountCreate, TransactionInput
from fintrack.security.data_encryption import decrypt_json
from fintrack.services.account_service import AccountService
from fintrack.services.sync_service import SyncService
from fintrack.services.transaction_service import TransactionService
from fintrack.validation import sanitize

USER = "user-1"
ITEM = "item-1"


def _seed(aggregator) -> None:
    aggregator.accounts = [
        {
            "id": "acc-1",
            "name": "Checking",
            "balance": 1520.75,
            "currencyCode": "BRL",
            "number": "0001-123456",
            "type": "BANK",
        }
    ]
    aggregator.transactions = [
        {
            "id": "tx-1",
            "accountId": "acc-1",
            "description": "Supermarket",
            "amount": -84.9,
            "date": "2024-05-02T13:00:00.000Z",
            "category": "Groceries",
        },
        {
            "id": "tx-2",
            "accountId": "acc-1",
            "description": "Salary",
            "amount": 5000,
            "date": "2024-05-05T09:00:00.000Z",
        },
    ]
    aggregator.credit_cards = [{"id": "card-1", "name": "Gold", "brand": "VISA", "balance": 300, "accountId": "acc-1"}]
    aggregator.credit_card_transactions = {
        "card-1": [{"id": "cc-tx-1", "description": "Streaming", "amount": 39.9, "date": "2024-05-03"}],
    }
    aggregator.investments = [{"id": "inv-1", "name": "CDB", "type": "FIXED_INCOME", "balance": 10000}]
    aggregator.investment_transactions = [{"id": "inv-tx-1", "type": "BUY", "amount": 10000, "date": "2024-04-01"}]
    aggregator.loans = [{"id": "loan-1", "product": "Personal", "remainingBalance": 2500}]
    aggregator.loan_transactions = {"loan-1": [{"id": "loan-tx-1", "amount": -250, "date": "2024-05-10"}]}


def _snapshot(db) -> dict:
    db.expire_all()
    return {
        "accounts": [
            (a.id, a.balance, a.data_enc, a.updated_at)
            for a in db.query(Account).order_by(Account.id).all()
        ],
        "transactions": [
            (t.id, t.amount, t.raw_enc)
            for t in db.query(Transaction).order_by(Transaction.id).all()
        ],
        "resources": [
            (r.provider_resource_id, r.balance, r.data_enc, r.updated_at)
            for r in db.query(ProviderResource).order_by(ProviderResource.provider_resource_id).all()
        ],
    }


def test_import_stores_everything_encrypted(db, aggregator) -> None:
    _seed(aggregator)

    result = SyncService(db, USER, aggregator).import_item(ITEM)

    assert result == {"accounts_synced": 1, "transactions_synced": 2, "resources_synced": 6}
    account = db.query(Account).filter(Account.id == "acc-1").one()
    assert account.provider == PLUGGY_PROVIDER
    assert account.provider_item == ITEM
    assert account.balance == Decimal("1520.75")
    assert account.mask == "3456"
    assert account.data_enc.startswith("enc:v1:k-test:")
    assert decrypt_json(account.data_enc) == aggregator.accounts[0]

    tx = db.query(Transaction).filter(Transaction.id == "tx-1").one()
    assert tx.account_id == "acc-1"
    assert tx.raw_enc.startswith("enc:v1:")
    assert decrypt_json(tx.raw_enc)["description"] == "Supermarket"

    types = {r.resource_type for r in db.query(ProviderResource).all()}
    assert types == set(base.RESOURCE_TYPES)


def test_replaying_an_import_changes_nothing(db, aggregator) -> None:
    _seed(aggregator)
    service = SyncService(db, USER, aggregator)

    service.import_item(ITEM)
    before = _snapshot(db)
    service.import_item(ITEM)

    assert _snapshot(db) == before


def test_reimport_overwrites_changed_records(db, aggregator) -> None:
    _seed(aggregator)
    service = SyncService(db, USER, aggregator)
    service.import_item(ITEM)

    aggregator.accounts[0]["balance"] = 99.5
    aggregator.transactions[0]["description"] = "Supermarket (refund)"
    service.import_item(ITEM)

    db.expire_all()
    account = db.query(Account).filter(Account.id == "acc-1").one()
    assert account.balance == Decimal("99.50")
    assert decrypt_json(account.data_enc)["balance"] == 99.5
    assert db.query(Transaction).filter(Transaction.id == "tx-1").one().description == "Supermarket (refund)"
    assert db.query(Account).count() == 1
    assert db.query(Transaction).count() == 2


def test_provider_balance_ignores_transaction_ledger(db, aggregator) -> None:
    _seed(aggregator)
    SyncService(db, USER, aggregator).import_item(ITEM)

    TransactionService(db, USER).create(sanitize(TransactionInput, {
        "description": "Manual note on bank account",
        "amount": -1000,
        "date": "2024-05-06",
        "accountId": "acc-1",
    }))

    db.expire_all()
    assert db.query(Account).filter(Account.id == "acc-1").one().balance == Decimal("1520.75")


def test_records_owned_by_another_user_are_skipped(db, aggregator) -> None:
    _seed(aggregator)
    SyncService(db, "user-2", aggregator).import_item(ITEM)

    result = SyncService(db, USER, aggregator).import_item(ITEM)

    assert result["accounts_synced"] == 0
    assert result["transactions_synced"] == 0
    db.expire_all()
    assert db.query(Account).filter(Account.user_id == USER).count() == 0
    assert {t.user_id for t in db.query(Transaction).all()} == {"user-2"}


def test_resources_missing_from_listing_are_pruned(db, aggregator) -> None:
    _seed(aggregator)
    service = SyncService(db, USER, aggregator)
    service.import_item(ITEM)

    aggregator.investments = []
    aggregator.investment_transactions = []
    aggregator.credit_card_transactions = {"card-1": []}
    service.import_item(ITEM)

    db.expire_all()
    remaining = {r.provider_resource_id for r in db.query(ProviderResource).all()}
    assert remaining == {"card-1", "loan-1", "loan-tx-1"}


def test_failed_family_keeps_its_data_and_others_sync(db, aggregator) -> None:
    _seed(aggregator)
    service = SyncService(db, USER, aggregator)
    service.import_item(ITEM)

    aggregator.failing = {"list_investments"}
    aggregator.loans[0]["remainingBalance"] = 2250
    result = service.import_item(ITEM)

    db.expire_all()
    resources = {r.provider_resource_id: r for r in db.query(ProviderResource).all()}
    assert {"inv-1", "inv-tx-1"} <= set(resources)
    assert resources["loan-1"].balance == Decimal("2250")
    assert result["accounts_synced"] == 1


def test_retry_after_partial_failure_converges(db, aggregator) -> None:
    _seed(aggregator)
    aggregator.failing = {"list_transactions"}

    with pytest.raises(RuntimeError):
        SyncService(db, USER, aggregator).import_item(ITEM)
    db.expire_all()
    assert db.query(Account).count() == 1
    assert db.query(Transaction).count() == 0

    aggregator.failing = set()
    SyncService(db, USER, aggregator).import_item(ITEM)
    first = _snapshot(db)
    SyncService(db, USER, aggregator).import_item(ITEM)

    assert _snapshot(db) == first
    assert len(first["transactions"]) == 2


def test_import_without_client_is_a_configuration_error(db) -> None:
    with pytest.raises(ConfigurationError):
        SyncService(db, USER).import_item(ITEM)


def test_list_for_owner_decrypts_payloads(db, aggregator) -> None:
    _seed(aggregator)
    SyncService(db, USER, aggregator).import_item(ITEM)

    listing = SyncService(db, USER).list_for_owner()

    assert [a.id for a in listing.accounts] == ["acc-1"]
    assert listing.accounts[0].data["number"] == "0001-123456"
    assert {t.id for t in listing.transactions} == {"tx-1", "tx-2"}
    assert listing.transactions[0].raw["id"] == "tx-2"
    assert [r.provider_resource_id for r in listing.credit_cards] == ["card-1"]
    assert listing.credit_card_transactions[0].data["creditCardId"] == "card-1"
    assert listing.loan_transactions[0].data["loanId"] == "loan-1"
    assert SyncService(db, "user-2").list_for_owner().accounts == []


def test_disconnect_removes_account_transactions_and_item_resources(db, aggregator) -> None:
    _seed(aggregator)
    SyncService(db, USER, aggregator).import_item(ITEM)

    with pytest.raises(NotFoundError):
        SyncService(db, "user-2").disconnect_account("acc-1")

    SyncService(db, USER).disconnect_account("acc-1")

    db.expire_all()
    assert db.query(Account).count() == 0
    assert db.query(Transaction).count() == 0
    assert db.query(ProviderResource).count() == 0


def test_reimport_leaves_transaction_moved_to_manual_account(db, aggregator) -> None:
    _seed(aggregator)
    SyncService(db, USER, aggregator).import_item(ITEM)
    wallet = AccountService(db, USER).create_manual(
        sanitize(ManualAccountCreate, {"name": "Wallet", "currency": "BRL", "balance": 0})
    )
    TransactionService(db, USER).update("tx-2", sanitize(TransactionInput, {
        "description": "Salary",
        "amount": 5000,
        "date": "2024-05-05T09:00:00Z",
        "accountId": wallet.id,
    }))

    result = SyncService(db, USER, aggregator).import_item(ITEM)

    db.expire_all()
    moved = db.query(Transaction).filter(Transaction.id == "tx-2").one()
    assert moved.account_id == wallet.id
    assert db.query(Account).filter(Account.id == wallet.id).one().balance == Decimal("5000")
    assert result["transactions_synced"] == 1


def test_malformed_transactions_are_skipped(db, aggregator) -> None:
    _seed(aggregator)
    aggregator.transactions += [
        {"accountId": "acc-1", "description": "No id", "amount": 1, "date": "2024-05-01"},
        {"id": "tx-no-account", "description": "No account", "amount": 1, "date": "2024-05-01"},
        {"id": "tx-bad-date", "accountId": "acc-1", "amount": 1, "date": "someday"},
        {"id": "tx-no-date", "accountId": "acc-1", "amount": 1},
    ]

    result = SyncService(db, USER, aggregator).import_item(ITEM)

    assert result["transactions_synced"] == 2
    assert {t.id for t in db.query(Transaction).all()} == {"tx-1", "tx-2"}
    assert result["resources_synced"] == 6
