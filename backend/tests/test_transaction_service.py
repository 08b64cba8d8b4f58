"""
Transaction lifecycle and the manual-account balance ledger.
"""
from datetime import datetime
from decimal import Decimal

import pytest

from fintrack.db_helpers import ensure_user
from fintrack.errors import NotFoundError
from fintrack.models import Account, DEFAULT_MANUAL_ACCOUNT_NAME, MANUAL_PROVIDER, PLUGGY_PROVIDER, Transaction
from fintrack.schemas import ManualAccountCreate, TransactionInput
from fintrack.services.account_service import AccountService
from fintrack.services.transaction_service import TransactionService
from fintrack.validation import sanitize

USER = "user-1"


def _manual(db, name: str, balance: str, user_id: str = USER) -> Account:
    data = sanitize(ManualAccountCreate, {"name": name, "currency": "BRL", "balance": balance})
    return AccountService(db, user_id).create_manual(data)


def _provider_account(db, account_id: str, balance: str, user_id: str = USER) -> Account:
    ensure_user(db, user_id)
    account = Account(
        id=account_id,
        user_id=user_id,
        provider=PLUGGY_PROVIDER,
        provider_item="item-1",
        name="Bank",
        currency="BRL",
        balance=Decimal(balance),
    )
    db.add(account)
    db.commit()
    return account


def _input(amount, account_id=None, description="Coffee") -> TransactionInput:
    payload = {"description": description, "amount": amount, "date": "2024-03-01T10:00:00Z"}
    if account_id is not None:
        payload["accountId"] = account_id
    return sanitize(TransactionInput, payload)


def _balance(db, account_id: str) -> Decimal:
    db.expire_all()
    return db.query(Account).filter(Account.id == account_id).one().balance


def test_create_then_delete_restores_balance(db) -> None:
    account = _manual(db, "Wallet", "100")
    service = TransactionService(db, USER)

    tx = service.create(_input(-50, account.id))
    assert _balance(db, account.id) == Decimal("50")
    assert tx.currency == "BRL"
    assert tx.date == datetime(2024, 3, 1, 10, 0)

    service.delete(tx.id)
    assert _balance(db, account.id) == Decimal("100")


def test_edit_amount_applies_difference(db) -> None:
    account = _manual(db, "Wallet", "100")
    service = TransactionService(db, USER)

    tx = service.create(_input(-50, account.id))
    service.update(tx.id, _input(-30, account.id))

    assert _balance(db, account.id) == Decimal("70")


def test_transfer_moves_amount_between_accounts(db) -> None:
    a = _manual(db, "A", "50")
    b = _manual(db, "B", "10")
    service = TransactionService(db, USER)
    tx = service.create(_input(20, a.id))
    assert _balance(db, a.id) == Decimal("70")

    service.update(tx.id, _input(20, b.id))

    assert _balance(db, a.id) == Decimal("50")
    assert _balance(db, b.id) == Decimal("30")


def _attached_sum(db, account_id: str) -> Decimal:
    db.expire_all()
    return sum(
        (tx.amount for tx in db.query(Transaction).filter(Transaction.account_id == account_id)),
        Decimal("0"),
    )


def test_sub_cent_amounts_keep_balance_in_step_with_rows(db) -> None:
    account = _manual(db, "Wallet", "0")
    service = TransactionService(db, USER)

    for _ in range(3):
        service.create(_input("0.004", account.id))
    assert _balance(db, account.id) == _attached_sum(db, account.id) == Decimal("0")

    tx = service.create(_input("0.005", account.id))
    assert tx.amount == Decimal("0.01")
    service.update(tx.id, _input("-0.005", account.id))
    assert tx.amount == Decimal("-0.01")
    assert _balance(db, account.id) == _attached_sum(db, account.id) == Decimal("-0.01")


def test_moving_transaction_between_manual_accounts(db) -> None:
    a = _manual(db, "A", "100")
    b = _manual(db, "B", "10")
    service = TransactionService(db, USER)

    tx = service.create(_input(-30, a.id))
    assert _balance(db, a.id) == Decimal("70")

    service.update(tx.id, _input(20, b.id))
    assert _balance(db, a.id) == Decimal("100")
    assert _balance(db, b.id) == Decimal("30")


def test_provider_accounts_are_never_adjusted(db) -> None:
    manual = _manual(db, "Wallet", "100")
    bank = _provider_account(db, "pluggy-acc-1", "500")
    service = TransactionService(db, USER)

    tx = service.create(_input(-40, bank.id))
    assert _balance(db, bank.id) == Decimal("500")

    service.update(tx.id, _input(-40, manual.id))
    assert _balance(db, bank.id) == Decimal("500")
    assert _balance(db, manual.id) == Decimal("60")

    service.update(tx.id, _input(-10, bank.id))
    assert _balance(db, manual.id) == Decimal("100")
    assert _balance(db, bank.id) == Decimal("500")


def test_default_manual_account_created_once(db) -> None:
    service = TransactionService(db, USER)

    first = service.create(_input(-5))
    second = service.create(_input(-7))

    manual_accounts = db.query(Account).filter(
        Account.user_id == USER,
        Account.provider == MANUAL_PROVIDER,
    ).all()
    assert len(manual_accounts) == 1
    assert manual_accounts[0].name == DEFAULT_MANUAL_ACCOUNT_NAME
    assert first.account_id == second.account_id == manual_accounts[0].id
    assert _balance(db, manual_accounts[0].id) == Decimal("-12")


def test_unassigned_transaction_uses_oldest_manual_account(db) -> None:
    oldest = _manual(db, "Oldest", "0")
    _manual(db, "Newer", "0")

    tx = TransactionService(db, USER).create(_input(15))

    assert tx.account_id == oldest.id
    assert _balance(db, oldest.id) == Decimal("15")


def test_foreign_account_is_not_found(db) -> None:
    foreign = _manual(db, "Theirs", "100", user_id="user-2")

    with pytest.raises(NotFoundError):
        TransactionService(db, USER).create(_input(-10, foreign.id))

    assert _balance(db, foreign.id) == Decimal("100")
    assert db.query(Transaction).count() == 0


def test_foreign_transaction_is_not_found(db) -> None:
    account = _manual(db, "Theirs", "100", user_id="user-2")
    tx = TransactionService(db, "user-2").create(_input(-10, account.id))

    service = TransactionService(db, USER)
    with pytest.raises(NotFoundError):
        service.get(tx.id)
    with pytest.raises(NotFoundError):
        service.update(tx.id, _input(-99))
    with pytest.raises(NotFoundError):
        service.delete(tx.id)

    assert _balance(db, account.id) == Decimal("90")


def test_double_delete_reverses_once(db) -> None:
    account = _manual(db, "Wallet", "100")
    service = TransactionService(db, USER)
    tx = service.create(_input(-25, account.id))

    service.delete(tx.id)
    with pytest.raises(NotFoundError):
        service.delete(tx.id)

    assert _balance(db, account.id) == Decimal("100")


def test_update_to_unknown_account_leaves_state_untouched(db) -> None:
    account = _manual(db, "Wallet", "100")
    service = TransactionService(db, USER)
    tx = service.create(_input(-25, account.id))

    with pytest.raises(NotFoundError):
        service.update(tx.id, _input(-80, "missing-account"))

    db.expire_all()
    assert _balance(db, account.id) == Decimal("75")
    assert db.query(Transaction).filter(Transaction.id == tx.id).one().amount == Decimal("-25")


def test_balance_equals_opening_plus_sum_of_transactions(db) -> None:
    a = _manual(db, "A", "250.50")
    b = _manual(db, "B", "0")
    service = TransactionService(db, USER)

    t1 = service.create(_input("-12,30", a.id))
    t2 = service.create(_input(100, a.id))
    t3 = service.create(_input(-40, b.id))
    service.update(t2.id, _input(80, b.id))
    service.update(t1.id, _input("-2.30", a.id))
    service.delete(t3.id)
    service.create(_input(5, b.id))

    for account, opening in ((a, Decimal("250.50")), (b, Decimal("0"))):
        db.expire_all()
        total = sum(
            (tx.amount for tx in db.query(Transaction).filter(Transaction.account_id == account.id)),
            Decimal("0"),
        )
        assert _balance(db, account.id) == opening + total


def test_list_page_orders_newest_first(db) -> None:
    account = _manual(db, "Wallet", "0")
    service = TransactionService(db, USER)
    for day in (1, 3, 2):
        service.create(sanitize(TransactionInput, {
            "description": f"day {day}",
            "amount": 1,
            "date": f"2024-01-0{day}T00:00:00Z",
            "accountId": account.id,
        }))

    rows, meta = service.list_page(1, 2)

    assert [row.description for row in rows] == ["day 3", "day 2"]
    assert meta.total_count == 3
    assert meta.total_pages == 2
    assert meta.has_next_page is True
