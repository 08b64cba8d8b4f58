"""
Transaction lifecycle: create, update and delete a transaction together with
the balance delta(s) it implies for manual accounts.

A manual account's balance always equals its creation balance plus the
signed sum of the transactions currently attached to it. Deltas are applied
with ``UPDATE accounts SET balance = balance + :delta`` so concurrent edits on
the same account never lose each other's effect.
"""
import json
import logging
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from fintrack.database import unit_of_work
from fintrack.db_helpers import ensure_user
from fintrack.errors import NotFoundError
from fintrack.models import (
    Account,
    DEFAULT_MANUAL_ACCOUNT_NAME,
    MANUAL_PROVIDER,
    Transaction,
    default_currency,
)
from fintrack.pagination import PageMeta, paginate_query
from fintrack.schemas import TransactionInput

logger = logging.getLogger(__name__)


class TransactionService:
    """Owner-scoped transaction mutations and reads."""

    def __init__(self, db: Session, user_id: str):
        self.db = db
        self.user_id = user_id

    def _adjust_balance(self, account_id: str, delta: Decimal) -> None:
        if not delta:
            return
        self.db.query(Account).filter(Account.id == account_id).update(
            {Account.balance: Account.balance + delta},
            synchronize_session=False,
        )

    def _get_owned_account(self, account_id: str) -> Optional[Account]:
        return self.db.query(Account).filter(
            Account.id == account_id,
            Account.user_id == self.user_id,
        ).first()

    def _get_owned_transaction(self, transaction_id: str) -> Transaction:
        transaction = self.db.query(Transaction).filter(
            Transaction.id == transaction_id,
            Transaction.user_id == self.user_id,
        ).first()
        if not transaction:
            raise NotFoundError("Transaction not found")
        return transaction

    def resolve_default_manual_account(self) -> Account:
        """
        Owner's oldest manual account, created on the fly if there is none.

        Does not commit; callers run it inside their own unit of work.

        Returns:
            The manual Account every unassigned transaction is attached to
        """
        account = (
            self.db.query(Account)
            .filter(Account.user_id == self.user_id, Account.provider == MANUAL_PROVIDER)
            .order_by(Account.created_at.asc(), Account.id.asc())
            .first()
        )
        if account:
            return account

        ensure_user(self.db, self.user_id)
        account = Account(
            user_id=self.user_id,
            provider=MANUAL_PROVIDER,
            provider_item=DEFAULT_MANUAL_ACCOUNT_NAME,
            name=DEFAULT_MANUAL_ACCOUNT_NAME,
            currency=default_currency(),
            balance=Decimal("0"),
            data_enc=json.dumps({"type": DEFAULT_MANUAL_ACCOUNT_NAME}),
        )
        self.db.add(account)
        self.db.flush()
        logger.info(f"Created default manual account {account.id} for user {self.user_id}")
        return account

    def resolve_target_account(self, account_id: str) -> Account:
        """
        Owned account with ``account_id``.

        Raises:
            NotFoundError: If the account is absent or belongs to someone else
        """
        account = self._get_owned_account(account_id)
        if not account:
            raise NotFoundError("Account not found")
        return account

    def get(self, transaction_id: str) -> Transaction:
        return self._get_owned_transaction(transaction_id)

    def list_page(self, page: int, page_size: int) -> Tuple[List[Transaction], PageMeta]:
        """Newest transactions first, one page at a time."""
        query = (
            self.db.query(Transaction)
            .filter(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.created_at.desc())
        )
        return paginate_query(query, page, page_size)

    def create(self, data: TransactionInput) -> Transaction:
        """
        Attach a new transaction to an account and apply its balance effect.

        Args:
            data: Sanitized transaction input

        Returns:
            The persisted Transaction

        Raises:
            NotFoundError: If ``data.account_id`` is not one of the owner's accounts
        """
        with unit_of_work(self.db):
            ensure_user(self.db, self.user_id)
            if data.account_id:
                account = self.resolve_target_account(data.account_id)
            else:
                account = self.resolve_default_manual_account()

            transaction = Transaction(
                user_id=self.user_id,
                account=account,
                description=data.description,
                category=data.category,
                currency=account.currency or default_currency(),
                amount=data.amount,
                date=data.date,
            )
            self.db.add(transaction)
            self.db.flush()

            if account.is_manual:
                self._adjust_balance(account.id, data.amount)

        self.db.refresh(transaction)
        return transaction

    def update(self, transaction_id: str, data: TransactionInput) -> Transaction:
        """
        Rewrite a transaction and move its balance effect accordingly.

        Same account: the manual account moves by ``new - previous``.
        Different account: the old manual account gives back ``previous`` and
        the new manual account receives ``new``. Provider accounts are never
        touched.

        Raises:
            NotFoundError: If the transaction or the requested account is not owned
        """
        with unit_of_work(self.db):
            transaction = self._get_owned_transaction(transaction_id)
            previous_amount = Decimal(transaction.amount)
            previous_account_id = transaction.account_id
            previous_account = self._get_owned_account(previous_account_id)

            if data.account_id:
                target = self.resolve_target_account(data.account_id)
            elif previous_account is not None:
                target = previous_account
            else:
                target = self.resolve_default_manual_account()

            transaction.account = target
            transaction.description = data.description
            transaction.category = data.category
            transaction.amount = data.amount
            transaction.date = data.date
            transaction.currency = target.currency or default_currency()
            self.db.flush()

            if target.id == previous_account_id:
                if target.is_manual:
                    self._adjust_balance(target.id, data.amount - previous_amount)
            else:
                if previous_account is not None and previous_account.is_manual:
                    self._adjust_balance(previous_account.id, -previous_amount)
                if target.is_manual:
                    self._adjust_balance(target.id, data.amount)

        self.db.refresh(transaction)
        return transaction

    def delete(self, transaction_id: str) -> None:
        """
        Remove a transaction and reverse its effect on a manual account.

        Deleting twice raises ``NotFoundError`` the second time, so the
        balance is never reversed twice.
        """
        with unit_of_work(self.db):
            transaction = self._get_owned_transaction(transaction_id)
            account = self._get_owned_account(transaction.account_id)
            if account is not None and account.is_manual:
                self._adjust_balance(account.id, -Decimal(transaction.amount))
            self.db.delete(transaction)

        logger.info(f"Deleted transaction {transaction_id} for user {self.user_id}")
