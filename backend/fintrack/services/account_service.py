"""
Service for app-owned (manual) bank accounts.
"""
import json
import logging
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from fintrack.database import unit_of_work
from fintrack.db_helpers import ensure_user
from fintrack.errors import NotFoundError
from fintrack.models import Account, BudgetItem, MANUAL_PROVIDER, Transaction
from fintrack.pagination import PageMeta, paginate_query
from fintrack.schemas import AccountResponse, ManualAccountCreate, ManualAccountUpdate
from fintrack.services.transaction_service import TransactionService

logger = logging.getLogger(__name__)


def manual_account_type(account: Account) -> Optional[str]:
    """The "type" label kept in a manual account's plain JSON metadata."""
    if not account.data_enc:
        return account.provider_item
    try:
        metadata = json.loads(account.data_enc)
    except ValueError:
        logger.warning(f"Could not parse metadata of manual account {account.id}")
        return account.provider_item
    if isinstance(metadata, dict):
        return metadata.get("type") or account.provider_item
    return account.provider_item


def serialize_account(account: Account) -> AccountResponse:
    return AccountResponse(
        id=account.id,
        provider=account.provider,
        provider_item=account.provider_item,
        name=account.name,
        currency=account.currency,
        balance=account.balance,
        mask=account.mask,
        type=manual_account_type(account) if account.is_manual else None,
        created_at=account.created_at,
        updated_at=account.updated_at,
    )


def remove_account(db: Session, user_id: str, account: Account) -> None:
    """
    Delete an account with its transactions and detach budget items pointing at it.

    Runs inside the caller's unit of work.
    """
    db.query(Transaction).filter(
        Transaction.account_id == account.id,
        Transaction.user_id == user_id,
    ).delete(synchronize_session=False)
    db.query(BudgetItem).filter(BudgetItem.account_id == account.id).update(
        {BudgetItem.account_id: None},
        synchronize_session=False,
    )
    db.delete(account)


class AccountService:
    """Owner-scoped manual account management."""

    def __init__(self, db: Session, user_id: str):
        self.db = db
        self.user_id = user_id

    def _get_owned_manual(self, account_id: str) -> Account:
        account = self.db.query(Account).filter(
            Account.id == account_id,
            Account.user_id == self.user_id,
            Account.provider == MANUAL_PROVIDER,
        ).first()
        if not account:
            raise NotFoundError("Account not found")
        return account

    def list_page(
        self,
        page: int,
        page_size: int,
        provider: Optional[str] = None,
    ) -> Tuple[List[Account], PageMeta]:
        query = self.db.query(Account).filter(Account.user_id == self.user_id)
        if provider:
            query = query.filter(Account.provider == provider)
        query = query.order_by(Account.created_at.desc(), Account.id.asc())
        return paginate_query(query, page, page_size)

    def create_manual(self, data: ManualAccountCreate) -> Account:
        """
        Create a manual account. This is the only time a client sets its balance.

        Args:
            data: Sanitized account input

        Returns:
            The persisted Account
        """
        with unit_of_work(self.db):
            ensure_user(self.db, self.user_id)
            account = Account(
                user_id=self.user_id,
                provider=MANUAL_PROVIDER,
                provider_item=data.type,
                name=data.name,
                currency=data.currency,
                balance=data.balance,
                data_enc=json.dumps({"type": data.type}) if data.type else None,
            )
            self.db.add(account)

        self.db.refresh(account)
        logger.info(f"Created manual account {account.id} for user {self.user_id}")
        return account

    def update_manual(self, account_id: str, data: ManualAccountUpdate) -> Account:
        """Rename or relabel a manual account; its balance is left to the ledger."""
        with unit_of_work(self.db):
            account = self._get_owned_manual(account_id)
            provided = data.provided()
            if "name" in provided:
                account.name = data.name
            if "currency" in provided:
                account.currency = data.currency
            if "type" in provided:
                account.provider_item = data.type
                account.data_enc = json.dumps({"type": data.type}) if data.type else None

        self.db.refresh(account)
        return account

    def delete_manual(self, account_id: str) -> None:
        with unit_of_work(self.db):
            account = self._get_owned_manual(account_id)
            remove_account(self.db, self.user_id, account)

        logger.info(f"Deleted manual account {account_id} for user {self.user_id}")

    def ensure_default_manual(self) -> Account:
        with unit_of_work(self.db):
            account = TransactionService(self.db, self.user_id).resolve_default_manual_account()

        self.db.refresh(account)
        return account
