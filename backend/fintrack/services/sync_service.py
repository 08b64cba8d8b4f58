"""
Service for syncing aggregator data (accounts, transactions and provider resources).

Every record is upserted by the aggregator's id and committed as it goes, so
an import that fails halfway keeps what it already wrote and a retry of the
same item converges to the same stored state. Provider balances are copied
wholesale; the manual-account ledger is never touched here.
"""
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from fintrack.database import unit_of_work
from fintrack.db_helpers import ensure_user
from fintrack.errors import ConfigurationError, NotFoundError
from fintrack.integrations import base
from fintrack.integrations.base import (
    AccountData,
    AggregatorClient,
    ResourceData,
    TransactionData,
)
from fintrack.models import (
    Account,
    PLUGGY_PROVIDER,
    ProviderResource,
    Transaction,
    default_currency,
)
from fintrack.schemas import (
    ProviderResourceResponse,
    SyncAccountResponse,
    SyncListing,
    SyncTransactionResponse,
)
from fintrack.security.data_encryption import decrypt_json, encrypt_json
from fintrack.services.account_service import remove_account, serialize_account

logger = logging.getLogger(__name__)

RECENT_TRANSACTIONS_LIMIT = 50


def _as_json(value: Any) -> Any:
    """Normalize a raw record to what it looks like after a JSON round trip."""
    return json.loads(json.dumps(value, default=str))


class SyncService:
    """Service for syncing aggregator data for one owner."""

    def __init__(self, db: Session, user_id: str, client: Optional[AggregatorClient] = None):
        self.db = db
        self.user_id = user_id
        self.client = client
        self.currency = default_currency()

    @staticmethod
    def _seal(existing: Optional[str], raw: Dict[str, Any]) -> str:
        """
        Encrypted copy of ``raw``; an existing envelope holding the same record
        is kept as is so replaying an import rewrites nothing.
        """
        if existing:
            try:
                if decrypt_json(existing) == _as_json(raw):
                    return existing
            except (ValueError, ConfigurationError):
                logger.warning("Stored payload could not be decrypted; re-encrypting")
        return encrypt_json(raw)

    def _upsert_account(self, item_id: str, raw: Dict[str, Any]) -> Optional[Account]:
        data = AccountData.from_raw(raw, self.currency)
        with unit_of_work(self.db):
            account = self.db.query(Account).filter(Account.id == data.external_id).first()
            if account is not None and account.user_id != self.user_id:
                logger.warning(
                    f"Skipping aggregator account {data.external_id}: owned by another user"
                )
                return None

            if account is None:
                account = Account(id=data.external_id, user_id=self.user_id)
                self.db.add(account)

            account.provider = PLUGGY_PROVIDER
            account.provider_item = item_id
            account.name = data.name
            account.currency = data.currency
            account.balance = data.balance
            account.mask = data.mask
            account.data_enc = self._seal(account.data_enc, raw)
        return account

    def _upsert_transaction(self, raw: Dict[str, Any], owned_account_ids: set) -> bool:
        data = TransactionData.from_raw(raw, self.currency)
        if data is None:
            logger.warning(f"Skipping aggregator transaction {raw.get('id')}: missing id, account or date")
            return False
        if data.account_external_id not in owned_account_ids:
            logger.warning(
                f"Skipping aggregator transaction {data.external_id}: "
                f"account {data.account_external_id} is not synced for this user"
            )
            return False

        with unit_of_work(self.db):
            transaction = self.db.query(Transaction).filter(Transaction.id == data.external_id).first()
            if transaction is not None and transaction.user_id != self.user_id:
                logger.warning(
                    f"Skipping aggregator transaction {data.external_id}: owned by another user"
                )
                return False

            # A row the owner moved onto a manual account belongs to that ledger now.
            if transaction is not None:
                current = self.db.query(Account).filter(Account.id == transaction.account_id).first()
                if current is not None and current.is_manual:
                    logger.warning(
                        f"Skipping aggregator transaction {data.external_id}: "
                        f"attached to manual account {current.id}"
                    )
                    return False

            if transaction is None:
                transaction = Transaction(id=data.external_id, user_id=self.user_id)
                self.db.add(transaction)

            transaction.account_id = data.account_external_id
            transaction.description = data.description
            transaction.category = data.category
            transaction.currency = data.currency
            transaction.amount = data.amount
            transaction.date = data.date
            transaction.raw_enc = self._seal(transaction.raw_enc, raw)
        return True

    def _upsert_resource(self, item_id: str, data: ResourceData, raw: Dict[str, Any]) -> bool:
        with unit_of_work(self.db):
            resource = self.db.query(ProviderResource).filter(
                ProviderResource.provider == PLUGGY_PROVIDER,
                ProviderResource.resource_type == data.resource_type,
                ProviderResource.provider_resource_id == data.provider_resource_id,
            ).first()
            if resource is not None and resource.user_id != self.user_id:
                logger.warning(
                    f"Skipping {data.resource_type} {data.provider_resource_id}: owned by another user"
                )
                return False

            if resource is None:
                resource = ProviderResource(
                    user_id=self.user_id,
                    provider=PLUGGY_PROVIDER,
                    resource_type=data.resource_type,
                    provider_resource_id=data.provider_resource_id,
                )
                self.db.add(resource)

            resource.item_id = item_id
            resource.account_id = data.account_id
            resource.name = data.name
            resource.category = data.category
            resource.currency = data.currency
            resource.amount = data.amount
            resource.balance = data.balance
            resource.date = data.date
            resource.due_date = data.due_date
            resource.data_enc = self._seal(resource.data_enc, raw)
        return True

    def _prune_resources(self, item_id: str, resource_types: List[str], keep_ids: List[str]) -> int:
        """Delete this item's resources of ``resource_types`` that the aggregator no longer returns."""
        with unit_of_work(self.db):
            query = self.db.query(ProviderResource).filter(
                ProviderResource.user_id == self.user_id,
                ProviderResource.provider == PLUGGY_PROVIDER,
                ProviderResource.item_id == item_id,
                ProviderResource.resource_type.in_(resource_types),
            )
            if keep_ids:
                query = query.filter(ProviderResource.provider_resource_id.notin_(keep_ids))
            removed = query.delete(synchronize_session=False)
        if removed:
            logger.info(f"Pruned {removed} stale {'/'.join(resource_types)} records for item {item_id}")
        return removed

    def _sync_family(
        self,
        item_id: str,
        family: str,
        resource_types: List[str],
        sync: Callable[[List[str]], None],
    ) -> int:
        """
        Run one best-effort resource family import, then prune what it did not see.

        Configuration errors still abort the whole import. Pruning is skipped
        when the family listing itself failed so an outage never wipes data.
        """
        seen: List[str] = []
        try:
            sync(seen)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"Failed to sync {family} for item {item_id}: {e}")
            return len(seen)

        self._prune_resources(item_id, resource_types, seen)
        return len(seen)

    def _sync_credit_cards(self, item_id: str, seen: List[str]) -> None:
        for raw_card in self.client.list_credit_cards(item_id):
            card = base.normalize_credit_card(raw_card, self.currency)
            if card is None:
                continue
            seen.append(card.provider_resource_id)
            self._upsert_resource(item_id, card, raw_card)

            try:
                raw_transactions = self.client.list_credit_card_transactions(card.provider_resource_id)
            except ConfigurationError:
                raise
            except Exception as e:
                logger.warning(f"Failed to sync transactions of credit card {card.provider_resource_id}: {e}")
                continue

            for raw_tx in raw_transactions:
                tx = base.normalize_credit_card_transaction(raw_tx, card, self.currency)
                if tx is None:
                    continue
                seen.append(tx.provider_resource_id)
                self._upsert_resource(item_id, tx, {**raw_tx, "creditCardId": card.provider_resource_id})

    def _sync_investments(self, item_id: str, seen: List[str]) -> None:
        for raw_investment in self.client.list_investments(item_id):
            investment = base.normalize_investment(raw_investment, self.currency)
            if investment is None:
                continue
            seen.append(investment.provider_resource_id)
            self._upsert_resource(item_id, investment, raw_investment)

        try:
            raw_transactions = self.client.list_investment_transactions(item_id)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"Failed to sync investment transactions for item {item_id}: {e}")
            return

        for raw_tx in raw_transactions:
            tx = base.normalize_investment_transaction(raw_tx, self.currency)
            if tx is None:
                continue
            seen.append(tx.provider_resource_id)
            self._upsert_resource(item_id, tx, raw_tx)

    def _sync_loans(self, item_id: str, seen: List[str]) -> None:
        for raw_loan in self.client.list_loans(item_id):
            loan = base.normalize_loan(raw_loan, self.currency)
            if loan is None:
                continue
            seen.append(loan.provider_resource_id)
            self._upsert_resource(item_id, loan, raw_loan)

            try:
                raw_transactions = self.client.list_loan_transactions(loan.provider_resource_id)
            except ConfigurationError:
                raise
            except Exception as e:
                logger.warning(f"Failed to sync transactions of loan {loan.provider_resource_id}: {e}")
                continue

            for raw_tx in raw_transactions:
                tx = base.normalize_loan_transaction(raw_tx, loan, self.currency)
                if tx is None:
                    continue
                seen.append(tx.provider_resource_id)
                self._upsert_resource(item_id, tx, {**raw_tx, "loanId": loan.provider_resource_id})

    def import_item(self, item_id: str) -> Dict[str, int]:
        """
        Pull everything the aggregator has for a linked item and upsert it.

        Args:
            item_id: Aggregator item id

        Returns:
            Dict with accounts_synced, transactions_synced and resources_synced
        """
        if self.client is None:
            raise ConfigurationError("No aggregator client configured.")

        with unit_of_work(self.db):
            ensure_user(self.db, self.user_id)

        owned_account_ids = set()
        for raw_account in self.client.list_accounts(item_id):
            account = self._upsert_account(item_id, raw_account)
            if account is not None:
                owned_account_ids.add(account.id)

        transactions_synced = 0
        for raw_tx in self.client.list_transactions(item_id):
            if self._upsert_transaction(raw_tx, owned_account_ids):
                transactions_synced += 1

        resources_synced = 0
        resources_synced += self._sync_family(
            item_id,
            "credit cards",
            [base.CREDIT_CARD, base.CREDIT_CARD_TRANSACTION],
            lambda seen: self._sync_credit_cards(item_id, seen),
        )
        resources_synced += self._sync_family(
            item_id,
            "investments",
            [base.INVESTMENT, base.INVESTMENT_TRANSACTION],
            lambda seen: self._sync_investments(item_id, seen),
        )
        resources_synced += self._sync_family(
            item_id,
            "loans",
            [base.LOAN, base.LOAN_TRANSACTION],
            lambda seen: self._sync_loans(item_id, seen),
        )

        result = {
            "accounts_synced": len(owned_account_ids),
            "transactions_synced": transactions_synced,
            "resources_synced": resources_synced,
        }
        logger.info(f"Imported item {item_id} for user {self.user_id}: {result}")
        return result

    def _account_data(self, account: Account) -> Any:
        if not account.data_enc:
            return None
        if account.is_manual:
            try:
                return json.loads(account.data_enc)
            except ValueError:
                logger.warning(f"Could not parse metadata of manual account {account.id}")
                return None
        return decrypt_json(account.data_enc)

    @staticmethod
    def _transaction_response(transaction: Transaction) -> SyncTransactionResponse:
        response = SyncTransactionResponse.model_validate(transaction)
        response.raw = decrypt_json(transaction.raw_enc)
        return response

    def list_for_owner(self, limit: int = RECENT_TRANSACTIONS_LIMIT) -> SyncListing:
        """All accounts, the most recent transactions and provider resources, decrypted."""
        accounts = (
            self.db.query(Account)
            .filter(Account.user_id == self.user_id)
            .order_by(Account.created_at.asc())
            .all()
        )
        transactions = (
            self.db.query(Transaction)
            .filter(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.created_at.desc())
            .limit(limit)
            .all()
        )
        resources = (
            self.db.query(ProviderResource)
            .filter(ProviderResource.user_id == self.user_id)
            .order_by(ProviderResource.created_at.asc())
            .all()
        )

        grouped: Dict[str, List[ProviderResourceResponse]] = {t: [] for t in base.RESOURCE_TYPES}
        for resource in resources:
            if resource.resource_type not in grouped:
                continue
            response = ProviderResourceResponse.model_validate(resource)
            response.data = decrypt_json(resource.data_enc)
            grouped[resource.resource_type].append(response)

        return SyncListing(
            accounts=[
                SyncAccountResponse(
                    **serialize_account(account).model_dump(),
                    data=self._account_data(account),
                )
                for account in accounts
            ],
            transactions=[
                self._transaction_response(tx) for tx in transactions
            ],
            credit_cards=grouped[base.CREDIT_CARD],
            credit_card_transactions=grouped[base.CREDIT_CARD_TRANSACTION],
            investments=grouped[base.INVESTMENT],
            investment_transactions=grouped[base.INVESTMENT_TRANSACTION],
            loans=grouped[base.LOAN],
            loan_transactions=grouped[base.LOAN_TRANSACTION],
        )

    def disconnect_account(self, account_id: str) -> None:
        """
        Remove an owned account and everything hanging off it.

        Raises:
            NotFoundError: If the account is absent or belongs to someone else
        """
        with unit_of_work(self.db):
            account = self.db.query(Account).filter(
                Account.id == account_id,
                Account.user_id == self.user_id,
            ).first()
            if not account:
                raise NotFoundError("Account not found")

            if account.provider == PLUGGY_PROVIDER:
                query = self.db.query(ProviderResource).filter(
                    ProviderResource.user_id == self.user_id,
                    ProviderResource.provider == PLUGGY_PROVIDER,
                )
                if account.provider_item:
                    query = query.filter(
                        or_(
                            ProviderResource.account_id == account_id,
                            ProviderResource.item_id == account.provider_item,
                        )
                    )
                else:
                    query = query.filter(ProviderResource.account_id == account_id)
                query.delete(synchronize_session=False)

            remove_account(self.db, self.user_id, account)

        logger.info(f"Disconnected account {account_id} for user {self.user_id}")
