"""
Base client interface for open-finance aggregators, plus the canonical
records the sync service writes.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from fintrack.validation import parse_datetime

CREDIT_CARD = "credit_card"
CREDIT_CARD_TRANSACTION = "credit_card_transaction"
INVESTMENT = "investment"
INVESTMENT_TRANSACTION = "investment_transaction"
LOAN = "loan"
LOAN_TRANSACTION = "loan_transaction"

RESOURCE_TYPES = (
    CREDIT_CARD,
    CREDIT_CARD_TRANSACTION,
    INVESTMENT,
    INVESTMENT_TRANSACTION,
    LOAN,
    LOAN_TRANSACTION,
)


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    """First value under ``keys`` that is not None."""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return None


def _first_truthy(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value:
            return value
    return None


def decimal_or_none(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        parsed = Decimal(str(value))
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def datetime_or_none(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return parse_datetime(value, "date")
    except ValueError:
        return None


def id_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


def currency_of(raw: Dict[str, Any], default: str) -> str:
    return raw.get("currencyCode") or raw.get("currency") or default


class AccountData(BaseModel):
    """Canonical account data model."""
    external_id: str
    name: str
    currency: str
    balance: Decimal
    mask: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Dict[str, Any], default_currency: str) -> "AccountData":
        number = raw.get("number")
        return cls(
            external_id=str(raw["id"]),
            name=raw.get("name") or "",
            currency=currency_of(raw, default_currency),
            balance=decimal_or_none(raw.get("balance")) or Decimal("0"),
            mask=str(number)[-4:] if number else None,
        )


class TransactionData(BaseModel):
    """Canonical transaction data model."""
    external_id: str
    account_external_id: str
    description: str
    category: Optional[str] = None
    currency: str
    amount: Decimal
    date: datetime

    @classmethod
    def from_raw(cls, raw: Dict[str, Any], default_currency: str) -> Optional["TransactionData"]:
        """Canonical record, or ``None`` when the id, account or date is unusable."""
        external_id = id_or_none(raw.get("id"))
        account_external_id = id_or_none(raw.get("accountId"))
        date = datetime_or_none(raw.get("date"))
        if not external_id or not account_external_id or date is None:
            return None
        return cls(
            external_id=external_id,
            account_external_id=account_external_id,
            description=raw.get("description") or "",
            category=raw.get("category") or None,
            currency=currency_of(raw, default_currency),
            amount=decimal_or_none(raw.get("amount")) or Decimal("0"),
            date=date,
        )


class ResourceData(BaseModel):
    """Canonical record for credit cards, investments, loans and their transactions."""
    resource_type: str
    provider_resource_id: str
    account_id: Optional[str] = None
    name: Optional[str] = None
    category: Optional[str] = None
    currency: str
    amount: Optional[Decimal] = None
    balance: Optional[Decimal] = None
    date: Optional[datetime] = None
    due_date: Optional[datetime] = None


def normalize_credit_card(raw: Dict[str, Any], default_currency: str) -> Optional[ResourceData]:
    resource_id = id_or_none(_first(raw, "id", "creditCardId", "externalId"))
    if not resource_id:
        return None
    return ResourceData(
        resource_type=CREDIT_CARD,
        provider_resource_id=resource_id,
        account_id=raw.get("accountId"),
        name=_first_truthy(raw, "name", "displayName", "number"),
        category=_first_truthy(raw, "brand", "paymentNetwork", "type"),
        currency=currency_of(raw, default_currency),
        amount=decimal_or_none(_first(raw, "availableCredit", "creditLimit", "limit")),
        balance=decimal_or_none(_first(raw, "balance", "currentBalance", "outstandingBalance")),
        due_date=datetime_or_none(_first(raw, "dueDate", "nextDueDate", "dueDay")),
    )


def normalize_credit_card_transaction(
    raw: Dict[str, Any], card: ResourceData, default_currency: str
) -> Optional[ResourceData]:
    resource_id = id_or_none(_first(raw, "id", "transactionId", "externalId"))
    if not resource_id:
        return None
    return ResourceData(
        resource_type=CREDIT_CARD_TRANSACTION,
        provider_resource_id=resource_id,
        account_id=card.account_id,
        name=_first_truthy(raw, "description", "merchant"),
        category=_first_truthy(raw, "category", "type"),
        currency=currency_of(raw, default_currency),
        amount=decimal_or_none(_first(raw, "amount", "value")),
        date=datetime_or_none(_first(raw, "date", "postingDate", "time")),
    )


def normalize_investment(raw: Dict[str, Any], default_currency: str) -> Optional[ResourceData]:
    resource_id = id_or_none(_first(raw, "id", "investmentId", "externalId"))
    if not resource_id:
        return None
    return ResourceData(
        resource_type=INVESTMENT,
        provider_resource_id=resource_id,
        account_id=raw.get("accountId"),
        name=_first_truthy(raw, "name", "security", "product"),
        category=_first_truthy(raw, "type", "subtype"),
        currency=currency_of(raw, default_currency),
        amount=decimal_or_none(_first(raw, "quantity", "units")),
        balance=decimal_or_none(_first(raw, "balance", "marketValue", "value")),
    )


def normalize_investment_transaction(raw: Dict[str, Any], default_currency: str) -> Optional[ResourceData]:
    resource_id = id_or_none(_first(raw, "id", "transactionId", "externalId"))
    if not resource_id:
        return None
    return ResourceData(
        resource_type=INVESTMENT_TRANSACTION,
        provider_resource_id=resource_id,
        account_id=raw.get("accountId"),
        name=_first_truthy(raw, "description", "security", "product"),
        category=_first_truthy(raw, "type", "operationType"),
        currency=currency_of(raw, default_currency),
        amount=decimal_or_none(_first(raw, "amount", "value")),
        balance=decimal_or_none(_first(raw, "quantity", "units")),
        date=datetime_or_none(_first(raw, "date", "operationDate", "tradeDate")),
    )


def normalize_loan(raw: Dict[str, Any], default_currency: str) -> Optional[ResourceData]:
    resource_id = id_or_none(_first(raw, "id", "loanId", "externalId"))
    if not resource_id:
        return None
    return ResourceData(
        resource_type=LOAN,
        provider_resource_id=resource_id,
        account_id=raw.get("accountId"),
        name=_first_truthy(raw, "name", "product", "type"),
        category=_first_truthy(raw, "subtype", "category"),
        currency=currency_of(raw, default_currency),
        amount=decimal_or_none(_first(raw, "installmentAmount", "paymentAmount")),
        balance=decimal_or_none(_first(raw, "balance", "remainingBalance", "principal")),
        due_date=datetime_or_none(_first(raw, "nextDueDate", "dueDate", "endDate")),
    )


def normalize_loan_transaction(
    raw: Dict[str, Any], loan: ResourceData, default_currency: str
) -> Optional[ResourceData]:
    resource_id = id_or_none(_first(raw, "id", "transactionId", "externalId"))
    if not resource_id:
        return None
    return ResourceData(
        resource_type=LOAN_TRANSACTION,
        provider_resource_id=resource_id,
        account_id=loan.account_id or raw.get("accountId"),
        name=_first_truthy(raw, "description", "type"),
        category=_first_truthy(raw, "category", "subtype"),
        currency=currency_of(raw, default_currency),
        amount=decimal_or_none(_first(raw, "amount", "value")),
        date=datetime_or_none(_first(raw, "date", "postingDate", "time")),
    )


class AggregatorClient(ABC):
    """
    Abstract base class for aggregator clients.

    Every listing returns the aggregator's raw records (dicts); paging is the
    client's concern, callers always receive the full list.
    """

    @abstractmethod
    def list_accounts(self, item_id: str) -> List[Dict[str, Any]]:
        """Fetch all accounts of a linked item."""
        pass

    @abstractmethod
    def list_transactions(self, item_id: str) -> List[Dict[str, Any]]:
        """Fetch all transactions of a linked item."""
        pass

    @abstractmethod
    def list_credit_cards(self, item_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_credit_card_transactions(self, credit_card_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_investments(self, item_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_investment_transactions(self, item_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_loans(self, item_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def list_loan_transactions(self, loan_id: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def create_connect_token(self, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Create a token the frontend widget uses to link a new item."""
        pass
