"""
Request and response schemas.

Input models are the allow-lists of the Sanitizing Input Layer: each one names
exactly the fields a client may set for an entity and ignores everything else
(``id``, ``userId``, ``createdAt``, ``paidAt``...). They are fed through
``fintrack.validation.sanitize``. Clients speak camelCase; Python attributes
are snake_case.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fintrack.models import default_currency
from fintrack.validation import (
    currency_code,
    optional_trimmed,
    parse_amount,
    parse_money,
    parse_datetime,
    parse_optional_datetime,
    required_trimmed,
)


class InputModel(BaseModel):
    """Base for allow-listed client payloads."""

    model_config = ConfigDict(
        extra="ignore",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def provided(self) -> Dict[str, Any]:
        """Fields the client actually sent, by attribute name."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class ApiModel(BaseModel):
    """Base for responses rendered with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _reject_null(value: Any, field: str) -> Any:
    if value is None:
        raise ValueError(f"{field} cannot be null")
    return value


# Transaction Schemas
class TransactionInput(InputModel):
    """Body of POST /transactions and PUT /transactions/{id}. Currency is never accepted."""

    description: str
    category: Optional[str] = None
    amount: Decimal
    date: datetime
    account_id: Optional[str] = None

    @field_validator("description", mode="before")
    @classmethod
    def _description(cls, value: Any) -> str:
        return required_trimmed(value, "description")

    @field_validator("category", "account_id", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return optional_trimmed(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> Decimal:
        return parse_money(value, "amount")

    @field_validator("date", mode="before")
    @classmethod
    def _date(cls, value: Any) -> datetime:
        return parse_datetime(value, "date")


class TransactionResponse(ApiModel):
    id: str
    account_id: str
    description: str
    category: Optional[str] = None
    currency: str
    amount: float
    date: datetime
    is_recurring: bool
    created_at: datetime


# Account Schemas
class ManualAccountCreate(InputModel):
    name: str
    currency: str
    balance: Decimal
    type: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _required_text(cls, value: Any, info) -> str:
        return required_trimmed(value, info.field_name)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> str:
        return currency_code(value)

    @field_validator("balance", mode="before")
    @classmethod
    def _balance(cls, value: Any) -> Decimal:
        return parse_money(value, "balance")

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, value: Any) -> Optional[str]:
        return optional_trimmed(value)


class ManualAccountUpdate(InputModel):
    """Balance is deliberately absent: manual balances move only through transactions."""

    name: Optional[str] = None
    currency: Optional[str] = None
    type: Optional[str] = None

    @field_validator("name", mode="before")
    @classmethod
    def _required_text(cls, value: Any, info) -> str:
        return required_trimmed(value, info.field_name)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> str:
        return currency_code(value)

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, value: Any) -> Optional[str]:
        return optional_trimmed(value)


class AccountResponse(ApiModel):
    id: str
    provider: str
    provider_item: Optional[str] = None
    name: str
    currency: str
    balance: float
    mask: Optional[str] = None
    type: Optional[str] = None
    created_at: datetime
    updated_at: datetime


# Sync Schemas
class SyncImportRequest(InputModel):
    item_id: str

    @field_validator("item_id", mode="before")
    @classmethod
    def _item_id(cls, value: Any) -> str:
        return required_trimmed(value, "itemId")


class SyncAccountResponse(AccountResponse):
    data: Optional[Any] = None


class SyncTransactionResponse(TransactionResponse):
    raw: Optional[Any] = None


class ProviderResourceResponse(ApiModel):
    id: str
    item_id: str
    resource_type: str
    provider_resource_id: str
    account_id: Optional[str] = None
    name: Optional[str] = None
    category: Optional[str] = None
    currency: Optional[str] = None
    amount: Optional[float] = None
    balance: Optional[float] = None
    date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    data: Optional[Any] = None


class SyncListing(ApiModel):
    accounts: List[SyncAccountResponse]
    transactions: List[SyncTransactionResponse]
    credit_cards: List[ProviderResourceResponse] = Field(default_factory=list)
    credit_card_transactions: List[ProviderResourceResponse] = Field(default_factory=list)
    investments: List[ProviderResourceResponse] = Field(default_factory=list)
    investment_transactions: List[ProviderResourceResponse] = Field(default_factory=list)
    loans: List[ProviderResourceResponse] = Field(default_factory=list)
    loan_transactions: List[ProviderResourceResponse] = Field(default_factory=list)


# Loan Schemas
LOAN_TYPES = ("lent", "borrowed")


class LoanCreate(InputModel):
    title: str
    description: Optional[str] = None
    amount: Decimal
    currency: str = Field(default_factory=default_currency)
    lender_name: str
    lender_contact: Optional[str] = None
    type: str
    interest_rate: Optional[Decimal] = None
    installment_count: Optional[int] = None
    due_date: Optional[datetime] = None

    @field_validator("title", "lender_name", "type", mode="before")
    @classmethod
    def _required_text(cls, value: Any, info) -> str:
        return required_trimmed(value, to_camel(info.field_name))

    @field_validator("description", "lender_contact", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return optional_trimmed(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> str:
        return currency_code(value) if optional_trimmed(value) else default_currency()

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> Decimal:
        return parse_money(value, "amount")

    @field_validator("interest_rate", mode="before")
    @classmethod
    def _interest_rate(cls, value: Any) -> Optional[Decimal]:
        if value is None or value == "":
            return None
        return parse_amount(value, "interestRate")

    @field_validator("due_date", mode="before")
    @classmethod
    def _due_date(cls, value: Any) -> Optional[datetime]:
        return parse_optional_datetime(value, "dueDate")

    @field_validator("type")
    @classmethod
    def _loan_type(cls, value: str) -> str:
        if value not in LOAN_TYPES:
            raise ValueError("invalid loan type")
        return value


class LoanUpdate(InputModel):
    """``paidAt`` is not accepted; it is derived from ``isPaid``."""

    title: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    lender_name: Optional[str] = None
    lender_contact: Optional[str] = None
    type: Optional[str] = None
    interest_rate: Optional[Decimal] = None
    installment_count: Optional[int] = None
    due_date: Optional[datetime] = None
    is_paid: Optional[bool] = None

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> str:
        return currency_code(value)

    @field_validator("title", "lender_name", "type", mode="before")
    @classmethod
    def _required_text(cls, value: Any, info) -> str:
        return required_trimmed(value, to_camel(info.field_name))

    @field_validator("description", "lender_contact", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return optional_trimmed(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> Decimal:
        return parse_money(value, "amount")

    @field_validator("interest_rate", mode="before")
    @classmethod
    def _interest_rate(cls, value: Any) -> Optional[Decimal]:
        if value is None or value == "":
            return None
        return parse_amount(value, "interestRate")

    @field_validator("due_date", mode="before")
    @classmethod
    def _due_date(cls, value: Any) -> Optional[datetime]:
        return parse_optional_datetime(value, "dueDate")

    @field_validator("is_paid", mode="before")
    @classmethod
    def _is_paid(cls, value: Any) -> bool:
        return _reject_null(value, "isPaid")

    @field_validator("type")
    @classmethod
    def _loan_type(cls, value: str) -> str:
        if value not in LOAN_TYPES:
            raise ValueError("invalid loan type")
        return value


class LoanResponse(ApiModel):
    id: str
    title: str
    description: Optional[str] = None
    amount: float
    currency: str
    lender_name: str
    lender_contact: Optional[str] = None
    type: str
    interest_rate: Optional[float] = None
    installment_count: Optional[int] = None
    due_date: Optional[datetime] = None
    is_paid: bool
    paid_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# Goal Schemas
class GoalCreate(InputModel):
    title: str
    description: Optional[str] = None
    target_amount: Decimal
    current_amount: Decimal = Decimal("0")
    currency: str = Field(default_factory=default_currency)
    target_date: datetime
    category: Optional[str] = None
    priority: str = "medium"

    @field_validator("title", mode="before")
    @classmethod
    def _title(cls, value: Any) -> str:
        return required_trimmed(value, "title")

    @field_validator("description", "category", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return optional_trimmed(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> str:
        return currency_code(value) if optional_trimmed(value) else default_currency()

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, value: Any) -> str:
        return optional_trimmed(value) or "medium"

    @field_validator("target_amount", "current_amount", mode="before")
    @classmethod
    def _amounts(cls, value: Any, info) -> Decimal:
        return parse_money(value, to_camel(info.field_name))

    @field_validator("target_date", mode="before")
    @classmethod
    def _target_date(cls, value: Any) -> datetime:
        return parse_datetime(value, "targetDate")


class GoalUpdate(InputModel):
    title: Optional[str] = None
    description: Optional[str] = None
    target_amount: Optional[Decimal] = None
    current_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    target_date: Optional[datetime] = None
    category: Optional[str] = None
    priority: Optional[str] = None
    is_completed: Optional[bool] = None

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> str:
        return currency_code(value)

    @field_validator("title", "priority", mode="before")
    @classmethod
    def _required_text(cls, value: Any, info) -> str:
        return required_trimmed(value, info.field_name)

    @field_validator("description", "category", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return optional_trimmed(value)

    @field_validator("target_amount", "current_amount", mode="before")
    @classmethod
    def _amounts(cls, value: Any, info) -> Decimal:
        return parse_money(value, to_camel(info.field_name))

    @field_validator("target_date", mode="before")
    @classmethod
    def _target_date(cls, value: Any) -> datetime:
        return parse_datetime(value, "targetDate")

    @field_validator("is_completed", mode="before")
    @classmethod
    def _is_completed(cls, value: Any) -> bool:
        return _reject_null(value, "isCompleted")


class GoalResponse(ApiModel):
    id: str
    title: str
    description: Optional[str] = None
    target_amount: float
    current_amount: float
    currency: str
    target_date: datetime
    category: Optional[str] = None
    priority: str
    is_completed: bool
    created_at: datetime
    updated_at: datetime


# Subscription Schemas
class SubscriptionCreate(InputModel):
    name: str
    description: Optional[str] = None
    amount: Decimal
    currency: str = Field(default_factory=default_currency)
    billing_cycle: str
    next_billing: datetime
    category: Optional[str] = None
    auto_renew: bool = True

    @field_validator("name", "billing_cycle", mode="before")
    @classmethod
    def _required_text(cls, value: Any, info) -> str:
        return required_trimmed(value, to_camel(info.field_name))

    @field_validator("description", "category", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return optional_trimmed(value)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> str:
        return currency_code(value) if optional_trimmed(value) else default_currency()

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> Decimal:
        return parse_money(value, "amount")

    @field_validator("next_billing", mode="before")
    @classmethod
    def _next_billing(cls, value: Any) -> datetime:
        return parse_datetime(value, "nextBilling")

    @field_validator("auto_renew", mode="before")
    @classmethod
    def _auto_renew(cls, value: Any) -> bool:
        return True if value is None else value


class SubscriptionUpdate(InputModel):
    name: Optional[str] = None
    description: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    billing_cycle: Optional[str] = None
    next_billing: Optional[datetime] = None
    category: Optional[str] = None
    auto_renew: Optional[bool] = None

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> str:
        return currency_code(value)

    @field_validator("name", "billing_cycle", mode="before")
    @classmethod
    def _required_text(cls, value: Any, info) -> str:
        return required_trimmed(value, to_camel(info.field_name))

    @field_validator("description", "category", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return optional_trimmed(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> Decimal:
        return parse_money(value, "amount")

    @field_validator("next_billing", mode="before")
    @classmethod
    def _next_billing(cls, value: Any) -> datetime:
        return parse_datetime(value, "nextBilling")

    @field_validator("auto_renew", mode="before")
    @classmethod
    def _auto_renew(cls, value: Any) -> bool:
        return _reject_null(value, "autoRenew")


class SubscriptionResponse(ApiModel):
    id: str
    name: str
    description: Optional[str] = None
    amount: float
    currency: str
    billing_cycle: str
    next_billing: datetime
    category: Optional[str] = None
    auto_renew: bool
    created_at: datetime
    updated_at: datetime


# Budget Schemas
class BudgetItemInput(InputModel):
    name: Optional[str] = None
    category: str
    amount: Decimal
    spent: Decimal = Decimal("0")
    currency: Optional[str] = None

    @field_validator("category", mode="before")
    @classmethod
    def _category(cls, value: Any) -> str:
        return required_trimmed(value, "category")

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> Optional[str]:
        return currency_code(value) if optional_trimmed(value) else None

    @field_validator("name", mode="before")
    @classmethod
    def _optional_text(cls, value: Any) -> Optional[str]:
        return optional_trimmed(value)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, value: Any) -> Decimal:
        return parse_money(value, "amount")

    @field_validator("spent", mode="before")
    @classmethod
    def _spent(cls, value: Any) -> Decimal:
        if value is None or value == "":
            return Decimal("0")
        return parse_money(value, "spent")


class BudgetCreate(InputModel):
    name: str
    total_amount: Decimal
    currency: str = Field(default_factory=default_currency)
    period: str
    start_date: datetime
    end_date: datetime
    items: List[BudgetItemInput] = Field(default_factory=list)

    @field_validator("name", "period", mode="before")
    @classmethod
    def _required_text(cls, value: Any, info) -> str:
        return required_trimmed(value, info.field_name)

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> str:
        return currency_code(value) if optional_trimmed(value) else default_currency()

    @field_validator("total_amount", mode="before")
    @classmethod
    def _total_amount(cls, value: Any) -> Decimal:
        return parse_money(value, "totalAmount")

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _dates(cls, value: Any, info) -> datetime:
        return parse_datetime(value, to_camel(info.field_name))

    @field_validator("items", mode="before")
    @classmethod
    def _items(cls, value: Any) -> Any:
        return [] if value is None else value

    @model_validator(mode="after")
    def _date_order(self) -> "BudgetCreate":
        if self.end_date < self.start_date:
            raise ValueError("endDate must not precede startDate")
        return self


class BudgetUpdate(InputModel):
    name: Optional[str] = None
    total_amount: Optional[Decimal] = None
    currency: Optional[str] = None
    period: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    items: Optional[List[BudgetItemInput]] = None

    @field_validator("currency", mode="before")
    @classmethod
    def _currency(cls, value: Any) -> str:
        return currency_code(value)

    @field_validator("name", "period", mode="before")
    @classmethod
    def _required_text(cls, value: Any, info) -> str:
        return required_trimmed(value, info.field_name)

    @field_validator("total_amount", mode="before")
    @classmethod
    def _total_amount(cls, value: Any) -> Decimal:
        return parse_money(value, "totalAmount")

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def _dates(cls, value: Any, info) -> datetime:
        return parse_datetime(value, to_camel(info.field_name))


class BudgetItemResponse(ApiModel):
    id: str
    account_id: Optional[str] = None
    name: Optional[str] = None
    category: str
    amount: float
    spent: float
    currency: str


class BudgetResponse(ApiModel):
    id: str
    name: str
    total_amount: float
    currency: str
    period: str
    start_date: datetime
    end_date: datetime
    is_active: bool
    items: List[BudgetItemResponse]
    created_at: datetime
    updated_at: datetime


def apply_loan_update(loan: Any, update: LoanUpdate, now: datetime) -> None:
    """
    Copy the provided fields of ``update`` onto ``loan`` and derive ``paid_at``.

    ``paid_at`` becomes ``now`` when the loan turns paid, is cleared whenever
    ``isPaid`` is sent as false, and is left alone otherwise.
    """
    provided = update.provided()
    was_paid = bool(loan.is_paid)

    for field, value in provided.items():
        if field == "is_paid":
            continue
        setattr(loan, field, value)

    if "is_paid" in provided:
        loan.is_paid = provided["is_paid"]
        if provided["is_paid"] and not was_paid:
            loan.paid_at = now
        elif not provided["is_paid"]:
            loan.paid_at = None
