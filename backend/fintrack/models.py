"""
SQLAlchemy models for accounts, transactions, aggregator resources and the
owner-scoped planning entities (loans, goals, subscriptions, budgets).
"""
import os
import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    Numeric,
    Text,
    Integer,
    ForeignKey,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship
from decimal import Decimal

from fintrack.database import Base

MANUAL_PROVIDER = "manual"
PLUGGY_PROVIDER = "pluggy"
DEFAULT_MANUAL_ACCOUNT_NAME = "Manual Account"


def default_currency() -> str:
    return os.getenv("DEFAULT_CURRENCY", "BRL").strip() or "BRL"


def _new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    """
    Minimal user row for foreign key relationships.
    Identity is owned by the external identity provider.
    """
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(Text, nullable=True)
    name = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    accounts = relationship("Account", back_populates="user", cascade="all, delete-orphan")
    transactions = relationship("Transaction", back_populates="user", cascade="all, delete-orphan")


class Account(Base):
    """
    Bank account, either app-owned (provider == "manual") or mirrored from the
    aggregator. Provider account ids are the aggregator's ids.
    """
    __tablename__ = "accounts"

    id = Column(String(255), primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(50), nullable=False, default=MANUAL_PROVIDER)  # manual, pluggy
    provider_item = Column(String(255), nullable=True)  # aggregator item id, or manual account type label
    name = Column(String(255), nullable=False)
    currency = Column(String(3), nullable=False, default="BRL")
    balance = Column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    mask = Column(String(16), nullable=True)
    data_enc = Column(Text, nullable=True)  # encrypted raw record (provider) or plain JSON metadata (manual)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="accounts")
    transactions = relationship("Transaction", back_populates="account", passive_deletes=True)

    __table_args__ = (
        Index("idx_accounts_user_provider", "user_id", "provider"),
    )

    @property
    def is_manual(self) -> bool:
        return self.provider == MANUAL_PROVIDER


class Transaction(Base):
    """Monetary movement attached to exactly one account. Positive = credit."""
    __tablename__ = "transactions"

    id = Column(String(255), primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(String(255), ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    category = Column(String(255), nullable=True)
    currency = Column(String(3), nullable=False, default="BRL")
    amount = Column(Numeric(15, 2), nullable=False)
    date = Column(DateTime, nullable=False, index=True)
    is_recurring = Column(Boolean, nullable=False, default=False)
    raw_enc = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    user = relationship("User", back_populates="transactions")
    account = relationship("Account", back_populates="transactions")

    __table_args__ = (
        Index("idx_transactions_user_date", "user_id", "date"),
    )


class ProviderResource(Base):
    """
    Non-account aggregator records: credit cards, investments, loans and their
    transactions. Stored encrypted and pruned per import.
    """
    __tablename__ = "provider_resources"

    id = Column(String(255), primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(String(50), nullable=False, default=PLUGGY_PROVIDER)
    item_id = Column(String(255), nullable=False, index=True)
    resource_type = Column(String(50), nullable=False)
    provider_resource_id = Column(String(255), nullable=False)
    account_id = Column(String(255), nullable=True)
    name = Column(String(255), nullable=True)
    category = Column(String(255), nullable=True)
    currency = Column(String(3), nullable=True)
    amount = Column(Numeric(18, 6), nullable=True)
    balance = Column(Numeric(18, 6), nullable=True)
    date = Column(DateTime, nullable=True)
    due_date = Column(DateTime, nullable=True)
    data_enc = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "provider", "resource_type", "provider_resource_id",
            name="provider_resources_provider_type_resource_id",
        ),
    )


class Loan(Base):
    __tablename__ = "loans"

    id = Column(String(255), primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="BRL")
    lender_name = Column(String(255), nullable=False)
    lender_contact = Column(String(255), nullable=True)
    type = Column(String(20), nullable=False)  # lent, borrowed
    interest_rate = Column(Numeric(7, 4), nullable=True)
    installment_count = Column(Integer, nullable=True)
    due_date = Column(DateTime, nullable=True)
    is_paid = Column(Boolean, nullable=False, default=False)
    paid_at = Column(DateTime, nullable=True)  # derived from is_paid, never client-supplied
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Goal(Base):
    __tablename__ = "goals"

    id = Column(String(255), primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    target_amount = Column(Numeric(15, 2), nullable=False)
    current_amount = Column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    currency = Column(String(3), nullable=False, default="BRL")
    target_date = Column(DateTime, nullable=False)
    category = Column(String(255), nullable=True)
    priority = Column(String(20), nullable=False, default="medium")
    is_completed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(255), primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="BRL")
    billing_cycle = Column(String(20), nullable=False)  # monthly, yearly, ...
    next_billing = Column(DateTime, nullable=False)
    category = Column(String(255), nullable=True)
    auto_renew = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class Budget(Base):
    __tablename__ = "budgets"

    id = Column(String(255), primary_key=True, default=_new_id)
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    total_amount = Column(Numeric(15, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="BRL")
    period = Column(String(20), nullable=False)
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    items = relationship(
        "BudgetItem",
        back_populates="budget",
        cascade="all, delete-orphan",
        order_by="BudgetItem.created_at",
    )


class BudgetItem(Base):
    __tablename__ = "budget_items"

    id = Column(String(255), primary_key=True, default=_new_id)
    budget_id = Column(String(255), ForeignKey("budgets.id", ondelete="CASCADE"), nullable=False, index=True)
    account_id = Column(String(255), ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True)
    name = Column(String(255), nullable=True)
    category = Column(String(255), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)
    spent = Column(Numeric(15, 2), nullable=False, default=Decimal("0"))
    currency = Column(String(3), nullable=False, default="BRL")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    budget = relationship("Budget", back_populates="items")
