"""
Owner-scoped CRUD for the planning entities: loans, goals, subscriptions and budgets.
"""
import logging
from typing import Any, Dict, List, Tuple, Type

from sqlalchemy.orm import Session

from fintrack.database import unit_of_work
from fintrack.db_helpers import ensure_user
from fintrack.errors import NotFoundError, ValidationError
from fintrack.models import Budget, BudgetItem, Loan, utcnow
from fintrack.pagination import PageMeta, paginate_query
from fintrack.schemas import (
    BudgetCreate,
    BudgetItemInput,
    BudgetUpdate,
    LoanUpdate,
    apply_loan_update,
)

logger = logging.getLogger(__name__)


class OwnedEntityService:
    """Generic list/create/update/delete for a model with a ``user_id`` column."""

    def __init__(self, db: Session, user_id: str, model: Type[Any], label: str):
        self.db = db
        self.user_id = user_id
        self.model = model
        self.label = label

    def get(self, entity_id: str) -> Any:
        entity = self.db.query(self.model).filter(
            self.model.id == entity_id,
            self.model.user_id == self.user_id,
        ).first()
        if not entity:
            raise NotFoundError(f"{self.label} not found")
        return entity

    def list_page(self, page: int, page_size: int) -> Tuple[List[Any], PageMeta]:
        query = (
            self.db.query(self.model)
            .filter(self.model.user_id == self.user_id)
            .order_by(self.model.created_at.desc(), self.model.id.asc())
        )
        return paginate_query(query, page, page_size)

    def create(self, values: Dict[str, Any]) -> Any:
        with unit_of_work(self.db):
            ensure_user(self.db, self.user_id)
            entity = self.model(user_id=self.user_id, **values)
            self.db.add(entity)

        self.db.refresh(entity)
        return entity

    def update(self, entity_id: str, values: Dict[str, Any]) -> Any:
        with unit_of_work(self.db):
            entity = self.get(entity_id)
            for field, value in values.items():
                setattr(entity, field, value)

        self.db.refresh(entity)
        return entity

    def delete(self, entity_id: str) -> None:
        with unit_of_work(self.db):
            self.db.delete(self.get(entity_id))

        logger.info(f"Deleted {self.label.lower()} {entity_id} for user {self.user_id}")


class LoanService(OwnedEntityService):
    def __init__(self, db: Session, user_id: str):
        super().__init__(db, user_id, Loan, "Loan")

    def update_loan(self, loan_id: str, data: LoanUpdate) -> Loan:
        """Apply a sanitized patch; ``paid_at`` follows ``is_paid`` transitions."""
        with unit_of_work(self.db):
            loan = self.get(loan_id)
            apply_loan_update(loan, data, utcnow())

        self.db.refresh(loan)
        return loan


class BudgetService(OwnedEntityService):
    def __init__(self, db: Session, user_id: str):
        super().__init__(db, user_id, Budget, "Budget")

    def _build_items(self, budget_currency: str, items: List[BudgetItemInput]) -> List[BudgetItem]:
        return [
            BudgetItem(
                name=item.name,
                category=item.category,
                amount=item.amount,
                spent=item.spent,
                currency=item.currency or budget_currency,
            )
            for item in items
        ]

    def create_budget(self, data: BudgetCreate) -> Budget:
        with unit_of_work(self.db):
            ensure_user(self.db, self.user_id)
            budget = Budget(
                user_id=self.user_id,
                name=data.name,
                total_amount=data.total_amount,
                currency=data.currency,
                period=data.period,
                start_date=data.start_date,
                end_date=data.end_date,
            )
            budget.items = self._build_items(data.currency, data.items)
            self.db.add(budget)

        self.db.refresh(budget)
        return budget

    def update_budget(self, budget_id: str, data: BudgetUpdate) -> Budget:
        """
        Patch a budget. Sending ``items`` replaces the item list wholesale.

        Raises:
            ValidationError: If the resulting end date precedes the start date
        """
        with unit_of_work(self.db):
            budget = self.get(budget_id)
            provided = data.provided()
            provided.pop("items", None)

            start_date = provided.get("start_date", budget.start_date)
            end_date = provided.get("end_date", budget.end_date)
            if end_date < start_date:
                raise ValidationError("endDate must not precede startDate", field="endDate")

            for field, value in provided.items():
                setattr(budget, field, value)
            if "items" in data.model_fields_set:
                budget.items = self._build_items(budget.currency, data.items or [])

        self.db.refresh(budget)
        return budget

