from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from fintrack.database import get_db
from fintrack.db_helpers import get_user_id
from fintrack.errors import error_boundary
from fintrack.models import Budget
from fintrack.pagination import DEFAULT_PAGE, DEFAULT_PAGE_SIZE, parse_page_param
from fintrack.schemas import BudgetCreate, BudgetResponse, BudgetUpdate
from fintrack.services.planning_service import BudgetService
from fintrack.validation import sanitize

router = APIRouter()


def _serialize(budget: Budget) -> dict:
    return BudgetResponse.model_validate(budget).model_dump(by_alias=True, mode="json")


@router.get("")
def list_budgets(
    page: Optional[str] = Query(None),
    page_size: Optional[str] = Query(None, alias="pageSize"),
    db: Session = Depends(get_db),
):
    """List budgets with their line items."""
    user_id = get_user_id()
    with error_boundary("listing budgets"):
        page_number = parse_page_param(page, DEFAULT_PAGE, "page")
        size = parse_page_param(page_size, DEFAULT_PAGE_SIZE, "pageSize")
        rows, meta = BudgetService(db, user_id).list_page(page_number, size)
        return {"data": [_serialize(row) for row in rows], "meta": meta.to_dict()}


@router.post("", status_code=201)
def create_budget(payload: Any = Body(None), db: Session = Depends(get_db)):
    user_id = get_user_id()
    with error_boundary("creating budget"):
        data = sanitize(BudgetCreate, payload)
        return _serialize(BudgetService(db, user_id).create_budget(data))


@router.patch("/{budget_id}")
def update_budget(budget_id: str, payload: Any = Body(None), db: Session = Depends(get_db)):
    user_id = get_user_id()
    with error_boundary("updating budget"):
        data = sanitize(BudgetUpdate, payload)
        return _serialize(BudgetService(db, user_id).update_budget(budget_id, data))


@router.delete("/{budget_id}")
def delete_budget(budget_id: str, db: Session = Depends(get_db)):
    user_id = get_user_id()
    with error_boundary("deleting budget"):
        BudgetService(db, user_id).delete(budget_id)
        return {"ok": True}
