from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from fintrack.database import get_db
from fintrack.db_helpers import get_user_id
from fintrack.errors import error_boundary
from fintrack.pagination import DEFAULT_PAGE, DEFAULT_PAGE_SIZE, parse_page_param
from fintrack.schemas import LoanCreate, LoanResponse, LoanUpdate
from fintrack.services.planning_service import LoanService
from fintrack.validation import sanitize

router = APIRouter()


def _serialize(loan) -> dict:
    return LoanResponse.model_validate(loan).model_dump(by_alias=True, mode="json")


@router.get("")
def list_loans(
    page: Optional[str] = Query(None),
    page_size: Optional[str] = Query(None, alias="pageSize"),
    db: Session = Depends(get_db),
):
    user_id = get_user_id()
    with error_boundary("listing loans"):
        page_number = parse_page_param(page, DEFAULT_PAGE, "page")
        size = parse_page_param(page_size, DEFAULT_PAGE_SIZE, "pageSize")
        rows, meta = LoanService(db, user_id).list_page(page_number, size)
        return {"data": [_serialize(row) for row in rows], "meta": meta.to_dict()}


@router.post("", status_code=201)
def create_loan(payload: Any = Body(None), db: Session = Depends(get_db)):
    """Record money lent or borrowed. Loans always start unpaid."""
    user_id = get_user_id()
    with error_boundary("creating loan"):
        data = sanitize(LoanCreate, payload)
        return _serialize(LoanService(db, user_id).create(data.model_dump()))


@router.patch("/{loan_id}")
def update_loan(loan_id: str, payload: Any = Body(None), db: Session = Depends(get_db)):
    """
    Patch a loan.

    ``paidAt`` is never read from the body: marking the loan paid stamps the
    current time, marking it unpaid clears it.
    """
    user_id = get_user_id()
    with error_boundary("updating loan"):
        data = sanitize(LoanUpdate, payload)
        return _serialize(LoanService(db, user_id).update_loan(loan_id, data))


@router.delete("/{loan_id}")
def delete_loan(loan_id: str, db: Session = Depends(get_db)):
    user_id = get_user_id()
    with error_boundary("deleting loan"):
        LoanService(db, user_id).delete(loan_id)
        return {"ok": True}
