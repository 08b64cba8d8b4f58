from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from fintrack.database import get_db
from fintrack.db_helpers import get_user_id
from fintrack.errors import error_boundary
from fintrack.models import Transaction
from fintrack.pagination import DEFAULT_PAGE, DEFAULT_PAGE_SIZE, parse_page_param
from fintrack.schemas import TransactionInput, TransactionResponse
from fintrack.services.transaction_service import TransactionService
from fintrack.validation import sanitize

router = APIRouter()


def serialize_transaction(transaction: Transaction) -> dict:
    return TransactionResponse.model_validate(transaction).model_dump(by_alias=True, mode="json")


@router.get("")
def list_transactions(
    page: Optional[str] = Query(None),
    page_size: Optional[str] = Query(None, alias="pageSize"),
    db: Session = Depends(get_db),
):
    """List the caller's transactions, newest first."""
    user_id = get_user_id()
    with error_boundary("listing transactions"):
        page_number = parse_page_param(page, DEFAULT_PAGE, "page")
        size = parse_page_param(page_size, DEFAULT_PAGE_SIZE, "pageSize")
        rows, meta = TransactionService(db, user_id).list_page(page_number, size)
        return {
            "data": [serialize_transaction(row) for row in rows],
            "meta": meta.to_dict(),
        }


@router.post("", status_code=201)
def create_transaction(payload: Any = Body(None), db: Session = Depends(get_db)):
    """
    Create a transaction.

    Without ``accountId`` the transaction lands on the caller's oldest manual
    account, which is created if the caller has none.
    """
    user_id = get_user_id()
    with error_boundary("creating transaction"):
        data = sanitize(TransactionInput, payload)
        transaction = TransactionService(db, user_id).create(data)
        return serialize_transaction(transaction)


@router.get("/{transaction_id}")
def get_transaction(transaction_id: str, db: Session = Depends(get_db)):
    user_id = get_user_id()
    with error_boundary("loading transaction"):
        return serialize_transaction(TransactionService(db, user_id).get(transaction_id))


@router.put("/{transaction_id}")
def update_transaction(transaction_id: str, payload: Any = Body(None), db: Session = Depends(get_db)):
    """Replace a transaction's fields, moving its balance effect if needed."""
    user_id = get_user_id()
    with error_boundary("updating transaction"):
        data = sanitize(TransactionInput, payload)
        transaction = TransactionService(db, user_id).update(transaction_id, data)
        return serialize_transaction(transaction)


@router.delete("/{transaction_id}")
def delete_transaction(transaction_id: str, db: Session = Depends(get_db)):
    user_id = get_user_id()
    with error_boundary("deleting transaction"):
        TransactionService(db, user_id).delete(transaction_id)
        return {"ok": True}
