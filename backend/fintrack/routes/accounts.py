from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from fintrack.database import get_db
from fintrack.db_helpers import get_user_id
from fintrack.errors import error_boundary
from fintrack.pagination import DEFAULT_PAGE, DEFAULT_PAGE_SIZE, parse_page_param
from fintrack.schemas import AccountResponse, ManualAccountCreate, ManualAccountUpdate
from fintrack.services.account_service import AccountService, serialize_account
from fintrack.validation import sanitize

router = APIRouter()


@router.get("")
def list_accounts(
    page: Optional[str] = Query(None),
    page_size: Optional[str] = Query(None, alias="pageSize"),
    provider: Optional[str] = Query(None, description="Only accounts of this provider (manual, pluggy)"),
    db: Session = Depends(get_db),
):
    """List the caller's accounts, newest first."""
    user_id = get_user_id()
    with error_boundary("listing accounts"):
        page_number = parse_page_param(page, DEFAULT_PAGE, "page")
        size = parse_page_param(page_size, DEFAULT_PAGE_SIZE, "pageSize")
        rows, meta = AccountService(db, user_id).list_page(page_number, size, provider=provider)
        return {
            "data": [serialize_account(row).model_dump(by_alias=True, mode="json") for row in rows],
            "meta": meta.to_dict(),
        }


@router.post("/manual", response_model=AccountResponse, status_code=201)
def create_manual_account(payload: Any = Body(None), db: Session = Depends(get_db)):
    """Create a manual account with its opening balance."""
    user_id = get_user_id()
    with error_boundary("creating manual account"):
        data = sanitize(ManualAccountCreate, payload)
        return serialize_account(AccountService(db, user_id).create_manual(data))


@router.post("/manual/default", response_model=AccountResponse)
def ensure_default_manual_account(db: Session = Depends(get_db)):
    """Return the caller's default manual account, creating it on first use."""
    user_id = get_user_id()
    with error_boundary("resolving default manual account"):
        return serialize_account(AccountService(db, user_id).ensure_default_manual())


@router.patch("/manual/{account_id}", response_model=AccountResponse)
def update_manual_account(account_id: str, payload: Any = Body(None), db: Session = Depends(get_db)):
    """Rename a manual account or change its currency/type. The balance is not editable."""
    user_id = get_user_id()
    with error_boundary("updating manual account"):
        data = sanitize(ManualAccountUpdate, payload)
        return serialize_account(AccountService(db, user_id).update_manual(account_id, data))


@router.delete("/manual/{account_id}")
def delete_manual_account(account_id: str, db: Session = Depends(get_db)):
    """Delete a manual account together with its transactions."""
    user_id = get_user_id()
    with error_boundary("deleting manual account"):
        AccountService(db, user_id).delete_manual(account_id)
        return {"ok": True}
