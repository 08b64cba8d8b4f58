"""
Sync routes for the open-finance aggregator.
"""
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from fintrack.database import get_db
from fintrack.db_helpers import get_user_id
from fintrack.errors import error_boundary
from fintrack.integrations.base import AggregatorClient
from fintrack.integrations.pluggy import get_aggregator_client
from fintrack.schemas import SyncImportRequest, SyncListing
from fintrack.services.sync_service import SyncService
from fintrack.validation import sanitize

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/import")
def import_item(
    payload: Any = Body(None),
    db: Session = Depends(get_db),
    client: AggregatorClient = Depends(get_aggregator_client),
):
    """
    Import accounts, transactions and provider resources of a linked item.

    Safe to call repeatedly for the same item.
    """
    user_id = get_user_id()
    with error_boundary("importing aggregator item"):
        data = sanitize(SyncImportRequest, payload)
        SyncService(db, user_id, client).import_item(data.item_id)
        return {"ok": True}


@router.get("", response_model=SyncListing)
def list_synced_data(db: Session = Depends(get_db)):
    """All accounts, the 50 most recent transactions and provider resources, decrypted."""
    user_id = get_user_id()
    with error_boundary("listing synced data"):
        return SyncService(db, user_id).list_for_owner()


@router.delete("/accounts/{account_id}")
def disconnect_account(account_id: str, db: Session = Depends(get_db)):
    """Remove an account, its transactions and the provider resources of its item."""
    user_id = get_user_id()
    with error_boundary("disconnecting account"):
        SyncService(db, user_id).disconnect_account(account_id)
        return {"ok": True}


@router.post("/link-token")
def create_link_token(
    client: AggregatorClient = Depends(get_aggregator_client),
):
    """Token the frontend connect widget uses to link a new item."""
    get_user_id()
    with error_boundary("creating link token"):
        return client.create_connect_token({})
