from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from fintrack.database import get_db
from fintrack.db_helpers import get_user_id
from fintrack.errors import error_boundary
from fintrack.models import Goal
from fintrack.pagination import DEFAULT_PAGE, DEFAULT_PAGE_SIZE, parse_page_param
from fintrack.schemas import GoalCreate, GoalResponse, GoalUpdate
from fintrack.services.planning_service import OwnedEntityService
from fintrack.validation import sanitize

router = APIRouter()


def _service(db: Session, user_id: str) -> OwnedEntityService:
    return OwnedEntityService(db, user_id, Goal, "Goal")


def _serialize(goal: Goal) -> dict:
    return GoalResponse.model_validate(goal).model_dump(by_alias=True, mode="json")


@router.get("")
def list_goals(
    page: Optional[str] = Query(None),
    page_size: Optional[str] = Query(None, alias="pageSize"),
    db: Session = Depends(get_db),
):
    user_id = get_user_id()
    with error_boundary("listing goals"):
        page_number = parse_page_param(page, DEFAULT_PAGE, "page")
        size = parse_page_param(page_size, DEFAULT_PAGE_SIZE, "pageSize")
        rows, meta = _service(db, user_id).list_page(page_number, size)
        return {"data": [_serialize(row) for row in rows], "meta": meta.to_dict()}


@router.post("", status_code=201)
def create_goal(payload: Any = Body(None), db: Session = Depends(get_db)):
    user_id = get_user_id()
    with error_boundary("creating goal"):
        data = sanitize(GoalCreate, payload)
        return _serialize(_service(db, user_id).create(data.model_dump()))


@router.patch("/{goal_id}")
def update_goal(goal_id: str, payload: Any = Body(None), db: Session = Depends(get_db)):
    user_id = get_user_id()
    with error_boundary("updating goal"):
        data = sanitize(GoalUpdate, payload)
        return _serialize(_service(db, user_id).update(goal_id, data.provided()))


@router.delete("/{goal_id}")
def delete_goal(goal_id: str, db: Session = Depends(get_db)):
    user_id = get_user_id()
    with error_boundary("deleting goal"):
        _service(db, user_id).delete(goal_id)
        return {"ok": True}
