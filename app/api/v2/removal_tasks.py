"""Removal tasks API - auto/manual creation, cleanup and completion of billboard removals."""
from fastapi import APIRouter, Query, status
from typing import Optional
import logging

from app.api.deps import DbSession, CurrentUser
from app.models.removal_task import RemovalTask
from app.schemas.removal import (
    AutoCreateRequest,
    AutoCreateResponse,
    CleanupResponse,
    CompleteItemsRequest,
    CompleteItemsResponse,
    ManualTaskCreate,
    RemovalTaskItemResponse,
    RemovalTaskResponse,
    TaskStatus,
)
from app.services import removal_task_service as removal_service
from app.services.removal_assignment import ProcessedContracts

logger = logging.getLogger(__name__)
router = APIRouter()

# Contracts auto-creation has already handled in this process
processed_contracts = ProcessedContracts()


def task_to_response(task: RemovalTask) -> RemovalTaskResponse:
    return RemovalTaskResponse(
        id=task.id,
        contract_id=task.contract_id,
        contract_ids=task.contract_numbers,
        team_id=task.team_id,
        status=task.status,
        created_at=task.created_at,
        items=[RemovalTaskItemResponse.model_validate(i) for i in sorted(task.items, key=lambda i: i.id)],
    )


@router.get("", response_model=list[RemovalTaskResponse])
async def list_removal_tasks(
    db: DbSession,
    current_user: CurrentUser,
    status_filter: Optional[TaskStatus] = Query(None, alias="status"),
):
    tasks = await removal_service.list_tasks(db, status_filter)
    return [task_to_response(t) for t in tasks]


@router.get("/{task_id}", response_model=RemovalTaskResponse)
async def get_removal_task(task_id: int, db: DbSession, current_user: CurrentUser):
    return task_to_response(await removal_service.get_task(db, task_id))


@router.post("/auto", response_model=AutoCreateResponse)
async def auto_create_tasks(db: DbSession, current_user: CurrentUser, body: Optional[AutoCreateRequest] = None):
    """Create removal tasks for recently expired contracts and drop re-rented items."""
    today = body.today if body else None
    result = await removal_service.auto_create_removal_tasks(db, processed_contracts, today)
    return AutoCreateResponse(
        contracts_processed=result.contracts_processed,
        tasks_created=result.tasks_created,
        items_created=result.items_created,
        items_cleaned=result.items_cleaned,
        task_ids=result.task_ids,
    )


@router.post("/manual", response_model=list[RemovalTaskResponse], status_code=status.HTTP_201_CREATED)
async def create_manual_tasks(data: ManualTaskCreate, db: DbSession, current_user: CurrentUser):
    tasks = await removal_service.create_manual_removal_tasks(
        db, data.contract_numbers, data.billboard_ids, data.team_id
    )
    return [task_to_response(await removal_service.get_task(db, t.id)) for t in tasks]


@router.post("/cleanup/rented", response_model=CleanupResponse)
async def cleanup_rented(db: DbSession, current_user: CurrentUser):
    """Remove pending items whose billboard has been rented again."""
    return CleanupResponse(removed=await removal_service.cleanup_rented_items(db))


@router.post("/cleanup/duplicates", response_model=CleanupResponse)
async def cleanup_duplicates(db: DbSession, current_user: CurrentUser):
    task_ids = await removal_service.cleanup_duplicate_tasks(db)
    return CleanupResponse(removed=len(task_ids), task_ids=task_ids)


@router.post("/items/complete", response_model=CompleteItemsResponse)
async def complete_items(data: CompleteItemsRequest, db: DbSession, current_user: CurrentUser):
    """Mark items removed on the given date and free their billboards."""
    result = await removal_service.complete_items(db, data.item_ids, data.removal_date, data.notes)
    return CompleteItemsResponse(
        items_completed=result.items_completed,
        billboards_reset=result.billboards_reset,
        completed_task_ids=result.completed_task_ids,
    )


@router.post("/items/{item_id}/undo", response_model=RemovalTaskItemResponse)
async def undo_item(item_id: int, db: DbSession, current_user: CurrentUser):
    return await removal_service.undo_item(db, item_id)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_removal_task(task_id: int, db: DbSession, current_user: CurrentUser):
    await removal_service.delete_task(db, task_id)
