from pydantic import BaseModel, Field
import datetime as dt
from typing import Optional, Literal


TaskStatus = Literal["pending", "in_progress", "completed", "cancelled"]
ItemStatus = Literal["pending", "completed"]


class RemovalTaskItemResponse(BaseModel):
    """One billboard line of a removal task."""
    id: int
    task_id: int
    billboard_id: int
    status: ItemStatus
    completed_at: Optional[dt.datetime] = None
    removal_date: Optional[dt.date] = None
    notes: Optional[str] = None
    removed_image_url: Optional[str] = None
    design_face_a: Optional[str] = None
    design_face_b: Optional[str] = None
    installed_image_url: Optional[str] = None

    class Config:
        from_attributes = True


class RemovalTaskResponse(BaseModel):
    id: int
    contract_id: Optional[str] = None
    contract_ids: list[str] = []
    team_id: Optional[int] = None
    status: TaskStatus
    created_at: Optional[dt.datetime] = None
    items: list[RemovalTaskItemResponse] = []


class AutoCreateRequest(BaseModel):
    """Optional reference date for auto-creation; defaults to today."""
    today: Optional[dt.date] = None


class AutoCreateResponse(BaseModel):
    contracts_processed: int
    tasks_created: int
    items_created: int
    items_cleaned: int
    task_ids: list[int]


class ManualTaskCreate(BaseModel):
    """Hand-picked billboards for one or more contracts."""
    contract_numbers: list[str] = Field(..., min_length=1)
    billboard_ids: list[int] = Field(..., min_length=1)
    team_id: Optional[int] = None


class CleanupResponse(BaseModel):
    removed: int
    task_ids: list[int] = []


class CompleteItemsRequest(BaseModel):
    item_ids: list[int]
    removal_date: Optional[dt.date] = None
    notes: Optional[str] = None


class CompleteItemsResponse(BaseModel):
    items_completed: int
    billboards_reset: int
    completed_task_ids: list[int]
