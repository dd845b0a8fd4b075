from fastapi import APIRouter
from app.api.v2 import (
    auth,
    expenses,
    removal_tasks,
)

api_router = APIRouter()

api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(expenses.router, prefix="/expenses", tags=["expenses"])
api_router.include_router(removal_tasks.router, prefix="/removal-tasks", tags=["removal-tasks"])
