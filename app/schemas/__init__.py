from app.schemas.auth import (
    UserCreate,
    UserResponse,
    Token,
    TokenData,
    LoginRequest,
)
from app.schemas.expenses import (
    WithdrawalCreate,
    WithdrawalUpdate,
    WithdrawalResponse,
    ClosureCreate,
    ClosureResponse,
    LedgerResponse,
)
from app.schemas.removal import (
    RemovalTaskResponse,
    RemovalTaskItemResponse,
    ManualTaskCreate,
    CompleteItemsRequest,
)

__all__ = [
    "UserCreate",
    "UserResponse",
    "Token",
    "TokenData",
    "LoginRequest",
    "WithdrawalCreate",
    "WithdrawalUpdate",
    "WithdrawalResponse",
    "ClosureCreate",
    "ClosureResponse",
    "LedgerResponse",
    "RemovalTaskResponse",
    "RemovalTaskItemResponse",
    "ManualTaskCreate",
    "CompleteItemsRequest",
]
