# Services module
from app.services.operating_fees import LedgerSnapshot, build_ledger
from app.services.removal_assignment import ProcessedContracts, plan_removal_tasks

__all__ = [
    # Operating-fee ledger engine
    "LedgerSnapshot",
    "build_ledger",
    # Removal task assignment engine
    "ProcessedContracts",
    "plan_removal_tasks",
]
