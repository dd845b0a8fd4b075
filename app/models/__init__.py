from app.models.user import User
from app.models.contract import Contract
from app.models.customer_payment import CustomerPayment
from app.models.expense import ExpenseWithdrawal, PeriodClosure, ExpenseFlag
from app.models.billboard import Billboard
from app.models.installation import InstallationTeam, InstallationTaskItem
from app.models.removal_task import RemovalTask, RemovalTaskItem

__all__ = [
    "User",
    "Contract",
    "CustomerPayment",
    "ExpenseWithdrawal",
    "PeriodClosure",
    "ExpenseFlag",
    "Billboard",
    "InstallationTeam",
    "InstallationTaskItem",
    "RemovalTask",
    "RemovalTaskItem",
]
