"""Operating-fee ledger models: withdrawals, closures and exclusion flags."""

from sqlalchemy import Column, String, DateTime, Text, Integer, Date, Boolean, Float, ForeignKey
from sqlalchemy.sql import func

from app.database import Base


class ExpenseWithdrawal(Base):
    """Manual cash withdrawal drawn against the operating-fee pool."""

    __tablename__ = "expenses_withdrawals"

    id = Column(Integer, primary_key=True, index=True)
    amount = Column(Float, nullable=False)
    date = Column(Date, nullable=False, index=True)
    method = Column(String(50), nullable=True)  # cash, transfer, cheque
    note = Column(Text, nullable=True)
    receiver_name = Column(String(255), nullable=True)
    sender_name = Column(String(255), nullable=True)

    # Actor who recorded the withdrawal
    user_id = Column(Integer, ForeignKey("api_users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self):
        return f"<ExpenseWithdrawal {self.id} {self.amount} on {self.date}>"


class PeriodClosure(Base):
    """Closed date period or contract-number range.

    The total_* columns hold the values computed when the closure was
    created. Reports always recompute them from current data.
    """

    __tablename__ = "period_closures"

    id = Column(Integer, primary_key=True, index=True)
    closure_type = Column(String(20), nullable=False)  # period, contract_range
    closure_date = Column(Date, nullable=False)

    # period bounds (closure_type == "period")
    period_start = Column(Date, nullable=True)
    period_end = Column(Date, nullable=True)

    # contract number bounds (closure_type == "contract_range")
    contract_start = Column(String(50), nullable=True)
    contract_end = Column(String(50), nullable=True)

    # Snapshot at creation time
    total_contracts = Column(Integer, default=0)
    total_amount = Column(Float, default=0.0)
    total_withdrawn = Column(Float, default=0.0)
    remaining_balance = Column(Float, default=0.0)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    def __repr__(self):
        return f"<PeriodClosure {self.id} {self.closure_type}>"


class ExpenseFlag(Base):
    """Per-contract exclusion from the operating-fee ledger."""

    __tablename__ = "expenses_flags"

    id = Column(Integer, primary_key=True, index=True)
    contract_number = Column(String(50), unique=True, nullable=False, index=True)
    excluded = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
