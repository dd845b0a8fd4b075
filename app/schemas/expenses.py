from pydantic import BaseModel, Field, model_validator
import datetime as dt
from typing import Optional, Literal


ClosureType = Literal["period", "contract_range"]


class WithdrawalBase(BaseModel):
    """Base withdrawal schema."""
    amount: float = Field(..., gt=0)
    date: dt.date
    method: Optional[str] = Field(None, max_length=50)
    note: Optional[str] = None
    receiver_name: Optional[str] = Field(None, max_length=255)
    sender_name: Optional[str] = Field(None, max_length=255)


class WithdrawalCreate(WithdrawalBase):
    """Schema for recording a withdrawal."""
    pass


class WithdrawalUpdate(BaseModel):
    """Schema for editing a withdrawal."""
    amount: Optional[float] = Field(None, gt=0)
    date: Optional[dt.date] = None
    method: Optional[str] = None
    note: Optional[str] = None
    receiver_name: Optional[str] = None
    sender_name: Optional[str] = None

    @model_validator(mode="after")
    def required_fields_not_null(self) -> "WithdrawalUpdate":
        cleared = [f for f in ("amount", "date") if f in self.model_fields_set and getattr(self, f) is None]
        if cleared:
            raise ValueError(f"{' and '.join(cleared)} cannot be null")
        return self


class WithdrawalResponse(WithdrawalBase):
    """Schema for withdrawal response."""
    id: int
    user_id: Optional[int] = None
    created_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class ClosureCreate(BaseModel):
    """Close a date period or an inclusive contract-number range."""
    closure_type: ClosureType
    closure_date: Optional[dt.date] = None
    period_start: Optional[dt.date] = None
    period_end: Optional[dt.date] = None
    contract_start: Optional[str] = Field(None, max_length=50)
    contract_end: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = None

    @model_validator(mode="after")
    def default_closure_date(self) -> "ClosureCreate":
        if self.closure_date is None:
            self.closure_date = dt.date.today()
        return self


class ClosureResponse(BaseModel):
    """Closure with aggregates recomputed from current data."""
    id: int
    closure_type: ClosureType
    closure_date: Optional[dt.date] = None
    period_start: Optional[dt.date] = None
    period_end: Optional[dt.date] = None
    contract_start: Optional[str] = None
    contract_end: Optional[str] = None
    notes: Optional[str] = None
    total_contracts: int
    total_amount: float
    total_withdrawn: float
    remaining_balance: float


class ExclusionUpdate(BaseModel):
    excluded: bool


class ExclusionResponse(BaseModel):
    contract_number: str
    excluded: bool


class ContractLedgerEntry(BaseModel):
    """One contract as shown in the operating-fee ledger."""
    contract_number: str
    customer_name: str
    ad_type: str
    start_date: Optional[dt.date] = None
    rent_cost: float
    installation_cost: float
    print_cost: float
    total_amount: float
    total_paid: float
    collection_percentage: float
    fee_rate: float
    full_fee_amount: int
    collected_fee_amount: int
    allocated_withdrawal: float
    withdrawal_coverage: float
    closed: bool
    excluded: bool
    settled: bool


class LedgerTotals(BaseModel):
    total_contracts: int
    pool_total: float
    total_withdrawn: float
    available_withdrawals: float
    allocated_to_open: float
    remaining_pool: float
    unallocated_withdrawals: float


class RecentPaymentResponse(BaseModel):
    id: int
    contract_number: str
    customer_name: str
    amount: float
    paid_at: Optional[dt.datetime] = None
    fee_rate: float
    fee_amount: int


class LedgerResponse(BaseModel):
    """Full operating-fee ledger, recomputed on every request."""
    totals: LedgerTotals
    contracts: list[ContractLedgerEntry]
    closures: list[ClosureResponse]
    settled_contract_ids: list[str]
    recent_payments: list[RecentPaymentResponse]
