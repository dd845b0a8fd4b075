"""
Operating fee ledger engine.

Pure, synchronous computations over an in-memory ``LedgerSnapshot``:

- Per-contract operating fee, at 100% and at the collected share of revenue
- FIFO allocation of cash withdrawals, oldest contract number first
- Live recomputation of period / contract-range closures
- Validation and preview of a new closure

Nothing here touches the database. ``app.services.expense_ledger_service``
loads the snapshot and writes results back.
"""

import math
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional

CLOSURE_TYPES = ("period", "contract_range")

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


# ========================
# Numeric helpers
# ========================


def safe_number(value: Any) -> float:
    """Coerce any value to a finite float; anything unusable becomes 0."""
    if value is None:
        return 0.0
    try:
        num = float(value)
    except (TypeError, ValueError):
        return 0.0
    return num if math.isfinite(num) else 0.0


def round_half_up(value: float) -> int:
    """Round to the nearest integer currency unit, halves rounding up."""
    return int(math.floor(value + 0.5))


def round_percentage(value: float) -> float:
    """Round a percentage to two decimals, halves rounding up."""
    return math.floor(value * 100 + 0.5) / 100


def parse_contract_number(value: Any) -> int:
    """Leading integer of a contract number; 0 when there is none."""
    if value is None:
        return 0
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else 0


# ========================
# Records
# ========================


@dataclass(frozen=True)
class ContractRecord:
    """Fee-relevant projection of a rental contract."""

    contract_number: str
    customer_name: str = ""
    ad_type: str = ""
    rent_cost: float = 0.0
    installation_cost: float = 0.0
    print_cost: float = 0.0
    include_operating_in_installation: bool = False
    include_operating_in_print: bool = False
    fee_rate: float = 0.0
    fee_rate_installation: Optional[float] = None
    fee_rate_print: Optional[float] = None
    total_paid: float = 0.0
    start_date: Optional[date] = None
    status: str = "active"

    @property
    def number(self) -> int:
        return parse_contract_number(self.contract_number)


@dataclass(frozen=True)
class WithdrawalRecord:
    id: Any
    amount: float
    date: Optional[date] = None
    method: Optional[str] = None
    note: Optional[str] = None
    receiver_name: Optional[str] = None
    sender_name: Optional[str] = None


@dataclass(frozen=True)
class PaymentRecord:
    id: Any
    contract_number: str
    amount: float
    customer_name: str = ""
    paid_at: Optional[datetime] = None


@dataclass(frozen=True)
class ClosureRecord:
    """Identity and range of a closure. Totals are never stored here."""

    id: Any
    closure_type: str
    closure_date: Optional[date] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    contract_start: Optional[str] = None
    contract_end: Optional[str] = None
    notes: Optional[str] = None

    def contains(self, contract: ContractRecord) -> bool:
        """Whether the contract falls inside this closure's inclusive range."""
        if self.closure_type == "period":
            if not (self.period_start and self.period_end and contract.start_date):
                return False
            return self.period_start <= contract.start_date <= self.period_end
        if self.closure_type == "contract_range":
            if not (self.contract_start and self.contract_end):
                return False
            low = parse_contract_number(self.contract_start)
            high = parse_contract_number(self.contract_end)
            return low <= contract.number <= high
        return False


@dataclass(frozen=True)
class LedgerSnapshot:
    """Everything the ledger engine needs, fetched in one go."""

    contracts: tuple[ContractRecord, ...] = ()
    withdrawals: tuple[WithdrawalRecord, ...] = ()
    closures: tuple[ClosureRecord, ...] = ()
    excluded: frozenset[str] = frozenset()
    payments: tuple[PaymentRecord, ...] = ()  # newest first

    @property
    def total_withdrawals(self) -> float:
        return sum(w.amount for w in self.withdrawals)

    def is_excluded(self, contract_number: str) -> bool:
        return str(contract_number) in self.excluded


@dataclass(frozen=True)
class ContractFees:
    """Derived fee figures for one contract."""

    contract: ContractRecord
    total_amount: float
    collection_percentage: float  # raw paid/total ×100, may exceed 100
    payment_ratio: float  # clamped to [0, 1]
    full_fee_amount: int
    collected_fee_amount: int

    @property
    def contract_number(self) -> str:
        return self.contract.contract_number

    @property
    def is_fully_paid(self) -> bool:
        return self.collection_percentage >= 100


@dataclass
class ClosureTotals:
    """A closure with its aggregates recomputed from current data."""

    closure: ClosureRecord
    total_contracts: int = 0
    total_amount: float = 0.0
    total_withdrawn: float = 0.0
    allocations: dict[str, float] = field(default_factory=dict)

    @property
    def remaining_balance(self) -> float:
        return self.total_amount - self.total_withdrawn


@dataclass(frozen=True)
class ClosureRequest:
    closure_type: str
    closure_date: Optional[date] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    contract_start: Optional[str] = None
    contract_end: Optional[str] = None
    notes: Optional[str] = None

    def as_record(self) -> ClosureRecord:
        return ClosureRecord(
            id=None,
            closure_type=self.closure_type,
            closure_date=self.closure_date,
            period_start=self.period_start if self.closure_type == "period" else None,
            period_end=self.period_end if self.closure_type == "period" else None,
            contract_start=self.contract_start if self.closure_type == "contract_range" else None,
            contract_end=self.contract_end if self.closure_type == "contract_range" else None,
            notes=self.notes,
        )


@dataclass(frozen=True)
class ClosurePreview:
    """Totals written to a closure row when it is created."""

    contracts: tuple[ContractFees, ...]
    total_amount: float
    total_withdrawn: float

    @property
    def total_contracts(self) -> int:
        return len(self.contracts)

    @property
    def remaining_balance(self) -> float:
        return self.total_amount - self.total_withdrawn


class ClosureValidationError(ValueError):
    """A requested closure is incomplete or covers no open contract."""


# ========================
# Fee computation
# ========================


def _fee(cost: float, ratio: float, rate: float) -> int:
    return round_half_up(cost * ratio * rate / 100)


def _fees_at_ratio(contract: ContractRecord, ratio: float, rent_rate: float,
                   installation_rate: float, print_rate: float) -> int:
    total = _fee(safe_number(contract.rent_cost), ratio, rent_rate)
    if contract.include_operating_in_installation:
        total += _fee(safe_number(contract.installation_cost), ratio, installation_rate)
    if contract.include_operating_in_print:
        total += _fee(safe_number(contract.print_cost), ratio, print_rate)
    return total


def compute_contract_fees(contract: ContractRecord) -> ContractFees:
    """
    Compute the operating fee owed on a contract.

    Each cost line carries its own rate; installation and print only count
    when their include flag is set, and their rates fall back to the rent
    rate when unset or zero. The collected fee scales every line by
    min(1, paid / total) and rounds each line separately.
    """
    rent = safe_number(contract.rent_cost)
    installation = safe_number(contract.installation_cost)
    printing = safe_number(contract.print_cost)
    total_amount = rent + installation + printing
    paid = safe_number(contract.total_paid)

    raw_rate = safe_number(contract.fee_rate)
    rent_rate = round_percentage(raw_rate)
    installation_rate = safe_number(contract.fee_rate_installation) or raw_rate
    print_rate = safe_number(contract.fee_rate_print) or raw_rate

    if total_amount > 0:
        payment_ratio = max(0.0, min(1.0, paid / total_amount))
        collection_percentage = round_percentage(paid / total_amount * 100)
        full_fee = _fees_at_ratio(contract, 1.0, rent_rate, installation_rate, print_rate)
        collected_fee = _fees_at_ratio(contract, payment_ratio, rent_rate, installation_rate, print_rate)
    else:
        payment_ratio = 0.0
        collection_percentage = 0.0
        full_fee = 0
        collected_fee = 0

    return ContractFees(
        contract=contract,
        total_amount=total_amount,
        collection_percentage=max(0.0, collection_percentage),
        payment_ratio=payment_ratio,
        full_fee_amount=full_fee,
        collected_fee_amount=collected_fee,
    )


# ========================
# FIFO allocation
# ========================


def sort_oldest_first(fees: Iterable[ContractFees]) -> list[ContractFees]:
    """Ascending contract number; unparseable numbers sort as 0."""
    return sorted(fees, key=lambda f: f.contract.number)


def allocate_fifo(fees: Iterable[ContractFees], pool: float) -> dict[str, float]:
    """
    Allocate a withdrawal pool to contracts, oldest first.

    Each contract absorbs min(remaining pool, collected fee) before the next
    one receives anything. Every contract passed in appears in the result.
    """
    allocation: dict[str, float] = {}
    remaining = max(0.0, safe_number(pool))
    for fee in sort_oldest_first(fees):
        if remaining <= 0 or fee.collected_fee_amount <= 0:
            allocation[fee.contract_number] = 0.0
            continue
        allocated = min(remaining, fee.collected_fee_amount)
        allocation[fee.contract_number] = allocated
        remaining -= allocated
    return allocation


def withdrawal_coverage(fee: ContractFees, allocated: float) -> float:
    """Percentage of the collected fee covered by allocated withdrawals."""
    if fee.collected_fee_amount <= 0:
        return 0.0
    return round_percentage(allocated / fee.collected_fee_amount * 100)


def settled_contract_ids(fees: Iterable[ContractFees], allocations: dict[str, float]) -> set[str]:
    """
    Contracts that are fully paid by the customer AND fully covered by
    allocated withdrawals. Allocation alone never settles a contract.
    """
    settled = set()
    for fee in fees:
        allocated = allocations.get(fee.contract_number, 0.0)
        if (
            fee.is_fully_paid
            and fee.collected_fee_amount > 0
            and allocated >= fee.collected_fee_amount
        ):
            settled.add(fee.contract_number)
    return settled


# ========================
# Closures
# ========================


def closure_for_contract(contract: ContractRecord, closures: Iterable[ClosureRecord]) -> Optional[ClosureRecord]:
    """First closure whose range contains the contract, if any."""
    for closure in closures:
        if closure.contains(contract):
            return closure
    return None


def is_contract_closed(contract: ContractRecord, closures: Iterable[ClosureRecord]) -> bool:
    return closure_for_contract(contract, closures) is not None


def _ledger_fees(snapshot: LedgerSnapshot, fees: Optional[list[ContractFees]]) -> list[ContractFees]:
    """Fees for every non-excluded contract."""
    if fees is None:
        fees = [compute_contract_fees(c) for c in snapshot.contracts]
    return [f for f in fees if not snapshot.is_excluded(f.contract_number)]


def open_contract_fees(snapshot: LedgerSnapshot, fees: Optional[list[ContractFees]] = None) -> list[ContractFees]:
    """Contracts that are neither excluded nor inside a closure."""
    return [
        f for f in _ledger_fees(snapshot, fees)
        if not is_contract_closed(f.contract, snapshot.closures)
    ]


def recompute_closures(snapshot: LedgerSnapshot, fees: Optional[list[ContractFees]] = None) -> list[ClosureTotals]:
    """
    Recompute every closure's aggregates from scratch.

    Each non-excluded contract belongs to at most one closure (the first
    that contains it). Withdrawals are consumed across all contracts, closed
    and open, oldest first; each allocation is credited to the closure
    owning the contract.
    """
    totals = {id(c): ClosureTotals(closure=c) for c in snapshot.closures}
    if not totals:
        return []

    ledger = sort_oldest_first(_ledger_fees(snapshot, fees))
    owner = {}
    for fee in ledger:
        closure = closure_for_contract(fee.contract, snapshot.closures)
        if closure is None:
            continue
        owner[fee.contract_number] = totals[id(closure)]
        owner[fee.contract_number].total_contracts += 1
        owner[fee.contract_number].total_amount += fee.collected_fee_amount

    for contract_number, allocated in allocate_fifo(ledger, snapshot.total_withdrawals).items():
        closure_totals = owner.get(contract_number)
        if closure_totals is not None:
            closure_totals.allocations[contract_number] = allocated
            closure_totals.total_withdrawn += allocated

    return [totals[id(c)] for c in snapshot.closures]


def open_pool(snapshot: LedgerSnapshot, closure_totals: Iterable[ClosureTotals]) -> float:
    """Withdrawals left for open contracts after closures take their share."""
    consumed = sum(t.total_withdrawn for t in closure_totals)
    return max(0.0, snapshot.total_withdrawals - consumed)


def validate_new_closure(
    snapshot: LedgerSnapshot,
    request: ClosureRequest,
    fees: Optional[list[ContractFees]] = None,
) -> list[ContractFees]:
    """
    Check a closure request and return the open contracts it would close.

    Raises ClosureValidationError when the request is incomplete, its start
    is not strictly before its end, or no open contract falls in range.
    """
    if request.closure_type not in CLOSURE_TYPES:
        raise ClosureValidationError(f"Unknown closure type: {request.closure_type}")
    if not request.closure_date:
        raise ClosureValidationError("Closure date is required")

    if request.closure_type == "period":
        if not request.period_start or not request.period_end:
            raise ClosureValidationError("Both period start and period end are required")
        if request.period_start >= request.period_end:
            raise ClosureValidationError("Period start must be before period end")
    else:
        if not request.contract_start or not request.contract_end:
            raise ClosureValidationError("Both first and last contract numbers are required")
        if parse_contract_number(request.contract_start) >= parse_contract_number(request.contract_end):
            raise ClosureValidationError("First contract number must be smaller than the last")

    candidate = request.as_record()
    eligible = [f for f in open_contract_fees(snapshot, fees) if candidate.contains(f.contract)]
    if not eligible:
        raise ClosureValidationError("No open contracts fall inside the selected range")
    return eligible


def preview_closure(
    snapshot: LedgerSnapshot,
    request: ClosureRequest,
    fees: Optional[list[ContractFees]] = None,
) -> ClosurePreview:
    """Totals for a new closure, using the pool left by existing closures."""
    if fees is None:
        fees = [compute_contract_fees(c) for c in snapshot.contracts]
    eligible = validate_new_closure(snapshot, request, fees)
    closing = {f.contract_number for f in eligible}

    pool = open_pool(snapshot, recompute_closures(snapshot, fees))
    allocation = allocate_fifo(open_contract_fees(snapshot, fees), pool)
    withdrawn = sum(allocation.get(number, 0.0) for number in closing)

    return ClosurePreview(
        contracts=tuple(sort_oldest_first(eligible)),
        total_amount=sum(f.collected_fee_amount for f in eligible),
        total_withdrawn=withdrawn,
    )


# ========================
# Ledger summary
# ========================


@dataclass(frozen=True)
class ContractLedgerRow:
    fees: ContractFees
    allocated: float
    coverage_percentage: float
    closed: bool
    excluded: bool
    settled: bool


@dataclass(frozen=True)
class OpenPoolTotals:
    total_contracts: int
    pool_total: float  # collected fees of open contracts
    total_withdrawn: float  # every withdrawal ever recorded
    available_withdrawals: float  # withdrawals left after closures
    allocated_to_open: float

    @property
    def remaining_pool(self) -> float:
        """
        Collected fees of open contracts not yet covered by withdrawals.

        The old dashboard subtracted every withdrawal ever recorded instead,
        so its figure ignored money already credited to closures.
        """
        return max(0.0, self.pool_total - self.allocated_to_open)

    @property
    def unallocated_withdrawals(self) -> float:
        return max(0.0, self.available_withdrawals - self.allocated_to_open)


@dataclass(frozen=True)
class RecentFeePayment:
    payment: PaymentRecord
    fee_rate: float
    fee_amount: int


@dataclass(frozen=True)
class LedgerSummary:
    rows: tuple[ContractLedgerRow, ...]
    closures: tuple[ClosureTotals, ...]
    totals: OpenPoolTotals
    recent_payments: tuple[RecentFeePayment, ...]

    @property
    def settled_contract_ids(self) -> set[str]:
        return {r.fees.contract_number for r in self.rows if r.settled}


def recent_fee_payments(
    payments: Iterable[PaymentRecord],
    contracts: Iterable[ContractRecord],
    limit: int,
) -> list[RecentFeePayment]:
    """Latest payments with the operating fee each one carries at the rent rate."""
    rates = {c.contract_number: round_percentage(safe_number(c.fee_rate)) for c in contracts}
    result = []
    for payment in list(payments)[:limit]:
        rate = rates.get(str(payment.contract_number), 0.0)
        result.append(RecentFeePayment(
            payment=payment,
            fee_rate=rate,
            fee_amount=round_half_up(safe_number(payment.amount) * rate / 100),
        ))
    return result


def build_ledger(snapshot: LedgerSnapshot, recent_limit: int = 10) -> LedgerSummary:
    """Derive the complete ledger view from a snapshot."""
    fees = [compute_contract_fees(c) for c in snapshot.contracts]
    closure_totals = recompute_closures(snapshot, fees)

    open_fees = open_contract_fees(snapshot, fees)
    available = open_pool(snapshot, closure_totals)
    open_allocation = allocate_fifo(open_fees, available)

    allocations: dict[str, float] = {}
    for totals in closure_totals:
        allocations.update(totals.allocations)
    allocations.update(open_allocation)

    open_numbers = {f.contract_number for f in open_fees}
    settled = settled_contract_ids(open_fees, open_allocation)

    rows = []
    for fee in sort_oldest_first(fees):
        number = fee.contract_number
        excluded = snapshot.is_excluded(number)
        allocated = 0.0 if excluded else allocations.get(number, 0.0)
        rows.append(ContractLedgerRow(
            fees=fee,
            allocated=allocated,
            coverage_percentage=withdrawal_coverage(fee, allocated),
            closed=not excluded and number not in open_numbers,
            excluded=excluded,
            settled=number in settled,
        ))

    totals = OpenPoolTotals(
        total_contracts=len(open_fees),
        pool_total=sum(f.collected_fee_amount for f in open_fees),
        total_withdrawn=snapshot.total_withdrawals,
        available_withdrawals=available,
        allocated_to_open=sum(open_allocation.values()),
    )

    return LedgerSummary(
        rows=tuple(rows),
        closures=tuple(closure_totals),
        totals=totals,
        recent_payments=tuple(recent_fee_payments(snapshot.payments, snapshot.contracts, recent_limit)),
    )
