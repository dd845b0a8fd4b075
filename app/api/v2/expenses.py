"""Operating expenses API - fee ledger, withdrawals, closures and exclusions."""
from fastapi import APIRouter, status
import logging

from app.api.deps import DbSession, CurrentUser
from app.schemas.expenses import (
    ClosureCreate,
    ClosureResponse,
    ContractLedgerEntry,
    ExclusionResponse,
    ExclusionUpdate,
    LedgerResponse,
    LedgerTotals,
    RecentPaymentResponse,
    WithdrawalCreate,
    WithdrawalResponse,
    WithdrawalUpdate,
)
from app.services import expense_ledger_service as ledger_service
from app.services.operating_fees import ClosureTotals, ContractLedgerRow, LedgerSummary

logger = logging.getLogger(__name__)
router = APIRouter()


def closure_to_response(totals: ClosureTotals) -> ClosureResponse:
    closure = totals.closure
    return ClosureResponse(
        id=closure.id,
        closure_type=closure.closure_type,
        closure_date=closure.closure_date,
        period_start=closure.period_start,
        period_end=closure.period_end,
        contract_start=closure.contract_start,
        contract_end=closure.contract_end,
        notes=closure.notes,
        total_contracts=totals.total_contracts,
        total_amount=totals.total_amount,
        total_withdrawn=totals.total_withdrawn,
        remaining_balance=totals.remaining_balance,
    )


def ledger_row_to_response(row: ContractLedgerRow) -> ContractLedgerEntry:
    fees = row.fees
    contract = fees.contract
    return ContractLedgerEntry(
        contract_number=contract.contract_number,
        customer_name=contract.customer_name,
        ad_type=contract.ad_type,
        start_date=contract.start_date,
        rent_cost=contract.rent_cost,
        installation_cost=contract.installation_cost,
        print_cost=contract.print_cost,
        total_amount=fees.total_amount,
        total_paid=contract.total_paid,
        collection_percentage=fees.collection_percentage,
        fee_rate=contract.fee_rate,
        full_fee_amount=fees.full_fee_amount,
        collected_fee_amount=fees.collected_fee_amount,
        allocated_withdrawal=row.allocated,
        withdrawal_coverage=row.coverage_percentage,
        closed=row.closed,
        excluded=row.excluded,
        settled=row.settled,
    )


def ledger_to_response(summary: LedgerSummary) -> LedgerResponse:
    totals = summary.totals
    return LedgerResponse(
        totals=LedgerTotals(
            total_contracts=totals.total_contracts,
            pool_total=totals.pool_total,
            total_withdrawn=totals.total_withdrawn,
            available_withdrawals=totals.available_withdrawals,
            allocated_to_open=totals.allocated_to_open,
            remaining_pool=totals.remaining_pool,
            unallocated_withdrawals=totals.unallocated_withdrawals,
        ),
        contracts=[ledger_row_to_response(r) for r in summary.rows],
        closures=[closure_to_response(c) for c in summary.closures],
        settled_contract_ids=sorted(summary.settled_contract_ids, key=lambda n: (len(n), n)),
        recent_payments=[
            RecentPaymentResponse(
                id=p.payment.id,
                contract_number=p.payment.contract_number,
                customer_name=p.payment.customer_name,
                amount=p.payment.amount,
                paid_at=p.payment.paid_at,
                fee_rate=p.fee_rate,
                fee_amount=p.fee_amount,
            )
            for p in summary.recent_payments
        ],
    )


@router.get("/ledger", response_model=LedgerResponse)
async def get_ledger(db: DbSession, current_user: CurrentUser):
    """Operating-fee ledger recomputed from current contracts, withdrawals and closures."""
    return ledger_to_response(await ledger_service.get_ledger(db))


# Withdrawals


@router.get("/withdrawals", response_model=list[WithdrawalResponse])
async def list_withdrawals(db: DbSession, current_user: CurrentUser):
    return await ledger_service.list_withdrawals(db)


@router.post("/withdrawals", response_model=WithdrawalResponse, status_code=status.HTTP_201_CREATED)
async def create_withdrawal(data: WithdrawalCreate, db: DbSession, current_user: CurrentUser):
    """Record a cash withdrawal against the operating-fee pool."""
    return await ledger_service.create_withdrawal(db, data, actor_id=current_user.id)


@router.patch("/withdrawals/{withdrawal_id}", response_model=WithdrawalResponse)
async def update_withdrawal(
    withdrawal_id: int,
    data: WithdrawalUpdate,
    db: DbSession,
    current_user: CurrentUser,
):
    return await ledger_service.update_withdrawal(db, withdrawal_id, data)


@router.delete("/withdrawals/{withdrawal_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_withdrawal(withdrawal_id: int, db: DbSession, current_user: CurrentUser):
    await ledger_service.delete_withdrawal(db, withdrawal_id)


# Closures


@router.get("/closures", response_model=list[ClosureResponse])
async def list_closures(db: DbSession, current_user: CurrentUser):
    """Closures, newest first, with totals recomputed from current data."""
    summary = await ledger_service.get_ledger(db)
    return [closure_to_response(c) for c in summary.closures]


@router.post("/closures", response_model=ClosureResponse, status_code=status.HTTP_201_CREATED)
async def create_closure(data: ClosureCreate, db: DbSession, current_user: CurrentUser):
    """Close a date period or contract-number range."""
    closure, preview = await ledger_service.create_closure(db, data)
    return ClosureResponse(
        id=closure.id,
        closure_type=closure.closure_type,
        closure_date=closure.closure_date,
        period_start=closure.period_start,
        period_end=closure.period_end,
        contract_start=closure.contract_start,
        contract_end=closure.contract_end,
        notes=closure.notes,
        total_contracts=preview.total_contracts,
        total_amount=preview.total_amount,
        total_withdrawn=preview.total_withdrawn,
        remaining_balance=preview.remaining_balance,
    )


@router.delete("/closures/{closure_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_closure(closure_id: int, db: DbSession, current_user: CurrentUser):
    await ledger_service.delete_closure(db, closure_id)


# Exclusions


@router.put("/exclusions/{contract_number}", response_model=ExclusionResponse)
async def set_exclusion(
    contract_number: str,
    data: ExclusionUpdate,
    db: DbSession,
    current_user: CurrentUser,
):
    """Exclude a contract from (or return it to) the fee ledger."""
    flag = await ledger_service.set_exclusion(db, contract_number, data.excluded)
    return ExclusionResponse(contract_number=flag.contract_number, excluded=flag.excluded)
