"""Operating-fee ledger persistence.

Loads contracts, payments, withdrawals, closures and exclusion flags into a
``LedgerSnapshot``, hands it to ``app.services.operating_fees`` and writes
withdrawals, closures and flags back. Every record is mapped to one
canonical shape here; the engine never sees ORM objects.
"""

from typing import Optional
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from app.config import settings
from app.exceptions import NotFoundError, PersistenceError, ValidationError
from app.models.contract import Contract
from app.models.customer_payment import CustomerPayment
from app.models.expense import ExpenseWithdrawal, PeriodClosure, ExpenseFlag
from app.schemas.expenses import WithdrawalCreate, WithdrawalUpdate, ClosureCreate
from app.services.operating_fees import (
    ClosurePreview,
    ClosureRecord,
    ClosureRequest,
    ClosureValidationError,
    ContractRecord,
    LedgerSnapshot,
    LedgerSummary,
    PaymentRecord,
    WithdrawalRecord,
    build_ledger,
    parse_contract_number,
    preview_closure,
    safe_number,
)

logger = logging.getLogger(__name__)


# ========================
# Record mapping
# ========================


def contract_record_from_model(contract: Contract, paid: Optional[float] = None) -> ContractRecord:
    """Map a contract row; ``paid`` overrides the stored total_paid."""
    return ContractRecord(
        contract_number=str(contract.contract_number or ""),
        customer_name=contract.customer_name or "",
        ad_type=contract.ad_type or "",
        rent_cost=safe_number(contract.rent_cost),
        installation_cost=safe_number(contract.installation_cost),
        print_cost=safe_number(contract.print_cost),
        include_operating_in_installation=contract.include_operating_in_installation is True,
        include_operating_in_print=contract.include_operating_in_print is True,
        fee_rate=safe_number(contract.operating_fee_rate),
        fee_rate_installation=contract.operating_fee_rate_installation,
        fee_rate_print=contract.operating_fee_rate_print,
        total_paid=safe_number(contract.total_paid if paid is None else paid),
        start_date=contract.start_date,
        status=contract.status or "active",
    )


def withdrawal_record_from_model(withdrawal: ExpenseWithdrawal) -> WithdrawalRecord:
    return WithdrawalRecord(
        id=withdrawal.id,
        amount=safe_number(withdrawal.amount),
        date=withdrawal.date,
        method=withdrawal.method,
        note=withdrawal.note,
        receiver_name=withdrawal.receiver_name,
        sender_name=withdrawal.sender_name,
    )


def closure_record_from_model(closure: PeriodClosure) -> ClosureRecord:
    return ClosureRecord(
        id=closure.id,
        closure_type=closure.closure_type,
        closure_date=closure.closure_date,
        period_start=closure.period_start,
        period_end=closure.period_end,
        contract_start=closure.contract_start,
        contract_end=closure.contract_end,
        notes=closure.notes,
    )


def payment_record_from_model(payment: CustomerPayment) -> PaymentRecord:
    return PaymentRecord(
        id=payment.id,
        contract_number=str(payment.contract_number),
        amount=safe_number(payment.amount),
        customer_name=payment.customer_name or "",
        paid_at=payment.paid_at,
    )


# ========================
# Loading
# ========================


async def _fetch_all(db: AsyncSession, query, what: str) -> list:
    try:
        result = await db.execute(query)
    except SQLAlchemyError as e:
        logger.error(f"Failed to load {what}: {type(e).__name__}")
        raise PersistenceError(f"load {what}", type(e).__name__)
    return list(result.scalars().all())


async def _load_fee_payments(db: AsyncSession) -> Optional[list[CustomerPayment]]:
    """Fee-bearing payments linked to a contract, newest first; None if unreadable."""
    query = (
        select(CustomerPayment)
        .where(
            CustomerPayment.entry_type.in_(settings.FEE_PAYMENT_ENTRY_TYPES),
            CustomerPayment.contract_number.is_not(None),
            CustomerPayment.contract_number != "",
        )
        .order_by(CustomerPayment.paid_at.desc())
    )
    try:
        result = await db.execute(query)
    except SQLAlchemyError as e:
        logger.warning(
            f"Could not load customer payments ({type(e).__name__}); "
            "falling back to the paid totals stored on contracts"
        )
        await db.rollback()
        return None
    return list(result.scalars().all())


async def load_ledger_snapshot(db: AsyncSession) -> LedgerSnapshot:
    """Fetch every ledger input and normalise it into a snapshot."""
    contracts = await _fetch_all(
        db, select(Contract).order_by(Contract.contract_number.desc()), "contracts"
    )
    contracts = [
        c for c in contracts
        if parse_contract_number(c.contract_number) >= settings.OPERATING_FEE_START_CONTRACT
    ]

    payments = await _load_fee_payments(db)
    paid_by_contract: Optional[dict[str, float]] = None
    if payments is not None:
        paid_by_contract = {}
        for payment in payments:
            key = str(payment.contract_number)
            paid_by_contract[key] = paid_by_contract.get(key, 0.0) + safe_number(payment.amount)

    contract_records = []
    for contract in contracts:
        paid = None
        if paid_by_contract is not None:
            paid = paid_by_contract.get(str(contract.contract_number), 0.0)
        contract_records.append(contract_record_from_model(contract, paid))

    withdrawals = await _fetch_all(
        db, select(ExpenseWithdrawal).order_by(ExpenseWithdrawal.created_at.desc()), "withdrawals"
    )
    closures = await _fetch_all(
        db, select(PeriodClosure).order_by(PeriodClosure.created_at.desc(), PeriodClosure.id.desc()), "closures"
    )
    flags = await _fetch_all(
        db, select(ExpenseFlag).where(ExpenseFlag.excluded.is_(True)), "exclusion flags"
    )

    return LedgerSnapshot(
        contracts=tuple(contract_records),
        withdrawals=tuple(withdrawal_record_from_model(w) for w in withdrawals),
        closures=tuple(closure_record_from_model(c) for c in closures),
        excluded=frozenset(str(f.contract_number) for f in flags),
        payments=tuple(payment_record_from_model(p) for p in payments or []),
    )


async def get_ledger(db: AsyncSession) -> LedgerSummary:
    """Recompute the full ledger from current data."""
    snapshot = await load_ledger_snapshot(db)
    summary = build_ledger(snapshot, recent_limit=settings.RECENT_PAYMENTS_LIMIT)
    logger.debug(
        f"Ledger recomputed: {len(summary.rows)} contracts, {len(summary.closures)} closures, "
        f"{summary.totals.total_contracts} open"
    )
    return summary


# ========================
# Withdrawals
# ========================


def _is_row_security_violation(error: SQLAlchemyError) -> bool:
    return "row-level security" in str(error).lower()


async def _insert_withdrawal(db: AsyncSession, payload: dict) -> ExpenseWithdrawal:
    withdrawal = ExpenseWithdrawal(**payload)
    db.add(withdrawal)
    await db.commit()
    await db.refresh(withdrawal)
    return withdrawal


async def create_withdrawal(
    db: AsyncSession,
    data: WithdrawalCreate,
    actor_id: Optional[int] = None,
) -> ExpenseWithdrawal:
    """
    Record a withdrawal.

    A row-security rejection of the insert is retried once without the
    actor id; any other failure, or a second rejection, is raised.
    """
    payload = data.model_dump()
    try:
        withdrawal = await _insert_withdrawal(db, {**payload, "user_id": actor_id})
    except SQLAlchemyError as e:
        await db.rollback()
        if not _is_row_security_violation(e):
            logger.error(f"Withdrawal insert failed: {type(e).__name__}")
            raise PersistenceError("record withdrawal", type(e).__name__)
        logger.warning("Withdrawal insert blocked by row-level security, retrying without actor id")
        try:
            withdrawal = await _insert_withdrawal(db, payload)
        except SQLAlchemyError as retry_error:
            await db.rollback()
            logger.error(f"Withdrawal insert retry failed: {type(retry_error).__name__}")
            raise PersistenceError("record withdrawal", type(retry_error).__name__)

    logger.info(f"Recorded withdrawal {withdrawal.id}: {withdrawal.amount} on {withdrawal.date}")
    return withdrawal


async def _get_withdrawal(db: AsyncSession, withdrawal_id: int) -> ExpenseWithdrawal:
    result = await db.execute(select(ExpenseWithdrawal).where(ExpenseWithdrawal.id == withdrawal_id))
    withdrawal = result.scalar_one_or_none()
    if not withdrawal:
        raise NotFoundError("Withdrawal", withdrawal_id)
    return withdrawal


async def list_withdrawals(db: AsyncSession) -> list[ExpenseWithdrawal]:
    return await _fetch_all(
        db, select(ExpenseWithdrawal).order_by(ExpenseWithdrawal.created_at.desc()), "withdrawals"
    )


async def update_withdrawal(db: AsyncSession, withdrawal_id: int, data: WithdrawalUpdate) -> ExpenseWithdrawal:
    withdrawal = await _get_withdrawal(db, withdrawal_id)

    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(withdrawal, field, value)

    try:
        await db.commit()
        await db.refresh(withdrawal)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Withdrawal {withdrawal_id} update failed: {type(e).__name__}")
        raise PersistenceError("update withdrawal", type(e).__name__)

    logger.info(f"Updated withdrawal {withdrawal_id}")
    return withdrawal


async def delete_withdrawal(db: AsyncSession, withdrawal_id: int) -> None:
    """Delete a withdrawal. Closure totals shrink on the next recomputation."""
    withdrawal = await _get_withdrawal(db, withdrawal_id)
    try:
        await db.delete(withdrawal)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Withdrawal {withdrawal_id} delete failed: {type(e).__name__}")
        raise PersistenceError("delete withdrawal", type(e).__name__)

    logger.info(f"Deleted withdrawal {withdrawal_id}")


# ========================
# Closures
# ========================


def closure_request_from_schema(data: ClosureCreate) -> ClosureRequest:
    return ClosureRequest(
        closure_type=data.closure_type,
        closure_date=data.closure_date,
        period_start=data.period_start,
        period_end=data.period_end,
        contract_start=(data.contract_start or "").strip() or None,
        contract_end=(data.contract_end or "").strip() or None,
        notes=data.notes,
    )


async def create_closure(db: AsyncSession, data: ClosureCreate) -> tuple[PeriodClosure, ClosurePreview]:
    """Validate and insert a closure; nothing is written if validation fails."""
    request = closure_request_from_schema(data)
    snapshot = await load_ledger_snapshot(db)

    try:
        preview = preview_closure(snapshot, request)
    except ClosureValidationError as e:
        raise ValidationError(str(e))

    record = request.as_record()
    closure = PeriodClosure(
        closure_type=record.closure_type,
        closure_date=record.closure_date,
        period_start=record.period_start,
        period_end=record.period_end,
        contract_start=record.contract_start,
        contract_end=record.contract_end,
        total_contracts=preview.total_contracts,
        total_amount=preview.total_amount,
        total_withdrawn=preview.total_withdrawn,
        remaining_balance=preview.remaining_balance,
        notes=record.notes,
    )
    db.add(closure)
    try:
        await db.commit()
        await db.refresh(closure)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Closure insert failed: {type(e).__name__}")
        raise PersistenceError("close period", type(e).__name__)

    logger.info(
        f"Closed {closure.closure_type} {closure.id}: {preview.total_contracts} contracts, "
        f"amount {preview.total_amount}, withdrawn {preview.total_withdrawn}"
    )
    return closure, preview


async def delete_closure(db: AsyncSession, closure_id: int) -> None:
    result = await db.execute(select(PeriodClosure).where(PeriodClosure.id == closure_id))
    closure = result.scalar_one_or_none()
    if not closure:
        raise NotFoundError("Closure", closure_id)

    try:
        await db.delete(closure)
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError("reopen closure", type(e).__name__)

    logger.info(f"Deleted closure {closure_id}; its contracts are open again")


# ========================
# Exclusions
# ========================


async def set_exclusion(db: AsyncSession, contract_number: str, excluded: bool) -> ExpenseFlag:
    """Upsert the exclusion flag for a contract."""
    contract_number = str(contract_number).strip()
    if not contract_number:
        raise ValidationError("Contract number is required")

    result = await db.execute(select(ExpenseFlag).where(ExpenseFlag.contract_number == contract_number))
    flag = result.scalar_one_or_none()
    if flag is None:
        flag = ExpenseFlag(contract_number=contract_number, excluded=excluded)
        db.add(flag)
    else:
        flag.excluded = excluded

    try:
        await db.commit()
        await db.refresh(flag)
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Exclusion update for contract {contract_number} failed: {type(e).__name__}")
        raise PersistenceError("update contract exclusion", type(e).__name__)

    logger.info(f"Contract {contract_number} {'excluded from' if excluded else 'returned to'} the fee ledger")
    return flag
