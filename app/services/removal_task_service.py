"""Removal task persistence.

Loads contracts, billboards, teams and active tasks, runs the planner in
``app.services.removal_assignment`` and writes tasks, items and billboard
resets back. Writes are committed step by step; a failure part-way leaves
what was already committed in place and surfaces as ``PersistenceError``.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional
from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from app.config import settings
from app.exceptions import (
    BusinessRuleError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from app.models.billboard import Billboard
from app.models.contract import Contract
from app.models.installation import InstallationTeam, InstallationTaskItem
from app.models.removal_task import RemovalTask, RemovalTaskItem
from app.services.removal_assignment import (
    ACTIVE_TASK_STATUSES,
    BillboardRecord,
    ContractTerm,
    ProcessedContracts,
    RemovalTaskPlan,
    TaskItemRecord,
    TaskRecord,
    TeamRecord,
    find_duplicate_tasks,
    find_rented_items,
    group_billboards_by_team,
    parse_billboard_ids,
    plan_removal_tasks,
)

logger = logging.getLogger(__name__)


@dataclass
class AutoCreateResult:
    contracts_processed: int = 0
    task_ids: list[int] = field(default_factory=list)
    items_created: int = 0
    items_cleaned: int = 0

    @property
    def tasks_created(self) -> int:
        return len(self.task_ids)


@dataclass
class CompletionResult:
    items_completed: int = 0
    billboards_reset: int = 0
    completed_task_ids: list[int] = field(default_factory=list)


# ========================
# Record mapping
# ========================


def contract_term_from_model(contract: Contract) -> ContractTerm:
    return ContractTerm(
        contract_number=str(contract.contract_number),
        end_date=contract.end_date,
        billboard_ids=tuple(parse_billboard_ids(contract.billboard_ids)),
        customer_name=contract.customer_name or "",
    )


def billboard_record_from_model(billboard: Billboard) -> BillboardRecord:
    return BillboardRecord(
        id=billboard.id,
        size=billboard.size or "",
        city=billboard.city or "",
        status=billboard.status or "",
        contract_number=billboard.contract_number or None,
        rent_end_date=billboard.rent_end_date,
        has_cutout=bool(billboard.has_cutout),
    )


def team_record_from_model(team: InstallationTeam) -> TeamRecord:
    return TeamRecord(
        id=team.id,
        name=team.team_name or "",
        sizes=tuple(str(s) for s in team.sizes or []),
        cities=tuple(str(c) for c in team.cities or []),
    )


def task_record_from_model(task: RemovalTask) -> TaskRecord:
    return TaskRecord(
        id=task.id,
        contract_numbers=tuple(task.contract_numbers),
        team_id=task.team_id,
        status=task.status,
        created_at=task.created_at,
    )


# ========================
# Loading
# ========================


async def _scalars(db: AsyncSession, query, what: str) -> list:
    try:
        result = await db.execute(query)
    except SQLAlchemyError as e:
        logger.error(f"Failed to load {what}: {type(e).__name__}")
        raise PersistenceError(f"load {what}", type(e).__name__)
    return list(result.scalars().all())


async def _active_tasks(db: AsyncSession) -> list[RemovalTask]:
    return await _scalars(
        db,
        select(RemovalTask).where(RemovalTask.status.in_(ACTIVE_TASK_STATUSES)),
        "active removal tasks",
    )


async def _queued_billboard_ids(db: AsyncSession) -> set[int]:
    """Billboards already listed in a pending or in-progress removal task."""
    query = (
        select(RemovalTaskItem.billboard_id)
        .join(RemovalTask, RemovalTask.id == RemovalTaskItem.task_id)
        .where(RemovalTask.status.in_(ACTIVE_TASK_STATUSES))
    )
    return set(await _scalars(db, query, "queued billboards"))


async def _active_contract_billboard_ids(db: AsyncSession, today: date) -> set[int]:
    """Billboards listed on any contract that has not ended yet."""
    raw_ids = await _scalars(
        db, select(Contract.billboard_ids).where(Contract.end_date > today), "active contracts"
    )
    ids: set[int] = set()
    for raw in raw_ids:
        ids.update(parse_billboard_ids(raw))
    return ids


async def _billboards_by_id(db: AsyncSession, billboard_ids: Iterable[int]) -> dict[int, Billboard]:
    billboard_ids = list(set(billboard_ids))
    if not billboard_ids:
        return {}
    rows = await _scalars(db, select(Billboard).where(Billboard.id.in_(billboard_ids)), "billboards")
    return {b.id: b for b in rows}


async def _teams(db: AsyncSession) -> list[TeamRecord]:
    rows = await _scalars(db, select(InstallationTeam).order_by(InstallationTeam.id), "installation teams")
    return [team_record_from_model(t) for t in rows]


async def _latest_installation_items(db: AsyncSession, billboard_ids: Iterable[int]) -> dict[int, InstallationTaskItem]:
    """Most recent installation item per billboard, for design copy-forward."""
    billboard_ids = list(set(billboard_ids))
    if not billboard_ids:
        return {}
    query = (
        select(InstallationTaskItem)
        .where(InstallationTaskItem.billboard_id.in_(billboard_ids))
        .order_by(InstallationTaskItem.created_at.desc(), InstallationTaskItem.id.desc())
    )
    latest: dict[int, InstallationTaskItem] = {}
    for item in await _scalars(db, query, "installation items"):
        latest.setdefault(item.billboard_id, item)
    return latest


# ========================
# Writing
# ========================


async def _insert_task(
    db: AsyncSession,
    plan: RemovalTaskPlan,
    installations: dict[int, InstallationTaskItem],
) -> RemovalTask:
    """Insert one task and its items, then commit."""
    contract_numbers = list(plan.contract_numbers)
    task = RemovalTask(
        contract_id=contract_numbers[0] if contract_numbers else None,
        contract_ids=contract_numbers,
        team_id=plan.team_id,
        status="pending",
    )
    try:
        db.add(task)
        await db.flush()
        for billboard_id in plan.billboard_ids:
            installed = installations.get(billboard_id)
            db.add(RemovalTaskItem(
                task_id=task.id,
                billboard_id=billboard_id,
                status="pending",
                design_face_a=installed.design_face_a if installed else None,
                design_face_b=installed.design_face_b if installed else None,
                installed_image_url=installed.installed_image_url if installed else None,
            ))
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Removal task insert failed for contracts {contract_numbers}: {type(e).__name__}")
        raise PersistenceError("create removal task", type(e).__name__)

    logger.info(
        f"Created removal task {task.id} for contracts {contract_numbers}: "
        f"team {plan.team_id}, {len(plan.billboard_ids)} billboards"
    )
    return task


async def _commit(db: AsyncSession, operation: str) -> None:
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Failed to {operation}: {type(e).__name__}")
        raise PersistenceError(operation, type(e).__name__)


async def _complete_finished_tasks(db: AsyncSession, task_ids) -> list[int]:
    """Flip tasks with completed items and nothing else left to completed."""
    completed = []
    for task_id in sorted(task_ids):
        counts = dict((await db.execute(
            select(RemovalTaskItem.status, func.count(RemovalTaskItem.id))
            .where(RemovalTaskItem.task_id == task_id)
            .group_by(RemovalTaskItem.status)
        )).all())
        done = counts.pop("completed", 0)
        if not done or any(counts.values()):
            continue
        task = await db.get(RemovalTask, task_id)
        if task is not None and task.status != "completed":
            task.status = "completed"
            completed.append(task_id)
    if completed:
        await _commit(db, "complete removal tasks")
    return completed


# ========================
# Queries
# ========================


async def list_tasks(db: AsyncSession, status: Optional[str] = None) -> list[RemovalTask]:
    query = select(RemovalTask).order_by(RemovalTask.created_at.desc(), RemovalTask.id.desc())
    if status:
        query = query.where(RemovalTask.status == status)
    return await _scalars(db, query.execution_options(populate_existing=True), "removal tasks")


async def get_task(db: AsyncSession, task_id: int) -> RemovalTask:
    query = (
        select(RemovalTask)
        .where(RemovalTask.id == task_id)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(query)
    task = result.scalar_one_or_none()
    if not task:
        raise NotFoundError("Removal task", task_id)
    return task


# ========================
# Auto creation
# ========================


async def auto_create_removal_tasks(
    db: AsyncSession,
    processed: ProcessedContracts,
    today: Optional[date] = None,
) -> AutoCreateResult:
    """
    Create removal tasks for contracts that ended within the lookback window.

    Contracts already in an active task, or already processed by this
    process, are skipped. Afterwards queued items whose billboard was rented
    again are removed.
    """
    today = today or date.today()
    since = today - timedelta(days=settings.REMOVAL_LOOKBACK_DAYS)

    contracts = await _scalars(
        db,
        select(Contract)
        .where(Contract.end_date <= today, Contract.end_date >= since)
        .order_by(Contract.end_date.desc()),
        "expired contracts",
    )
    terms = [contract_term_from_model(c) for c in contracts]
    result = AutoCreateResult()
    if not terms:
        logger.debug("No expired contracts in the removal lookback window")
        result.items_cleaned = await cleanup_rented_items(db, today)
        return result

    active_tasks = [task_record_from_model(t) for t in await _active_tasks(db)]
    queued = await _queued_billboard_ids(db)
    rented_elsewhere = await _active_contract_billboard_ids(db, today)
    billboards = await _billboards_by_id(db, (i for t in terms for i in t.billboard_ids))
    teams = await _teams(db)

    already_processed = len(processed)
    plans = plan_removal_tasks(
        terms,
        {i: billboard_record_from_model(b) for i, b in billboards.items()},
        teams,
        active_tasks,
        queued,
        rented_elsewhere,
        today,
        processed,
    )
    result.contracts_processed = len(processed) - already_processed

    installations = await _latest_installation_items(db, (i for p in plans for i in p.billboard_ids))
    for plan in plans:
        task = await _insert_task(db, plan, installations)
        result.task_ids.append(task.id)
        result.items_created += len(plan.billboard_ids)

    result.items_cleaned = await cleanup_rented_items(db, today)
    logger.info(
        f"Removal auto-creation: {result.contracts_processed} contracts processed, "
        f"{result.tasks_created} tasks, {result.items_created} items, {result.items_cleaned} stale items removed"
    )
    return result


# ========================
# Manual creation
# ========================


async def create_manual_removal_tasks(
    db: AsyncSession,
    contract_numbers: list[str],
    billboard_ids: list[int],
    team_id: Optional[int] = None,
) -> list[RemovalTask]:
    """
    Create tasks for hand-picked billboards.

    Every task lists all selected contracts. Without a team the billboards
    are grouped by their best-ranked team.
    """
    contract_numbers = [str(c).strip() for c in contract_numbers if str(c).strip()]
    billboard_ids = list(dict.fromkeys(billboard_ids))
    if not contract_numbers:
        raise ValidationError("Select at least one contract")
    if not billboard_ids:
        raise ValidationError("Select at least one billboard")

    billboards = await _billboards_by_id(db, billboard_ids)
    missing = [i for i in billboard_ids if i not in billboards]
    if missing:
        raise NotFoundError("Billboard", ", ".join(str(i) for i in missing))

    queued = await _queued_billboard_ids(db)
    conflicts = [i for i in billboard_ids if i in queued]
    if conflicts:
        raise ConflictError(
            f"Billboards already in an active removal task: {', '.join(str(i) for i in conflicts)}"
        )

    records = [billboard_record_from_model(billboards[i]) for i in billboard_ids]
    if team_id is not None:
        team = await db.get(InstallationTeam, team_id)
        if team is None:
            raise NotFoundError("Installation team", team_id)
        groups = {team_id: records}
    else:
        groups = group_billboards_by_team(records, await _teams(db))
        unmatched = len(records) - sum(len(g) for g in groups.values())
        if unmatched:
            logger.warning(f"{unmatched} selected billboards match no team and were skipped")
        if not groups:
            raise BusinessRuleError("No team handles the selected billboard sizes")

    installations = await _latest_installation_items(db, billboard_ids)
    tasks = []
    for group_team_id, group in groups.items():
        plan = RemovalTaskPlan(
            contract_numbers=tuple(contract_numbers),
            team_id=group_team_id,
            billboard_ids=tuple(b.id for b in group),
        )
        tasks.append(await _insert_task(db, plan, installations))
    return tasks


# ========================
# Cleanup
# ========================


async def cleanup_rented_items(db: AsyncSession, today: Optional[date] = None) -> int:
    """Delete pending items whose billboard was rented again. Returns the count."""
    today = today or date.today()
    query = (
        select(RemovalTaskItem, RemovalTask.status)
        .join(RemovalTask, RemovalTask.id == RemovalTaskItem.task_id)
        .where(
            RemovalTaskItem.status == "pending",
            RemovalTask.status.in_(ACTIVE_TASK_STATUSES),
        )
    )
    try:
        rows = (await db.execute(query)).all()
    except SQLAlchemyError as e:
        logger.error(f"Failed to load pending removal items: {type(e).__name__}")
        raise PersistenceError("load pending removal items", type(e).__name__)
    if not rows:
        return 0

    items = {item.id: item for item, _ in rows}
    records = [
        TaskItemRecord(
            id=item.id,
            task_id=item.task_id,
            billboard_id=item.billboard_id,
            status=item.status,
            task_status=task_status,
        )
        for item, task_status in rows
    ]
    billboards = await _billboards_by_id(db, (r.billboard_id for r in records))
    stale = find_rented_items(
        records,
        {i: billboard_record_from_model(b) for i, b in billboards.items()},
        settings.RENTED_BILLBOARD_STATUSES,
        today,
    )
    if not stale:
        return 0

    for record in stale:
        await db.delete(items[record.id])
    await _commit(db, "remove re-rented billboards from removal tasks")

    completed = await _complete_finished_tasks(db, {r.task_id for r in stale})

    logger.info(
        f"Removed {len(stale)} pending removal items for re-rented billboards: "
        f"{[r.billboard_id for r in stale]}; tasks completed: {completed}"
    )
    return len(stale)


async def cleanup_duplicate_tasks(db: AsyncSession) -> list[int]:
    """Delete active tasks that repeat an older task's contract and team."""
    tasks = await _active_tasks(db)
    duplicates = find_duplicate_tasks(task_record_from_model(t) for t in tasks)
    if not duplicates:
        return []

    ids = [d.id for d in duplicates]
    try:
        await db.execute(delete(RemovalTaskItem).where(RemovalTaskItem.task_id.in_(ids)))
        await db.execute(delete(RemovalTask).where(RemovalTask.id.in_(ids)))
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Duplicate removal task cleanup failed: {type(e).__name__}")
        raise PersistenceError("delete duplicate removal tasks", type(e).__name__)

    logger.info(f"Deleted {len(ids)} duplicate removal tasks: {ids}")
    return ids


# ========================
# Completion
# ========================


async def complete_items(
    db: AsyncSession,
    item_ids: list[int],
    removal_date: Optional[date],
    notes: Optional[str] = None,
) -> CompletionResult:
    """
    Mark items removed and free their billboards.

    Tasks whose items are all completed afterwards become completed.
    """
    if not removal_date:
        raise ValidationError("Removal date is required")
    item_ids = list(dict.fromkeys(item_ids))
    if not item_ids:
        raise ValidationError("Select at least one item")

    items = await _scalars(db, select(RemovalTaskItem).where(RemovalTaskItem.id.in_(item_ids)), "removal items")
    found = {item.id for item in items}
    missing = [i for i in item_ids if i not in found]
    if missing:
        raise NotFoundError("Removal item", ", ".join(str(i) for i in missing))

    completed_at = datetime.now(timezone.utc)
    for item in items:
        item.status = "completed"
        item.completed_at = completed_at
        item.removal_date = removal_date
        item.notes = notes

    billboards = await _billboards_by_id(db, (item.billboard_id for item in items))
    for billboard in billboards.values():
        billboard.status = settings.AVAILABLE_BILLBOARD_STATUS
        billboard.contract_number = None
        billboard.customer_name = None
        billboard.ad_type = None
        billboard.rent_start_date = None
        billboard.rent_end_date = None
    await _commit(db, "complete removal items")

    result = CompletionResult(items_completed=len(items), billboards_reset=len(billboards))
    result.completed_task_ids.extend(await _complete_finished_tasks(db, {item.task_id for item in items}))

    logger.info(
        f"Completed {result.items_completed} removal items on {removal_date}; "
        f"{result.billboards_reset} billboards available, tasks completed: {result.completed_task_ids}"
    )
    return result


async def undo_item(db: AsyncSession, item_id: int) -> RemovalTaskItem:
    """Return an item to pending; its task reopens if it was completed."""
    item = await db.get(RemovalTaskItem, item_id)
    if item is None:
        raise NotFoundError("Removal item", item_id)

    item.status = "pending"
    item.completed_at = None
    item.removal_date = None
    item.notes = None
    item.removed_image_url = None

    task = await db.get(RemovalTask, item.task_id)
    if task is not None and task.status == "completed":
        task.status = "pending"
        logger.info(f"Removal task {task.id} reopened")

    await _commit(db, "undo removal item")
    logger.info(f"Removal item {item_id} returned to pending")
    return item


async def delete_task(db: AsyncSession, task_id: int) -> None:
    """Delete a task and its items."""
    task = await db.get(RemovalTask, task_id)
    if task is None:
        raise NotFoundError("Removal task", task_id)

    try:
        await db.execute(delete(RemovalTaskItem).where(RemovalTaskItem.task_id == task_id))
        await db.execute(delete(RemovalTask).where(RemovalTask.id == task_id))
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(f"Removal task {task_id} delete failed: {type(e).__name__}")
        raise PersistenceError("delete removal task", type(e).__name__)

    logger.info(f"Deleted removal task {task_id}")
