"""
Removal task auto-assignment engine.

Pure functions that turn expired rental contracts into removal task plans:

- Decide which billboards of an expired contract can be taken down
- Rank field teams for each billboard and group billboards by team
- Find queued items whose billboard was rented again, and duplicate tasks

Records are plain dataclasses built by ``app.services.removal_task_service``.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Optional

ACTIVE_TASK_STATUSES = ("pending", "in_progress")

# Team ranks, lower is better
RANK_SIZE_AND_CITY = 0
RANK_SIZE_ANY_CITY = 1
RANK_SIZE_ONLY = 2


@dataclass(frozen=True)
class ContractTerm:
    """Removal-relevant projection of a rental contract."""

    contract_number: str
    end_date: Optional[date] = None
    billboard_ids: tuple[int, ...] = ()
    customer_name: str = ""


@dataclass(frozen=True)
class BillboardRecord:
    id: int
    size: str = ""
    city: str = ""
    status: str = ""
    contract_number: Optional[str] = None
    rent_end_date: Optional[date] = None
    has_cutout: bool = False


@dataclass(frozen=True)
class TeamRecord:
    id: int
    name: str = ""
    sizes: tuple[str, ...] = ()
    cities: tuple[str, ...] = ()  # empty = services every city


@dataclass(frozen=True)
class TaskRecord:
    id: int
    contract_numbers: tuple[str, ...] = ()
    team_id: Optional[int] = None
    status: str = "pending"
    created_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_TASK_STATUSES


@dataclass(frozen=True)
class TaskItemRecord:
    id: int
    task_id: int
    billboard_id: int
    status: str = "pending"
    task_status: str = "pending"


@dataclass(frozen=True)
class RemovalTaskPlan:
    """One task to insert: a team and the billboards it should take down."""

    contract_numbers: tuple[str, ...]
    team_id: int
    billboard_ids: tuple[int, ...]


# ========================
# Parsing and state
# ========================


def parse_billboard_ids(raw: Any) -> list[int]:
    """Billboard ids from a comma-separated string; blanks, junk and 0 are dropped."""
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        parts = [str(p) for p in raw]
    else:
        parts = str(raw).split(",")

    ids = []
    for part in parts:
        part = part.strip()
        try:
            value = int(part)
        except ValueError:
            continue
        if value:
            ids.append(value)
    return ids


def is_expired(end_date: Optional[date], today: date) -> bool:
    """A contract expires on its end date."""
    return end_date is not None and end_date <= today


class ProcessedContracts:
    """
    Contract numbers already handled by auto-creation in this process.

    Lost on restart; the active-task check in the database stays
    authoritative.
    """

    def __init__(self):
        self._numbers: set[str] = set()

    def __contains__(self, contract_number) -> bool:
        return str(contract_number) in self._numbers

    def __len__(self) -> int:
        return len(self._numbers)

    def add(self, contract_number) -> None:
        self._numbers.add(str(contract_number))

    def clear(self) -> None:
        self._numbers.clear()


# ========================
# Team matching
# ========================


def _clean(values: Iterable[Any]) -> set[str]:
    return {str(v).strip() for v in values if v is not None}


def rank_team(team: TeamRecord, billboard: BillboardRecord) -> Optional[int]:
    """
    Rank how well a team fits a billboard, or None if it cannot take it.

    0: handles the size and lists the billboard's city
    1: handles the size and services every city
    2: handles the size but is restricted to other cities
    """
    size = (billboard.size or "").strip()
    if not size or size not in _clean(team.sizes):
        return None

    cities = _clean(team.cities)
    if not cities:
        return RANK_SIZE_ANY_CITY
    if (billboard.city or "").strip() in cities:
        return RANK_SIZE_AND_CITY
    return RANK_SIZE_ONLY


def select_team(teams: Iterable[TeamRecord], billboard: BillboardRecord) -> Optional[TeamRecord]:
    """Best-ranked team for a billboard; the earlier team wins a tie."""
    best = None
    best_rank = None
    for team in teams:
        rank = rank_team(team, billboard)
        if rank is None:
            continue
        if best_rank is None or rank < best_rank:
            best, best_rank = team, rank
    return best


def group_billboards_by_team(
    billboards: Iterable[BillboardRecord],
    teams: Iterable[TeamRecord],
) -> dict[int, list[BillboardRecord]]:
    """Billboards keyed by their selected team id. Unmatched billboards are dropped."""
    teams = list(teams)
    groups: dict[int, list[BillboardRecord]] = {}
    for billboard in billboards:
        team = select_team(teams, billboard)
        if team is None:
            continue
        groups.setdefault(team.id, []).append(billboard)
    return groups


# ========================
# Planning
# ========================


def filter_removable_billboards(
    billboards: Iterable[BillboardRecord],
    queued_ids: Iterable[int],
    active_contract_ids: Iterable[int],
    today: date,
) -> list[BillboardRecord]:
    """
    Billboards that can be taken down now.

    Drops billboards already in a pending or in-progress removal task,
    billboards listed on a contract that has not ended, and billboards
    whose own rent end date is missing or still ahead.
    """
    queued = set(queued_ids)
    rented = set(active_contract_ids)
    removable = []
    for billboard in billboards:
        if billboard.id in queued or billboard.id in rented:
            continue
        if billboard.rent_end_date is None or billboard.rent_end_date > today:
            continue
        removable.append(billboard)
    return removable


def plan_removal_tasks(
    contracts: Iterable[ContractTerm],
    billboards: dict[int, BillboardRecord],
    teams: Iterable[TeamRecord],
    active_tasks: Iterable[TaskRecord],
    queued_ids: Iterable[int],
    active_contract_ids: Iterable[int],
    today: date,
    processed: Optional[ProcessedContracts] = None,
) -> list[RemovalTaskPlan]:
    """
    Plan removal tasks for expired contracts.

    A contract is skipped if it has not expired, was processed earlier in
    this process, or already appears in an active task. Billboards planned
    for one contract count as queued for the rest of the run.
    """
    teams = list(teams)
    queued = set(queued_ids)
    active_contract_ids = set(active_contract_ids)
    represented = set()
    for task in active_tasks:
        if task.is_active:
            represented.update(task.contract_numbers)

    plans = []
    for contract in contracts:
        number = contract.contract_number
        if not is_expired(contract.end_date, today):
            continue
        if number in represented:
            continue
        if processed is not None and number in processed:
            continue

        candidates = [billboards[i] for i in contract.billboard_ids if i in billboards]
        removable = filter_removable_billboards(candidates, queued, active_contract_ids, today)
        for team_id, group in group_billboards_by_team(removable, teams).items():
            ids = tuple(b.id for b in group)
            plans.append(RemovalTaskPlan(contract_numbers=(number,), team_id=team_id, billboard_ids=ids))
            queued.update(ids)

        if processed is not None:
            processed.add(number)

    return plans


# ========================
# Cleanup
# ========================


def find_rented_items(
    items: Iterable[TaskItemRecord],
    billboards: dict[int, BillboardRecord],
    rented_statuses: Iterable[str],
    today: date,
) -> list[TaskItemRecord]:
    """
    Pending items of active tasks whose billboard was rented again.

    A billboard counts as rented again when its status is a rented status
    and either its rent end date is after today, or it has no end date but
    still carries a contract number.
    """
    statuses = set(rented_statuses)
    stale = []
    for item in items:
        if item.status != "pending" or item.task_status not in ACTIVE_TASK_STATUSES:
            continue
        billboard = billboards.get(item.billboard_id)
        if billboard is None or billboard.status not in statuses:
            continue
        if billboard.rent_end_date is not None:
            if billboard.rent_end_date > today:
                stale.append(item)
        elif billboard.contract_number:
            stale.append(item)
    return stale


def find_duplicate_tasks(tasks: Iterable[TaskRecord]) -> list[TaskRecord]:
    """Active tasks repeating the (first contract, team) of an older one."""
    groups: dict[tuple, list[TaskRecord]] = {}
    for task in tasks:
        if not task.is_active:
            continue
        first = task.contract_numbers[0] if task.contract_numbers else None
        groups.setdefault((first, task.team_id), []).append(task)

    duplicates = []
    for group in groups.values():
        if len(group) < 2:
            continue
        group.sort(key=lambda t: (t.created_at is None, t.created_at or datetime.min, t.id))
        duplicates.extend(group[1:])
    return duplicates
