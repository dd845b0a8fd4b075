"""
Tests for the removal tasks API (/api/v2/removal-tasks).
"""
from datetime import date, timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy import select

from app.models.billboard import Billboard
from app.models.contract import Contract
from app.models.installation import InstallationTeam, InstallationTaskItem
from app.models.removal_task import RemovalTask, RemovalTaskItem
from tests.factories import BillboardFactory, ContractFactory, ExpiredContractFactory, TeamFactory

REMOVAL_PREFIX = "/api/v2/removal-tasks"

TODAY = date.today()


@pytest_asyncio.fixture
async def teams(add_rows):
    """Team 1 services Tripoli only, team 2 every city; both handle 12x4."""
    return await add_rows(
        InstallationTeam(**TeamFactory(id=1, sizes=["12x4"], cities=["Tripoli"])),
        InstallationTeam(**TeamFactory(id=2, sizes=["12x4", "8x3"], cities=[])),
    )


@pytest_asyncio.fixture
async def expired_contract(add_rows, teams):
    """Contract 1100 ended three days ago with billboards 41, 42 and 43."""
    return await add_rows(
        Contract(**ExpiredContractFactory(
            contract_number="1100", end_date=TODAY - timedelta(days=3), billboard_ids="41, 42,43",
        )),
        Billboard(**BillboardFactory(id=41, size="12x4", city="Tripoli", contract_number="1100")),
        Billboard(**BillboardFactory(id=42, size="12x4", city="Benghazi", contract_number="1100")),
        Billboard(**BillboardFactory(id=43, size="8x3", city="Tripoli", contract_number="1100")),
        InstallationTaskItem(billboard_id=41, design_face_a="old-a.png", status="completed"),
    )


async def _auto(client: AsyncClient):
    response = await client.post(f"{REMOVAL_PREFIX}/auto", json={"today": TODAY.isoformat()})
    assert response.status_code == 200
    return response.json()


class TestAutoCreate:
    """Tests for POST /removal-tasks/auto."""

    @pytest.mark.asyncio
    async def test_groups_billboards_by_team(self, authenticated_client: AsyncClient, expired_contract):
        result = await _auto(authenticated_client)

        assert result["contracts_processed"] == 1
        assert result["tasks_created"] == 2
        assert result["items_created"] == 3

        tasks = (await authenticated_client.get(REMOVAL_PREFIX)).json()
        by_team = {t["team_id"]: sorted(i["billboard_id"] for i in t["items"]) for t in tasks}
        assert by_team == {1: [41], 2: [42, 43]}
        assert all(t["contract_ids"] == ["1100"] for t in tasks)
        assert all(t["status"] == "pending" for t in tasks)

    @pytest.mark.asyncio
    async def test_copies_latest_installation_design(
        self, authenticated_client: AsyncClient, expired_contract, test_db
    ):
        await _auto(authenticated_client)

        item = (await test_db.execute(
            select(RemovalTaskItem).where(RemovalTaskItem.billboard_id == 41)
        )).scalar_one()
        assert item.design_face_a == "old-a.png"

    @pytest.mark.asyncio
    async def test_running_twice_creates_nothing_new(self, authenticated_client: AsyncClient, expired_contract):
        await _auto(authenticated_client)
        second = await _auto(authenticated_client)

        assert second["tasks_created"] == 0
        assert len((await authenticated_client.get(REMOVAL_PREFIX)).json()) == 2

    @pytest.mark.asyncio
    async def test_rerented_billboard_is_skipped(self, authenticated_client: AsyncClient, expired_contract, add_rows):
        """Billboard 42 now belongs to contract 1200, which runs for another month."""
        await add_rows(Contract(**ContractFactory(
            contract_number="1200",
            start_date=TODAY - timedelta(days=1),
            end_date=TODAY + timedelta(days=30),
            billboard_ids="42",
        )))

        await _auto(authenticated_client)

        tasks = (await authenticated_client.get(REMOVAL_PREFIX)).json()
        billboard_ids = sorted(i["billboard_id"] for t in tasks for i in t["items"])
        assert billboard_ids == [41, 43]

    @pytest.mark.asyncio
    async def test_contract_outside_lookback_is_ignored(self, authenticated_client: AsyncClient, teams, add_rows):
        await add_rows(
            Contract(**ExpiredContractFactory(
                contract_number="1050", end_date=TODAY - timedelta(days=120), billboard_ids="7",
            )),
            Billboard(**BillboardFactory(id=7, size="12x4", rent_end_date=TODAY - timedelta(days=120))),
        )

        result = await _auto(authenticated_client)

        assert result["tasks_created"] == 0


class TestManualCreate:
    """Tests for POST /removal-tasks/manual."""

    @pytest.mark.asyncio
    async def test_manual_task_lists_every_contract(self, authenticated_client: AsyncClient, expired_contract):
        response = await authenticated_client.post(f"{REMOVAL_PREFIX}/manual", json={
            "contract_numbers": ["1100", "1101"],
            "billboard_ids": [41, 42],
            "team_id": 2,
        })
        assert response.status_code == 201
        [task] = response.json()
        assert task["contract_ids"] == ["1100", "1101"]
        assert task["contract_id"] == "1100"
        assert sorted(i["billboard_id"] for i in task["items"]) == [41, 42]

    @pytest.mark.asyncio
    async def test_rejects_billboards_already_queued(self, authenticated_client: AsyncClient, expired_contract):
        await _auto(authenticated_client)

        response = await authenticated_client.post(f"{REMOVAL_PREFIX}/manual", json={
            "contract_numbers": ["1100"],
            "billboard_ids": [41],
        })
        assert response.status_code == 409
        assert "41" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_unknown_team(self, authenticated_client: AsyncClient, expired_contract):
        response = await authenticated_client.post(f"{REMOVAL_PREFIX}/manual", json={
            "contract_numbers": ["1100"],
            "billboard_ids": [41],
            "team_id": 99,
        })
        assert response.status_code == 404


class TestCleanup:

    @pytest.mark.asyncio
    async def test_rented_items_removed(self, authenticated_client: AsyncClient, expired_contract, test_db):
        await _auto(authenticated_client)

        billboard = await test_db.get(Billboard, 42)
        billboard.status = "rented"
        billboard.contract_number = "1300"
        billboard.rent_end_date = TODAY + timedelta(days=60)
        await test_db.commit()

        response = await authenticated_client.post(f"{REMOVAL_PREFIX}/cleanup/rented")
        assert response.status_code == 200
        assert response.json()["removed"] == 1

        remaining = (await test_db.execute(select(RemovalTaskItem.billboard_id))).scalars().all()
        assert sorted(remaining) == [41, 43]

    @pytest.mark.asyncio
    async def test_task_completes_when_last_open_item_is_rerented(
        self, authenticated_client: AsyncClient, expired_contract, test_db
    ):
        """Team 2 removed billboard 42; billboard 43 was rented again before removal."""
        await _auto(authenticated_client)
        task = next(t for t in (await authenticated_client.get(REMOVAL_PREFIX)).json() if t["team_id"] == 2)
        items = {i["billboard_id"]: i["id"] for i in task["items"]}
        await authenticated_client.post(f"{REMOVAL_PREFIX}/items/complete", json={
            "item_ids": [items[42]], "removal_date": TODAY.isoformat(),
        })

        billboard = await test_db.get(Billboard, 43)
        await test_db.refresh(billboard)
        billboard.status = "rented"
        billboard.contract_number = "1300"
        billboard.rent_end_date = TODAY + timedelta(days=60)
        await test_db.commit()

        response = await authenticated_client.post(f"{REMOVAL_PREFIX}/cleanup/rented")
        assert response.json()["removed"] == 1

        refreshed = (await authenticated_client.get(f"{REMOVAL_PREFIX}/{task['id']}")).json()
        assert refreshed["status"] == "completed"
        assert [(i["billboard_id"], i["status"]) for i in refreshed["items"]] == [(42, "completed")]

    @pytest.mark.asyncio
    async def test_duplicate_tasks_removed(self, authenticated_client: AsyncClient, teams, add_rows):
        await add_rows(
            RemovalTask(contract_id="1100", contract_ids=["1100"], team_id=1, status="pending"),
            RemovalTask(contract_id="1100", contract_ids=["1100"], team_id=1, status="pending"),
            RemovalTask(contract_id="1100", contract_ids=["1100"], team_id=2, status="pending"),
        )

        response = await authenticated_client.post(f"{REMOVAL_PREFIX}/cleanup/duplicates")

        assert response.status_code == 200
        assert response.json()["removed"] == 1
        assert len((await authenticated_client.get(REMOVAL_PREFIX)).json()) == 2


class TestCompletion:
    """Completing and undoing removal items."""

    @pytest_asyncio.fixture
    async def task(self, authenticated_client: AsyncClient, expired_contract):
        await _auto(authenticated_client)
        tasks = (await authenticated_client.get(REMOVAL_PREFIX)).json()
        return next(t for t in tasks if t["team_id"] == 2)

    @pytest.mark.asyncio
    async def test_requires_removal_date(self, authenticated_client: AsyncClient, task):
        response = await authenticated_client.post(f"{REMOVAL_PREFIX}/items/complete", json={
            "item_ids": [task["items"][0]["id"]],
        })
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_requires_selection(self, authenticated_client: AsyncClient, task):
        response = await authenticated_client.post(f"{REMOVAL_PREFIX}/items/complete", json={
            "item_ids": [], "removal_date": TODAY.isoformat(),
        })
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_completing_all_items_completes_task(self, authenticated_client: AsyncClient, task, test_db):
        item_ids = [i["id"] for i in task["items"]]

        response = await authenticated_client.post(f"{REMOVAL_PREFIX}/items/complete", json={
            "item_ids": item_ids[:1], "removal_date": TODAY.isoformat(), "notes": "Face A removed",
        })
        assert response.status_code == 200
        assert response.json()["completed_task_ids"] == []

        response = await authenticated_client.post(f"{REMOVAL_PREFIX}/items/complete", json={
            "item_ids": item_ids[1:], "removal_date": TODAY.isoformat(),
        })
        assert response.json()["completed_task_ids"] == [task["id"]]

        refreshed = (await authenticated_client.get(f"{REMOVAL_PREFIX}/{task['id']}")).json()
        assert refreshed["status"] == "completed"
        assert all(i["removal_date"] == TODAY.isoformat() for i in refreshed["items"])

        billboard = await test_db.get(Billboard, 42)
        await test_db.refresh(billboard)
        assert billboard.status == "available"
        assert billboard.contract_number is None
        assert billboard.rent_end_date is None

    @pytest.mark.asyncio
    async def test_undo_reopens_task(self, authenticated_client: AsyncClient, task):
        item_ids = [i["id"] for i in task["items"]]
        await authenticated_client.post(f"{REMOVAL_PREFIX}/items/complete", json={
            "item_ids": item_ids, "removal_date": TODAY.isoformat(),
        })

        response = await authenticated_client.post(f"{REMOVAL_PREFIX}/items/{item_ids[0]}/undo")
        assert response.status_code == 200
        item = response.json()
        assert item["status"] == "pending"
        assert item["completed_at"] is None
        assert item["removal_date"] is None

        refreshed = (await authenticated_client.get(f"{REMOVAL_PREFIX}/{task['id']}")).json()
        assert refreshed["status"] == "pending"

    @pytest.mark.asyncio
    async def test_delete_task(self, authenticated_client: AsyncClient, task, test_db):
        response = await authenticated_client.delete(f"{REMOVAL_PREFIX}/{task['id']}")
        assert response.status_code == 204

        assert (await authenticated_client.get(f"{REMOVAL_PREFIX}/{task['id']}")).status_code == 404
        remaining = (await test_db.execute(
            select(RemovalTaskItem).where(RemovalTaskItem.task_id == task["id"])
        )).scalars().all()
        assert remaining == []
