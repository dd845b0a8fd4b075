"""
Tests for the operating expenses API (/api/v2/expenses).
"""
import pytest
import pytest_asyncio
from httpx import AsyncClient

from app.exceptions import ErrorCode
from app.models.contract import Contract
from app.models.expense import ExpenseWithdrawal
from tests.factories import ContractFactory, ContractRangeClosureFactory, WithdrawalFactory

EXPENSES_PREFIX = "/api/v2/expenses"


def _withdrawal_body(**kwargs) -> dict:
    body = WithdrawalFactory(**kwargs)
    body["date"] = body["date"].isoformat()
    return body


@pytest_asyncio.fixture
async def scenario_contracts(add_rows):
    """Contract 1086 collects a fee of 50, contract 1090 a fee of 80."""
    return await add_rows(
        Contract(**ContractFactory(contract_number="1086", rent_cost=1000, total_paid=500)),
        Contract(**ContractFactory(contract_number="1090", rent_cost=1000, total_paid=800)),
    )


@pytest.fixture(autouse=True)
def paid_from_contracts(monkeypatch):
    """No customer_payments rows here; use the paid totals stored on contracts."""
    from unittest.mock import AsyncMock
    from app.services import expense_ledger_service

    monkeypatch.setattr(expense_ledger_service, "_load_fee_payments", AsyncMock(return_value=None))


class TestLedger:
    """Tests for GET /expenses/ledger."""

    @pytest.mark.asyncio
    async def test_requires_authentication(self, client: AsyncClient):
        response = await client.get(f"{EXPENSES_PREFIX}/ledger")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_fifo_allocation(self, authenticated_client: AsyncClient, scenario_contracts):
        """A single 60 withdrawal covers 1086 fully and 1090 by 12.5%."""
        await authenticated_client.post(f"{EXPENSES_PREFIX}/withdrawals", json=_withdrawal_body(amount=60))

        response = await authenticated_client.get(f"{EXPENSES_PREFIX}/ledger")
        assert response.status_code == 200
        data = response.json()
        rows = {r["contract_number"]: r for r in data["contracts"]}

        assert rows["1086"]["collected_fee_amount"] == 50
        assert rows["1086"]["full_fee_amount"] == 100
        assert rows["1086"]["allocated_withdrawal"] == 50
        assert rows["1090"]["allocated_withdrawal"] == 10
        assert rows["1090"]["withdrawal_coverage"] == 12.5
        assert data["totals"]["pool_total"] == 130
        assert data["totals"]["total_withdrawn"] == 60
        assert data["totals"]["remaining_pool"] == 70
        assert data["settled_contract_ids"] == []

    @pytest.mark.asyncio
    async def test_excluded_contract_leaves_pool(self, authenticated_client: AsyncClient, scenario_contracts):
        response = await authenticated_client.put(
            f"{EXPENSES_PREFIX}/exclusions/1086", json={"excluded": True}
        )
        assert response.status_code == 200
        assert response.json() == {"contract_number": "1086", "excluded": True}

        data = (await authenticated_client.get(f"{EXPENSES_PREFIX}/ledger")).json()
        assert data["totals"]["total_contracts"] == 1
        assert data["totals"]["pool_total"] == 80

        await authenticated_client.put(f"{EXPENSES_PREFIX}/exclusions/1086", json={"excluded": False})
        data = (await authenticated_client.get(f"{EXPENSES_PREFIX}/ledger")).json()
        assert data["totals"]["total_contracts"] == 2


class TestWithdrawals:
    """Tests for /expenses/withdrawals."""

    @pytest.mark.asyncio
    async def test_create_records_actor(self, authenticated_client: AsyncClient, test_user):
        response = await authenticated_client.post(
            f"{EXPENSES_PREFIX}/withdrawals", json=_withdrawal_body(amount=60, method="cash")
        )
        assert response.status_code == 201
        data = response.json()
        assert data["amount"] == 60
        assert data["method"] == "cash"
        assert data["user_id"] == test_user.id

    @pytest.mark.asyncio
    async def test_rejects_non_positive_amount(self, authenticated_client: AsyncClient):
        response = await authenticated_client.post(
            f"{EXPENSES_PREFIX}/withdrawals", json=_withdrawal_body(amount=0)
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_edit_and_delete_change_pool(self, authenticated_client: AsyncClient, scenario_contracts):
        created = (await authenticated_client.post(
            f"{EXPENSES_PREFIX}/withdrawals", json=_withdrawal_body(amount=60)
        )).json()

        response = await authenticated_client.patch(
            f"{EXPENSES_PREFIX}/withdrawals/{created['id']}", json={"amount": 30}
        )
        assert response.status_code == 200
        rows = {
            r["contract_number"]: r
            for r in (await authenticated_client.get(f"{EXPENSES_PREFIX}/ledger")).json()["contracts"]
        }
        assert rows["1086"]["allocated_withdrawal"] == 30
        assert rows["1090"]["allocated_withdrawal"] == 0

        response = await authenticated_client.delete(f"{EXPENSES_PREFIX}/withdrawals/{created['id']}")
        assert response.status_code == 204
        assert (await authenticated_client.get(f"{EXPENSES_PREFIX}/withdrawals")).json() == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field", ["amount", "date"])
    async def test_update_rejects_null_required_field(self, authenticated_client: AsyncClient, field):
        created = (await authenticated_client.post(
            f"{EXPENSES_PREFIX}/withdrawals", json=_withdrawal_body(amount=60)
        )).json()

        response = await authenticated_client.patch(
            f"{EXPENSES_PREFIX}/withdrawals/{created['id']}", json={field: None}
        )
        assert response.status_code == 422
        assert response.json()["code"] == ErrorCode.VALIDATION_ERROR

        [stored] = (await authenticated_client.get(f"{EXPENSES_PREFIX}/withdrawals")).json()
        assert stored["amount"] == 60
        assert stored["date"] == created["date"]

    @pytest.mark.asyncio
    async def test_missing_withdrawal_is_problem_detail(self, authenticated_client: AsyncClient):
        response = await authenticated_client.delete(f"{EXPENSES_PREFIX}/withdrawals/999")
        assert response.status_code == 404
        assert response.json()["code"] == ErrorCode.NOT_FOUND


class TestClosures:
    """Tests for /expenses/closures."""

    @pytest.mark.asyncio
    async def test_contract_range_closure(self, authenticated_client: AsyncClient, scenario_contracts):
        await authenticated_client.post(f"{EXPENSES_PREFIX}/withdrawals", json=_withdrawal_body(amount=60))

        response = await authenticated_client.post(
            f"{EXPENSES_PREFIX}/closures", json=ContractRangeClosureFactory()
        )
        assert response.status_code == 201
        closure = response.json()
        assert closure["total_contracts"] == 2
        assert closure["total_amount"] == 130
        assert closure["total_withdrawn"] == 60
        assert closure["remaining_balance"] == 70

        ledger = (await authenticated_client.get(f"{EXPENSES_PREFIX}/ledger")).json()
        assert ledger["totals"]["total_contracts"] == 0
        assert all(r["closed"] for r in ledger["contracts"])

    @pytest.mark.asyncio
    async def test_closures_follow_withdrawal_changes(
        self, authenticated_client: AsyncClient, scenario_contracts, add_rows
    ):
        """Closure totals are recomputed on read, not frozen at creation."""
        await authenticated_client.post(f"{EXPENSES_PREFIX}/closures", json=ContractRangeClosureFactory())
        await add_rows(ExpenseWithdrawal(**WithdrawalFactory(amount=100)))

        [closure] = (await authenticated_client.get(f"{EXPENSES_PREFIX}/closures")).json()

        assert closure["total_withdrawn"] == 100
        assert closure["remaining_balance"] == 30

    @pytest.mark.asyncio
    async def test_empty_range_rejected(self, authenticated_client: AsyncClient, scenario_contracts):
        response = await authenticated_client.post(
            f"{EXPENSES_PREFIX}/closures",
            json=ContractRangeClosureFactory(contract_start="2000", contract_end="2100"),
        )
        assert response.status_code == 422
        assert response.json()["code"] == ErrorCode.VALIDATION_ERROR
        assert (await authenticated_client.get(f"{EXPENSES_PREFIX}/closures")).json() == []

    @pytest.mark.asyncio
    async def test_period_closure_needs_both_dates(self, authenticated_client: AsyncClient, scenario_contracts):
        response = await authenticated_client.post(
            f"{EXPENSES_PREFIX}/closures",
            json={"closure_type": "period", "period_start": "2024-01-01"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_delete_closure_reopens(self, authenticated_client: AsyncClient, scenario_contracts):
        closure = (await authenticated_client.post(
            f"{EXPENSES_PREFIX}/closures", json=ContractRangeClosureFactory()
        )).json()

        response = await authenticated_client.delete(f"{EXPENSES_PREFIX}/closures/{closure['id']}")
        assert response.status_code == 204

        ledger = (await authenticated_client.get(f"{EXPENSES_PREFIX}/ledger")).json()
        assert ledger["totals"]["total_contracts"] == 2
