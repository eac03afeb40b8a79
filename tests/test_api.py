from datetime import date

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from camp_transfers.api import create_app
from camp_transfers.database import get_db, load_sample_data
from camp_transfers.models import BedStatus, PersonStatus
from camp_transfers.orchestrator import get_orchestrator

TODAY = date(2026, 10, 19)  # Monday

SCENARIO_A = {
    "source_camp_id": "camp-jebel-ali",
    "target_camp_id": "camp-al-quoz",
    "person_ids": ["tech-001", "tech-002", "tech-003"],
    "reason": "project_transfer",
    "scheduled_dispatch_date": "2026-10-20",
    "scheduled_dispatch_time": "15:00",
    "requested_by": "coordinator-1",
}

ARRIVAL = {
    "actual_arrival_date": "2026-10-20",
    "actual_arrival_time": "16:10",
    "confirmed_by": "camp-boss-aq",
}


@pytest_asyncio.fixture
async def client():
    """
    Test fixture that creates an async client for the API.
    """
    app = create_app()
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        yield async_client


@pytest_asyncio.fixture(autouse=True)
def reset_db():
    """Reset the database and orchestrator before each test."""
    import camp_transfers.database
    import camp_transfers.orchestrator

    camp_transfers.database._db = None
    camp_transfers.orchestrator._orchestrator = None
    get_db().clear()
    load_sample_data()
    get_orchestrator().today = lambda: TODAY
    yield


async def submit(client: AsyncClient, **overrides) -> dict:
    response = await client.post("/transfer-requests", json={**SCENARIO_A, **overrides})
    assert response.status_code == 201, response.text
    return response.json()


async def dispatched(client: AsyncClient, **overrides) -> dict:
    request = await submit(client, **overrides)
    for step in ("allocate", "approve", "dispatch"):
        response = await client.post(
            f"/transfer-requests/{request['id']}/{step}",
            json={"actor_id": "ops-manager"},
        )
        assert response.status_code == 200, response.text
    return response.json()


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_submit_transfer_request(client: AsyncClient) -> None:
    data = await submit(client)

    assert data["status"] == "pending_allocation"
    assert data["person_ids"] == ["tech-001", "tech-002", "tech-003"]
    assert data["request_date"] == "2026-10-19"


@pytest.mark.asyncio
async def test_submit_rejects_empty_person_list(client: AsyncClient) -> None:
    response = await client.post(
        "/transfer-requests", json={**SCENARIO_A, "person_ids": []}
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_allocate_beds(client: AsyncClient) -> None:
    request = await submit(client)

    response = await client.post(f"/transfer-requests/{request['id']}/allocate")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "beds_allocated"
    beds = {pid: a["bed_id"] for pid, a in data["allocated_beds_data"].items()}
    # tech-003 is over 45 and takes the only lower berth
    assert beds == {
        "tech-003": "bed-aq-101-a",
        "tech-001": "bed-aq-101-b",
        "tech-002": "bed-aq-101-c",
    }
    assert get_db().beds.get("bed-aq-101-a").status == BedStatus.RESERVED


@pytest.mark.asyncio
async def test_full_transfer_lifecycle(client: AsyncClient) -> None:
    request = await dispatched(client)
    request_id = request["id"]
    assert request["status"] == "technicians_dispatched"

    response = await client.get("/camps/camp-al-quoz/expected-arrivals")
    assert response.status_code == 200
    expected = {a["person_id"] for a in response.json()}
    assert expected == {"tech-001", "tech-002", "tech-003"}

    statuses = []
    for person_id in ("tech-001", "tech-002", "tech-003"):
        response = await client.post(
            f"/transfer-requests/{request_id}/arrivals/{person_id}", json=ARRIVAL
        )
        assert response.status_code == 200, response.text
        statuses.append(response.json()["request"]["status"])
    assert statuses == ["partially_arrived", "partially_arrived", "completed"]

    response = await client.get("/persons/tech-001/transfer-history")
    history = response.json()
    assert len(history) == 1
    assert history[0]["from_camp_id"] == "camp-jebel-ali"
    assert history[0]["from_bed_id"] == "bed-ja-101-b"
    assert history[0]["to_bed_id"] == "bed-aq-101-b"

    db = get_db()
    assert db.beds.get("bed-ja-101-b").status == BedStatus.VACANT
    assert db.persons.get("tech-001").camp_id == "camp-al-quoz"


@pytest.mark.asyncio
async def test_repeat_arrival_returns_conflict(client: AsyncClient) -> None:
    request = await dispatched(client)
    url = f"/transfer-requests/{request['id']}/arrivals/tech-001"
    assert (await client.post(url, json=ARRIVAL)).status_code == 200

    response = await client.post(url, json=ARRIVAL)

    assert response.status_code == 409
    assert response.json()["code"] == "already_arrived"
    assert len((await client.get("/persons/tech-001/transfer-history")).json()) == 1


@pytest.mark.asyncio
async def test_dispatch_day_outside_policy(client: AsyncClient) -> None:
    response = await client.post(
        "/transfer-requests",
        json={**SCENARIO_A, "scheduled_dispatch_date": "2026-10-22"},
    )

    assert response.status_code == 422
    data = response.json()
    assert data["code"] == "schedule_window_violation"
    assert data["details"]["allowed_days"] == ["Tuesday", "Sunday"]
    assert data["details"]["season_name"] == "Default"


@pytest.mark.asyncio
async def test_dispatch_beyond_slot_horizon(client: AsyncClient) -> None:
    response = await client.post(
        "/transfer-requests",
        json={**SCENARIO_A, "scheduled_dispatch_date": "2026-12-01"},
    )

    assert response.status_code == 422
    data = response.json()
    assert data["code"] == "schedule_window_violation"
    assert data["details"]["horizon_days"] == 42


@pytest.mark.asyncio
async def test_person_already_enrolled(client: AsyncClient) -> None:
    await submit(client, person_ids=["tech-001"])

    response = await client.post(
        "/transfer-requests", json={**SCENARIO_A, "person_ids": ["tech-001"]}
    )

    assert response.status_code == 422
    assert response.json()["code"] == "person_already_enrolled"


@pytest.mark.asyncio
async def test_induction_camp_eligibility(client: AsyncClient) -> None:
    payload = {
        **SCENARIO_A,
        "source_camp_id": "camp-sajja",
        "reason": "onboarding_transfer",
        "scheduled_dispatch_date": "2026-10-19",
        "scheduled_dispatch_time": "11:00",
    }

    response = await client.post(
        "/transfer-requests", json={**payload, "person_ids": ["tech-006"]}
    )
    assert response.status_code == 422
    reasons = response.json()["details"]["reasons"]
    assert reasons == {"tech-006": "pre-induction not completed"}

    response = await client.post(
        "/transfer-requests", json={**payload, "person_ids": ["tech-005"]}
    )
    assert response.status_code == 201


@pytest.mark.asyncio
async def test_exit_case_transfer(client: AsyncClient) -> None:
    exit_request = {
        **SCENARIO_A,
        "target_camp_id": "camp-sonapur-exit",
        "reason": "exit_case",
        "scheduled_dispatch_date": "2026-10-19",
        "scheduled_dispatch_time": None,
    }

    response = await client.post(
        "/transfer-requests", json={**exit_request, "person_ids": ["tech-001"]}
    )
    assert response.status_code == 422
    assert response.json()["code"] == "ineligible_person"

    request = await dispatched(
        client, **{**exit_request, "person_ids": ["tech-004", "tech-007"]}
    )
    response = await client.post(
        f"/transfer-requests/{request['id']}/arrivals/tech-004", json=ARRIVAL
    )

    assert response.status_code == 200
    person = response.json()["person"]
    assert person["exit_process_status"] == "in_process"
    assert person["exit_camp_id"] == "camp-sonapur-exit"
    assert person["bed_id"] == "bed-son-1-a"


@pytest.mark.asyncio
async def test_reject_allocation(client: AsyncClient) -> None:
    request = await submit(client)
    await client.post(f"/transfer-requests/{request['id']}/allocate")

    url = f"/transfer-requests/{request['id']}/reject-allocation"
    response = await client.post(url, json={})
    assert response.status_code == 422

    response = await client.post(
        url, json={"actor_id": "camp-boss-aq", "reason": "Room 101 being repainted"}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "allocation_rejected"
    assert get_db().beds.get("bed-aq-101-a").status == BedStatus.VACANT


@pytest.mark.asyncio
async def test_cancel_dispatched_request(client: AsyncClient) -> None:
    request = await dispatched(client)

    response = await client.post(
        f"/transfer-requests/{request['id']}/cancel",
        json={"actor_id": "ops-manager", "reason": "Site closed"},
    )

    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"
    db = get_db()
    assert db.persons.get("tech-001").status == PersonStatus.ACTIVE
    assert all(db.beds.get(f"bed-aq-101-{b}").status == BedStatus.VACANT for b in "abc")

    response = await client.post(f"/transfer-requests/{request['id']}/approve")
    assert response.status_code == 409
    assert response.json()["code"] == "invalid_state_transition"


@pytest.mark.asyncio
async def test_unknown_request(client: AsyncClient) -> None:
    response = await client.get("/transfer-requests/nonexistent")
    assert response.status_code == 404
    assert response.json()["code"] == "request_not_found"

    response = await client.post(
        "/transfer-requests/nonexistent/arrivals/tech-001", json=ARRIVAL
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_schedule_window(client: AsyncClient) -> None:
    response = await client.get(
        "/schedule-window",
        params={"source_camp_id": "camp-jebel-ali", "target_camp_id": "camp-al-quoz"},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["window"]["kind"] == "constrained"
    assert data["window"]["season_name"] == "Default"
    assert data["slots"][0] == {"date": "2026-10-20", "time": "14:30"}

    response = await client.get(
        "/schedule-window",
        params={"source_camp_id": "camp-sajja", "target_camp_id": "camp-al-quoz"},
    )
    assert response.json() == {"window": {"kind": "flexible"}, "slots": []}

    response = await client.get(
        "/schedule-window",
        params={"source_camp_id": "camp-jebel-ali", "target_camp_id": "camp-nowhere"},
    )
    assert response.status_code == 404
