from unittest.mock import AsyncMock, patch

import pytest

import logic
import schemas
from errors import InvalidRequest, InvalidTransition, NotFound
from schemas import JobStatus, Role
from store import RecordKind


def make_draft(**overrides) -> schemas.JobDraft:
    data = {
        "title": "Mid-century Armchair",
        "description": "Light but bulky, ground floor.",
        "pickup_location": "12 Birch Rd",
        "dropoff_location": "99 Cedar Ave",
        "price": 65,
        "vehicle_type": schemas.VehicleType.SUV,
        "distance_miles": 7,
    }
    data.update(overrides)
    return schemas.JobDraft(**data)


def assert_completion_invariant(job: schemas.Job):
    both = job.driver_confirmed and job.requester_confirmed
    assert (job.status is JobStatus.COMPLETED) == both


def titles(state, user_id=None):
    return [banner.title for banner in state.notifier.board.active(user_id)]


@pytest.mark.asyncio
async def test_full_escrow_scenario(state):
    job = await logic.create_job(state, make_draft())
    assert job.status is JobStatus.PENDING
    assert job.platform_fee == 10
    assert job.total_cost == 75
    assert not job.driver_confirmed and not job.requester_confirmed

    job = await logic.accept_job(state, job.id)
    assert job.status is JobStatus.ACCEPTED

    job = await logic.confirm_by_driver(state, job.id)
    assert job.status is JobStatus.ACCEPTED
    assert job.driver_confirmed is True
    assert job.requester_confirmed is False
    assert_completion_invariant(job)

    job = await logic.confirm_by_requester(state, job.id)
    assert job.status is JobStatus.COMPLETED
    assert_completion_invariant(job)

    stored = await state.store.get(RecordKind.JOBS, job.id)
    assert stored == job
    assert state.find_job(job.id) == job


@pytest.mark.asyncio
async def test_requester_can_confirm_first(state):
    job = await logic.create_job(state, make_draft())
    await logic.accept_job(state, job.id)

    job = await logic.confirm_by_requester(state, job.id)
    assert job.status is JobStatus.ACCEPTED
    assert_completion_invariant(job)

    job = await logic.confirm_by_driver(state, job.id)
    assert job.status is JobStatus.COMPLETED
    assert job.driver_confirmed and job.requester_confirmed


@pytest.mark.asyncio
async def test_blank_title_gets_default(state):
    job = await logic.create_job(state, make_draft(title="   "))
    assert job.title == "Marketplace Item"


@pytest.mark.asyncio
async def test_accept_requires_pending(state):
    await logic.accept_job(state, "job-seed-1")

    with pytest.raises(InvalidTransition):
        await logic.accept_job(state, "job-seed-1")
    with pytest.raises(InvalidTransition):
        await logic.accept_job(state, "job-seed-3")  # completed seed


@pytest.mark.asyncio
async def test_accept_unknown_job_is_not_found(state):
    with pytest.raises(NotFound):
        await logic.accept_job(state, "missing")


@pytest.mark.asyncio
async def test_confirm_before_accept_is_rejected(state):
    with pytest.raises(InvalidTransition):
        await logic.confirm_by_driver(state, "job-seed-1")

    stored = await state.store.get(RecordKind.JOBS, "job-seed-1")
    assert stored.driver_confirmed is False


@pytest.mark.asyncio
async def test_reconfirming_is_a_no_op(state):
    await logic.accept_job(state, "job-seed-1")
    first = await logic.confirm_by_driver(state, "job-seed-1")
    banners_before = len(state.notifier.board.active())

    again = await logic.confirm_by_driver(state, "job-seed-1")

    assert again == first
    assert again.version == first.version
    assert len(state.notifier.board.active()) == banners_before


@pytest.mark.asyncio
async def test_confirming_completed_job_keeps_flags(state):
    job = await logic.confirm_by_requester(state, "job-seed-3")

    assert job.status is JobStatus.COMPLETED
    assert job.driver_confirmed and job.requester_confirmed


@pytest.mark.asyncio
async def test_rating_writes_the_other_partys_field(state):
    job = await logic.rate(state, "job-seed-3", Role.DRIVER, 4)
    assert job.rating_for_requester == 4
    assert job.rating_for_driver == 5

    job = await logic.rate(state, "job-seed-3", Role.REQUESTER, 3)
    assert job.rating_for_driver == 3


@pytest.mark.asyncio
async def test_rerating_overwrites(state):
    await logic.rate(state, "job-seed-3", Role.DRIVER, 2)
    job = await logic.rate(state, "job-seed-3", Role.DRIVER, 5)
    assert job.rating_for_requester == 5


@pytest.mark.asyncio
@pytest.mark.parametrize("score", [0, 6, -1])
async def test_rating_out_of_range_rejected(state, score):
    with pytest.raises(InvalidRequest):
        await logic.rate(state, "job-seed-3", Role.DRIVER, score)


@pytest.mark.asyncio
async def test_rating_requires_completed_job(state):
    with pytest.raises(InvalidTransition):
        await logic.rate(state, "job-seed-1", Role.REQUESTER, 5)


@pytest.mark.asyncio
async def test_notifications_follow_each_transition(state):
    job = await logic.create_job(state, make_draft())

    await logic.accept_job(state, job.id)
    assert "Driver Found! 🎉" in titles(state)

    await logic.confirm_by_driver(state, job.id)
    assert "Delivery Update 📦" in titles(state)

    await logic.confirm_by_requester(state, job.id)
    assert "Payment Released 💰" in titles(state)
    assert "Delivery Complete ✅" not in titles(state)


@pytest.mark.asyncio
async def test_driver_completing_notifies_requester(state):
    job = await logic.create_job(state, make_draft())
    await logic.accept_job(state, job.id)
    await logic.confirm_by_requester(state, job.id)
    assert "Customer Confirmed ✅" in titles(state)

    await logic.confirm_by_driver(state, job.id)
    assert "Delivery Complete ✅" in titles(state)


@pytest.mark.asyncio
async def test_failed_write_suppresses_notification(state):
    job = await logic.create_job(state, make_draft())
    before = titles(state)

    with patch.object(state.store, "update", new_callable=AsyncMock, side_effect=NotFound("gone")):
        with pytest.raises(NotFound):
            await logic.accept_job(state, job.id)

    assert titles(state) == before
    assert state.find_job(job.id).status is JobStatus.PENDING


@pytest.mark.asyncio
async def test_notifications_target_requester_and_driver(state):
    requester = schemas.User(id="u-req", name="Rae", email="rae@example.com")
    driver = schemas.User(id="u-drv", name="Dev", email="dev@example.com", is_available=True)
    await state.store.insert(RecordKind.USERS, requester)
    await state.store.insert(RecordKind.USERS, driver)

    state.user = requester
    job = await logic.create_job(state, make_draft())
    assert job.requester_id == "u-req"
    assert "New Haul Alert 🚚" in titles(state, "u-drv")
    assert "New Haul Alert 🚚" not in titles(state, "u-req")

    state.user = driver
    job = await logic.accept_job(state, job.id)
    assert job.driver_id == "u-drv"
    assert "Driver Found! 🎉" in titles(state, "u-req")
    assert "Driver Found! 🎉" not in titles(state, "u-drv")

    await logic.confirm_by_driver(state, job.id)
    state.user = requester
    await logic.confirm_by_requester(state, job.id)
    assert "Payment Released 💰" in titles(state, "u-drv")


@pytest.mark.asyncio
async def test_set_availability_updates_store_and_session(state):
    user = schemas.User(id="u-1", name="Sam", email="sam@example.com")
    await state.store.insert(RecordKind.USERS, user)
    state.user = user

    updated = await logic.set_availability(state, True)

    assert updated.is_available is True
    assert (await state.store.get(RecordKind.USERS, "u-1")).is_available is True
    assert (await state.store.load_session()).is_available is True
    assert "You are now online 🟢" in titles(state, "u-1")


@pytest.mark.asyncio
async def test_set_availability_for_session_only_user(state):
    state.user = schemas.User(id="u-ghost", name="Guest", email="guest@example.com")

    updated = await logic.set_availability(state, True)

    assert updated.is_available is True
    assert state.user.is_available is True


def test_job_board_filters_and_sorts():
    def job(job_id, price, miles, created_at, status=JobStatus.PENDING, vehicle=schemas.VehicleType.PICKUP):
        return schemas.Job(
            id=job_id,
            created_at=created_at,
            title=job_id,
            pickup_location="a",
            dropoff_location="b",
            price=price,
            platform_fee=0,
            vehicle_type=vehicle,
            distance_miles=miles,
            status=status,
        )

    jobs = [
        job("cheap-near-old", 20, 1, 1),
        job("rich-far-new", 90, 30, 3),
        job("mid-van", 50, 10, 2, vehicle=schemas.VehicleType.VAN),
        job("taken", 70, 5, 4, status=JobStatus.ACCEPTED),
        job("done", 70, 5, 5, status=JobStatus.COMPLETED),
    ]

    newest = logic.job_board(jobs)
    assert [j.id for j in newest.available] == ["rich-far-new", "mid-van", "cheap-near-old"]
    assert [j.id for j in newest.active] == ["taken"]

    by_price = logic.job_board(jobs, sort=schemas.BoardSort.PRICE_HIGH)
    assert [j.id for j in by_price.available] == ["rich-far-new", "mid-van", "cheap-near-old"]

    by_distance = logic.job_board(jobs, sort=schemas.BoardSort.DISTANCE)
    assert [j.id for j in by_distance.available] == ["cheap-near-old", "mid-van", "rich-far-new"]

    vans = logic.job_board(jobs, vehicle_type=schemas.VehicleType.VAN)
    assert [j.id for j in vans.available] == ["mid-van"]


@pytest.mark.asyncio
async def test_profile_summary_over_seed_data(store):
    jobs = await store.list(RecordKind.JOBS)

    summary = logic.profile_summary(jobs)

    assert summary.active_requests == 2
    assert summary.total_spent == 52  # 45 + 7
    assert summary.completed_drives == 1
    assert summary.total_earnings == 45


def test_estimate_minutes():
    assert logic.estimate_minutes(1) == 10
    assert logic.estimate_minutes(12) == 29  # 28.8
    assert logic.estimate_minutes(25) == 60
