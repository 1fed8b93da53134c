"""Job lifecycle: pending -> accepted -> completed, gated by dual confirmation.

A job is completed exactly when both the driver and the requester have
confirmed; the two flags only ever go from False to True. Every transition
reads the stored job, writes through the store with a version check against
what it read, updates the working copy, and only then notifies.
"""
import math
import uuid
from typing import Optional

import structlog

import pricing
import schemas
from errors import InvalidRequest, InvalidTransition, NotFound
from schemas import JobStatus, Role
from state import AppState
from store import RecordKind

logger = structlog.get_logger(__name__)

DEFAULT_TITLE = "Marketplace Item"


async def create_job(state: AppState, draft: schemas.JobDraft) -> schemas.Job:
    quote = pricing.quote(draft.price)
    requester_id = state.user.id if state.user else None
    job = schemas.Job(
        id=uuid.uuid4().hex,
        created_at=state.store.now_ms(),
        title=draft.title or DEFAULT_TITLE,
        description=draft.description,
        pickup_location=draft.pickup_location,
        dropoff_location=draft.dropoff_location,
        image_url=draft.image_url,
        fragility=draft.fragility,
        handling_instructions=draft.handling_instructions,
        price=quote.payout,
        platform_fee=quote.fee,
        vehicle_type=draft.vehicle_type,
        distance_miles=draft.distance_miles,
        ai_analysis=draft.ai_analysis,
        requester_id=requester_id,
    )
    await state.store.insert(RecordKind.JOBS, job)
    state.replace_job(job)
    logger.info("Job posted", job_id=job.id, price=job.price, fee=job.platform_fee)

    users = await state.store.list(RecordKind.USERS)
    drivers = [user.id for user in users if user.is_available and user.id != requester_id]
    await state.notifier.notify("job_posted", recipient_ids=drivers, job=job)
    return job


async def accept_job(state: AppState, job_id: str) -> schemas.Job:
    job = await state.store.get(RecordKind.JOBS, job_id)
    if job.status is not JobStatus.PENDING:
        raise InvalidTransition(f"Job {job_id} is already {job.status.value}")

    fields = {"status": JobStatus.ACCEPTED}
    if state.user:
        fields["driver_id"] = state.user.id
    job = await state.store.update(RecordKind.JOBS, job_id, fields, expected_version=job.version)
    state.replace_job(job)
    logger.info("Job accepted", job_id=job_id, driver_id=job.driver_id)

    await state.notifier.notify("job_accepted", recipient_ids=_only(job.requester_id), job=job)
    return job


async def confirm_by_driver(state: AppState, job_id: str) -> schemas.Job:
    return await _confirm(state, job_id, Role.DRIVER)


async def confirm_by_requester(state: AppState, job_id: str) -> schemas.Job:
    return await _confirm(state, job_id, Role.REQUESTER)


async def _confirm(state: AppState, job_id: str, role: Role) -> schemas.Job:
    job = await state.store.get(RecordKind.JOBS, job_id)
    if job.status is JobStatus.PENDING:
        raise InvalidTransition(f"Job {job_id} has not been accepted yet")

    own_flag, other_flag = (
        ("driver_confirmed", "requester_confirmed")
        if role is Role.DRIVER
        else ("requester_confirmed", "driver_confirmed")
    )
    if getattr(job, own_flag):
        logger.info("Confirmation already recorded", job_id=job_id, role=role.value)
        state.replace_job(job)
        return job

    completing = getattr(job, other_flag)
    fields = {own_flag: True}
    if completing:
        fields["status"] = JobStatus.COMPLETED
    job = await state.store.update(RecordKind.JOBS, job_id, fields, expected_version=job.version)
    state.replace_job(job)
    logger.info("Delivery confirmed", job_id=job_id, role=role.value, completed=completing)

    if role is Role.DRIVER:
        event = "driver_completed" if completing else "driver_confirmed"
        recipients = _only(job.requester_id)
    else:
        event = "requester_completed" if completing else "requester_confirmed"
        recipients = _only(job.driver_id)
    await state.notifier.notify(event, recipient_ids=recipients, job=job)
    return job


async def rate(state: AppState, job_id: str, role: Role, score: int) -> schemas.Job:
    """Rate the other party: a driver rates the requester and vice versa."""
    if not isinstance(score, int) or isinstance(score, bool) or not 1 <= score <= 5:
        raise InvalidRequest("Rating must be a whole number from 1 to 5")

    job = await state.store.get(RecordKind.JOBS, job_id)
    if job.status is not JobStatus.COMPLETED:
        raise InvalidTransition(f"Job {job_id} can only be rated once completed")

    field = "rating_for_requester" if Role(role) is Role.DRIVER else "rating_for_driver"
    previous = getattr(job, field)
    if previous is not None:
        # TODO: decide with product whether ratings become immutable once submitted
        logger.info("Overwriting earlier rating", job_id=job_id, field=field, previous=previous, score=score)

    job = await state.store.update(RecordKind.JOBS, job_id, {field: score})
    state.replace_job(job)
    await state.notifier.notify("rating_submitted", recipient_ids=_only(state.user.id if state.user else None))
    return job


async def set_availability(state: AppState, is_available: bool) -> schemas.User:
    user = state.user
    if user is None:
        raise InvalidRequest("Sign in to change availability")

    try:
        user = await state.store.update(RecordKind.USERS, user.id, {"is_available": is_available})
    except NotFound:
        # Session-only users (never stored) just flip their local copy
        logger.info("Session user not in store, updating session only", user_id=user.id)
        user = user.model_copy(update={"is_available": is_available})

    state.user = user
    await state.store.save_session(user)
    await state.notifier.notify("went_online" if is_available else "went_offline", recipient_ids=[user.id])
    return user


# --- Queries ---
def estimate_minutes(miles: float) -> int:
    """Rough drive time at 25 mph city speed, never under ten minutes."""
    return max(10, math.floor(miles / 25 * 60 + 0.5))


def job_board(
    jobs: list[schemas.Job],
    vehicle_type: Optional[schemas.VehicleType] = None,
    sort: schemas.BoardSort = schemas.BoardSort.NEWEST,
) -> schemas.JobBoard:
    available = [
        job
        for job in jobs
        if job.status is JobStatus.PENDING and (vehicle_type is None or job.vehicle_type is vehicle_type)
    ]
    if sort is schemas.BoardSort.PRICE_HIGH:
        available.sort(key=lambda job: job.price, reverse=True)
    elif sort is schemas.BoardSort.DISTANCE:
        available.sort(key=lambda job: job.distance_miles)
    else:
        available.sort(key=lambda job: job.created_at, reverse=True)
    active = [job for job in jobs if job.status is JobStatus.ACCEPTED]
    return schemas.JobBoard(available=available, active=active)


def profile_summary(jobs: list[schemas.Job], user_id: Optional[str] = None) -> schemas.ProfileSummary:
    """Request and drive totals; without a user id every job counts for both sides."""
    requests = [job for job in jobs if user_id is None or job.requester_id == user_id]
    drives = [
        job
        for job in jobs
        if job.status is not JobStatus.PENDING and (user_id is None or job.driver_id == user_id)
    ]
    completed_requests = [job for job in requests if job.status is JobStatus.COMPLETED]
    completed_drives = [job for job in drives if job.status is JobStatus.COMPLETED]
    return schemas.ProfileSummary(
        active_requests=sum(1 for job in requests if job.status is not JobStatus.COMPLETED),
        total_spent=sum(job.total_cost for job in completed_requests),
        completed_drives=len(completed_drives),
        total_earnings=sum(job.price for job in completed_drives),
    )


def _only(user_id: Optional[str]) -> Optional[list[str]]:
    """Target one user, or everyone when the counterpart is unknown."""
    return [user_id] if user_id else None
