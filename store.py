"""Persistence store: the marketplace as one JSON blob plus a session blob.

The `{jobs, users}` collections live under a single storage key and the
current session user under a second one, so the session survives a reload
independently of the collections. Every call awaits a simulated latency to
mirror a remote service boundary.

Updates are last-write-wins unless the caller passes `expected_version`,
in which case the write only happens if the stored record still carries
that version.
"""
from __future__ import annotations

import asyncio
import time
from enum import Enum
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

import crud
import schemas
from errors import DuplicateUser, InvalidRequest, NotFound, VersionConflict
from settings import Settings, get_settings

logger = structlog.get_logger(__name__)

Record = Union[schemas.Job, schemas.User]


class RecordKind(str, Enum):
    JOBS = "jobs"
    USERS = "users"


def seed_blob(now_ms: int) -> schemas.StoreBlob:
    """Fresh-install data: two open hauls and one finished one."""
    return schemas.StoreBlob(
        jobs=[
            schemas.Job(
                id="job-seed-1",
                title="Antique Oak Dresser",
                description="Heavy solid wood dresser. Needs two people or a dolly. I can help load.",
                pickup_location="123 Maple St, Downtown",
                dropoff_location="456 Oak Ln, Suburbs",
                status=schemas.JobStatus.PENDING,
                price=65,
                platform_fee=10,
                vehicle_type=schemas.VehicleType.PICKUP,
                created_at=now_ms - 3_600_000,
                distance_miles=12,
                image_url="https://picsum.photos/400/300?random=1",
            ),
            schemas.Job(
                id="job-seed-2",
                title="Free Sofa Bed",
                description="Good condition, just need it gone by Saturday. It is on the 2nd floor.",
                pickup_location="789 Pine Ave, Westside",
                dropoff_location="321 Elm St, Northside",
                status=schemas.JobStatus.PENDING,
                price=80,
                platform_fee=12,
                vehicle_type=schemas.VehicleType.BOX_TRUCK,
                created_at=now_ms - 7_200_000,
                distance_miles=8,
                image_url="https://picsum.photos/400/300?random=2",
            ),
            schemas.Job(
                id="job-seed-3",
                title="Garden Pavers (Leftover)",
                description="Stack of about 50 pavers. Easy pickup from driveway.",
                pickup_location="55 Garden Way",
                dropoff_location="888 River Rd",
                status=schemas.JobStatus.COMPLETED,
                price=45,
                platform_fee=7,
                vehicle_type=schemas.VehicleType.SUV,
                created_at=now_ms - 172_800_000,  # 2 days ago
                distance_miles=5,
                image_url="https://picsum.photos/400/300?random=3",
                driver_confirmed=True,
                requester_confirmed=True,
                rating_for_driver=5,
            ),
        ],
        users=[],
    )


class HaulStore:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = settings or get_settings()
        self._session_factory = session_factory
        self.storage_key = settings.storage_key
        self.session_key = settings.session_key
        self.latency = settings.store_latency_seconds
        self.auth_latency = settings.auth_latency_seconds
        self._clock = clock

    def now_ms(self) -> int:
        return int(self._clock() * 1000)

    # --- raw blob access (synchronous, one DB session per call) ---
    def _read_blob(self, db: Session) -> schemas.StoreBlob:
        raw = crud.get_value(db, self.storage_key)
        if raw is None:
            blob = seed_blob(self.now_ms())
            self._write_blob(db, blob)
            logger.info("Initialized empty store with seed data", storage_key=self.storage_key)
            return blob
        try:
            return schemas.StoreBlob.model_validate_json(raw)
        except ValidationError as exc:
            # Silent data loss: the corrupted blob is replaced, not migrated
            logger.error(
                "Store blob corrupted, resetting to seed data",
                storage_key=self.storage_key,
                error_count=exc.error_count(),
            )
            blob = seed_blob(self.now_ms())
            self._write_blob(db, blob)
            return blob

    def _write_blob(self, db: Session, blob: schemas.StoreBlob) -> None:
        crud.put_value(db, self.storage_key, blob.model_dump_json(by_alias=True))

    @staticmethod
    def _collection(blob: schemas.StoreBlob, kind: RecordKind) -> list:
        return blob.jobs if kind is RecordKind.JOBS else blob.users

    @staticmethod
    def _index_of(records: list, record_id: str) -> int:
        for index, record in enumerate(records):
            if record.id == record_id:
                return index
        return -1

    # --- collection operations ---
    async def list(self, kind: RecordKind) -> list:
        kind = RecordKind(kind)
        await asyncio.sleep(self.latency)
        with self._session_factory() as db:
            records = self._collection(self._read_blob(db), kind)
        if kind is RecordKind.JOBS:
            return sorted(records, key=lambda job: job.created_at, reverse=True)
        return list(records)

    async def get(self, kind: RecordKind, record_id: str) -> Record:
        kind = RecordKind(kind)
        await asyncio.sleep(self.latency / 3)
        with self._session_factory() as db:
            records = self._collection(self._read_blob(db), kind)
        index = self._index_of(records, record_id)
        if index == -1:
            raise NotFound(f"{_label(kind)} {record_id} not found")
        return records[index]

    async def insert(self, kind: RecordKind, record: Record) -> Record:
        kind = RecordKind(kind)
        await asyncio.sleep(self.auth_latency if kind is RecordKind.USERS else self.latency)
        with self._session_factory() as db:
            blob = self._read_blob(db)
            records = self._collection(blob, kind)
            if self._index_of(records, record.id) != -1:
                raise InvalidRequest(f"{_label(kind)} {record.id} already exists")
            if kind is RecordKind.USERS:
                if _find_email(blob.users, record.email) is not None:
                    raise DuplicateUser("User already exists")
                records.append(record)
            else:
                # Newest first, like the board shows them
                records.insert(0, record)
            self._write_blob(db, blob)
        logger.info("Inserted record", kind=kind.value, record_id=record.id)
        return record

    async def update(
        self,
        kind: RecordKind,
        record_id: str,
        fields: dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Record:
        """Merge `fields` onto the stored record and return the merged record."""
        kind = RecordKind(kind)
        await asyncio.sleep(self.latency / 2 if kind is RecordKind.USERS else self.latency)
        with self._session_factory() as db:
            blob = self._read_blob(db)
            records = self._collection(blob, kind)
            index = self._index_of(records, record_id)
            if index == -1:
                raise NotFound(f"{_label(kind)} {record_id} not found")

            current: BaseModel = records[index]
            unknown = (set(fields) - set(type(current).model_fields)) | ({"id", "version"} & set(fields))
            if unknown:
                raise InvalidRequest(f"Cannot update fields: {', '.join(sorted(unknown))}")
            if expected_version is not None and current.version != expected_version:
                raise VersionConflict(
                    f"{_label(kind)} {record_id} changed (version {current.version}, expected {expected_version})"
                )

            merged = type(current).model_validate(
                {**current.model_dump(), **fields, "version": current.version + 1}
            )
            records[index] = merged
            self._write_blob(db, blob)
        logger.info(
            "Updated record",
            kind=kind.value,
            record_id=record_id,
            fields=sorted(fields),
            version=merged.version,
        )
        return merged

    async def find_by_email(self, email: str) -> Optional[schemas.User]:
        await asyncio.sleep(self.auth_latency)
        with self._session_factory() as db:
            return _find_email(self._read_blob(db).users, email)

    # --- session blob ---
    async def load_session(self) -> Optional[schemas.User]:
        with self._session_factory() as db:
            raw = crud.get_value(db, self.session_key)
            if raw is None:
                return None
            try:
                return schemas.User.model_validate_json(raw)
            except ValidationError:
                logger.error("Session blob corrupted, clearing session", session_key=self.session_key)
                crud.delete_value(db, self.session_key)
                return None

    async def save_session(self, user: schemas.User) -> None:
        with self._session_factory() as db:
            crud.put_value(db, self.session_key, user.model_dump_json(by_alias=True))

    async def clear_session(self) -> None:
        with self._session_factory() as db:
            crud.delete_value(db, self.session_key)


def _find_email(users: list, email: str) -> Optional[schemas.User]:
    wanted = email.strip().lower()
    for user in users:
        if user.email.lower() == wanted:
            return user
    return None


def _label(kind: RecordKind) -> str:
    return "Job" if kind is RecordKind.JOBS else "User"
