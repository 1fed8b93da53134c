"""Application state container handed to every handler.

Holds the store, the auth provider and the notifier, plus the working copies
the handlers mutate optimistically after each successful store write: the
job list (newest first) and the session user.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import structlog
from fastapi import Request

import schemas
from notifications import Notifier
from store import HaulStore, RecordKind

if TYPE_CHECKING:
    from auth import AuthProvider

logger = structlog.get_logger(__name__)


class AppState:
    def __init__(self, store: HaulStore, notifier: Notifier, auth: "AuthProvider"):
        self.store = store
        self.notifier = notifier
        self.auth = auth
        self.jobs: list[schemas.Job] = []
        self.user: Optional[schemas.User] = None

    async def load(self) -> None:
        """Refresh the working copies from the store."""
        self.jobs = await self.store.list(RecordKind.JOBS)
        self.user = await self.store.load_session()
        logger.info(
            "State loaded",
            jobs=len(self.jobs),
            session_user=self.user.id if self.user else None,
        )

    def replace_job(self, job: schemas.Job) -> None:
        for index, current in enumerate(self.jobs):
            if current.id == job.id:
                self.jobs[index] = job
                return
        self.jobs.insert(0, job)

    def find_job(self, job_id: str) -> Optional[schemas.Job]:
        return next((job for job in self.jobs if job.id == job_id), None)


def get_state(request: Request) -> AppState:
    return request.app.state.haul
