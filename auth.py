"""Authentication: a demo-only credential / SSO + one-time-code shim.

DEMO ONLY. Nothing here verifies anything: no password is stored or
checked, and any numeric code of the expected length is accepted. The flow
is kept behind the ``AuthProvider`` interface so a real identity provider
(salted password hashes, one-time codes bound to a registered device) can
replace ``DemoAuthProvider`` without touching the job lifecycle.

Both entry paths (email/password and SSO) produce a short-lived challenge;
``verify`` redeems it for a user, and the session user is persisted under
its own storage key so it survives a reload.
"""
from __future__ import annotations

import abc
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

import structlog
from fastapi import Depends

import schemas
from errors import AuthFailed, DuplicateUser
from settings import Settings, get_settings
from state import AppState, get_state
from store import HaulStore, RecordKind

logger = structlog.get_logger(__name__)


class AuthProvider(abc.ABC):
    @abc.abstractmethod
    async def start_credentials(
        self, email: str, password: str, mode: schemas.AuthMode
    ) -> schemas.AuthChallenge: ...

    @abc.abstractmethod
    async def start_sso(self, provider: schemas.SsoProvider) -> schemas.AuthChallenge: ...

    @abc.abstractmethod
    async def verify(self, challenge_id: str, code: str) -> schemas.User: ...


@dataclass
class PendingChallenge:
    id: str
    mode: schemas.AuthMode
    email: str
    name: str
    expires_at: float  # epoch seconds


class DemoAuthProvider(AuthProvider):
    def __init__(
        self,
        store: HaulStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = settings or get_settings()
        self.store = store
        self.code_length = settings.otp_length
        self.ttl = settings.otp_ttl_seconds
        self.demo = settings.demo_auth
        self._clock = clock
        self._challenges: dict[str, PendingChallenge] = {}

    def _issue(self, mode: schemas.AuthMode, email: str, name: str) -> schemas.AuthChallenge:
        challenge = PendingChallenge(
            id=uuid.uuid4().hex,
            mode=mode,
            email=email,
            name=name,
            expires_at=self._clock() + self.ttl,
        )
        self._challenges[challenge.id] = challenge
        return schemas.AuthChallenge(
            challenge_id=challenge.id,
            destination_hint="mobile device ending in **89",
            code_length=self.code_length,
            expires_at=int(challenge.expires_at * 1000),
            demo=self.demo,
        )

    async def start_credentials(
        self, email: str, password: str, mode: schemas.AuthMode
    ) -> schemas.AuthChallenge:
        email = email.strip()
        if mode is schemas.AuthMode.SIGNUP and await self.store.find_by_email(email):
            raise DuplicateUser("User already exists")
        name = email.split("@")[0] or "New User"
        logger.info("Credential challenge issued", mode=mode.value)
        return self._issue(mode, email, name)

    async def start_sso(self, provider: schemas.SsoProvider) -> schemas.AuthChallenge:
        # The SSO round-trip is simulated; every provider hands back the same demo identity
        email = f"{provider.value}.user@example.com"
        logger.info("SSO challenge issued", provider=provider.value)
        return self._issue(schemas.AuthMode.SIGNIN, email, "Alex Hauler")

    def _redeem(self, challenge_id: str, code: str) -> PendingChallenge:
        challenge = self._challenges.get(challenge_id)
        if challenge is None:
            raise AuthFailed("Unknown verification challenge")
        if self._clock() >= challenge.expires_at:
            del self._challenges[challenge_id]
            raise AuthFailed("Verification code expired")
        if len(code) != self.code_length or not (code.isascii() and code.isdigit()):
            raise AuthFailed(f"Enter the {self.code_length}-digit code")
        return self._challenges.pop(challenge_id)

    async def verify(self, challenge_id: str, code: str) -> schemas.User:
        challenge = self._redeem(challenge_id, code.strip())
        logger.warning("Demo verification accepted without checking the code", mode=challenge.mode.value)

        if challenge.mode is schemas.AuthMode.SIGNIN:
            existing = await self.store.find_by_email(challenge.email)
            if existing:
                return existing

        user = schemas.User(
            id=f"u-{uuid.uuid4().hex[:12]}",
            name=challenge.name,
            email=challenge.email,
        )
        return await self.store.insert(RecordKind.USERS, user)


# --- Session handling ---
async def complete_sign_in(state: AppState, challenge_id: str, code: str) -> schemas.User:
    user = await state.auth.verify(challenge_id, code)
    # Signing in makes the user visible for driver-side alerts
    if not user.is_available:
        user = await state.store.update(RecordKind.USERS, user.id, {"is_available": True})
    state.user = user
    await state.store.save_session(user)
    logger.info("Session started", user_id=user.id)
    await state.notifier.notify("signed_in", recipient_ids=[user.id], user=user)
    return user


async def sign_out(state: AppState) -> None:
    user = state.user
    state.user = None
    await state.store.clear_session()
    logger.info("Session ended", user_id=user.id if user else None)
    await state.notifier.notify("signed_out", recipient_ids=[user.id] if user else None)


# --- FastAPI dependency ---
async def get_current_user(state: AppState = Depends(get_state)) -> schemas.User:
    if state.user is None:
        raise AuthFailed("Sign in required")
    return state.user
