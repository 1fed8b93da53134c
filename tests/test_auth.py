import pytest

import auth
import schemas
from errors import AuthFailed, DuplicateUser
from store import RecordKind


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


async def sign_up(state, email="new@example.com"):
    challenge = await state.auth.start_credentials(email, "pw", schemas.AuthMode.SIGNUP)
    return await auth.complete_sign_in(state, challenge.challenge_id, "123456")


@pytest.mark.asyncio
async def test_signup_creates_user_and_session(state):
    challenge = await state.auth.start_credentials("new@example.com", "pw", schemas.AuthMode.SIGNUP)
    assert challenge.code_length == 6
    assert challenge.demo is True

    user = await auth.complete_sign_in(state, challenge.challenge_id, "000000")

    assert user.email == "new@example.com"
    assert user.name == "new"
    assert user.is_available is True
    assert state.user == user
    assert await state.store.load_session() == user
    stored = await state.store.get(RecordKind.USERS, user.id)
    assert stored.is_available is True
    assert "Welcome back!" in [b.title for b in state.notifier.board.active(user.id)]


@pytest.mark.asyncio
async def test_signup_with_registered_email_fails(state):
    await sign_up(state)

    with pytest.raises(DuplicateUser):
        await state.auth.start_credentials("NEW@example.com", "pw", schemas.AuthMode.SIGNUP)
    assert len(await state.store.list(RecordKind.USERS)) == 1


@pytest.mark.asyncio
async def test_signup_race_is_caught_by_the_store(state):
    first = await state.auth.start_credentials("race@example.com", "pw", schemas.AuthMode.SIGNUP)
    second = await state.auth.start_credentials("race@example.com", "pw", schemas.AuthMode.SIGNUP)
    await auth.complete_sign_in(state, first.challenge_id, "111111")

    with pytest.raises(DuplicateUser):
        await auth.complete_sign_in(state, second.challenge_id, "222222")
    assert len(await state.store.list(RecordKind.USERS)) == 1


@pytest.mark.asyncio
async def test_signin_returns_existing_user(state):
    created = await sign_up(state, "back@example.com")

    challenge = await state.auth.start_credentials("Back@Example.com", "anything", schemas.AuthMode.SIGNIN)
    user = await auth.complete_sign_in(state, challenge.challenge_id, "654321")

    assert user.id == created.id


@pytest.mark.asyncio
async def test_first_signin_creates_user(state):
    challenge = await state.auth.start_credentials("first@example.com", "pw", schemas.AuthMode.SIGNIN)
    user = await auth.complete_sign_in(state, challenge.challenge_id, "123123")

    assert (await state.store.find_by_email("first@example.com")).id == user.id


@pytest.mark.asyncio
async def test_sso_signin(state):
    challenge = await state.auth.start_sso(schemas.SsoProvider.GOOGLE)
    user = await auth.complete_sign_in(state, challenge.challenge_id, "999999")

    assert user.email == "google.user@example.com"
    assert user.name == "Alex Hauler"


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["12345", "1234567", "12a456", "", "²²²²²²", "١٢٣٤٥٦"])
async def test_malformed_code_rejected_but_challenge_survives(state, code):
    challenge = await state.auth.start_credentials("code@example.com", "pw", schemas.AuthMode.SIGNIN)

    with pytest.raises(AuthFailed):
        await auth.complete_sign_in(state, challenge.challenge_id, code)

    user = await auth.complete_sign_in(state, challenge.challenge_id, "123456")
    assert user.email == "code@example.com"


@pytest.mark.asyncio
async def test_challenge_is_single_use(state):
    challenge = await state.auth.start_credentials("once@example.com", "pw", schemas.AuthMode.SIGNIN)
    await auth.complete_sign_in(state, challenge.challenge_id, "123456")

    with pytest.raises(AuthFailed):
        await auth.complete_sign_in(state, challenge.challenge_id, "123456")


@pytest.mark.asyncio
async def test_expired_challenge_rejected(store, test_settings):
    clock = FakeClock()
    provider = auth.DemoAuthProvider(store, test_settings, clock=clock)
    challenge = await provider.start_credentials("late@example.com", "pw", schemas.AuthMode.SIGNIN)

    clock.now += test_settings.otp_ttl_seconds + 1

    with pytest.raises(AuthFailed):
        await provider.verify(challenge.challenge_id, "123456")
    assert await store.find_by_email("late@example.com") is None


@pytest.mark.asyncio
async def test_sign_out_clears_session(state):
    user = await sign_up(state)

    await auth.sign_out(state)

    assert state.user is None
    assert await state.store.load_session() is None
    # the user record itself stays
    assert (await state.store.get(RecordKind.USERS, user.id)).email == user.email


@pytest.mark.asyncio
async def test_get_current_user_requires_session(state):
    with pytest.raises(AuthFailed):
        await auth.get_current_user(state)

    user = await sign_up(state)
    assert await auth.get_current_user(state) == user
