from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import event

import crud
from config import AuthPolicy
from errors import (
    AuthenticationError,
    ExpiredRefreshTokenError,
    InvalidRefreshTokenError,
    InvalidTokenError,
    UserNotFoundError,
    ValidationError,
)
from identity import IdentityStore
from models import RefreshToken
from sessions import AuthSessionService

POLICY = AuthPolicy(secret_key="s" * 40, refresh_token_secret="r" * 40, refresh_expire_days=7)


async def _service_with_user(session, username="carol"):
    identity = IdentityStore(session)
    user = await identity.create_user(username=username, email=f"{username}@example.com",
                                      password="P@ss1234", country="Egypt")
    return AuthSessionService(session, POLICY, identity), user


def test_login_stores_exactly_one_refresh_token(in_memory_db):
    async def scenario(session):
        service, user = await _service_with_user(session)
        for _ in range(4):
            pair = await service.login("carol", "P@ss1234", "10.0.0.1")
        pair = await service.refresh(pair.access_token, pair.refresh_token, "10.0.0.2")
        return pair, await crud.count_refresh_tokens_for_user(session, user.id)

    pair, stored = in_memory_db(scenario)
    assert stored == 1
    assert pair.refresh_token_expiry > pair.access_token_expiry


def test_login_is_case_insensitive_on_username(in_memory_db):
    async def scenario(session):
        service, _ = await _service_with_user(session)
        return await service.login("CAROL", "P@ss1234")

    assert in_memory_db(scenario).access_token


def test_login_failures(in_memory_db):
    async def scenario(session):
        service, _ = await _service_with_user(session)
        with pytest.raises(ValidationError):
            await service.login("", "P@ss1234")
        with pytest.raises(AuthenticationError) as wrong:
            await service.login("carol", "nope")
        with pytest.raises(AuthenticationError) as unknown:
            await service.login("dave", "P@ss1234")
        return wrong.value, unknown.value

    wrong, unknown = in_memory_db(scenario)
    assert type(wrong) is type(unknown) is AuthenticationError
    assert wrong.message == unknown.message


def test_refresh_error_order(in_memory_db):
    async def scenario(session):
        service, user = await _service_with_user(session)
        pair = await service.login("carol", "P@ss1234")

        with pytest.raises(ValidationError):
            await service.refresh(pair.access_token, "")
        with pytest.raises(InvalidTokenError):
            await service.refresh("not-a-jwt", pair.refresh_token)
        with pytest.raises(InvalidRefreshTokenError):
            await service.refresh(pair.access_token, "forged")

        later = datetime.now(timezone.utc) + timedelta(days=8)
        with pytest.raises(ExpiredRefreshTokenError):
            await service.refresh(pair.access_token, pair.refresh_token, now=later)

        await IdentityStore(session).delete_user(user.id)
        with pytest.raises(UserNotFoundError):
            await service.refresh(pair.access_token, pair.refresh_token)

    in_memory_db(scenario)


def test_refresh_just_before_expiry_succeeds(in_memory_db):
    async def scenario(session):
        service, _ = await _service_with_user(session)
        pair = await service.login("carol", "P@ss1234")
        almost = pair.refresh_token_expiry - timedelta(seconds=1)
        return await service.refresh(pair.access_token, pair.refresh_token, now=almost)

    assert in_memory_db(scenario).refresh_token


def _insert_competing_token_once(session):
    """On the next flush, write another token for the same user first, as a parallel request would."""
    def before_flush(sync_session, flush_context, instances):
        for obj in sync_session.new:
            if isinstance(obj, RefreshToken):
                sync_session.connection().execute(RefreshToken.__table__.insert().values(
                    user_id=obj.user_id,
                    token_hash="written-by-a-parallel-request",
                    expires_at=obj.expires_at,
                    created_by_ip="10.9.9.9",
                ))

    event.listen(session.sync_session, "before_flush", before_flush, once=True)


def test_losing_a_concurrent_token_write_retries_and_wins(in_memory_db):
    async def scenario(session):
        service, user = await _service_with_user(session)
        _insert_competing_token_once(session)
        pair = await service.login("carol", "P@ss1234", "10.0.0.1")
        # loaded objects survive the retry
        username = user.username
        stored = await crud.count_refresh_tokens_for_user(session, user.id)
        refreshed = await service.refresh(pair.access_token, pair.refresh_token)
        return username, stored, refreshed

    username, stored, refreshed = in_memory_db(scenario)
    assert username == "carol"
    assert stored == 1
    assert refreshed.refresh_token
