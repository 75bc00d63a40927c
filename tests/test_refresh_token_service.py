import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import select

from app.core.exceptions import InvalidCredentials, InvalidRefreshToken, ReplayDetected, StorageError
from app.core.security import hash_token
from app.models.refresh_token import RefreshToken
from app.services import refresh_token_service as service_module
from app.services.refresh_token_service import RefreshTokenService

from conftest import PASSWORD


async def _row(session_factory, token: str) -> RefreshToken:
    async with session_factory() as session:
        result = await session.execute(select(RefreshToken).where(RefreshToken.token_hash == hash_token(token)))
        return result.scalars().one()


async def test_issue_then_validate(refresh_service, make_user, clock):
    user = await make_user()
    issued = await refresh_service.issue_for(user.id)

    record = await refresh_service.validate(issued.value)
    assert record.user_id == user.id
    assert record.expires_at == record.issued_at + timedelta(hours=1)
    assert record.token_hash == hash_token(issued.value)
    assert not record.is_revoked


async def test_validate_is_side_effect_free(refresh_service, make_user, session_factory):
    user = await make_user()
    issued = await refresh_service.issue_for(user.id)

    for _ in range(3):
        await refresh_service.validate(issued.value)
    assert not (await _row(session_factory, issued.value)).is_revoked


async def test_expiry_boundary_instant_is_invalid(refresh_service, make_user, clock):
    user = await make_user()
    issued = await refresh_service.issue_for(user.id)

    clock.now = issued.record.expires_at - timedelta(microseconds=1)
    await refresh_service.validate(issued.value)

    clock.now = issued.record.expires_at
    with pytest.raises(InvalidRefreshToken):
        await refresh_service.validate(issued.value)


async def test_validate_after_clock_passes_expiry(refresh_service, make_user, clock):
    user = await make_user()
    issued = await refresh_service.issue_for(user.id)

    clock.advance(hours=1, seconds=1)
    with pytest.raises(InvalidRefreshToken):
        await refresh_service.validate(issued.value)


@pytest.mark.parametrize("token", ["", "never-issued"])
async def test_unknown_tokens_are_invalid(refresh_service, token):
    with pytest.raises(InvalidRefreshToken):
        await refresh_service.validate(token)
    with pytest.raises(InvalidRefreshToken):
        await refresh_service.rotate(token)


async def test_rotation_chain_and_replay(refresh_service, make_user, session_factory):
    user = await make_user()
    t1 = await refresh_service.issue_for(user.id)

    rotated = await refresh_service.rotate(t1.value)
    t2 = rotated.value
    assert t2 != t1.value
    assert rotated.user.id == user.id

    old = await _row(session_factory, t1.value)
    new = await _row(session_factory, t2)
    assert old.is_revoked
    assert old.revoked_reason == "rotated"
    assert old.replaced_by_token_hash == new.token_hash
    assert not new.is_revoked
    assert new.user_id == user.id

    with pytest.raises(ReplayDetected):
        await refresh_service.rotate(t1.value)

    t3 = await refresh_service.rotate(t2)
    assert t3.value not in (t1.value, t2)


async def test_rotating_expired_token_changes_nothing(refresh_service, make_user, session_factory, clock):
    user = await make_user()
    issued = await refresh_service.issue_for(user.id)

    clock.advance(hours=2)
    with pytest.raises(InvalidRefreshToken):
        await refresh_service.rotate(issued.value)

    row = await _row(session_factory, issued.value)
    assert not row.is_revoked
    assert row.replaced_by_token_hash is None


async def test_replay_with_hardened_policy_revokes_every_session(db, make_user, clock, session_factory):
    service = RefreshTokenService(db, lifetime=timedelta(hours=1), reuse_revokes_all=True, clock=clock)
    user = await make_user()
    user_id = user.id
    other_device = await service.issue_for(user_id)
    t1 = await service.issue_for(user_id)
    t2 = await service.rotate(t1.value)

    with pytest.raises(ReplayDetected) as excinfo:
        await service.rotate(t1.value)
    assert excinfo.value.user_id == user_id

    for token in (t2.value, other_device.value):
        row = await _row(session_factory, token)
        assert row.is_revoked
        assert row.revoked_reason == "reuse_detected"
    with pytest.raises(InvalidRefreshToken):
        await service.rotate(t2.value)


async def test_replay_without_hardened_policy_keeps_successor(refresh_service, make_user):
    user = await make_user()
    t1 = await refresh_service.issue_for(user.id)
    t2 = await refresh_service.rotate(t1.value)

    with pytest.raises(ReplayDetected):
        await refresh_service.rotate(t1.value)
    await refresh_service.validate(t2.value)


async def test_concurrent_rotation_has_single_winner(session_factory, make_user, clock):
    user = await make_user()
    async with session_factory() as session:
        seeded = await RefreshTokenService(session, lifetime=timedelta(hours=1), clock=clock).issue_for(user.id)

    async def attempt():
        async with session_factory() as session:
            service = RefreshTokenService(session, lifetime=timedelta(hours=1), clock=clock)
            try:
                return await service.rotate(seeded.value)
            except InvalidRefreshToken:
                return None

    results = await asyncio.gather(*(attempt() for _ in range(5)))
    winners = [r for r in results if r is not None]
    assert len(winners) == 1

    async with session_factory() as session:
        rows = (await session.execute(select(RefreshToken))).scalars().all()
    assert len(rows) == 2
    old = next(r for r in rows if r.token_hash == hash_token(seeded.value))
    new = next(r for r in rows if r.token_hash != old.token_hash)
    assert old.is_revoked
    assert old.replaced_by_token_hash == new.token_hash == hash_token(winners[0].value)
    assert not new.is_revoked


async def test_revoke_is_idempotent(refresh_service, make_user, session_factory):
    user = await make_user()
    issued = await refresh_service.issue_for(user.id)

    assert await refresh_service.revoke(issued.value) is True
    first = await _row(session_factory, issued.value)
    assert await refresh_service.revoke(issued.value) is False
    second = await _row(session_factory, issued.value)

    assert first.is_revoked and second.is_revoked
    assert first.revoked_at == second.revoked_at
    with pytest.raises(InvalidRefreshToken):
        await refresh_service.validate(issued.value)


async def test_revoke_unknown_token_is_not_an_error(refresh_service):
    assert await refresh_service.revoke("does-not-exist") is False


async def test_revoking_one_user_never_touches_another(refresh_service, make_user):
    u1 = await make_user("u1@example.com")
    u2 = await make_user("u2@example.com")
    u1_tokens = [await refresh_service.issue_for(u1.id) for _ in range(2)]
    u2_token = await refresh_service.issue_for(u2.id)

    assert await refresh_service.revoke_all_for_user(u1.id) == 2

    for issued in u1_tokens:
        with pytest.raises(InvalidRefreshToken):
            await refresh_service.validate(issued.value)
    assert (await refresh_service.validate(u2_token.value)).user_id == u2.id


async def test_issued_values_are_unique(refresh_service, make_user, count_tokens):
    user = await make_user()
    values = {(await refresh_service.issue_for(user.id)).value for _ in range(20)}
    assert len(values) == 20
    assert await count_tokens(user.id) == 20


async def test_issue_retries_on_collision(refresh_service, make_user, monkeypatch, count_tokens):
    user = await make_user()
    user_id = user.id
    first = await refresh_service.issue_for(user_id)

    values = iter([first.value, "fresh-value"])
    monkeypatch.setattr(service_module, "generate_refresh_token_value", lambda: next(values))
    second = await refresh_service.issue_for(user_id)

    assert second.value == "fresh-value"
    assert await count_tokens(user_id) == 2


async def test_issue_gives_up_after_repeated_collisions(refresh_service, make_user, monkeypatch):
    user = await make_user()
    first = await refresh_service.issue_for(user.id)

    monkeypatch.setattr(service_module, "generate_refresh_token_value", lambda: first.value)
    with pytest.raises(StorageError):
        await refresh_service.issue_for(user.id)


async def test_rotation_refused_for_inactive_user(refresh_service, make_user, db, session_factory):
    user = await make_user()
    issued = await refresh_service.issue_for(user.id)
    user.is_active = False
    await db.commit()

    with pytest.raises(InvalidRefreshToken):
        await refresh_service.rotate(issued.value)
    assert not (await _row(session_factory, issued.value)).is_revoked


async def test_list_sessions_only_returns_active(refresh_service, make_user):
    user = await make_user()
    kept = await refresh_service.issue_for(user.id)
    dropped = await refresh_service.issue_for(user.id)
    await refresh_service.revoke(dropped.value)

    sessions = await refresh_service.list_sessions(user.id)
    assert [s.id for s in sessions] == [kept.record.id]


async def test_prune_expired_respects_retention(refresh_service, make_user, clock, count_tokens):
    user = await make_user()
    await refresh_service.issue_for(user.id)
    clock.advance(days=2)
    await refresh_service.issue_for(user.id)

    # cutoff = agora - 3 dias: nada expirou antes disso ainda
    assert await refresh_service.prune_expired(retention=timedelta(days=3)) == 0
    clock.advance(days=2)
    assert await refresh_service.prune_expired(retention=timedelta(days=3)) == 1
    assert await count_tokens(user.id) == 1


async def test_login_with_wrong_password_creates_no_token(auth_service, make_user, count_tokens):
    user = await make_user()
    with pytest.raises(InvalidCredentials):
        await auth_service.login(user.email, "Wrong123")
    with pytest.raises(InvalidCredentials):
        await auth_service.login("nobody@example.com", PASSWORD)
    assert await count_tokens() == 0


async def test_login_and_refresh_mint_access_tokens(auth_service, issuer, make_user):
    user = await make_user(roles=["User", "Admin"])
    pair = await auth_service.login(user.email, PASSWORD)
    assert issuer.decode(pair.access_token)["roles"] == ["User", "Admin"]
    assert pair.expires_in == 15 * 60

    refreshed = await auth_service.refresh(pair.refresh_token)
    payload = issuer.decode(refreshed.access_token)
    assert payload["sub"] == str(user.id)
    assert refreshed.refresh_token != pair.refresh_token


async def test_rotating_logged_out_token_is_invalid_and_changes_nothing(
    refresh_service, make_user, session_factory, count_tokens
):
    user = await make_user()
    user_id = user.id
    issued = await refresh_service.issue_for(user_id)
    await refresh_service.revoke(issued.value)
    before = await _row(session_factory, issued.value)

    with pytest.raises(InvalidRefreshToken) as excinfo:
        await refresh_service.rotate(issued.value)
    assert not isinstance(excinfo.value, ReplayDetected)

    after = await _row(session_factory, issued.value)
    assert after.is_revoked
    assert after.revoked_reason == before.revoked_reason == "logout"
    assert after.revoked_at == before.revoked_at
    assert after.replaced_by_token_hash is None
    assert await count_tokens(user_id) == 1


async def test_replay_under_default_policy_mutates_nothing(refresh_service, make_user, session_factory, count_tokens):
    user = await make_user()
    user_id = user.id
    t1 = await refresh_service.issue_for(user_id)
    t2 = await refresh_service.rotate(t1.value)
    old_before = await _row(session_factory, t1.value)

    with pytest.raises(ReplayDetected) as excinfo:
        await refresh_service.rotate(t1.value)
    assert excinfo.value.user_id == user_id

    old_after = await _row(session_factory, t1.value)
    assert old_after.revoked_reason == "rotated"
    assert old_after.revoked_at == old_before.revoked_at
    assert old_after.replaced_by_token_hash == hash_token(t2.value)
    assert not (await _row(session_factory, t2.value)).is_revoked
    assert await count_tokens(user_id) == 2


async def test_hardened_policy_treats_concurrent_double_submit_as_reuse(session_factory, make_user, clock):
    user = await make_user()
    user_id = user.id
    async with session_factory() as session:
        seeded = await RefreshTokenService(session, lifetime=timedelta(hours=1), clock=clock).issue_for(user_id)

    async def attempt():
        async with session_factory() as session:
            service = RefreshTokenService(
                session, lifetime=timedelta(hours=1), reuse_revokes_all=True, clock=clock
            )
            try:
                return await service.rotate(seeded.value)
            except ReplayDetected:
                return None

    results = await asyncio.gather(attempt(), attempt())
    winners = [r for r in results if r is not None]
    assert len(winners) == 1

    # Quem perde a corrida não tem como provar que não é um atacante: a família inteira cai,
    # inclusive o sucessor que o vencedor acabou de receber
    successor = await _row(session_factory, winners[0].value)
    assert successor.is_revoked
    assert successor.revoked_reason == "reuse_detected"
    async with session_factory() as session:
        service = RefreshTokenService(session, lifetime=timedelta(hours=1), clock=clock)
        assert await service.list_sessions(user_id) == []


async def test_issue_for_unknown_user_is_not_retried(refresh_service, monkeypatch, count_tokens):
    generated = []

    def fake_generate():
        generated.append(f"value-{len(generated)}")
        return generated[-1]

    monkeypatch.setattr(service_module, "generate_refresh_token_value", fake_generate)
    with pytest.raises(StorageError):
        await refresh_service.issue_for(424242)
    assert len(generated) == 1
    assert await count_tokens() == 0
