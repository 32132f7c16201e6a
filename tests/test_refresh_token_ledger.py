from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from storefront.models.refresh_token import RefreshToken
from storefront.services.refresh_token_ledger import RefreshTokenLedger
from storefront.utils.exceptions import RefreshTokenInvalidException
from storefront.utils.security import create_refresh_token


@pytest.fixture
def ledger(db):
    return RefreshTokenLedger(db)


async def test_stored_token_is_found_by_its_digest_only(ledger, verified_user):
    raw = create_refresh_token()
    record = await ledger.store(verified_user.id, raw)

    assert record.tokenHash != raw
    assert (await ledger.lookup_valid(raw)).id == record.id
    assert await ledger.lookup_valid(create_refresh_token()) is None


async def test_new_logins_start_new_families(ledger, verified_user):
    a = await ledger.store(verified_user.id, create_refresh_token())
    b = await ledger.store(verified_user.id, create_refresh_token())
    assert a.familyId != b.familyId


async def test_rotation_keeps_one_active_token_per_family(ledger, verified_user, db):
    raw = create_refresh_token()
    first = await ledger.store(verified_user.id, raw)
    seen = [raw]

    for _ in range(3):
        current = await ledger.lookup_valid(seen[-1])
        new_raw = create_refresh_token()
        rotated = await ledger.rotate(current, new_raw)
        assert rotated.familyId == first.familyId
        seen.append(new_raw)

    active = (await db.execute(
        select(RefreshToken).where(RefreshToken.familyId == first.familyId, RefreshToken.revoked.is_(False))
    )).scalars().all()
    assert len(active) == 1
    assert (await ledger.lookup_valid(seen[-1])).id == active[0].id
    for old in seen[:-1]:
        assert await ledger.lookup_valid(old) is None
        assert (await ledger.detect_reuse(old)) is not None


async def test_second_rotation_of_same_record_loses(ledger, verified_user):
    raw = create_refresh_token()
    await ledger.store(verified_user.id, raw)
    current = await ledger.lookup_valid(raw)

    await ledger.rotate(current, create_refresh_token())
    with pytest.raises(RefreshTokenInvalidException):
        await ledger.rotate(current, create_refresh_token())


async def test_revoke_family_leaves_other_families(ledger, verified_user):
    raw_a, raw_b = create_refresh_token(), create_refresh_token()
    a = await ledger.store(verified_user.id, raw_a)
    await ledger.store(verified_user.id, raw_b)

    await ledger.revoke_family(verified_user.id, a.familyId)

    assert await ledger.lookup_valid(raw_a) is None
    assert await ledger.lookup_valid(raw_b) is not None


async def test_revoke_all(ledger, verified_user):
    raws = [create_refresh_token() for _ in range(3)]
    for raw in raws:
        await ledger.store(verified_user.id, raw)

    await ledger.revoke_all(verified_user.id)

    for raw in raws:
        assert await ledger.lookup_valid(raw) is None


async def test_expired_token_is_not_valid(ledger, verified_user, db):
    raw = create_refresh_token()
    record = await ledger.store(verified_user.id, raw)
    record.expiresAt = datetime.now(timezone.utc) - timedelta(seconds=1)
    await db.flush()

    assert await ledger.lookup_valid(raw) is None
    # expired but never revoked is not reuse
    assert await ledger.detect_reuse(raw) is None


async def test_unknown_token_is_not_reuse(ledger):
    assert await ledger.detect_reuse(create_refresh_token()) is None
    assert await ledger.find(create_refresh_token()) is None
