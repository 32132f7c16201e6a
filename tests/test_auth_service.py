import asyncio
from dataclasses import replace

import pytest
from sqlalchemy import func, select

from storefront.config import settings
from storefront.models.audit_log import AuditLog
from storefront.models.user import User, UserRole
from storefront.schemas.auth import RegisterRequest
from storefront.services.auth_service import AuthService
from storefront.services.otp_vault import OTPPolicy, OTPPurpose, OTPVault
from storefront.utils.exceptions import (
    DuplicateEntryException, EmailNotVerifiedException, ErrorCode, InvalidCredentialsException,
    OTPExpiredException, OTPInvalidException, OTPLockedException, OTPSendLimitException,
    RefreshTokenInvalidException, RegistrationExpiredException, ResetNotVerifiedException,
    ServiceUnavailableException,
)
from storefront.utils.security import create_refresh_token, hash_password, verify_password
from conftest import PASSWORD, vault_has_state, wrong_otp

EMAIL = "new.buyer@example.com"
VERIFY = OTPPurpose.EMAIL_VERIFICATION
RESET = OTPPurpose.PASSWORD_RESET


def _registration(email: str = EMAIL, **overrides) -> RegisterRequest:
    data = {"name": "New Buyer", "email": email, "password": PASSWORD}
    data.update(overrides)
    return RegisterRequest(**data)


async def _count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def _actions(db) -> list[str]:
    return list((await db.execute(select(AuditLog.action).order_by(AuditLog.id))).scalars())


# ─── Registration ─────────────────────────────────────────────────────────────
async def test_register_stages_without_creating_user(auth_service, vault, sender, db):
    await auth_service.register(_registration(email="New.Buyer@Example.com"))

    assert await _count(db, User) == 0
    pending = await vault.get_pending(EMAIL)
    assert pending["email"] == EMAIL
    assert pending["passwordHash"] != PASSWORD
    assert verify_password(PASSWORD, pending["passwordHash"])
    assert sender.count(EMAIL, VERIFY.value) == 1


async def test_verify_otp_creates_verified_user_and_cleans_up(auth_service, vault, sender, db):
    await auth_service.register(_registration(role=UserRole.SELLER, phoneNumber="+628123456789"))

    user = await auth_service.verify_otp(EMAIL, sender.last_otp(EMAIL))

    assert user.isVerified is True
    assert user.role is UserRole.SELLER
    assert user.phoneNumber == "+628123456789"
    assert user.createdAt is not None
    assert await _count(db, User) == 1
    assert not await vault_has_state(vault, EMAIL, VERIFY)
    assert await _actions(db) == ["REGISTER"]


async def test_register_rejects_existing_account(auth_service, verified_user, sender):
    with pytest.raises(DuplicateEntryException) as exc:
        await auth_service.register(_registration(email=verified_user.email))

    assert exc.value.status_code == 409
    assert sender.sent == []


async def test_verify_after_pending_expired_creates_nothing(auth_service, vault, sender, db):
    await auth_service.register(_registration())
    await vault.clear_pending(EMAIL)

    with pytest.raises(RegistrationExpiredException):
        await auth_service.verify_otp(EMAIL, sender.last_otp(EMAIL))
    assert await _count(db, User) == 0


async def test_verify_when_account_appeared_meanwhile(auth_service, sender, db):
    await auth_service.register(_registration())
    db.add(User(name="Racer", email=EMAIL, passwordHash=hash_password(PASSWORD), isVerified=True))
    await db.commit()

    with pytest.raises(DuplicateEntryException):
        await auth_service.verify_otp(EMAIL, sender.last_otp(EMAIL))
    assert await _count(db, User) == 1


async def test_wrong_otp_reports_remaining_attempts(auth_service, sender):
    await auth_service.register(_registration())

    with pytest.raises(OTPInvalidException) as exc:
        await auth_service.verify_otp(EMAIL, wrong_otp(sender.last_otp(EMAIL)))

    assert exc.value.status_code == 400
    assert exc.value.detail["error"]["remainingAttempts"] == 4


async def test_five_wrong_otps_lock_even_the_right_one(auth_service, sender, db):
    await auth_service.register(_registration())
    otp = sender.last_otp(EMAIL)

    for _ in range(4):
        with pytest.raises(OTPInvalidException):
            await auth_service.verify_otp(EMAIL, wrong_otp(otp))
    with pytest.raises(OTPLockedException):
        await auth_service.verify_otp(EMAIL, wrong_otp(otp))

    with pytest.raises(OTPLockedException) as exc:
        await auth_service.verify_otp(EMAIL, otp)
    assert exc.value.status_code == 429
    assert exc.value.detail["error"]["lockDuration"] > 0
    assert await _count(db, User) == 0


async def test_verify_without_any_otp_is_expired(auth_service):
    with pytest.raises(OTPExpiredException):
        await auth_service.verify_otp(EMAIL, "123456")


# ─── Resend ───────────────────────────────────────────────────────────────────
async def test_resend_ceiling(db, redis, sender):
    policies = {
        p: replace(OTPPolicy.for_purpose(p), cooldown_seconds=0, max_sends=2) for p in OTPPurpose
    }
    service = AuthService(db, OTPVault(redis, policies=policies), sender)
    await service.register(_registration())

    # registration used the first send of the window
    await service.resend_otp(EMAIL)
    for _ in range(2):
        with pytest.raises(OTPSendLimitException) as exc:
            await service.resend_otp(EMAIL)

    assert exc.value.error_code == ErrorCode.OTP_SEND_LIMIT
    assert sender.count(EMAIL, VERIFY.value) == 2


async def test_forgot_and_one_resend_use_up_the_reset_budget(db, redis, sender, verified_user):
    policies = {p: replace(OTPPolicy.for_purpose(p), cooldown_seconds=0) for p in OTPPurpose}
    service = AuthService(db, OTPVault(redis, policies=policies), sender)
    assert policies[RESET].max_sends == settings.OTP_RESET_MAX_SENDS == 2

    await service.forgot_password(verified_user.email)
    await service.resend_reset_otp(verified_user.email)
    with pytest.raises(OTPSendLimitException):
        await service.resend_reset_otp(verified_user.email)
    with pytest.raises(OTPLockedException):
        await service.resend_reset_otp(verified_user.email)

    assert sender.count(verified_user.email, RESET.value) == 2


async def test_resend_invalidates_previous_code(db, redis, sender):
    policies = {p: replace(OTPPolicy.for_purpose(p), cooldown_seconds=0) for p in OTPPurpose}
    service = AuthService(db, OTPVault(redis, policies=policies), sender)
    await service.register(_registration())
    first = sender.last_otp(EMAIL)
    await service.resend_otp(EMAIL)
    second = sender.last_otp(EMAIL)
    if first == second:
        pytest.skip("random codes collided")

    with pytest.raises(OTPInvalidException):
        await service.verify_otp(EMAIL, first)
    assert (await service.verify_otp(EMAIL, second)).email == EMAIL


async def test_resend_without_pending_registration(auth_service):
    with pytest.raises(RegistrationExpiredException):
        await auth_service.resend_otp(EMAIL)


async def test_cooldown_status_follows_send_gate(auth_service):
    before = await auth_service.otp_cooldown_status(EMAIL)
    await auth_service.register(_registration())
    after = await auth_service.otp_cooldown_status(EMAIL)

    assert before == {"secondsRemaining": 0, "canResend": True, "purpose": VERIFY.value}
    assert after["canResend"] is False
    assert 0 < after["secondsRemaining"] <= 60


# ─── Login ────────────────────────────────────────────────────────────────────
async def test_login_issues_session(auth_service, verified_user, db):
    issued = await auth_service.login(verified_user.email, PASSWORD)

    assert issued.user.id == verified_user.id
    assert issued.access_token
    assert await auth_service.ledger.lookup_valid(issued.refresh_token) is not None
    assert await _actions(db) == ["LOGIN"]


@pytest.mark.parametrize("email,password", [
    ("shopper@example.com", "Wrong1Password"),
    ("nobody@example.com", PASSWORD),
])
async def test_bad_credentials_are_indistinguishable(auth_service, verified_user, email, password):
    with pytest.raises(InvalidCredentialsException) as exc:
        await auth_service.login(email, password)
    assert exc.value.message == "Invalid email or password"
    assert exc.value.error_code == ErrorCode.UNAUTHORIZED


async def test_login_unverified_account(auth_service, db):
    db.add(User(name="Unverified", email=EMAIL, passwordHash=hash_password(PASSWORD), isVerified=False))
    await db.commit()

    with pytest.raises(EmailNotVerifiedException) as exc:
        await auth_service.login(EMAIL, PASSWORD)
    assert exc.value.error_code == ErrorCode.EMAIL_NOT_VERIFIED


async def test_login_oauth_only_account(auth_service, db):
    db.add(User(name="OAuth Only", email=EMAIL, passwordHash=None, isVerified=True))
    await db.commit()

    with pytest.raises(InvalidCredentialsException):
        await auth_service.login(EMAIL, PASSWORD)


# ─── Refresh / Logout ─────────────────────────────────────────────────────────
async def test_refresh_rotates(auth_service, verified_user):
    first = await auth_service.login(verified_user.email, PASSWORD)
    second = await auth_service.refresh(first.refresh_token)

    assert second.refresh_token != first.refresh_token
    with pytest.raises(RefreshTokenInvalidException):
        await auth_service.refresh(first.refresh_token)


async def test_replayed_token_revokes_whole_family(auth_service, verified_user, db):
    first = await auth_service.login(verified_user.email, PASSWORD)
    second = await auth_service.refresh(first.refresh_token)

    with pytest.raises(RefreshTokenInvalidException):
        await auth_service.refresh(first.refresh_token)
    with pytest.raises(RefreshTokenInvalidException):
        await auth_service.refresh(second.refresh_token)
    assert "TOKEN_REUSE" in await _actions(db)


async def test_reuse_in_one_family_spares_other_sessions(auth_service, verified_user):
    phone = await auth_service.login(verified_user.email, PASSWORD)
    laptop = await auth_service.login(verified_user.email, PASSWORD)
    rotated = await auth_service.refresh(phone.refresh_token)

    with pytest.raises(RefreshTokenInvalidException):
        await auth_service.refresh(phone.refresh_token)
    with pytest.raises(RefreshTokenInvalidException):
        await auth_service.refresh(rotated.refresh_token)
    assert (await auth_service.refresh(laptop.refresh_token)).user.id == verified_user.id


@pytest.mark.parametrize("token", [None, "", "not-a-real-token"])
async def test_refresh_with_missing_or_unknown_token(auth_service, token):
    with pytest.raises(RefreshTokenInvalidException):
        await auth_service.refresh(token)


async def test_logout_revokes_family_including_siblings(auth_service, verified_user):
    issued = await auth_service.login(verified_user.email, PASSWORD)
    record = await auth_service.ledger.lookup_valid(issued.refresh_token)
    sibling = create_refresh_token()
    await auth_service.ledger.store(verified_user.id, sibling, record.familyId)

    await auth_service.logout(issued.refresh_token)

    for token in (issued.refresh_token, sibling):
        with pytest.raises(RefreshTokenInvalidException):
            await auth_service.refresh(token)


async def test_logout_without_token_is_a_no_op(auth_service):
    await auth_service.logout(None)
    await auth_service.logout(create_refresh_token())


# ─── Password Reset ───────────────────────────────────────────────────────────
async def test_password_reset_revokes_every_session(auth_service, verified_user, sender, vault, db):
    sessions = [await auth_service.login(verified_user.email, PASSWORD) for _ in range(2)]

    await auth_service.forgot_password(verified_user.email)
    await auth_service.verify_reset_otp(verified_user.email, sender.last_otp(verified_user.email, RESET.value))
    assert await auth_service.is_reset_verified(verified_user.email)
    await auth_service.reset_password(verified_user.email, "N3wPassword")

    for issued in sessions:
        with pytest.raises(RefreshTokenInvalidException):
            await auth_service.refresh(issued.refresh_token)
    with pytest.raises(InvalidCredentialsException):
        await auth_service.login(verified_user.email, PASSWORD)
    assert (await auth_service.login(verified_user.email, "N3wPassword")).user.id == verified_user.id
    assert not await vault_has_state(vault, verified_user.email, RESET)
    assert "RESET_PASSWORD" in await _actions(db)


async def test_forgot_password_for_unknown_email_is_silent(auth_service, vault, sender):
    await auth_service.forgot_password("ghost@example.com")

    assert sender.sent == []
    assert not await vault_has_state(vault, "ghost@example.com", RESET)


async def test_forgot_password_throttle_is_silent(auth_service, verified_user, sender):
    await auth_service.forgot_password(verified_user.email)
    await auth_service.forgot_password(verified_user.email)

    assert sender.count(verified_user.email, RESET.value) == 1


async def test_resend_reset_for_unknown_email_is_silent(auth_service, sender):
    await auth_service.resend_reset_otp("ghost@example.com")
    assert sender.sent == []


async def test_reset_requires_verified_otp(auth_service, verified_user):
    with pytest.raises(ResetNotVerifiedException):
        await auth_service.reset_password(verified_user.email, "N3wPassword")


async def test_one_verification_allows_one_reset(auth_service, verified_user, sender):
    await auth_service.forgot_password(verified_user.email)
    await auth_service.verify_reset_otp(verified_user.email, sender.last_otp(verified_user.email, RESET.value))
    await auth_service.reset_password(verified_user.email, "N3wPassword")

    with pytest.raises(ResetNotVerifiedException):
        await auth_service.reset_password(verified_user.email, "An0therPassword")


async def test_wrong_reset_otp_does_not_set_flag(auth_service, verified_user, sender):
    await auth_service.forgot_password(verified_user.email)
    otp = sender.last_otp(verified_user.email, RESET.value)

    with pytest.raises(OTPInvalidException):
        await auth_service.verify_reset_otp(verified_user.email, wrong_otp(otp))
    assert not await auth_service.is_reset_verified(verified_user.email)


# ─── Notification Failures ────────────────────────────────────────────────────
class SlowSender:
    async def send_otp(self, to_email, name, otp_code, purpose):
        await asyncio.sleep(1)


class BrokenSender:
    async def send_otp(self, to_email, name, otp_code, purpose):
        raise ConnectionError("smtp down")


@pytest.mark.parametrize("notifier", [SlowSender(), BrokenSender()])
async def test_notifier_failure_surfaces_as_unavailable(db, vault, notifier):
    cfg = settings.model_copy(update={"NOTIFICATION_TIMEOUT_SECONDS": 0.05})
    service = AuthService(db, vault, notifier, cfg)

    with pytest.raises(ServiceUnavailableException) as exc:
        await service.register(_registration())
    assert exc.value.status_code == 503


@pytest.mark.parametrize("notifier", [SlowSender(), BrokenSender()])
async def test_forgot_password_hides_notifier_failure(db, vault, verified_user, notifier):
    cfg = settings.model_copy(update={"NOTIFICATION_TIMEOUT_SECONDS": 0.05})
    service = AuthService(db, vault, notifier, cfg)

    await service.forgot_password(verified_user.email)
    await service.forgot_password("ghost@example.com")
