import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from storefront.config import Settings, settings
from storefront.models.user import User
from storefront.schemas.auth import RegisterRequest
from storefront.services.otp_vault import OTPPurpose, OTPStatus, OTPVault, OTPVerification
from storefront.services.refresh_token_ledger import RefreshTokenLedger
from storefront.services.user_directory import UserDirectory
from storefront.utils.audit import log_action
from storefront.utils.email import NotificationSender
from storefront.utils.exceptions import (
    DuplicateEntryException, EmailNotVerifiedException, InvalidCredentialsException,
    NotFoundException, OTPCooldownException, OTPExpiredException, OTPInvalidException,
    OTPLockedException, OTPSendLimitException, RefreshTokenInvalidException,
    RegistrationExpiredException, ResetNotVerifiedException, ServiceUnavailableException,
)
from storefront.utils.security import (
    create_access_token, create_refresh_token, hash_password, verify_password,
)

logger = logging.getLogger(__name__)

EMAIL_VERIFICATION = OTPPurpose.EMAIL_VERIFICATION
PASSWORD_RESET = OTPPurpose.PASSWORD_RESET


@dataclass
class IssuedSession:
    user: User
    access_token: str
    refresh_token: str


class AuthService:
    """
    Registration, verification, login, refresh, logout and password reset.

    One instance per request: it shares the request's DB session with the user
    directory and the refresh-token ledger, and commits at the end of each
    mutating flow.
    """

    def __init__(
        self,
        db: AsyncSession,
        vault: OTPVault,
        notifier: NotificationSender,
        cfg: Settings = settings,
    ):
        self.db = db
        self.vault = vault
        self.notifier = notifier
        self.settings = cfg
        self.users = UserDirectory(db)
        self.ledger = RefreshTokenLedger(db)

    # ─── Register ─────────────────────────────────────────────────────────────
    async def register(self, data: RegisterRequest) -> None:
        """
        Stage the registration in the vault and send a verification OTP.
        Nothing touches the users table until the OTP is verified.
        """
        if await self.users.get_by_email(data.email):
            raise DuplicateEntryException("User already exists", field="email")

        await self.vault.check_and_bump_send_rate(data.email, EMAIL_VERIFICATION)

        password_hash = await run_in_threadpool(hash_password, data.password)
        await self.vault.set_pending(data.email, {
            "name":            data.name,
            "email":           data.email,
            "passwordHash":    password_hash,
            "role":            data.role.value,
            "phoneNumber":     data.phoneNumber,
            "profileImageUrl": data.profileImageUrl,
        })
        await self._send_otp(data.email, data.name, EMAIL_VERIFICATION)
        logger.info(f"Registration pending verification for {data.email}")

    # ─── Verify Registration OTP ──────────────────────────────────────────────
    async def verify_otp(self, email: str, otp: str) -> User:
        self._raise_for(await self.vault.verify(email, EMAIL_VERIFICATION, otp))

        pending = await self.vault.get_pending(email)
        if not pending:
            raise RegistrationExpiredException()

        # Re-check in case another request created the account meanwhile
        if await self.users.get_by_email(email):
            await self.vault.clear_pending(email)
            raise DuplicateEntryException("User already exists", field="email")

        user = await self.users.create_verified(pending)
        log_action(self.db, user.id, "REGISTER", "User", user.id,
                   f"New user registered: {user.name} ({user.email})")
        await self.db.commit()

        await self.vault.cleanup(email, EMAIL_VERIFICATION)
        await self.vault.clear_pending(email)
        logger.info(f"Email verified, account created for {email}")
        return user

    # ─── Resend Registration OTP ──────────────────────────────────────────────
    async def resend_otp(self, email: str) -> None:
        pending = await self.vault.get_pending(email)
        if not pending:
            raise RegistrationExpiredException("No pending registration found for this email.")

        await self.vault.check_and_bump_send_rate(email, EMAIL_VERIFICATION)
        await self._send_otp(email, pending["name"], EMAIL_VERIFICATION)

    async def otp_cooldown_status(self, email: str, purpose: OTPPurpose = EMAIL_VERIFICATION) -> dict:
        remaining = await self.vault.cooldown_remaining(email, purpose)
        return {"secondsRemaining": remaining, "canResend": remaining == 0, "purpose": purpose.value}

    # ─── Login ────────────────────────────────────────────────────────────────
    async def login(self, email: str, password: str) -> IssuedSession:
        user = await self.users.get_by_email(email)
        if not user:
            raise InvalidCredentialsException()

        if not user.isVerified:
            raise EmailNotVerifiedException()

        if not await run_in_threadpool(verify_password, password, user.passwordHash):
            raise InvalidCredentialsException()

        issued = await self._issue_session(user)
        log_action(self.db, user.id, "LOGIN", "User", user.id, f"{user.email} logged in")
        await self.db.commit()
        return issued

    # ─── Refresh ──────────────────────────────────────────────────────────────
    async def refresh(self, raw_token: str | None) -> IssuedSession:
        """
        Exchange a refresh token for a new pair, rotating within its family.
        Every failure looks the same to the caller.
        """
        if not raw_token:
            raise RefreshTokenInvalidException()

        record = await self.ledger.lookup_valid(raw_token)
        if record is None:
            await self._handle_possible_reuse(raw_token)
            raise RefreshTokenInvalidException()

        user = await self.users.get_by_id(record.userId)
        if user is None:
            raise RefreshTokenInvalidException()

        new_refresh = create_refresh_token()
        await self.ledger.rotate(record, new_refresh)
        await self.db.commit()
        return IssuedSession(user, create_access_token(user.id), new_refresh)

    async def _handle_possible_reuse(self, raw_token: str) -> None:
        reused = await self.ledger.detect_reuse(raw_token)
        if reused is None:
            return
        logger.warning(
            f"Revoked refresh token presented for user {reused.userId}; "
            f"revoking family {reused.familyId}"
        )
        await self.ledger.revoke_family(reused.userId, reused.familyId)
        log_action(self.db, reused.userId, "TOKEN_REUSE", "RefreshToken", reused.id,
                   f"Revoked token replayed, family {reused.familyId} revoked")
        await self.db.commit()

    # ─── Logout ───────────────────────────────────────────────────────────────
    async def logout(self, raw_token: str | None) -> None:
        if not raw_token:
            return
        record = await self.ledger.find(raw_token)
        if record is None:
            return
        await self.ledger.revoke_family(record.userId, record.familyId)
        log_action(self.db, record.userId, "LOGOUT", "User", record.userId, "User logged out")
        await self.db.commit()

    # ─── Forgot Password ──────────────────────────────────────────────────────
    async def forgot_password(self, email: str) -> None:
        """
        Always returns normally to prevent email enumeration.
        The OTP is only issued if the account exists and is not throttled.
        """
        user = await self.users.get_by_email(email)
        if not user:
            return

        try:
            await self.vault.check_and_bump_send_rate(email, PASSWORD_RESET)
        except (OTPCooldownException, OTPSendLimitException, OTPLockedException) as e:
            logger.warning(f"Password reset OTP throttled for {email}: {e.error_code}")
            return

        try:
            await self._send_otp(email, user.name, PASSWORD_RESET)
        except ServiceUnavailableException:
            # Unknown emails get the same acknowledgement
            logger.warning(f"Password reset OTP for {email} was not delivered")

    async def verify_reset_otp(self, email: str, otp: str) -> None:
        self._raise_for(await self.vault.verify(email, PASSWORD_RESET, otp))
        await self.vault.mark_reset_verified(email)

    async def resend_reset_otp(self, email: str) -> None:
        user = await self.users.get_by_email(email)
        if not user:
            return
        await self.vault.check_and_bump_send_rate(email, PASSWORD_RESET)
        await self._send_otp(email, user.name, PASSWORD_RESET)

    async def is_reset_verified(self, email: str) -> bool:
        return await self.vault.is_reset_verified(email)

    # ─── Reset Password ───────────────────────────────────────────────────────
    async def reset_password(self, email: str, new_password: str) -> None:
        if not await self.vault.consume_reset_verified(email):
            raise ResetNotVerifiedException()

        user = await self.users.get_by_email(email)
        if not user:
            raise NotFoundException("User")

        password_hash = await run_in_threadpool(hash_password, new_password)
        await self.users.update_password(user, password_hash)
        await self.ledger.revoke_all(user.id)
        log_action(self.db, user.id, "RESET_PASSWORD", "User", user.id, "Password reset via OTP")
        await self.db.commit()

        await self.vault.cleanup(email, PASSWORD_RESET)
        logger.info(f"Password reset for {email}; all sessions revoked")

    # ─── Helpers ──────────────────────────────────────────────────────────────
    async def _issue_session(self, user: User) -> IssuedSession:
        refresh_token = create_refresh_token()
        await self.ledger.store(user.id, refresh_token)
        return IssuedSession(user, create_access_token(user.id), refresh_token)

    async def _send_otp(self, email: str, name: str, purpose: OTPPurpose) -> None:
        otp = await self.vault.issue_otp(email, purpose)
        try:
            await asyncio.wait_for(
                self.notifier.send_otp(email, name, otp, purpose.value),
                timeout=self.settings.NOTIFICATION_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error(f"Timed out sending {purpose.value} OTP to {email}")
            raise ServiceUnavailableException("Failed to send email. Please try again.")
        except Exception as e:
            logger.error(f"Failed to send {purpose.value} OTP to {email}: {e}")
            raise ServiceUnavailableException("Failed to send email. Please try again.") from e

    @staticmethod
    def _raise_for(result: OTPVerification) -> None:
        if result.status is OTPStatus.MATCHED:
            return
        if result.status is OTPStatus.LOCKED:
            raise OTPLockedException(result.retry_after or 0)
        if result.status is OTPStatus.EXPIRED:
            raise OTPExpiredException()
        raise OTPInvalidException(result.remaining_attempts or 0)
